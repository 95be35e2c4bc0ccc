"""Tests for settings loading and the model fallback policy."""

from pathlib import Path

import pytest

from chatstream.core.config import DEFAULT_MODEL, FallbackPolicy, Settings, load_settings
from chatstream.core.exceptions import ConfigurationError


def test_defaults_without_file_or_environment():
    settings = load_settings(environ={})
    assert settings.api_key is None
    assert settings.effective_model == DEFAULT_MODEL
    assert settings.chat_endpoint.endswith("/api/chat")
    assert settings.log_level == "INFO"


def test_yaml_values_and_environment_overrides(tmp_path):
    config = tmp_path / "chatstream.yaml"
    config.write_text(
        "api_key: from-file\n"
        "model: gpt-4o\n"
        "port: 9000\n"
        "log_level: debug\n"
        "storage_dir: ~/somewhere\n"
    )

    settings = load_settings(config, environ={"OPENAI_API_KEY": "from-env", "CHATSTREAM_MODEL": ""})

    assert settings.api_key == "from-env"
    # empty variables do not override
    assert settings.model == "gpt-4o"
    assert settings.port == 9000
    assert settings.log_level == "DEBUG"
    assert settings.storage_dir == Path("~/somewhere").expanduser()


def test_workflow_id_from_either_variable():
    settings = load_settings(environ={"CHATKIT_WORKFLOW_ID": "wf_1"})
    assert settings.workflow_id == "wf_1"
    assert settings.effective_model == "wf_1"

    settings = load_settings(environ={"NEXT_PUBLIC_CHATKIT_WORKFLOW_ID": "wf_2"})
    assert settings.workflow_id == "wf_2"


def test_model_takes_precedence_over_workflow():
    assert Settings(model="gpt-4o", workflow_id="wf_1").effective_model == "gpt-4o"


def test_missing_file_is_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_settings(tmp_path / "absent.yaml", environ={})


@pytest.mark.parametrize("content", ["port: [unclosed\n", "- just\n- a list\n", "port: not-a-number\n"])
def test_invalid_file_is_configuration_error(tmp_path, content):
    config = tmp_path / "bad.yaml"
    config.write_text(content)
    with pytest.raises(ConfigurationError):
        load_settings(config, environ={})


def test_empty_file_means_defaults(tmp_path):
    config = tmp_path / "empty.yaml"
    config.write_text("")
    assert load_settings(config, environ={}).port == 8811


def test_fallback_policy_rules():
    policy = FallbackPolicy()
    assert policy.fallback_for("wf_123", 404) == DEFAULT_MODEL
    assert policy.fallback_for("wf_123", 400) == DEFAULT_MODEL
    assert policy.fallback_for("wf_123", 500) is None
    assert policy.fallback_for("gpt-4o", 404) is None
    # never retries with the same id
    assert FallbackPolicy(prefixes=("gpt",)).fallback_for(DEFAULT_MODEL, 404) is None


def test_fallback_policy_from_settings():
    settings = Settings(
        fallback_model="gpt-4o",
        fallback_prefixes=["custom-"],
        fallback_statuses=[422],
        fallback_overrides={"legacy": "gpt-4.1"},
    )
    policy = settings.fallback_policy()

    assert policy.fallback_for("custom-x", 422) == "gpt-4o"
    assert policy.fallback_for("custom-x", 404) is None
    assert policy.fallback_for("legacy", 422) == "gpt-4.1"
    assert policy.fallback_for("wf_1", 422) is None
