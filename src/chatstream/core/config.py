"""Configuration management for chatstream (YAML file plus environment)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from .exceptions import ConfigurationError

DEFAULT_MODEL = "gpt-4o-mini"
WORKFLOW_PREFIX = "wf_"

# environment variable -> settings field
ENV_OVERRIDES: Dict[str, str] = {
    "OPENAI_API_KEY": "api_key",
    "NEXT_PUBLIC_CHATKIT_WORKFLOW_ID": "workflow_id",
    "CHATKIT_WORKFLOW_ID": "workflow_id",
    "CHATSTREAM_MODEL": "model",
    "CHATSTREAM_CHAT_ENDPOINT": "chat_endpoint",
}


@dataclass(frozen=True)
class FallbackPolicy:
    """Decides whether a rejected model id gets one retry with another id.

    Explicit ``overrides`` win; otherwise ids starting with one of ``prefixes``
    fall back to ``default_model``. Only the listed upstream ``statuses``
    trigger the retry.
    """

    default_model: str = DEFAULT_MODEL
    prefixes: Tuple[str, ...] = (WORKFLOW_PREFIX,)
    statuses: Tuple[int, ...] = (400, 404)
    overrides: Dict[str, str] = field(default_factory=dict)

    def fallback_for(self, model: str, status_code: int) -> Optional[str]:
        if status_code not in self.statuses:
            return None
        fallback = self.overrides.get(model)
        if fallback is None and any(model.startswith(p) for p in self.prefixes):
            fallback = self.default_model
        if fallback is None or fallback == model:
            return None
        return fallback


class Settings(BaseModel):
    """Application settings loaded from a YAML file."""

    # Upstream model provider (used by the HTTP boundary)
    api_base_url: str = "https://api.openai.com/v1"
    api_key: Optional[str] = None
    model: Optional[str] = None
    workflow_id: Optional[str] = None

    # Fallback retry policy
    fallback_model: str = DEFAULT_MODEL
    fallback_prefixes: List[str] = [WORKFLOW_PREFIX]
    fallback_statuses: List[int] = [400, 404]
    fallback_overrides: Dict[str, str] = {}

    # Client side
    chat_endpoint: str = "http://127.0.0.1:8811/api/chat"
    connect_timeout: float = 10.0
    storage_dir: Path = Path.home() / ".chatstream" / "state"

    # Server
    host: str = "127.0.0.1"
    port: int = 8811

    # Logging
    log_dir: Path = Path.home() / ".chatstream" / "logs"
    log_level: str = "INFO"

    @field_validator("storage_dir", "log_dir", mode="before")
    @classmethod
    def _coerce_path(cls, v):
        return Path(v).expanduser() if not isinstance(v, Path) else v.expanduser()

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()

    @property
    def effective_model(self) -> str:
        """Configured model, else the workflow id, else the default model."""
        return self.model or self.workflow_id or DEFAULT_MODEL

    def fallback_policy(self) -> FallbackPolicy:
        return FallbackPolicy(
            default_model=self.fallback_model,
            prefixes=tuple(self.fallback_prefixes),
            statuses=tuple(self.fallback_statuses),
            overrides=dict(self.fallback_overrides),
        )


def load_settings(config_path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> Settings:
    """Load Settings from an optional YAML file, then apply environment overrides.

    A missing ``config_path`` argument means defaults; a path that does not
    exist or does not parse is a ConfigurationError.
    """
    data: Dict[str, object] = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if not p.exists():
            raise ConfigurationError(f"Config file not found: {p}")
        try:
            with open(p, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load config from {p}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigurationError(f"Config file {p} must contain a mapping")
        data.update(loaded)

    env = os.environ if environ is None else environ
    for var, key in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            data[key] = value

    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
