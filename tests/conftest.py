import sys
from pathlib import Path

import pytest

# Ensure src is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from chatstream.core.orchestrator import ConversationOrchestrator
from chatstream.core.persistence import MemoryKeyValueStore
from chatstream.core.store import PromptStore, SessionStore
from chatstream.core.stream import StreamController
from helpers import FakeChatEndpoint


@pytest.fixture
def endpoint():
    return FakeChatEndpoint()


@pytest.fixture
def storage():
    return MemoryKeyValueStore()


@pytest.fixture
def controller(endpoint):
    return StreamController(FakeChatEndpoint.URL, client=endpoint.client())


@pytest.fixture
def orchestrator(storage, controller):
    return ConversationOrchestrator(
        SessionStore(storage),
        controller,
        prompts=PromptStore(storage),
    )
