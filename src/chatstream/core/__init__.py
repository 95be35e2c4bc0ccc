"""
Core client module for chatstream.

Provides the streaming chat pipeline shared by the terminal client and tests.

Exports:
- ConversationOrchestrator: runs chat turns and owns the live view
- SessionStore / PromptStore: persisted sessions and starter prompts
- StreamController / DeltaStream: one cancellable chat stream at a time
- SSEDecoder / iter_deltas: server-sent event chunk decoding
- Settings / load_settings: configuration
"""

from .config import FallbackPolicy, Settings, load_settings
from .decoder import SSEDecoder, iter_deltas
from .exceptions import (
    ChatStreamError,
    ConfigurationError,
    StreamResponseError,
    UpstreamError,
)
from .logging import ConversationLogger, get_conversation_logger
from .models import Attachment, ChatSession, Message, StarterPrompt, generate_id
from .orchestrator import ConversationOrchestrator, TurnResult, TurnState
from .persistence import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from .store import PromptStore, SessionStore
from .stream import CancellationToken, DeltaStream, StreamController, StreamOutcome

__all__ = [
    "Attachment",
    "CancellationToken",
    "ChatSession",
    "ChatStreamError",
    "ConfigurationError",
    "ConversationLogger",
    "ConversationOrchestrator",
    "DeltaStream",
    "FallbackPolicy",
    "FileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "Message",
    "PromptStore",
    "SSEDecoder",
    "SessionStore",
    "Settings",
    "StarterPrompt",
    "StreamController",
    "StreamOutcome",
    "StreamResponseError",
    "TurnResult",
    "TurnState",
    "UpstreamError",
    "generate_id",
    "get_conversation_logger",
    "iter_deltas",
    "load_settings",
]
