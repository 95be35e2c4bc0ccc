"""
chatstream: streaming multi-session chat client.

Combines a cancellable server-sent-events chat pipeline and persisted session
history with a small HTTP proxy in front of the model provider.
"""

__version__ = "0.1.0"

# Re-export core components for convenience
from .core import ConversationOrchestrator, SessionStore, StreamController

__all__ = [
    "ConversationOrchestrator",
    "SessionStore",
    "StreamController",
]
