"""
Exception types for chatstream.

Only configuration problems are raised to callers. Stream and upstream errors
are converted into text or JSON error bodies at the component boundary.
"""


class ChatStreamError(Exception):
    """Base exception class for all chatstream errors."""
    pass


class ConfigurationError(ChatStreamError):
    """Raised when configuration is invalid or missing."""
    pass


class StreamResponseError(ChatStreamError):
    """Raised when the chat endpoint answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class UpstreamError(ChatStreamError):
    """Raised when the model provider rejects a proxied request."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code
