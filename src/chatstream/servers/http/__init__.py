"""HTTP boundary: streaming chat proxy and ChatKit session endpoint."""

from .server import ChatProxyServer, create_app

__all__ = ["ChatProxyServer", "create_app"]
