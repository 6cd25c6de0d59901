"""WebSocket echo sessions on top of the websockets sans-I/O protocol."""

from .session import CLOSE_TIMEOUT, WebSocketSession, serve_websocket

__all__ = ["CLOSE_TIMEOUT", "WebSocketSession", "serve_websocket"]
