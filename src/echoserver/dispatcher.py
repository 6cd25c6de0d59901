"""
=============================================================================
PROTOCOL DISPATCHER
=============================================================================

Decides, once per request, which of the three things the echo server does
with it:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      DISPATCH DECISION                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Connection: ...upgrade...  AND  Upgrade: ...websocket...           │
    │       └──► WEBSOCKET       any path, any method, no origin check     │
    │                                                                      │
    │   path == "/ws"                                                      │
    │       └──► WEBSOCKET_PAGE  200 text/html demo page                   │
    │                                                                      │
    │   anything else                                                      │
    │       └──► REPORT          200 text/plain diagnostic report          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Nothing is rejected here. A malformed upgrade is still classified WEBSOCKET;
the handshake is what turns it away with a 4xx.

=============================================================================
"""

import socket
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .config import ServerConfig
from .core.connection import Connection
from .handlers.report import DiagnosticReporter
from .handlers.websocket_page import WEBSOCKET_PATH, websocket_page
from .http.request import HTTPRequest
from .http.response import HTTPResponse
from .websocket.session import serve_websocket


logger = logging.getLogger(__name__)


class RequestKind(Enum):
    WEBSOCKET = "websocket"
    WEBSOCKET_PAGE = "websocket_page"
    REPORT = "report"


@dataclass(frozen=True)
class Classification:
    """The routing decision for one request. Computed once, never changed."""

    kind: RequestKind
    path: str

    @property
    def is_upgrade(self) -> bool:
        return self.kind is RequestKind.WEBSOCKET


def is_websocket_upgrade(request: HTTPRequest) -> bool:
    """
    Connection carries the "upgrade" token and Upgrade the "websocket" token.

        Connection: keep-alive, Upgrade   ✓
        Upgrade: WebSocket                ✓ (case-insensitive)
        Connection: Upgrade (no Upgrade:) ✗
    """
    return (
        "upgrade" in request.header_tokens("connection")
        and "websocket" in request.header_tokens("upgrade")
    )


def classify(request: HTTPRequest) -> Classification:
    if is_websocket_upgrade(request):
        kind = RequestKind.WEBSOCKET
    elif request.path == WEBSOCKET_PATH:
        kind = RequestKind.WEBSOCKET_PAGE
    else:
        kind = RequestKind.REPORT
    return Classification(kind=kind, path=request.path)


class Dispatcher:
    """
    Routes parsed requests.

    Usage:
        dispatcher = Dispatcher(config)
        response = dispatcher.dispatch(request, conn)
        if response is None:
            pass  # a WebSocket session took the connection and closed it

    Args:
        config: Server configuration (ADD_HEADERS, message size limit).
        reporter: Renders the diagnostic report.
        hostname_provider: Hostname for the WebSocket greeting.
        session_runner: Runs a WebSocket session on (conn, request).
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        reporter: Optional[DiagnosticReporter] = None,
        hostname_provider: Callable[[], str] = socket.gethostname,
        session_runner: Optional[Callable[[Connection, HTTPRequest], object]] = None,
    ):
        self.config = config or ServerConfig()
        self.hostname_provider = hostname_provider
        self.reporter = reporter or DiagnosticReporter(
            add_headers=self.config.add_headers,
            hostname_provider=hostname_provider,
        )
        self.session_runner = session_runner or self._run_session

    def dispatch(self, request: HTTPRequest, conn: Connection) -> Optional[HTTPResponse]:
        """
        Handle one request.

        Returns:
            The HTTP response to send, or None when the request was an
            upgrade and the connection now belongs to a finished session.
        """
        logger.info(f"{request.remote_addr} | {request.method} {request.url}")

        classification = classify(request)

        if classification.kind is RequestKind.WEBSOCKET:
            self.session_runner(conn, request)
            return None

        if classification.kind is RequestKind.WEBSOCKET_PAGE:
            return websocket_page(request)

        return self.reporter.handle(request)

    def _run_session(self, conn: Connection, request: HTTPRequest):
        return serve_websocket(
            conn,
            request,
            hostname_provider=self.hostname_provider,
            max_message_size=self.config.max_message_size,
        )
