"""
=============================================================================
DUAL-LISTENER ECHO SERVER
=============================================================================

Ties the components together: two listeners, one dispatcher.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       ECHO SERVER ARCHITECTURE                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │   EchoServer    │                          │
    │                        └────────┬────────┘                          │
    │                                 │                                    │
    │            ┌────────────────────┴────────────────────┐              │
    │            ▼                                         ▼              │
    │    ┌──────────────┐                          ┌──────────────┐       │
    │    │ SocketServer │ :8080                    │ SocketServer │ :8443 │
    │    │   (plain)    │                          │    (TLS)     │       │
    │    └──────┬───────┘                          └──────┬───────┘       │
    │           └──────────────────┬──────────────────────┘               │
    │                              ▼                                       │
    │                    ConnectionWorker (1 per conn)                     │
    │                              │                                       │
    │                              ▼                                       │
    │                         Dispatcher                                   │
    │              ┌───────────────┼───────────────┐                       │
    │              ▼               ▼               ▼                       │
    │        WebSocketSession   /ws page   DiagnosticReporter              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
FAILURE POLICY
=============================================================================

    Plain listener cannot bind   FATAL: run() raises, the CLI exits 1
    TLS listener cannot start    logged "Failed to start TLS because: ...",
                                 plain service continues
    One connection misbehaves    logged, that connection is closed

The plain listener reports through a concurrent.futures.Future. run() blocks
on it, so a bind failure in the listener thread surfaces as an exception in
the thread that called run().

=============================================================================
"""

import json
import signal
import ssl
import logging
import threading
import time
from concurrent.futures import Future
from typing import Optional, Tuple

from .config import ServerConfig
from .core.connection import Connection, ConnectionState
from .core.socket_server import SocketServer
from .core.workers import WorkerRegistry
from .dispatcher import Dispatcher
from .http.request import RequestParser, HTTPParseError
from .http.response import error_response, internal_error, HTTPStatus


logger = logging.getLogger(__name__)


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(config: ServerConfig) -> None:
    """Configure the root logger from config.log_level / config.log_format."""
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    if config.log_format == "json":
        handler.setFormatter(JSONFormatter(datefmt=LOG_DATEFMT))
    else:
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))

    logging.basicConfig(level=level, handlers=[handler])
    logging.getLogger("echoserver").setLevel(level)


def create_ssl_context(cert_file: str, key_file: str) -> ssl.SSLContext:
    """
    Server-side TLS context with the given certificate chain and key.

    Raises:
        OSError: A file is missing or unreadable.
        ssl.SSLError: The files are not a valid certificate / key pair.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(cert_file, key_file)
    return context


class EchoServer:
    """
    The echo server: plain and TLS listeners feeding one dispatcher.

    Usage:
        server = EchoServer(ServerConfig.from_env())
        server.run()              # Blocks; raises if the plain port fails

        # Embedded / in tests:
        server.start()
        server.wait_until_ready()
        host, port = server.plain_address
        ...
        server.shutdown()
    """

    def __init__(self, config: Optional[ServerConfig] = None, dispatcher: Optional[Dispatcher] = None):
        self.config = config or ServerConfig()
        self.dispatcher = dispatcher or Dispatcher(self.config)

        self._parser = RequestParser(max_request_size=self.config.max_request_size)
        self._workers = WorkerRegistry()

        self.plain_listener = SocketServer(self.config, port=self.config.port, name="plain")
        self.tls_listener: Optional[SocketServer] = None
        if self.config.tls_enabled:
            self.tls_listener = SocketServer(self.config, port=self.config.tls_port, name="TLS")

        self._plain_future: Optional[Future] = None
        self.tls_error: Optional[Exception] = None
        self.tls_stopped = threading.Event()
        self._running = False
        self._original_handlers: dict = {}

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def plain_address(self) -> Tuple[str, int]:
        return self.plain_listener.address

    @property
    def tls_address(self) -> Optional[Tuple[str, int]]:
        if self.tls_listener is None:
            return None
        return self.tls_listener.address

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> Future:
        """
        Start both listeners in background threads.

        Returns:
            Future for the plain listener: it fails with the bind error, or
            resolves to None once the listener stops after shutdown().
        """
        self.config.validate()
        self._running = True
        self._plain_future = Future()

        threading.Thread(target=self._serve_plain, name="plain-listener", daemon=True).start()

        if self.tls_listener is not None:
            threading.Thread(target=self._serve_tls, name="tls-listener", daemon=True).start()
        else:
            logger.info("TLS listener disabled")
            self.tls_stopped.set()

        return self._plain_future

    def run(self):
        """
        Serve until shutdown() or SIGINT / SIGTERM.

        Raises:
            OSError: The plain listener could not be started.
        """
        future = self.start()
        self._setup_signals()

        try:
            future.result()
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self.shutdown()
            self._restore_signals()

    def wait_until_ready(self, timeout: float = 5.0) -> bool:
        """
        Wait until the plain listener accepts connections.

        Raises:
            OSError: The plain listener failed to start.
        """
        deadline = time.time() + timeout
        while time.time() < deadline:
            if self.plain_listener.ready.wait(0.05):
                return True
            if self._plain_future is not None and self._plain_future.done():
                self._plain_future.result()
                return False
        return False

    def shutdown(self, wait: bool = True):
        """Stop both listeners. Safe to call more than once."""
        if self._running:
            logger.info("Shutting down echo server...")
        self._running = False

        self.plain_listener.shutdown()
        if self.tls_listener is not None:
            self.tls_listener.shutdown()

        if wait:
            self._workers.join(timeout=2.0)

    def _setup_signals(self):
        # signal.signal() raises ValueError outside the main thread.
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
            self.shutdown(wait=False)

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._original_handlers[sig] = signal.signal(sig, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    # =========================================================================
    # LISTENER THREADS
    # =========================================================================

    def _serve_plain(self):
        future = self._plain_future
        if not future.set_running_or_notify_cancel():
            return

        logger.info(f"Echo server starting on port {self.config.port}")
        try:
            self.plain_listener.start(self._handle_connection)
        except BaseException as e:
            future.set_exception(e)
        else:
            future.set_result(None)

    def _serve_tls(self):
        logger.info(f"Echo server starting on ssl port {self.config.tls_port}")
        try:
            self.tls_listener.ssl_context = create_ssl_context(
                self.config.tls_cert_file,
                self.config.tls_key_file,
            )
            self.tls_listener.start(self._handle_connection)
        except Exception as e:
            self.tls_error = e
            logger.error(f"Failed to start TLS because: {e}")
        finally:
            self.tls_stopped.set()

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Accept-loop callback: every connection gets its own worker."""
        self._workers.spawn(self._process_connection, conn)

    def _process_connection(self, conn: Connection):
        """
        Serve one connection (runs in its worker thread).

        =====================================================================
        CONNECTION PROCESSING LOOP
        =====================================================================

        0. TLS handshake when the connection came in on the TLS port
        1. Read request from socket
        2. Parse HTTP request
        3. Dispatch
           └── upgrade: the WebSocket session owns the connection, stop here
        4. Send response
        5. If keep-alive: repeat from step 1

        =====================================================================
        """
        with conn:
            try:
                conn.start_tls()
            except OSError as e:
                logger.warning(f"{conn.remote_addr} | TLS handshake failed: {e}")
                return

            while self._running:
                try:
                    raw_request = conn.read_request()
                    if raw_request is None:
                        break

                    try:
                        request = self._parser.parse(raw_request, conn.address, tls=conn.tls_info)
                    except HTTPParseError as e:
                        logger.warning(f"{conn.remote_addr} | bad request: {e}")
                        self._send_error(conn, HTTPStatus(e.status_code), str(e))
                        break

                    conn.state = ConnectionState.PROCESSING

                    try:
                        response = self.dispatcher.dispatch(request, conn)
                    except Exception as e:
                        logger.exception(f"{conn.remote_addr} | handler error: {e}")
                        response = internal_error()

                    if response is None:
                        break

                    keep_alive = request.is_keep_alive and self.config.keep_alive
                    if keep_alive:
                        response.headers.setdefault("Connection", "keep-alive")
                        response.headers.setdefault(
                            "Keep-Alive",
                            f"timeout={int(self.config.keep_alive_timeout)}"
                        )
                    else:
                        response.headers["Connection"] = "close"

                    if not conn.send_response(response.to_bytes(self.config.server_name)):
                        break

                    if not keep_alive:
                        break

                    conn.set_keep_alive()

                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                    break

                except ValueError as e:
                    logger.warning(f"{conn.remote_addr} | {e}")
                    self._send_error(conn, HTTPStatus.PAYLOAD_TOO_LARGE, str(e))
                    break

                except Exception as e:
                    logger.exception(f"{conn.remote_addr} | connection error: {e}")
                    break

    def _send_error(self, conn: Connection, status: HTTPStatus, message: str):
        """Error response for failures before dispatch (parse errors, timeouts)."""
        conn.send_response(error_response(status, message).to_bytes(self.config.server_name))


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. Two SocketServers (plain, TLS) on background threads, one Dispatcher
# 2. A Future carries the plain listener's fate back to run()
# 3. TLS problems degrade the service instead of stopping it
# 4. Keep-alive HTTP loop per connection, handed over to a WebSocket
#    session on upgrade
# =============================================================================
