"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

One listening socket and its accept loop. The echo server runs two of these
side by side: one plain, one whose connections are TLS-wrapped.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()    Create a socket file descriptor
    2. bind()      Associate the socket with an IP:PORT
    3. listen()    Mark socket as a "listening" socket
    4. accept()    Wait for and accept an incoming connection
                   └─ Returns a NEW socket just for that client
    5. close()     Release the socket resources

                    ┌───────────────────────┐
                    │   Listening Socket    │ ◄── bound to 0.0.0.0:8080
                    └───────────┬───────────┘     (or 0.0.0.0:8443 + TLS)
                                │
        ┌───────────────────────┼───────────────────────┐
        ▼                       ▼                       ▼
    ┌───────────┐         ┌───────────┐         ┌───────────┐
    │ Client 1  │         │ Client 2  │         │ Client 3  │
    └───────────┘         └───────────┘         └───────────┘

=============================================================================
TLS AND THE ACCEPT LOOP
=============================================================================

The listening socket itself is never wrapped. Each accepted Connection
carries the listener's SSLContext and performs the handshake in its own
worker thread (Connection.start_tls()). A client that connects and never
speaks TLS ties up one worker, not the accept loop.

=============================================================================
SIGNALS
=============================================================================

signal.signal() only works in the main thread, and listeners run in
background threads. Signal handling therefore belongs to EchoServer.run(),
not to this class.

=============================================================================
"""

import socket
import ssl
import logging
import threading
from typing import Optional, Callable, Tuple

from ..config import ServerConfig
from .connection import Connection


logger = logging.getLogger(__name__)


class SocketServer:
    """
    Low-level TCP socket server.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    start(handler)     Blocks until shutdown()                        │
    │        │                                                             │
    │        ├──► _create_socket()   SO_REUSEADDR, TCP_NODELAY             │
    │        ├──► bind() / listen()  errors propagate to the caller        │
    │        ├──► ready.set()        bound address is now known            │
    │        │                                                             │
    │        └──► _accept_loop()                                           │
    │                 └──► accept() → Connection(ssl_context) → handler    │
    │                                                                      │
    │    shutdown()         Stop the loop within ~1s                        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        server = SocketServer(config, port=8443, ssl_context=ctx, name="tls")
        server.start(registry_spawning_handler)  # Blocks until shutdown
    """

    def __init__(
        self,
        config: ServerConfig,
        port: Optional[int] = None,
        ssl_context: Optional[ssl.SSLContext] = None,
        name: str = "plain",
    ):
        """
        Args:
            config: Server configuration (host, backlog, timeouts, ...).
            port: Port to bind, defaults to config.port.
            ssl_context: Server TLS context. Accepted connections perform a
                         TLS handshake with it before speaking HTTP.
            name: Listener name used in log lines.
        """
        self.config = config
        self.port = config.port if port is None else port
        self.ssl_context = ssl_context
        self.name = name

        self._socket: Optional[socket.socket] = None
        self._running = False

        # Set once the socket is bound and listening.
        self.ready = threading.Event()

    @property
    def address(self) -> Tuple[str, int]:
        """
        The bound (IP, port).

        After start() this is the real address, so port 0 reports the port
        the OS picked.
        """
        if self._socket is not None:
            try:
                return self._socket.getsockname()[:2]
            except OSError:
                pass
        return (self.config.host, self.port)

    def _create_socket(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.config.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)

        # ─────────────────────────────────────────────────────────────────
        # SOCKET OPTIONS
        # ─────────────────────────────────────────────────────────────────
        # SO_REUSEADDR: restart without "Address already in use" while the
        # old socket sits in TIME_WAIT. No SO_REUSEPORT: a second echo server
        # on the same port must fail to bind, not silently share it.

        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # TCP_NODELAY: echo frames go out immediately, Nagle would batch them.
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        # accept() wakes up every second so shutdown() is noticed.
        sock.settimeout(1.0)

        return sock

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Bind, listen and accept connections until shutdown().

        Args:
            connection_handler: Called with each new Connection from the
                                accept loop. It must not block; the echo
                                server hands the connection to a worker.

        Raises:
            OSError: bind() or listen() failed (port in use, permission
                     denied, unknown host).
        """
        self._socket = self._create_socket()

        try:
            self._socket.bind((self.config.host, self.port))
            self._socket.listen(self.config.backlog)
        except OSError as e:
            logger.error(f"Failed to bind {self.name} listener to {self.config.host}:{self.port}: {e}")
            self._socket.close()
            self._socket = None
            raise

        self._running = True
        self.ready.set()

        host, port = self.address
        logger.info(f"Listening for {self.name} connections on {host}:{port}")

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                # Socket closed underneath us, usually by shutdown().
                if self._running:
                    logger.error(f"Accept error on {self.name} listener: {e}")
                break

            logger.debug(f"Accepted {self.name} connection from {client_address[0]}:{client_address[1]}")

            conn = Connection(
                socket=client_socket,
                address=client_address[:2],
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                keep_alive_timeout=self.config.keep_alive_timeout,
                max_request_size=self.config.max_request_size,
                ssl_context=self.ssl_context,
            )
            connection_handler(conn)

    def shutdown(self):
        """Stop accepting. Safe to call more than once and from any thread."""
        if self._running:
            logger.info(f"Shutting down {self.name} listener...")
        self._running = False

    def _cleanup(self):
        if self._socket:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None

        self._running = False
        logger.info(f"{self.name.capitalize()} listener stopped")
