"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket with the API both protocols need.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

    Client sends:
        send("GET / HTTP/1.1\r\n...")
        send(<websocket frame>)

    Server might receive:
        recv() → "GET / HTTP/1.1\r\nHost: ..."        (partial headers)
        recv() → "...\r\n\r\n" + <first frame bytes>  (end of request AND
                                                      the start of a frame)

We buffer until the \r\n\r\n that ends the headers. Anything that arrived
after the request stays in the buffer: for keep-alive that is the next
request, for an upgraded connection it is the first WebSocket frame, and the
session collects it with take_buffered().

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──► READING ──► PROCESSING ──► WRITING ──► KEEP_ALIVE ──┐
     │         │            │                          │         │
     │         │            └──────► UPGRADED          │         │
     │         │                        │              │         │
     │         ▼                        ▼              │         │
     └──────► CLOSING ◄─────────────────┴──────────────┴─────────┘
                 │
                 ▼
               CLOSED

UPGRADED is entered at most once and never left except by closing.

=============================================================================
"""

import socket
import ssl
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, Optional
import uuid


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states."""
    NEW = "new"                # Just accepted
    READING = "reading"        # Reading request data
    PROCESSING = "processing"  # Request parsed, being dispatched
    WRITING = "writing"        # Sending response data
    KEEP_ALIVE = "keep_alive"  # Response sent, waiting for next request
    UPGRADED = "upgraded"      # Owned by a WebSocket session
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    Represents a client connection.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. TLS        Server-side handshake when accepted on the TLS port   │
    │  2. BUFFERING  Complete HTTP requests out of a byte stream           │
    │  3. TIMEOUTS   First request vs keep-alive vs none once upgraded     │
    │  4. STATE      Where in its lifecycle the connection is              │
    │  5. CLOSE      Proper TCP shutdown, never leak a descriptor          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Attributes:
        socket: The client socket (an SSLSocket after start_tls()).
        address: Client's (ip, port) tuple.
        id: Short identifier for debug logs.
        state: Current connection state.
        ssl_context: Server TLS context, None on the plain listener.
    """

    socket: socket.socket
    address: tuple[str, int]

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024
    ssl_context: Optional[ssl.SSLContext] = field(default=None, repr=False)

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def client_port(self) -> int:
        return self.address[1]

    @property
    def remote_addr(self) -> str:
        """"ip:port", the prefix of every per-connection log line."""
        if ":" in self.client_ip:
            return f"[{self.client_ip}]:{self.client_port}"
        return f"{self.client_ip}:{self.client_port}"

    @property
    def is_secure(self) -> bool:
        return isinstance(self.socket, ssl.SSLSocket)

    @property
    def tls_info(self) -> Optional[Dict[str, str]]:
        """
        Negotiated TLS parameters, None for plain connections.

            {"version": "TLSv1.3", "cipher": "TLS_AES_256_GCM_SHA384", "bits": "256"}
        """
        if not self.is_secure:
            return None

        info = {"version": self.socket.version() or "unknown"}
        cipher = self.socket.cipher()
        if cipher:
            info["cipher"] = cipher[0]
            info["bits"] = str(cipher[2])
        return info

    # =========================================================================
    # TLS
    # =========================================================================

    def start_tls(self) -> None:
        """
        Perform the server-side TLS handshake if this connection came in
        on the TLS listener.

        Runs in the connection's worker thread, never in the accept loop, so
        a slow or broken client cannot stall other accepts.

        Raises:
            ssl.SSLError, OSError: Handshake failed.
        """
        if self.ssl_context is None or self.is_secure:
            return

        self.socket = self.ssl_context.wrap_socket(self.socket, server_side=True)
        logger.debug(f"[{self.id}] TLS established: {self.tls_info}")

    # =========================================================================
    # READING: complete HTTP requests
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read a complete HTTP request from the socket.

        1. Accumulate data until the \\r\\n\\r\\n header terminator
        2. Read Content-Length more bytes of body
        3. Return exactly one request, keep the rest buffered

        Returns:
            Complete HTTP request bytes, or None if the connection closed.

        Raises:
            TimeoutError: First request did not arrive in time.
            ValueError: Request exceeds max_request_size.
        """
        self.state = ConnectionState.READING
        self.last_activity = time.time()

        # Keep-alive clients get less patience than new ones.
        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None

                self._buffer += chunk
                if len(self._buffer) > self.max_request_size:
                    raise ValueError(f"Request too large: {len(self._buffer)} bytes")

            header_end = self._buffer.find(b"\r\n\r\n")
            body_start = header_end + 4
            content_length = self._parse_content_length(self._buffer[:header_end])

            while len(self._buffer) - body_start < content_length:
                chunk = self._recv()
                if not chunk:
                    break

                self._buffer += chunk
                if len(self._buffer) > self.max_request_size:
                    raise ValueError(f"Request too large: {len(self._buffer)} bytes")

            request_end = body_start + content_length
            request_data = self._buffer[:request_end]
            self._buffer = self._buffer[request_end:]

            self.requests_handled += 1
            self.last_activity = time.time()
            return request_data

        except socket.timeout:
            if self.requests_handled > 0:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            if self.state == ConnectionState.READING:
                self.socket.settimeout(self.timeout)

    def _recv(self) -> bytes:
        """recv() that treats an abrupt disconnect like an orderly one."""
        try:
            data = self.socket.recv(self.buffer_size)
            self.last_activity = time.time()
            return data
        except (ConnectionResetError, BrokenPipeError):
            return b""

    def _parse_content_length(self, headers: bytes) -> int:
        """Content-Length from raw header bytes, 0 if absent or invalid."""
        try:
            header_str = headers.decode("latin-1").lower()
            for line in header_str.split("\r\n"):
                if line.startswith("content-length:"):
                    return max(0, int(line.split(":", 1)[1].strip()))
        except (ValueError, IndexError):
            pass
        return 0

    # =========================================================================
    # UPGRADED CONNECTIONS: raw byte stream I/O
    # =========================================================================

    def mark_upgraded(self) -> None:
        """
        Hand the connection over to a WebSocket session.

        Clears the read timeout: an echo session may legitimately sit idle
        for as long as the peer likes.
        """
        if self.state == ConnectionState.UPGRADED:
            raise RuntimeError(f"[{self.id}] connection already upgraded")

        self.state = ConnectionState.UPGRADED
        self.socket.settimeout(None)

    def take_buffered(self) -> bytes:
        """Return and clear bytes read past the end of the last request."""
        data, self._buffer = self._buffer, b""
        return data

    def receive(self) -> bytes:
        """
        Blocking read of whatever the peer sent next.

        Unlike _recv(), errors propagate so the session can report them.

        Returns:
            Received bytes, b"" at end of stream.
        """
        data = self.socket.recv(self.buffer_size)
        self.last_activity = time.time()
        return data

    def write(self, data: bytes) -> None:
        """sendall() that lets errors propagate."""
        self.socket.sendall(data)
        self.last_activity = time.time()

    def shutdown_write(self) -> None:
        """Half-close: send FIN, keep reading."""
        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

    # =========================================================================
    # WRITING: HTTP responses
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Send response data to the client.

        Returns:
            True if send succeeded, False if connection lost.
        """
        self.state = ConnectionState.WRITING
        self.last_activity = time.time()

        try:
            self.socket.sendall(data)
            self.last_activity = time.time()
            return True
        except OSError as e:
            logger.warning(f"{self.remote_addr} | send failed: {e}")
            return False

    def set_keep_alive(self):
        """Mark connection ready for the next request."""
        self.state = ConnectionState.KEEP_ALIVE

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close the connection gracefully.

        1. shutdown(SHUT_WR)  send FIN
        2. drain              read what the client still had in flight
        3. close()            release the descriptor

        Safe to call more than once.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except (socket.timeout, OSError):
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
