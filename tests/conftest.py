"""
pytest configuration and fixtures.
"""

import shutil
import socket
import ssl
import subprocess
from typing import Dict, Generator, Optional, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from echoserver import EchoServer, ServerConfig


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /api/users?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: application/json\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with a form body."""
    body = b"name=John&email=john%40example.com"
    return (
        b"POST /submit HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: application/x-www-form-urlencoded\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


@pytest.fixture
def sample_upgrade_request() -> bytes:
    """A valid WebSocket upgrade request (RFC 6455 sample key)."""
    return (
        b"GET /chat HTTP/1.1\r\n"
        b"Host: server.example.com\r\n"
        b"Upgrade: websocket\r\n"
        b"Connection: Upgrade\r\n"
        b"Sec-WebSocket-Key: dGhlIHNhbXBsZSBub25jZQ==\r\n"
        b"Sec-WebSocket-Version: 13\r\n"
        b"\r\n"
    )


@pytest.fixture
def config() -> ServerConfig:
    """Test configuration: loopback, OS-assigned ports, no TLS."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,
        tls_port=0,
        tls_enabled=False,
        timeout=5.0,
        keep_alive_timeout=1.0,
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


class EchoTestServer:
    """Runs an EchoServer in the background for the duration of a test."""

    def __init__(self, server: EchoServer):
        self.server = server

    @property
    def port(self) -> int:
        return self.server.plain_address[1]

    @property
    def tls_port(self) -> int:
        return self.server.tls_address[1]

    def start(self) -> "EchoTestServer":
        self.server.start()
        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")
        return self

    def wait_for_tls(self, timeout: float = 5.0) -> bool:
        """Wait until the TLS listener is accepting (False if it gave up)."""
        listener = self.server.tls_listener
        return listener.ready.wait(timeout) and self.server.tls_error is None

    def stop(self):
        self.server.shutdown()


@pytest.fixture
def test_server(config: ServerConfig) -> Generator[EchoTestServer, None, None]:
    """A running plain-only echo server."""
    srv = EchoTestServer(EchoServer(config)).start()
    yield srv
    srv.stop()


@pytest.fixture
def tls_files(tmp_path: Path) -> Tuple[str, str]:
    """Self-signed certificate and key, generated with the openssl CLI."""
    openssl = shutil.which("openssl")
    if openssl is None:
        pytest.skip("openssl CLI not available")

    cert = tmp_path / "client.crt"
    key = tmp_path / "client.key"
    subprocess.run(
        [
            openssl, "req", "-x509", "-newkey", "rsa:2048", "-nodes",
            "-keyout", str(key), "-out", str(cert),
            "-days", "1", "-subj", "/CN=localhost",
        ],
        check=True,
        capture_output=True,
    )
    return str(cert), str(key)


@pytest.fixture
def client_tls_context() -> ssl.SSLContext:
    """Client context that trusts anything (the server cert is self-signed)."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


# =============================================================================
# RAW HTTP HELPERS
# =============================================================================

def recv_all(sock: socket.socket, timeout: float = 5.0) -> bytes:
    """Read until the server closes the connection."""
    sock.settimeout(timeout)
    chunks = []
    while True:
        chunk = sock.recv(65536)
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


def read_response(sock: socket.socket, timeout: float = 5.0) -> Tuple[int, Dict[str, str], bytes]:
    """Read exactly one Content-Length delimited response."""
    sock.settimeout(timeout)
    data = b""
    while b"\r\n\r\n" not in data:
        chunk = sock.recv(65536)
        if not chunk:
            break
        data += chunk

    status, headers, body = parse_response(data)
    length = int(headers.get("content-length", len(body)))
    while len(body) < length:
        chunk = sock.recv(65536)
        if not chunk:
            break
        body += chunk
    return status, headers, body


def parse_response(data: bytes) -> Tuple[int, Dict[str, str], bytes]:
    """Split raw response bytes into (status, lowercase headers, body)."""
    head, _, body = data.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    return status, headers, body


def http_request(
    port: int,
    raw: bytes,
    tls_context: Optional[ssl.SSLContext] = None,
) -> Tuple[int, Dict[str, str], bytes]:
    """Send raw request bytes and read the response until close."""
    sock = socket.create_connection(("127.0.0.1", port), timeout=5.0)
    if tls_context is not None:
        sock = tls_context.wrap_socket(sock, server_hostname="localhost")
    with sock:
        sock.sendall(raw)
        return parse_response(recv_all(sock))
