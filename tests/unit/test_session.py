"""
Unit tests for WebSocketSession over a socketpair.
"""

import logging
import socket
import threading

import pytest

from echoserver.core.connection import Connection, ConnectionState
from echoserver.http.request import parse_request
from echoserver.websocket.session import WebSocketSession, describe_error


@pytest.fixture
def socket_pair():
    server_side, client_side = socket.socketpair()
    client_side.settimeout(5)
    yield server_side, client_side
    client_side.close()
    server_side.close()


def make_session(server_side, raw_request, **kwargs) -> WebSocketSession:
    conn = Connection(socket=server_side, address=("127.0.0.1", 40000))
    request = parse_request(raw_request, ("127.0.0.1", 40000))
    return WebSocketSession(conn, request, **kwargs)


def start(session: WebSocketSession) -> threading.Thread:
    thread = threading.Thread(target=session.run, daemon=True)
    thread.start()
    return thread


def read_until(sock: socket.socket, marker: bytes) -> bytes:
    data = b""
    while marker not in data:
        chunk = sock.recv(4096)
        if not chunk:
            break
        data += chunk
    return data


def read_first_frame(sock: socket.socket) -> bytes:
    """Skip the 101 response and return the payload of the first short frame."""
    data = read_until(sock, b"\r\n\r\n")
    head, _, rest = data.partition(b"\r\n\r\n")
    assert head.startswith(b"HTTP/1.1 101")

    while len(rest) < 2 or len(rest) < 2 + (rest[1] & 0x7F):
        chunk = sock.recv(4096)
        if not chunk:
            break
        rest += chunk

    assert rest[0] == 0x81
    length = rest[1] & 0x7F
    return rest[2:2 + length]


class TestGreeting:
    def test_greeting_names_the_host(self, socket_pair, sample_upgrade_request):
        server_side, client_side = socket_pair
        session = make_session(server_side, sample_upgrade_request, hostname_provider=lambda: "echo-0")

        thread = start(session)
        greeting = read_first_frame(client_side)
        client_side.shutdown(socket.SHUT_WR)
        thread.join(timeout=5)

        assert greeting == b"Request served by echo-0"

    def test_hostname_failure_greeting(self, socket_pair, sample_upgrade_request):
        server_side, client_side = socket_pair

        def broken():
            raise OSError("no hostname")

        session = make_session(server_side, sample_upgrade_request, hostname_provider=broken)

        thread = start(session)
        greeting = read_first_frame(client_side)
        client_side.shutdown(socket.SHUT_WR)
        thread.join(timeout=5)

        assert greeting == b"Server hostname unknown: no hostname"
        assert not thread.is_alive()

    def test_greeting_write_failure_ends_session(self, socket_pair, sample_upgrade_request, caplog):
        """The peer vanishes between the handshake and the greeting."""
        server_side, client_side = socket_pair

        def hostname_after_peer_left():
            client_side.close()
            return "echo-0"

        session = make_session(
            server_side,
            sample_upgrade_request,
            hostname_provider=hostname_after_peer_left,
        )

        with caplog.at_level(logging.INFO, logger="echoserver"):
            session.run()

        assert isinstance(session.error, OSError)
        assert session.conn.state is ConnectionState.CLOSED
        assert "upgraded to websocket" in caplog.text
        assert "127.0.0.1:40000 | " in caplog.text


class TestEcho:
    def test_masked_frame_is_echoed(self, socket_pair, sample_upgrade_request):
        server_side, client_side = socket_pair
        session = make_session(server_side, sample_upgrade_request, hostname_provider=lambda: "h")

        thread = start(session)
        read_first_frame(client_side)

        # Masked text frame "hi" with an all-zero mask.
        client_side.sendall(b"\x81\x82\x00\x00\x00\x00hi")
        echoed = read_until(client_side, b"hi")
        client_side.shutdown(socket.SHUT_WR)
        thread.join(timeout=5)

        assert echoed == b"\x81\x02hi"
        assert session.conn.state is ConnectionState.CLOSED

    def test_peer_eof_closes_connection(self, socket_pair, sample_upgrade_request):
        server_side, client_side = socket_pair
        session = make_session(server_side, sample_upgrade_request, hostname_provider=lambda: "h")

        thread = start(session)
        read_first_frame(client_side)
        client_side.shutdown(socket.SHUT_WR)
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert session.conn.state is ConnectionState.CLOSED


class TestRejectedHandshake:
    def test_missing_key_is_rejected(self, socket_pair):
        server_side, client_side = socket_pair
        raw = (
            b"GET /ws HTTP/1.1\r\n"
            b"Host: localhost\r\n"
            b"Upgrade: websocket\r\n"
            b"Connection: Upgrade\r\n"
            b"Sec-WebSocket-Version: 13\r\n"
            b"\r\n"
        )
        session = make_session(server_side, raw)

        session.run()
        response = read_until(client_side, b"\r\n\r\n")

        assert response.startswith(b"HTTP/1.1 4")
        assert session.conn.state is ConnectionState.CLOSED


class TestDescribeError:
    def test_includes_cause(self):
        try:
            try:
                raise ValueError("inner")
            except ValueError as e:
                raise RuntimeError("outer") from e
        except RuntimeError as e:
            assert describe_error(e) == "outer: inner"

    def test_none(self):
        assert describe_error(None) == "unknown error"
