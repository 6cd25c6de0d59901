"""
Integration tests for the dual-listener runtime over real sockets.
"""

import socket
import ssl
import threading
import logging

import pytest
from websockets.sync.client import connect

from conftest import EchoTestServer, http_request, read_response
from echoserver import EchoServer
from echoserver.__main__ import main


class TestPlainHTTP:
    def test_report(self, test_server):
        status, headers, body = http_request(test_server.port, (
            b"GET /anything?x=1 HTTP/1.1\r\n"
            b"Host: localhost\r\n"
            b"Connection: close\r\n"
            b"\r\n"
        ))

        assert status == 200
        assert headers["content-type"] == "text/plain"
        assert headers["connection"] == "close"
        text = body.decode("utf-8")
        assert f"-> My hostname is: {socket.gethostname()}" in text
        assert "-> Requesting IP: 127.0.0.1:" in text
        assert "  HTTP/1.1 GET /anything?x=1\n" in text
        assert "TLS Connection Info" not in text

    def test_request_body_is_echoed(self, test_server):
        status, _, body = http_request(test_server.port, (
            b"POST /submit HTTP/1.1\r\n"
            b"Host: localhost\r\n"
            b"Content-Length: 12\r\n"
            b"Connection: close\r\n"
            b"\r\n"
            b"echo this!!!"
        ))

        assert status == 200
        assert body.endswith(b"echo this!!!")

    def test_websocket_page(self, test_server):
        status, headers, body = http_request(test_server.port, (
            b"GET /ws HTTP/1.1\r\n"
            b"Host: localhost\r\n"
            b"Connection: close\r\n"
            b"\r\n"
        ))

        assert status == 200
        assert headers["content-type"] == "text/html"
        assert b"WebSocket" in body

    def test_keep_alive(self, test_server):
        request = b"GET / HTTP/1.1\r\nHost: localhost\r\n\r\n"

        with socket.create_connection(("127.0.0.1", test_server.port), timeout=5) as sock:
            sock.sendall(request)
            first, headers, _ = read_response(sock)
            assert headers["connection"] == "keep-alive"

            sock.sendall(request)
            second, _, _ = read_response(sock)

        assert first == second == 200

    def test_malformed_request(self, test_server):
        status, headers, _ = http_request(test_server.port, b"NOT-HTTP\r\n\r\n")

        assert status == 400
        assert headers["connection"] == "close"

    @pytest.mark.parametrize("method,target", [
        ("PURGE", "/x"),
        ("M-SEARCH", "/"),
        ("PROPFIND", "/dav/"),
    ])
    def test_any_method_gets_the_report(self, test_server, caplog, method, target):
        with caplog.at_level(logging.INFO, logger="echoserver"):
            status, headers, body = http_request(test_server.port, (
                f"{method} {target} HTTP/1.1\r\n".encode()
                + b"Host: localhost\r\n"
                b"Connection: close\r\n"
                b"\r\n"
            ))

        assert status == 200
        assert headers["content-type"] == "text/plain"
        assert f"  HTTP/1.1 {method} {target}\n".encode() in body
        assert f"| {method} {target}" in caplog.text

    def test_any_method_can_upgrade(self, test_server):
        raw = (
            b"PURGE /ws HTTP/1.1\r\n"
            b"Host: localhost\r\n"
            b"Upgrade: websocket\r\n"
            b"Connection: Upgrade\r\n"
            b"Sec-WebSocket-Key: dGhlIHNhbXBsZSBub25jZQ==\r\n"
            b"Sec-WebSocket-Version: 13\r\n"
            b"\r\n"
        )
        with socket.create_connection(("127.0.0.1", test_server.port), timeout=5) as sock:
            sock.sendall(raw)
            status, _, _ = read_response(sock)

        # Routed to the handshake, which answers with its own 4xx.
        assert 400 <= status < 500

    def test_concurrent_clients(self, test_server):
        results = []

        def fetch():
            status, _, _ = http_request(
                test_server.port,
                b"GET / HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n",
            )
            results.append(status)

        threads = [threading.Thread(target=fetch) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert results == [200] * 10


class TestAddHeaders:
    def test_extra_headers_on_report(self, config):
        config.add_headers = {"X-Echo-Check": "yes"}
        srv = EchoTestServer(EchoServer(config)).start()
        try:
            status, headers, body = http_request(
                srv.port,
                b"GET / HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n",
            )
        finally:
            srv.stop()

        assert status == 200
        assert headers["x-echo-check"] == "yes"
        assert b"  X-Echo-Check: yes\n" in body


class TestLifecycle:
    def test_future_resolves_after_shutdown(self, config):
        server = EchoServer(config)
        future = server.start()
        assert server.wait_until_ready(timeout=5)

        server.shutdown()

        assert future.result(timeout=5) is None

    def test_plain_bind_failure_is_fatal(self, config):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
            holder.bind(("127.0.0.1", 0))
            holder.listen(1)
            config.port = holder.getsockname()[1]

            server = EchoServer(config)
            future = server.start()
            try:
                with pytest.raises(OSError):
                    future.result(timeout=5)
            finally:
                server.shutdown()

    def test_cli_exits_nonzero_when_port_is_taken(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
            holder.bind(("127.0.0.1", 0))
            holder.listen(1)
            port = holder.getsockname()[1]

            code = main(["--host", "127.0.0.1", "--port", str(port), "--no-tls"], environ={})

        assert code == 1

    def test_cli_rejects_bad_config(self):
        assert main(["--port", "9000", "--tls-port", "9000"], environ={}) == 1


class TestTLSListener:
    def test_missing_certificate_degrades(self, config, tmp_path):
        config.tls_enabled = True
        config.tls_cert_file = str(tmp_path / "missing.crt")
        config.tls_key_file = str(tmp_path / "missing.key")

        srv = EchoTestServer(EchoServer(config)).start()
        try:
            assert srv.server.tls_stopped.wait(5)
            assert isinstance(srv.server.tls_error, OSError)

            status, _, _ = http_request(
                srv.port,
                b"GET / HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n",
            )
            assert status == 200
        finally:
            srv.stop()

    @pytest.fixture
    def tls_server(self, config, tls_files):
        config.tls_enabled = True
        config.tls_cert_file, config.tls_key_file = tls_files

        srv = EchoTestServer(EchoServer(config)).start()
        assert srv.wait_for_tls()
        yield srv
        srv.stop()

    def test_report_over_tls(self, tls_server, client_tls_context):
        status, _, body = http_request(
            tls_server.tls_port,
            b"GET / HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n",
            tls_context=client_tls_context,
        )

        assert status == 200
        text = body.decode("utf-8")
        assert "-> TLS Connection Info |" in text
        assert "  version: TLS" in text

    def test_websocket_over_tls(self, tls_server, client_tls_context):
        uri = f"wss://127.0.0.1:{tls_server.tls_port}/ws"

        with connect(uri, ssl=client_tls_context, server_hostname="localhost") as ws:
            assert ws.recv(timeout=5).startswith("Request served by ")
            ws.send("secure hello")
            assert ws.recv(timeout=5) == "secure hello"

    def test_plain_client_on_tls_port(self, tls_server):
        """A failed handshake closes that connection only."""
        with socket.create_connection(("127.0.0.1", tls_server.tls_port), timeout=5) as sock:
            sock.sendall(b"GET / HTTP/1.1\r\nHost: localhost\r\n\r\n")
            try:
                sock.recv(4096)
            except (ConnectionResetError, ssl.SSLError):
                pass

        status, _, _ = http_request(
            tls_server.port,
            b"GET / HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n",
        )
        assert status == 200
