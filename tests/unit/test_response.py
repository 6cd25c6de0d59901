"""
Unit tests for HTTP response building.
"""

import json

from echoserver.http.response import (
    HTTPResponse,
    ResponseBuilder,
    HTTPStatus,
    error_response,
    internal_error,
    format_http_date,
)


class TestHTTPResponse:
    """Tests for HTTPResponse class."""

    def test_status_line(self):
        """Test status line generation."""
        response = HTTPResponse(status=HTTPStatus.OK)
        assert response.status_line == "HTTP/1.1 200 OK"

        response = HTTPResponse(status=HTTPStatus.REQUEST_TIMEOUT)
        assert response.status_line == "HTTP/1.1 408 Request Timeout"

    def test_to_bytes_includes_headers(self):
        """Test that to_bytes includes all headers."""
        response = HTTPResponse(
            status=HTTPStatus.OK,
            headers={"X-Custom": "value"},
            body=b"test",
        )

        result = response.to_bytes()

        assert b"HTTP/1.1 200 OK\r\n" in result
        assert b"X-Custom: value\r\n" in result
        assert b"Content-Length: 4\r\n" in result
        assert b"Server: echo-server\r\n" in result
        assert b"\r\n\r\ntest" in result

    def test_to_bytes_sets_content_length(self):
        """Test that Content-Length is auto-set."""
        response = HTTPResponse(body=b"hello world")
        result = response.to_bytes()

        assert b"Content-Length: 11\r\n" in result

    def test_to_bytes_keeps_explicit_headers(self):
        response = HTTPResponse(headers={"Server": "edge", "Date": "never"})
        result = response.to_bytes(server_name="ignored")

        assert b"Server: edge\r\n" in result
        assert b"Date: never\r\n" in result
        assert b"ignored" not in result


class TestResponseBuilder:
    """Tests for ResponseBuilder class."""

    def test_status(self):
        """Test setting status code."""
        response = ResponseBuilder().status(HTTPStatus.BAD_REQUEST).build()
        assert response.status == HTTPStatus.BAD_REQUEST

    def test_json_body(self):
        """Test JSON body encoding."""
        data = {"name": "John", "age": 30}
        response = ResponseBuilder().json(data).build()

        assert response.headers["Content-Type"] == "application/json; charset=utf-8"
        assert json.loads(response.body) == data

    def test_content_type_is_verbatim(self):
        response = ResponseBuilder().content_type("text/html").body("<p>hi</p>").build()

        assert response.headers["Content-Type"] == "text/html"
        assert response.body == b"<p>hi</p>"

    def test_headers_merge(self):
        response = ResponseBuilder().headers({"X-A": "1", "X-B": "2"}).header("X-A", "3").build()

        assert response.headers == {"X-A": "3", "X-B": "2"}

    def test_no_cache(self):
        response = ResponseBuilder().no_cache().build()

        assert "no-store" in response.headers["Cache-Control"]
        assert response.headers["Pragma"] == "no-cache"

    def test_close_connection(self):
        """Test connection close header."""
        response = ResponseBuilder().close_connection().build()
        assert response.headers["Connection"] == "close"

    def test_method_chaining(self):
        """Test fluent API chaining."""
        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .header("X-Custom", "value")
            .json({"key": "value"})
            .build())

        assert response.status == HTTPStatus.OK
        assert response.headers["X-Custom"] == "value"
        assert b'"key"' in response.body


class TestErrorResponses:
    """Tests for the error response helpers."""

    def test_error_response(self):
        response = error_response(HTTPStatus.REQUEST_TIMEOUT, "Request timeout")

        assert response.status == HTTPStatus.REQUEST_TIMEOUT
        assert response.headers["Connection"] == "close"
        assert json.loads(response.body) == {"error": "Request timeout"}

    def test_internal_error(self):
        """Test internal_error() function."""
        response = internal_error()
        assert response.status == HTTPStatus.INTERNAL_SERVER_ERROR
        assert json.loads(response.body) == {"error": "Internal Server Error"}


class TestHTTPStatus:
    """Tests for HTTPStatus enum."""

    def test_status_phrases(self):
        """Test that all statuses have phrases."""
        for status in HTTPStatus:
            assert status.phrase != "Unknown"

        assert HTTPStatus.SWITCHING_PROTOCOLS.phrase == "Switching Protocols"
        assert HTTPStatus.INTERNAL_SERVER_ERROR.phrase == "Internal Server Error"

    def test_compares_with_int(self):
        assert HTTPStatus.OK == 200
        assert HTTPStatus(413) is HTTPStatus.PAYLOAD_TOO_LARGE


class TestFormatHTTPDate:
    """Tests for HTTP date formatting."""

    def test_format(self):
        """Test HTTP date format."""
        from datetime import datetime, timezone

        dt = datetime(2026, 1, 15, 12, 30, 45, tzinfo=timezone.utc)
        result = format_http_date(dt)

        assert result == "Thu, 15 Jan 2026 12:30:45 GMT"
