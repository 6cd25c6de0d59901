"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns the raw bytes read by a Connection into an HTTPRequest.

    GET /ws HTTP/1.1\r\n                  ← Request line
    Host: echo.example.com\r\n            ← Headers
    Connection: Upgrade\r\n
    Upgrade: websocket\r\n
    Sec-WebSocket-Key: dGhlIHNhbXBsZSBub25jZQ==\r\n
    Sec-WebSocket-Version: 13\r\n
    \r\n                                  ← End of headers
                                          ← (no body)

The parser keeps the original bytes on the request (`raw`). An upgrade
request is parsed here once for classification, and the very same bytes are
then handed to the WebSocket handshake, which validates them on its own terms.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, List
from urllib.parse import urlparse, unquote
import re


class HTTPParseError(Exception):
    """
    Raised when HTTP request parsing fails.

    Carries the HTTP status code that should be returned to the client:

        400 Bad Request                - Malformed request syntax
        413 Payload Too Large          - Request exceeds size limit
        505 HTTP Version Not Supported - Unknown HTTP version
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    Represents a parsed HTTP request.

    =========================================================================
    ATTRIBUTES
    =========================================================================

        method:         GET, POST, ...
        target:         Request target exactly as sent ("/ws?x=1")
        path:           URL-decoded path without the query string
        version:        "HTTP/1.1" or "HTTP/1.0"
        headers:        Header name (lowercase) → value; repeated headers are
                        joined with ", "
        body:           Raw body bytes (Content-Length delimited)
        client_address: (ip, port) of the peer
        tls:            Negotiated TLS parameters, None for plain connections
        raw:            The original request bytes

    =========================================================================
    """

    method: str
    path: str
    version: str = "HTTP/1.1"
    target: str = ""

    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    client_address: tuple[str, int] = ("", 0)
    tls: Optional[Dict[str, str]] = None
    raw: bytes = b""

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def url(self) -> str:
        """The request target, falling back to the path."""
        return self.target or self.path

    @property
    def remote_addr(self) -> str:
        """Peer address as "ip:port", the form used in every log line."""
        host, port = self.client_address[0], self.client_address[1]
        if ":" in host:
            return f"[{host}]:{port}"
        return f"{host}:{port}"

    @property
    def host(self) -> str:
        """The Host header (required in HTTP/1.1)."""
        return self.headers.get("host", "")

    @property
    def is_secure(self) -> bool:
        """True when the request arrived over TLS."""
        return self.tls is not None

    @property
    def is_keep_alive(self) -> bool:
        """
        Check if this connection should be kept alive.

        HTTP/1.1 keeps alive unless "Connection: close".
        HTTP/1.0 closes unless "Connection: keep-alive".
        """
        tokens = self.header_tokens("connection")

        if self.version == "HTTP/1.1":
            return "close" not in tokens
        return "keep-alive" in tokens

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    def get_header(self, name: str, default: str = "") -> str:
        """Get a header value (case-insensitive lookup)."""
        return self.headers.get(name.lower(), default)

    def header_tokens(self, name: str) -> List[str]:
        """
        Split a comma-separated header into lowercase tokens.

        "Connection: keep-alive, Upgrade" → ["keep-alive", "upgrade"]
        """
        value = self.get_header(name)
        return [token.strip().lower() for token in value.split(",") if token.strip()]


class RequestParser:
    """
    Parses raw HTTP request bytes into HTTPRequest objects.

    REQUEST_LINE_PATTERN: ^(TOKEN) ([^ ]+) (HTTP/\\d\\.\\d)$
    HEADER_PATTERN:       ^([^:]+):\\s*(.*)$

    The parser is lenient with headers (malformed lines are skipped) and
    strict with the request line, like most production servers.
    """

    # Method is any RFC 9110 token, "PURGE" and "M-SEARCH" included.
    REQUEST_LINE_PATTERN = re.compile(r"^([!#$%&'*+\-.^_`|~0-9A-Za-z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: tuple[str, int] = ("", 0),
        tls: Optional[Dict[str, str]] = None,
    ) -> HTTPRequest:
        """
        Parse raw HTTP request data into an HTTPRequest object.

        Args:
            data: Raw HTTP request bytes from socket.
            client_address: Client's (ip, port) tuple.
            tls: TLS parameters of the connection, if any.

        Returns:
            Parsed HTTPRequest object.

        Raises:
            HTTPParseError: If the request is malformed.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(
                f"Request too large: {len(data)} bytes",
                status_code=413,
            )

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        header_section = data[:header_end].decode("latin-1")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, target, path, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            raise HTTPParseError("Invalid Content-Length")

        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            target=target,
            headers=headers,
            body=body[:content_length],
            client_address=client_address,
            tls=tls,
            raw=data,
        )

    def _parse_request_line(
        self,
        line: str
    ) -> tuple[str, str, str, str]:
        """
        Parse "METHOD SP REQUEST-TARGET SP HTTP-VERSION".

        Returns:
            Tuple of (method, target, path, version)
        """
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line}")

        method, target, version = match.groups()

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(
                f"Unsupported HTTP version: {version}",
                status_code=505,
            )

        path = unquote(urlparse(target).path) or "/"

        return method, target, path, version

    def _parse_headers(self, lines: List[str]) -> Dict[str, str]:
        """
        Parse header lines into a dictionary with lowercase names.

        Continuation lines (leading whitespace) extend the previous header.
        Repeated headers are combined with ", " as RFC 7230 allows.
        """
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers


def parse_request(
    data: bytes,
    client_address: tuple[str, int] = ("", 0),
    max_size: int = 10 * 1024 * 1024
) -> HTTPRequest:
    """Parse an HTTP request in one call with a throwaway RequestParser."""
    parser = RequestParser(max_request_size=max_size)
    return parser.parse(data, client_address)
