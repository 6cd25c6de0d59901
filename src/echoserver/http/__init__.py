"""
=============================================================================
HTTP PROTOCOL LAYER
=============================================================================

Request parsing and response building for the plain HTTP side of the echo
server. The WebSocket side lives in echoserver.websocket.

    request.py       Raw bytes → HTTPRequest
    response.py      HTTPResponse → raw bytes
    status_codes.py  HTTPStatus enum with reason phrases

=============================================================================
"""

from .request import HTTPRequest, RequestParser, HTTPParseError, parse_request
from .response import (
    HTTPResponse,
    ResponseBuilder,
    error_response,
    internal_error,
    format_http_date,
)
from .status_codes import HTTPStatus

__all__ = [
    # Request parsing
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "parse_request",

    # Response building
    "HTTPResponse",
    "ResponseBuilder",
    "error_response",
    "internal_error",
    "format_http_date",

    # Status codes
    "HTTPStatus",
]
