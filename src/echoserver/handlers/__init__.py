"""
Handlers for the two kinds of plain HTTP response the echo server produces.

    report.py          Diagnostic report (every path except /ws)
    websocket_page.py  Demo page at /ws
"""

from .report import DiagnosticReporter, canonical_header_name
from .websocket_page import WEBSOCKET_HTML, WEBSOCKET_PATH, websocket_page

__all__ = [
    "DiagnosticReporter",
    "canonical_header_name",
    "WEBSOCKET_HTML",
    "WEBSOCKET_PATH",
    "websocket_page",
]
