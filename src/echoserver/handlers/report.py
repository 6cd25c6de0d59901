"""
=============================================================================
DIAGNOSTIC REPORT HANDLER
=============================================================================

Renders the plain-text page served for every ordinary HTTP request.

=============================================================================
WHY AN ECHO REPORT?
=============================================================================

The echo server is a diagnostic target. An operator curls it through an ingress, a
service mesh or a load balancer and reads back what actually arrived:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    WHAT THE REPORT ANSWERS                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   "Which pod served me?"         hostname, POD_NAME/NAMESPACE/IP     │
    │   "What IP does it see?"         Requesting IP                       │
    │   "Did TLS terminate here?"      TLS Connection Info                 │
    │   "What did the proxy add?"      Request Headers                     │
    │   "What does the pod resolve?"   /etc/resolv.conf, /etc/hosts        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
REPORT LAYOUT
=============================================================================

    Welcome to echo-server!  Here's what I know.
      > Head to /ws for interactive websocket echo!

    -> My hostname is: echo-7d9c-x2k4

    -> My Pod Name is: echo-7d9c-x2k4          (only when POD_NAME is set)
    -> My Pod Namespace is: default
    -> My Pod IP is: 10.1.2.3

    -> Requesting IP: 10.1.0.1:53210

    -> Request Headers |
      HTTP/1.1 GET /
      Host: echo.example.com
      Accept: */*
      ...
    -> Response Headers |
    -> My environment |
    -> Contents of /etc/resolv.conf |
    -> Contents of /etc/hosts |
    -> And that's the way it is 2026-10-19 12:00:00.000000 +0000 UTC

    // footer
    <request body, verbatim>

=============================================================================
"""

import os
import socket
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder, HTTPStatus


logger = logging.getLogger(__name__)


DEFAULT_NETWORK_FILES = ("/etc/resolv.conf", "/etc/hosts")

FOOTER = (
    "// Thanks for using echo-server, a project by Mario Loria (InAnimaTe).\n"
    "// https://github.com/inanimate/echo-server\n"
    "// https://hub.docker.com/r/inanimate/echo-server\n"
)


def canonical_header_name(name: str) -> str:
    """
    Canonical MIME header case.

        "x-forwarded-for" → "X-Forwarded-For"
    """
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.split("-"))


def format_report_time(moment: datetime) -> str:
    """"2026-10-19 12:00:00.123456 +0000 UTC"."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f +0000 UTC")


class DiagnosticReporter:
    """
    Builds the diagnostic report response.

    Everything the report reads from the outside world is injectable so
    tests can pin it down:

        reporter = DiagnosticReporter(
            add_headers={"X-Echo-Check": "1"},
            environ={"POD_NAME": "echo-0"},
            hostname_provider=lambda: "echo-0",
            network_files=(),
        )
        response = reporter.handle(request)

    Args:
        add_headers: Extra headers put on every report response.
        environ: Environment to report, defaults to os.environ at render time.
        hostname_provider: Returns the hostname, may raise OSError.
        network_files: Files whose contents are appended to the report.
        clock: Returns the current time for the closing line.
    """

    def __init__(
        self,
        add_headers: Optional[Mapping[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None,
        hostname_provider: Callable[[], str] = socket.gethostname,
        network_files: Sequence[str] = DEFAULT_NETWORK_FILES,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.add_headers = dict(add_headers or {})
        self._environ = environ
        self.hostname_provider = hostname_provider
        self.network_files = tuple(network_files)
        self.clock = clock

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """Render the report for request. Always 200."""
        builder = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .headers(self.add_headers)
            .content_type("text/plain")
            .no_cache())

        response_headers = dict(builder.build().headers)
        text = self.render(request, response_headers)

        return builder.body(text.encode("utf-8") + request.body).build()

    # =========================================================================
    # RENDERING
    # =========================================================================

    def render(self, request: HTTPRequest, response_headers: Dict[str, str]) -> str:
        """The report text, without the echoed request body."""
        sections = [
            self._intro(),
            self._hostname(),
            self._pod_details(),
            f"-> Requesting IP: {request.remote_addr}\n\n",
            self._tls_info(request),
            self._request_headers(request),
            self._response_headers(response_headers),
            self._environment(),
            self._network_files(),
            f"\n-> And that's the way it is {format_report_time(self.clock())}\n",
            "\n" + FOOTER,
        ]
        return "".join(sections)

    def _intro(self) -> str:
        return (
            "Welcome to echo-server!  Here's what I know.\n"
            "  > Head to /ws for interactive websocket echo!\n\n"
        )

    def _hostname(self) -> str:
        try:
            return f"-> My hostname is: {self.hostname_provider()}\n\n"
        except OSError as e:
            return f"-> Server hostname unknown: {e}\n\n"

    def _pod_details(self) -> str:
        # Namespace and IP are only printed alongside POD_NAME.
        pod_name = self.environ.get("POD_NAME", "")
        if not pod_name:
            return ""

        return (
            f"-> My Pod Name is: {pod_name}\n"
            f"-> My Pod Namespace is: {self.environ.get('POD_NAMESPACE', '')}\n"
            f"-> My Pod IP is: {self.environ.get('POD_IP', '')}\n\n"
        )

    def _tls_info(self, request: HTTPRequest) -> str:
        if not request.is_secure:
            return ""

        lines = ["-> TLS Connection Info | \n\n"]
        for key in sorted(request.tls):
            lines.append(f"  {key}: {request.tls[key]}\n")
        lines.append("\n")
        return "".join(lines)

    def _request_headers(self, request: HTTPRequest) -> str:
        lines = [
            "-> Request Headers | \n\n",
            f"  {request.version} {request.method} {request.url}\n",
            "\n",
            f"  Host: {request.host}\n",
        ]

        headers = sorted(
            f"{canonical_header_name(name)}: {value}"
            for name, value in request.headers.items()
            if name != "host"
        )
        lines.extend(f"  {header}\n" for header in headers)
        return "".join(lines)

    def _response_headers(self, response_headers: Dict[str, str]) -> str:
        lines = ["\n\n-> Response Headers | \n\n"]
        headers = sorted(f"{name}: {value}" for name, value in response_headers.items())
        lines.extend(f"  {header}\n" for header in headers)
        lines.append('\n  > Note that you may also see "Content-Length", "Server" and "Date"!\n')
        return "".join(lines)

    def _environment(self) -> str:
        lines = ["\n\n-> My environment |\n"]
        lines.extend(f"  {key}={self.environ[key]}\n" for key in sorted(self.environ))
        return "".join(lines)

    def _network_files(self) -> str:
        blocks: List[str] = []
        for path in self.network_files:
            blocks.append(f"\n-> Contents of {path} | \n{self._read_file(path)}\n")
        return "".join(blocks)

    def _read_file(self, path: str) -> str:
        try:
            with open(path, encoding="utf-8", errors="replace") as f:
                return f.read()
        except OSError as e:
            logger.debug(f"Could not read {path} for the report: {e}")
            return f"  (unavailable: {e})\n"
