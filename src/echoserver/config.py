"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the echo server.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m echoserver --port 3000                          │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── PORT=3000 SSLPORT=3443 python -m echoserver               │
    │                                                                      │
    │   3. Defaults in this dataclass                                     │
    │      └── plain 8080, TLS 8443                                       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The echo server usually runs as a pod behind a load balancer, so everything
an operator needs to change is reachable through the environment.

=============================================================================
TLS MATERIAL
=============================================================================

The certificate and key live at fixed paths mounted from a secret:

    /etc/tlssecret/client.crt
    /etc/tlssecret/client.key

TLS_CERT_FILE / TLS_KEY_FILE may point elsewhere. When the files are missing
the TLS listener fails to start and the plain listener keeps serving.

=============================================================================
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional


logger = logging.getLogger(__name__)


DEFAULT_CERT_FILE = "/etc/tlssecret/client.crt"
DEFAULT_KEY_FILE = "/etc/tlssecret/client.key"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class ServerConfig:
    """
    Configuration for the echo server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    LISTENERS
    - host, port, tls_port, backlog

    TLS
    - tls_enabled, tls_cert_file, tls_key_file

    HTTP
    - buffer_size, timeout, keep_alive, keep_alive_timeout, max_request_size

    WEBSOCKET
    - max_message_size

    REPORT
    - add_headers

    LOGGING
    - log_level, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # LISTENERS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """
    Address both listeners bind to.
    "0.0.0.0" accepts traffic from the pod network, which is the whole point
    of a connectivity check.
    """

    port: int = 8080
    """Plain HTTP port. Failing to bind it is fatal."""

    tls_port: int = 8443
    """TLS port. Failing to bring it up is logged and tolerated."""

    backlog: int = 128
    """Maximum number of queued connections per listener."""

    # ─────────────────────────────────────────────────────────────────────
    # TLS
    # ─────────────────────────────────────────────────────────────────────

    tls_enabled: bool = True
    """Start the TLS listener at all."""

    tls_cert_file: str = DEFAULT_CERT_FILE
    tls_key_file: str = DEFAULT_KEY_FILE

    # ─────────────────────────────────────────────────────────────────────
    # HTTP
    # ─────────────────────────────────────────────────────────────────────

    buffer_size: int = 8192
    """Size of a single recv() in bytes."""

    timeout: Optional[float] = 30.0
    """
    Read timeout for the first request on a plain HTTP connection.
    Upgraded WebSocket connections have no read timeout.
    """

    keep_alive: bool = True
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024  # 10 MB

    # ─────────────────────────────────────────────────────────────────────
    # WEBSOCKET
    # ─────────────────────────────────────────────────────────────────────

    max_message_size: Optional[int] = None
    """
    Largest WebSocket message accepted, in bytes.
    None = unlimited, the echo server does not police its peers.
    """

    # ─────────────────────────────────────────────────────────────────────
    # REPORT
    # ─────────────────────────────────────────────────────────────────────

    add_headers: Dict[str, str] = field(default_factory=dict)
    """Extra headers added to every diagnostic report response."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"

    log_format: str = "text"
    """'text' for humans, 'json' for log aggregators."""

    server_name: str = "echo-server"
    """Value of the Server header."""

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        HOST            Bind address (default: 0.0.0.0)
        PORT            Plain HTTP port (default: 8080)
        SSLPORT         TLS port (default: 8443)
        TLS_ENABLED     Start the TLS listener (default: true)
        TLS_CERT_FILE   Certificate chain (default: /etc/tlssecret/client.crt)
        TLS_KEY_FILE    Private key (default: /etc/tlssecret/client.key)
        ADD_HEADERS     JSON object of extra report response headers
        LOG_LEVEL       Logging level (default: INFO)
        LOG_FORMAT      text or json (default: text)

        Empty values fall back to the default, like unset ones.

        =====================================================================
        """
        env = os.environ if environ is None else environ

        def get(name: str, default: str) -> str:
            return env.get(name) or default

        return cls(
            host=get("HOST", "0.0.0.0"),
            port=int(get("PORT", "8080")),
            tls_port=int(get("SSLPORT", "8443")),
            tls_enabled=get("TLS_ENABLED", "true").lower() in _TRUTHY,
            tls_cert_file=get("TLS_CERT_FILE", DEFAULT_CERT_FILE),
            tls_key_file=get("TLS_KEY_FILE", DEFAULT_KEY_FILE),
            add_headers=parse_add_headers(env.get("ADD_HEADERS", "")),
            log_level=get("LOG_LEVEL", "INFO"),
            log_format=get("LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Fail fast at startup rather than on the first request. Port 0 is
        allowed and means "let the OS pick", which the tests rely on.
        """
        for name in ("port", "tls_port"):
            value = getattr(self, name)
            if not 0 <= value < 65536:
                raise ValueError(f"Invalid {name}: {value}. Must be 0-65535.")

        if self.tls_enabled and self.port and self.port == self.tls_port:
            raise ValueError("port and tls_port must differ")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.max_message_size is not None and self.max_message_size <= 0:
            raise ValueError("max_message_size must be > 0 or None")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"Invalid log_format: {self.log_format}")


def parse_add_headers(raw: str) -> Dict[str, str]:
    """
    Parse the ADD_HEADERS JSON object.

    Only string values are kept. Anything unusable is logged and dropped so
    that a typo in a deployment manifest never stops the server from starting.
    """
    if not raw:
        return {}

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring ADD_HEADERS, not valid JSON: {e}")
        return {}

    if not isinstance(data, dict):
        logger.warning("Ignoring ADD_HEADERS, expected a JSON object")
        return {}

    headers = {}
    for name, value in data.items():
        if isinstance(value, str):
            headers[name] = value
        else:
            logger.warning(f"Ignoring ADD_HEADERS entry {name!r}: value is not a string")
    return headers


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# 1. Typed configuration with a dataclass
# 2. Environment variables with the same names and defaults operators
#    already use for this server (PORT, SSLPORT, ADD_HEADERS, POD_*)
# 3. Validation at startup (fail-fast)
# =============================================================================
