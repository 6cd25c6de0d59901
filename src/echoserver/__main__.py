"""
=============================================================================
ECHO SERVER CLI ENTRY POINT
=============================================================================

=============================================================================
USAGE
=============================================================================

    # Defaults: plain on 8080, TLS on 8443 with /etc/tlssecret/client.{crt,key}
    python -m echoserver

    # Same thing through the environment, the way a pod spec does it
    PORT=9000 SSLPORT=9443 python -m echoserver

    # Local certificate, no root needed
    python -m echoserver --cert ./dev.crt --key ./dev.key

    # Plain only
    python -m echoserver --no-tls

Command-line flags override environment variables, which override defaults.

=============================================================================
EXIT STATUS
=============================================================================

    0   Stopped by SIGINT / SIGTERM
    1   Invalid configuration, or the plain listener could not start

A TLS failure alone never changes the exit status.

=============================================================================
"""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import ServerConfig
from .server import EchoServer, configure_logging


logger = logging.getLogger("echoserver")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="echo-server",
        description="Diagnostic HTTP / WebSocket echo server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  HOST, PORT, SSLPORT, TLS_ENABLED, TLS_CERT_FILE, TLS_KEY_FILE,
  ADD_HEADERS, LOG_LEVEL, LOG_FORMAT, POD_NAME, POD_NAMESPACE, POD_IP
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # LISTENERS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--host", "-H", help="Bind address (env HOST, default 0.0.0.0)")
    parser.add_argument("--port", "-p", type=int, help="Plain HTTP port (env PORT, default 8080)")
    parser.add_argument("--tls-port", type=int, help="TLS port (env SSLPORT, default 8443)")

    # ─────────────────────────────────────────────────────────────────────
    # TLS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--cert", help="Certificate chain file (env TLS_CERT_FILE)")
    parser.add_argument("--key", help="Private key file (env TLS_KEY_FILE)")
    parser.add_argument("--no-tls", action="store_true", help="Do not start the TLS listener")

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (env LOG_LEVEL, default INFO)"
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        help="Log line format (env LOG_FORMAT, default text)"
    )

    parser.add_argument("--version", "-v", action="version", version=f"echo-server {__version__}")

    return parser


def build_config(args: argparse.Namespace, environ=None) -> ServerConfig:
    """Environment first, then any flag that was actually given."""
    config = ServerConfig.from_env(environ)

    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.tls_port is not None:
        config.tls_port = args.tls_port
    if args.cert is not None:
        config.tls_cert_file = args.cert
    if args.key is not None:
        config.tls_key_file = args.key
    if args.no_tls:
        config.tls_enabled = False
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_format is not None:
        config.log_format = args.log_format

    config.validate()
    return config


def main(argv: Optional[List[str]] = None, environ=None) -> int:
    """Run the echo server. Returns the process exit status."""
    args = build_parser().parse_args(argv)

    try:
        config = build_config(args, environ)
    except ValueError as e:
        configure_logging(ServerConfig())
        logger.error(f"Invalid configuration: {e}")
        return 1

    configure_logging(config)

    try:
        EchoServer(config).run()
    except Exception as e:
        logger.error(f"Could not start serving service due to (error: {e})")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
