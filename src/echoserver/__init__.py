"""
=============================================================================
ECHOSERVER - Diagnostic HTTP / WebSocket Echo Server
=============================================================================

A diagnostic echo server for orchestrated environments. Point a load balancer, an ingress or a
service mesh at it and it tells you what arrived: which pod answered, from
which IP, with which headers, over which TLS session. Open a WebSocket to it
and it echoes every message back.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    echoserver/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m echoserver)
    ├── server.py            # EchoServer: plain + TLS listeners
    ├── dispatcher.py        # Upgrade / demo page / report decision
    ├── config.py            # ServerConfig dataclass, environment loading
    ├── core/
    │   ├── socket_server.py # Listening socket and accept loop
    │   ├── connection.py    # Buffered, optionally TLS, client connection
    │   └── workers.py       # One thread per connection
    ├── http/
    │   ├── request.py       # HTTP request parsing
    │   ├── response.py      # HTTP response building
    │   └── status_codes.py  # HTTP status enums
    ├── handlers/
    │   ├── report.py        # Plain-text diagnostic report
    │   └── websocket_page.py# Demo page at /ws
    └── websocket/
        └── session.py       # Handshake, greeting, echo loop, teardown

=============================================================================
QUICK START
=============================================================================

    from echoserver import EchoServer, ServerConfig

    EchoServer(ServerConfig.from_env()).run()

Or from a shell:

    PORT=8080 SSLPORT=8443 python -m echoserver

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig
from .dispatcher import Dispatcher, RequestKind, classify
from .server import EchoServer

__all__ = [
    "EchoServer",
    "ServerConfig",
    "Dispatcher",
    "RequestKind",
    "classify",
    "__version__",
]
