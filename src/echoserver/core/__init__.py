"""
Transport layer: listening sockets, per-connection buffering and TLS, and
the worker threads connections are served on.
"""

from .connection import Connection, ConnectionState
from .socket_server import SocketServer
from .workers import ConnectionWorker, WorkerRegistry, WorkerState

__all__ = [
    "Connection",
    "ConnectionState",
    "SocketServer",
    "ConnectionWorker",
    "WorkerRegistry",
    "WorkerState",
]
