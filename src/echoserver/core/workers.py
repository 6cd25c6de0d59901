"""
=============================================================================
CONNECTION WORKERS
=============================================================================

One daemon thread per accepted connection.

=============================================================================
WHY NOT A THREAD POOL?
=============================================================================

A pool bounds the number of connections served at once:

    pool = 16 workers
    16 browsers open the /ws demo page and stay connected
    request #17 ──► queued behind sessions that may never end

A WebSocket echo session owns its thread until the peer goes away, which can
be hours. So every connection gets its own worker and the pool's queue
disappears. The worker keeps what the pool's Worker did per task: timing,
state, and "log the exception, never crash the server".

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        WorkerRegistry                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   spawn(handler, conn)                                               │
    │       └──► ConnectionWorker(daemon=True).start()                     │
    │                │                                                     │
    │                ├──► handler(conn)     HTTP loop or WebSocket session  │
    │                ├──► log exceptions    never re-raised                 │
    │                └──► registry.discard(self)                            │
    │                                                                      │
    │   join(timeout)   wait for live workers during shutdown              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import threading
import time
import logging
from enum import Enum
from typing import Callable, Optional, Set

from .connection import Connection


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    """Worker thread states."""
    STARTING = "starting"
    BUSY = "busy"
    STOPPED = "stopped"


class ConnectionWorker(threading.Thread):
    """
    Thread that serves exactly one connection from accept to close.

    Args:
        handler: Callable that serves the connection. It is responsible for
                 closing it; the worker closes it again as a safety net.
        conn: The accepted connection.
        registry: Registry to deregister from when done.
    """

    def __init__(
        self,
        handler: Callable[[Connection], None],
        conn: Connection,
        registry: Optional["WorkerRegistry"] = None,
    ):
        super().__init__(name=f"conn-{conn.id}", daemon=True)
        self.handler = handler
        self.conn = conn
        self.registry = registry
        self.state = WorkerState.STARTING
        self.elapsed: Optional[float] = None

    def run(self):
        self.state = WorkerState.BUSY
        start_time = time.time()

        try:
            self.handler(self.conn)

        except Exception as e:
            # One bad connection must not take the listener down with it.
            logger.exception(f"{self.conn.remote_addr} | connection handler failed: {e}")

        finally:
            self.conn.close()
            self.elapsed = time.time() - start_time
            self.state = WorkerState.STOPPED
            logger.debug(f"[{self.conn.id}] worker finished in {self.elapsed:.3f}s")
            if self.registry is not None:
                self.registry.discard(self)


class WorkerRegistry:
    """Tracks live connection workers so shutdown can wait for them."""

    def __init__(self):
        self._workers: Set[ConnectionWorker] = set()
        self._lock = threading.Lock()

    def spawn(self, handler: Callable[[Connection], None], conn: Connection) -> ConnectionWorker:
        """Start a worker serving conn."""
        worker = ConnectionWorker(handler, conn, registry=self)
        with self._lock:
            self._workers.add(worker)
        worker.start()
        return worker

    def discard(self, worker: ConnectionWorker) -> None:
        with self._lock:
            self._workers.discard(worker)

    @property
    def active(self) -> int:
        """Number of connections currently being served."""
        with self._lock:
            return len(self._workers)

    def join(self, timeout: float = 2.0) -> None:
        """
        Wait up to timeout seconds in total for live workers to finish.

        Upgraded connections block in recv() indefinitely, so whatever is
        still running at the deadline is abandoned (the threads are daemons).
        """
        deadline = time.time() + timeout
        with self._lock:
            workers = list(self._workers)

        for worker in workers:
            remaining = deadline - time.time()
            if remaining <= 0:
                break
            worker.join(remaining)

        if self.active:
            logger.debug(f"{self.active} connection worker(s) still running at shutdown")
