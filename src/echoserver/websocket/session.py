"""
=============================================================================
WEBSOCKET ECHO SESSION
=============================================================================

Serves one upgraded connection from handshake to close.

=============================================================================
WHO DOES WHAT
=============================================================================

The WebSocket protocol itself (handshake validation, framing, masking,
ping/pong and the close handshake) is implemented by the websockets
library's sans-I/O ServerProtocol. It never touches a socket: bytes go in
with receive_data(), frames come out of events_received(), and whatever it
wants on the wire is collected with data_to_send().

    ┌──────────────┐  receive()   ┌───────────────────┐  events_received()
    │  Connection  │ ───────────► │  ServerProtocol   │ ──────────────────► echo
    │  (socket)    │ ◄─────────── │  (websockets)     │ ◄────────────────── send_text()
    └──────────────┘   write()    └───────────────────┘   send_binary()
                     data_to_send()

This module owns the socket side of that exchange and the session
lifecycle:

    1. HANDSHAKE   validate the upgrade request, send 101 or an HTTP error
    2. GREETING    "Request served by <hostname>"
    3. ECHO LOOP   one message at a time, same kind, same payload
    4. TEARDOWN    log why the session ended, close the connection

=============================================================================
"""

import socket
import logging
from typing import Callable, List, Optional

from websockets.frames import Frame, Opcode
from websockets.protocol import State
from websockets.server import ServerProtocol

from ..core.connection import Connection
from ..http.request import HTTPRequest
from ..http.response import error_response, HTTPStatus


logger = logging.getLogger(__name__)

# How long to wait for the peer to finish the closing handshake.
CLOSE_TIMEOUT = 10.0


def describe_error(exc: Optional[BaseException]) -> str:
    """exc and its cause as one line: "outer: inner"."""
    if exc is None:
        return "unknown error"
    if exc.__cause__ is not None:
        return f"{exc}: {exc.__cause__}"
    return str(exc)


class WebSocketSession:
    """
    One WebSocket echo session.

    =========================================================================
    SESSION STATES
    =========================================================================

        handshake ──fail──► HTTP error response ──► closed
            │
            ▼
        greeting ──write error──► teardown
            │
            ▼
        echo loop ──close frame / EOF / read or write error──► teardown
                                                                  │
                                                                  ▼
                                                               closed

    =========================================================================

    Args:
        conn: The connection the upgrade request arrived on. The session
              owns it from now on and always closes it.
        request: The parsed upgrade request (its raw bytes are replayed
                 into the handshake).
        hostname_provider: Returns the hostname for the greeting.
        max_message_size: Largest accepted message, None for no limit.
    """

    def __init__(
        self,
        conn: Connection,
        request: HTTPRequest,
        hostname_provider: Callable[[], str] = socket.gethostname,
        max_message_size: Optional[int] = None,
    ):
        self.conn = conn
        self.request = request
        self.hostname_provider = hostname_provider
        self.remote = conn.remote_addr

        self.protocol = ServerProtocol(
            origins=None,
            max_size=max_message_size,
            logger=logger,
        )

        self.error: Optional[Exception] = None
        self._eof = False

    def run(self) -> None:
        """Serve the session. Never raises."""
        try:
            try:
                if not self.handshake():
                    return
                self.send_greeting()
                self.echo_loop()
            except OSError as e:
                self.error = e

            self.finish()

        except Exception as e:
            logger.exception(f"{self.remote} | websocket session failed: {e}")

        finally:
            self.conn.close()

    # =========================================================================
    # 1. HANDSHAKE
    # =========================================================================

    def handshake(self) -> bool:
        """
        Complete the opening handshake.

        Returns:
            True once the connection is upgraded, False if the request was
            rejected (the rejection has already been sent).
        """
        self.protocol.receive_data(self.request.raw)
        events = self.protocol.events_received()

        if not events:
            # ServerProtocol could not parse the request at all (HTTP/1.0, or a
            # request body). It produces no response for that case, so send
            # one ourselves. Requests it does parse, including non-GET ones
            # on recent releases, are rejected by accept() below.
            reason = describe_error(self.protocol.handshake_exc)
            logger.warning(f"{self.remote} | {reason}")
            response = error_response(
                HTTPStatus.BAD_REQUEST,
                f"Failed to open a WebSocket connection: {reason}",
            )
            self.conn.send_response(response.to_bytes())
            return False

        response = self.protocol.accept(events[0])
        self.protocol.send_response(response)
        self._flush()

        if response.status_code != HTTPStatus.SWITCHING_PROTOCOLS:
            logger.warning(f"{self.remote} | {describe_error(self.protocol.handshake_exc)}")
            return False

        self.conn.mark_upgraded()
        logger.info(f"{self.remote} | upgraded to websocket")

        # Frames that arrived in the same read as the upgrade request.
        leftover = self.conn.take_buffered()
        if leftover:
            self.protocol.receive_data(leftover)

        return True

    # =========================================================================
    # 2. GREETING
    # =========================================================================

    def greeting(self) -> str:
        try:
            return f"Request served by {self.hostname_provider()}"
        except OSError as e:
            return f"Server hostname unknown: {e}"

    def send_greeting(self) -> None:
        self.protocol.send_text(self.greeting().encode("utf-8"))
        self._flush()

    # =========================================================================
    # 3. ECHO LOOP
    # =========================================================================

    def echo_loop(self) -> None:
        """
        Echo every data message until the session stops being OPEN.

        Fragmented messages are reassembled and echoed as one frame.
        Control frames show up in the event stream too; the protocol has
        already answered them, so they are skipped.
        """
        kind: Optional[Opcode] = None
        fragments: List[bytes] = []

        while self.protocol.state is State.OPEN:
            events = self._next_events()
            if not events:
                return

            for frame in events:
                if frame.opcode in (Opcode.TEXT, Opcode.BINARY):
                    kind = frame.opcode
                    fragments = [frame.data]
                elif frame.opcode is Opcode.CONT:
                    fragments.append(frame.data)
                else:
                    continue

                if not frame.fin:
                    continue

                message = b"".join(fragments)
                fragments = []
                if not self.echo(kind, message):
                    return

    def echo(self, kind: Opcode, message: bytes) -> bool:
        """
        Log and echo one message.

        Returns:
            False when the session is no longer open and nothing was sent.
        """
        if self.protocol.state is not State.OPEN:
            return False

        if kind is Opcode.TEXT:
            logger.info(f"{self.remote} | txt | {message.decode('utf-8', errors='replace')}")
            self.protocol.send_text(message)
        else:
            logger.info(f"{self.remote} | bin | {len(message)} byte(s)")
            self.protocol.send_binary(message)

        self._flush()
        return True

    # =========================================================================
    # 4. TEARDOWN
    # =========================================================================

    def finish(self) -> None:
        """
        Let the closing handshake run out, then log how the session ended.

        The protocol has already queued its close frame. The peer gets
        CLOSE_TIMEOUT seconds to answer and hang up.
        """
        if self.error is None:
            self._drain()

        if self.error is not None:
            logger.warning(f"{self.remote} | {self.error}")
        elif self.protocol.state is State.CLOSED:
            logger.info(f"{self.remote} | {self.protocol.close_exc}")

    def _drain(self) -> None:
        try:
            self.conn.socket.settimeout(CLOSE_TIMEOUT)
            while not self._eof:
                self._flush()
                self._feed(self.conn.receive())
            self._flush()
        except OSError as e:
            logger.debug(f"{self.remote} | closing handshake cut short: {e}")

        if not self._eof:
            self._eof = True
            self.protocol.receive_eof()

    # =========================================================================
    # SOCKET ⇄ PROTOCOL PLUMBING
    # =========================================================================

    def _next_events(self) -> List[Frame]:
        """
        Block until the protocol has frames to hand out or stops being OPEN.

        Raises:
            OSError: Reading from or writing to the socket failed.
        """
        while True:
            self._flush()
            events = self.protocol.events_received()
            if events or self.protocol.state is not State.OPEN:
                return events
            self._feed(self.conn.receive())

    def _feed(self, data: bytes) -> None:
        if data:
            self.protocol.receive_data(data)
        else:
            self._eof = True
            self.protocol.receive_eof()

    def _flush(self) -> None:
        """Write everything the protocol queued; b"" means half-close."""
        for data in self.protocol.data_to_send():
            if data:
                self.conn.write(data)
            else:
                self.conn.shutdown_write()


def serve_websocket(
    conn: Connection,
    request: HTTPRequest,
    hostname_provider: Callable[[], str] = socket.gethostname,
    max_message_size: Optional[int] = None,
) -> WebSocketSession:
    """Run a session to completion and return it."""
    session = WebSocketSession(
        conn,
        request,
        hostname_provider=hostname_provider,
        max_message_size=max_message_size,
    )
    session.run()
    return session
