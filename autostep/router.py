"""
Reply/Stream Router
===================

Single point of arbitration for every line received on the shared
transport.

The wire format has no request id, so the order of lines is the only
correlation mechanism:

- Outside a stream, the next line is the reply to the one pending command.
- While a sinusoid stream is active, lines are telemetry samples and go to
  the stream consumer until a terminating sample ends the session.

Acknowledgement of the streaming command
----------------------------------------
The firmware acknowledges the ``sinusoid`` command with a normal reply
before it starts streaming. The session is activated as soon as the
command is sent, but the first line received afterwards is still routed
as that command's reply; only the lines after it are samples. A failed
acknowledgement ends the session right away.

Known gap: there is no timeout on waiting for a reply. A caller that needs
one has to bound the operation from outside.
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional

from .commands import Command, is_stream_end, parse_reply, parse_sample
from .exceptions import MalformedReply, ProtocolViolation, TransportError
from .transport import Transport

logger = logging.getLogger(__name__)

Reply = Dict[str, Any]
StreamCallback = Callable[[Dict[str, Any]], None]


class _PendingReply:
    """Slot for the reply of the command currently in flight."""

    def __init__(self, command: Command):
        self.command = command
        self._event = threading.Event()
        self._reply: Optional[Reply] = None
        self._error: Optional[Exception] = None

    def resolve(self, reply: Reply) -> None:
        self._reply = reply
        self._event.set()

    def fail(self, error: Exception) -> None:
        self._error = error
        self._event.set()

    def wait(self) -> Reply:
        self._event.wait()
        if self._error is not None:
            raise self._error
        return self._reply  # type: ignore


class ReplyRouter:
    """
    Routes received lines to the pending command or to the stream consumer.

    Session state (pending slot, streaming flag, stream consumer) is only
    touched under ``self._lock``. Callbacks and transport writes always run
    outside the lock.
    """

    def __init__(self, transport: Transport):
        self._transport = transport
        self._lock = threading.Lock()
        self._pending: Optional[_PendingReply] = None
        self._streaming = False
        self._awaiting_stream_ack = False
        self._stream_callback: Optional[StreamCallback] = None
        self._stream_ended = threading.Event()
        self._stream_ended.set()

        transport.set_line_callback(self.on_line)
        transport.set_error_callback(self.on_error)

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def streaming(self) -> bool:
        """True while a streaming session is active."""
        with self._lock:
            return self._streaming

    @property
    def pending(self) -> bool:
        """True while a command waits for its reply."""
        with self._lock:
            return self._pending is not None

    def wait_stream_end(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no streaming session is active.

        Returns:
            True if the session ended, False on timeout
        """
        return self._stream_ended.wait(timeout)

    def send(
        self,
        command: Command,
        stream_callback: Optional[StreamCallback] = None,
    ) -> Reply:
        """
        Send a command and wait for its reply.

        Args:
            command: Command to send
            stream_callback: If given, opens a streaming session; every
                sample after the acknowledgement is passed to it

        Returns:
            Reply dictionary

        Raises:
            ProtocolViolation: If a command is pending or a stream is active
            TransportError: If the write fails or the transport breaks
            MalformedReply: If the reply does not parse
        """
        pending = _PendingReply(command)
        with self._lock:
            if self._pending is not None:
                raise ProtocolViolation(
                    f"Cannot send '{command.name}': "
                    f"'{self._pending.command.name}' is still pending"
                )
            if self._streaming:
                raise ProtocolViolation(
                    f"Cannot send '{command.name}' while a stream is active"
                )
            self._pending = pending
            if stream_callback is not None:
                self._streaming = True
                self._awaiting_stream_ack = True
                self._stream_callback = stream_callback
                self._stream_ended.clear()

        try:
            self._transport.write(command.to_line())
        except TransportError as e:
            with self._lock:
                if self._pending is pending:
                    self._pending = None
                if stream_callback is not None:
                    self._end_stream_locked()
            pending.fail(e)

        return pending.wait()

    def on_line(self, raw_line: str) -> None:
        """Handle one framed line from the transport."""
        line = raw_line.strip()
        deliver: Optional[Callable[[], None]] = None

        with self._lock:
            if self._streaming and not self._awaiting_stream_ack:
                deliver = self._route_sample_locked(line)
            else:
                deliver = self._route_reply_locked(line)

        if deliver is not None:
            try:
                deliver()
            except Exception:
                logger.exception("Stream consumer raised, sample dropped")

    def on_error(self, error: Exception) -> None:
        """Handle a transport read failure."""
        if not isinstance(error, TransportError):
            error = TransportError(str(error))

        with self._lock:
            pending, self._pending = self._pending, None
            callback = self._stream_callback if self._streaming else None
            if self._streaming:
                self._end_stream_locked()

        if pending is not None:
            pending.fail(error)
        if callback is not None:
            try:
                callback({"success": False, "error": str(error)})
            except Exception:
                logger.exception("Stream consumer raised on transport error")

    # =========================================================================
    # Routing (lock held)
    # =========================================================================

    def _route_reply_locked(self, line: str) -> Optional[Callable[[], None]]:
        pending, self._pending = self._pending, None
        if pending is None:
            logger.warning("Dropping unsolicited line: %r", line)
            return None

        try:
            reply = parse_reply(line)
        except MalformedReply as e:
            logger.error("Malformed reply to '%s': %r", pending.command.name, line)
            if self._awaiting_stream_ack:
                self._end_stream_locked()
            return lambda e=e: pending.fail(e)

        if self._awaiting_stream_ack:
            self._awaiting_stream_ack = False
            if reply.get("success"):
                logger.info("Stream started by '%s'", pending.command.name)
            else:
                self._end_stream_locked()
        return lambda: pending.resolve(reply)

    def _route_sample_locked(self, line: str) -> Optional[Callable[[], None]]:
        callback = self._stream_callback
        sample = parse_sample(line)
        if sample is None:
            logger.error("Malformed stream sample: %r", line)
            sample = {"success": False, "error": f"malformed sample: {line!r}"}

        if is_stream_end(sample):
            self._end_stream_locked()
            logger.info("Stream ended")

        if callback is None:
            return None
        return lambda: callback(sample)

    def _end_stream_locked(self) -> None:
        self._streaming = False
        self._awaiting_stream_ack = False
        self._stream_callback = None
        self._stream_ended.set()
