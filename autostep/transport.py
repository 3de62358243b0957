"""
Serial Transport
================

Byte-stream layer under the reply router. A transport opens the port,
writes one command line at a time and hands every complete received line
to a callback from its own reader thread.

Example:
    >>> transport = SerialTransport('/dev/ttyACM0')
    >>> transport.set_line_callback(print)
    >>> transport.open()
    >>> transport.write('{"command":"is_busy"}')
    >>> transport.close()
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import serial

from .commands import BAUDRATE, LINE_TERMINATOR
from .exceptions import TransportError

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], None]
ErrorCallback = Callable[[Exception], None]


class LineFramer:
    """
    Accumulates raw bytes into newline-delimited lines.

    Partial data is kept until its terminator arrives. Carriage returns
    are stripped so both LF and CRLF devices work.
    """

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        self._buffer = bytearray()

    def feed(self, data: bytes) -> List[str]:
        """
        Add a chunk of bytes.

        Args:
            data: Raw bytes read from the port

        Returns:
            Complete lines found so far, decoded and without terminators
        """
        self._buffer.extend(data)
        lines = []
        while True:
            index = self._buffer.find(LINE_TERMINATOR)
            if index < 0:
                break
            raw = bytes(self._buffer[:index])
            del self._buffer[:index + 1]
            lines.append(raw.decode(self.encoding, errors="replace").strip("\r"))
        return lines

    def reset(self) -> None:
        """Drop any partial line."""
        self._buffer.clear()

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet terminated."""
        return len(self._buffer)


class Transport(ABC):
    """
    Abstract line transport.

    The minimum implementation requires:
    - open(): Connect and signal ready by returning
    - close(): Release the connection
    - write(): Send one line
    - is_open: Connection state

    Received lines must be passed to ``self._line_callback`` and read
    failures to ``self._error_callback``.
    """

    def __init__(self):
        self._line_callback: Optional[LineCallback] = None
        self._error_callback: Optional[ErrorCallback] = None

    def set_line_callback(self, callback: Optional[LineCallback]) -> None:
        """Register the consumer of received lines."""
        self._line_callback = callback

    def set_error_callback(self, callback: Optional[ErrorCallback]) -> None:
        """Register the consumer of read failures."""
        self._error_callback = callback

    def _deliver_line(self, line: str) -> None:
        if self._line_callback:
            self._line_callback(line)

    def _deliver_error(self, exc: Exception) -> None:
        if self._error_callback:
            self._error_callback(exc)

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while the connection can carry traffic."""

    @abstractmethod
    def open(self) -> None:
        """
        Open the connection. Returning means the transport is ready.

        Raises:
            TransportError: If the connection cannot be opened
        """

    @abstractmethod
    def close(self) -> None:
        """Close the connection."""

    @abstractmethod
    def write(self, line: str) -> None:
        """
        Send one line; the terminator is appended by the transport.

        Raises:
            TransportError: If not open or the write fails
        """

    def __enter__(self) -> 'Transport':
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class SerialTransport(Transport):
    """
    Transport over a pyserial port with a background reader thread.
    """

    def __init__(
        self,
        port: str,
        baudrate: int = BAUDRATE,
        timeout: float = 0.1,
        open_delay: float = 0.0,
    ):
        """
        Args:
            port: Serial port path (e.g., '/dev/ttyACM0', 'COM3')
            baudrate: Serial baudrate (default: 115200)
            timeout: Serial read timeout in seconds
            open_delay: Time to let the board settle after opening
        """
        super().__init__()
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.open_delay = open_delay

        self._ser: Optional[serial.Serial] = None
        self._read_thread: Optional[threading.Thread] = None
        self._running = False
        self._write_lock = threading.Lock()
        self._framer = LineFramer()

    @property
    def is_open(self) -> bool:
        return self._ser is not None and self._ser.is_open

    def open(self) -> None:
        if self.is_open:
            return

        try:
            self._ser = serial.Serial(
                self.port,
                baudrate=self.baudrate,
                timeout=self.timeout,
            )
        except (serial.SerialException, OSError) as e:
            self._ser = None
            raise TransportError(f"Could not open {self.port}: {e}") from e

        self._framer.reset()
        self._running = True
        self._read_thread = threading.Thread(target=self._read_serial, daemon=True)
        self._read_thread.start()

        if self.open_delay > 0:
            time.sleep(self.open_delay)
        logger.info("Opened %s at %d baud", self.port, self.baudrate)

    def close(self) -> None:
        self._running = False

        if self._read_thread is not None:
            if self._read_thread is not threading.current_thread():
                self._read_thread.join(timeout=1.0)
            self._read_thread = None

        if self._ser is not None:
            try:
                if self._ser.is_open:
                    self._ser.close()
            except (serial.SerialException, OSError) as e:
                logger.warning("Error closing %s: %s", self.port, e)
            finally:
                self._ser = None
                logger.info("Closed %s", self.port)

    def write(self, line: str) -> None:
        ser = self._ser
        if ser is None or not ser.is_open:
            raise TransportError(f"Port {self.port} is not open")

        with self._write_lock:
            try:
                ser.write(line.encode() + LINE_TERMINATOR)
            except (serial.SerialException, OSError) as e:
                logger.error("Write to %s failed: %s", self.port, e)
                raise TransportError(f"Write to {self.port} failed: {e}") from e
        logger.debug("TX %s", line)

    def _read_serial(self) -> None:
        """Background thread for reading serial data."""
        while self._running:
            try:
                waiting = self._ser.in_waiting if self._ser else 0
                data = self._ser.read(waiting or 1) if self._ser else b""
            except (serial.SerialException, OSError) as e:
                if not self._running:
                    break
                logger.error("Read from %s failed: %s", self.port, e)
                self._running = False
                self._release_port()
                self._deliver_error(TransportError(f"Read from {self.port} failed: {e}"))
                break

            if not data:
                continue
            for line in self._framer.feed(data):
                logger.debug("RX %s", line)
                self._deliver_line(line)

    def _release_port(self) -> None:
        """Close the port after a read failure so later writes fail fast."""
        ser, self._ser = self._ser, None
        if ser is None:
            return
        try:
            ser.close()
        except (serial.SerialException, OSError) as e:
            logger.warning("Error closing %s: %s", self.port, e)
