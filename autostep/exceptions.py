"""
Exceptions raised by the Autostep driver.

A reply with ``success`` set to false is *not* an exception: it is returned
to the caller like any other reply, and the caller decides what to do.
"""

from typing import Any, Dict, Optional


class AutostepError(Exception):
    """Base class for all driver errors."""


class TransportError(AutostepError):
    """Opening, writing to or reading from the serial port failed."""


class MalformedReply(AutostepError):
    """A received line is not a JSON object carrying ``success``."""

    def __init__(self, message: str, line: str = ""):
        super().__init__(message)
        self.line = line


class ProtocolViolation(AutostepError):
    """A command was sent while another one is pending or a stream is active."""


class AutosetError(AutostepError):
    """One step of the autoset position procedure failed."""

    def __init__(self, message: str, reply: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.reply = reply
