"""
Autostep - Stepper Controller Python Library
============================================

A Python library for controlling Autostep stepper-motor controllers
using the line-based JSON serial protocol.

Example:
    >>> from autostep import Autostep
    >>>
    >>> with Autostep('/dev/ttyACM0') as stepper:
    ...     stepper.move_to(180.0)
    ...     stepper.busy_wait()
"""

from .autostep import Autostep
from .busy_wait import BusyPollCoordinator, BusyState
from .commands import (
    Command,
    CommandType,
    build_command,
    BAUDRATE,
    BUSYWAIT_INTERVAL_S,
    DEFAULT_GEAR_RATIO,
)
from .config import AutostepConfig
from .data_types import ParamName, SinusoidParams
from .display import format_params
from .exceptions import (
    AutostepError,
    TransportError,
    MalformedReply,
    ProtocolViolation,
    AutosetError,
)
from .router import ReplyRouter
from .transport import LineFramer, SerialTransport, Transport

__version__ = "1.0.0"
__all__ = [
    "Autostep",
    "AutostepConfig",
    "BusyPollCoordinator",
    "BusyState",
    "Command",
    "CommandType",
    "build_command",
    "BAUDRATE",
    "BUSYWAIT_INTERVAL_S",
    "DEFAULT_GEAR_RATIO",
    "ParamName",
    "SinusoidParams",
    "format_params",
    "AutostepError",
    "TransportError",
    "MalformedReply",
    "ProtocolViolation",
    "AutosetError",
    "ReplyRouter",
    "LineFramer",
    "SerialTransport",
    "Transport",
]
