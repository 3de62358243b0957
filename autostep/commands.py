"""
Command Protocol for the Autostep Stepper Controller
====================================================

This module defines the line-based JSON protocol used to communicate
with the Autostep firmware over serial.

Protocol Overview
-----------------
Every message is a single JSON object terminated by a newline. There is
no request id on the wire: the order of lines is the only way to match a
reply with its command, so only one command may be in flight at a time.

Input (Host → Device):
    {"command":"move_to","position":90.0}

Output (Device → Host):
    {"success":true,...}       - Reply to the last command
    {"success":true,...}       - Stream sample while a sinusoid is running
    {} / {"success":false}     - End of the sinusoid stream

Commands
--------
    enable, release, run{velocity}, sinusoid{amplitude,period,phase,offset,num_cycle},
    move_to{position}, move_to_fullsteps{position}, move_to_microsteps{position},
    soft_stop, hard_stop, is_busy, set_max_mode, set_jog_mode, get_position,
    set_position{position}, get_position_fullsteps, get_position_microsteps,
    get_position_sensor, get_voltage_sensor, autoset_position, get_step_mode,
    set_step_mode{step_mode}, get_fullstep_per_rev, set_fullstep_per_rev{fullstep_per_rev},
    get_jog_mode_params, set_jog_mode_params{...}, get_max_mode_params,
    set_max_mode_params{...}, get_kval_params, set_kval_params{...},
    get_oc_threshold, set_oc_threshold{threshold}
"""

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from .exceptions import MalformedReply


class CommandType:
    """Command names understood by the firmware."""
    ENABLE = "enable"
    RELEASE = "release"
    RUN = "run"
    SINUSOID = "sinusoid"
    MOVE_TO = "move_to"
    MOVE_TO_FULLSTEPS = "move_to_fullsteps"
    MOVE_TO_MICROSTEPS = "move_to_microsteps"
    SOFT_STOP = "soft_stop"
    HARD_STOP = "hard_stop"
    IS_BUSY = "is_busy"
    SET_MAX_MODE = "set_max_mode"
    SET_JOG_MODE = "set_jog_mode"
    GET_POSITION = "get_position"
    SET_POSITION = "set_position"
    GET_POSITION_FULLSTEPS = "get_position_fullsteps"
    GET_POSITION_MICROSTEPS = "get_position_microsteps"
    GET_POSITION_SENSOR = "get_position_sensor"
    GET_VOLTAGE_SENSOR = "get_voltage_sensor"
    AUTOSET_POSITION = "autoset_position"
    GET_STEP_MODE = "get_step_mode"
    SET_STEP_MODE = "set_step_mode"
    GET_FULLSTEP_PER_REV = "get_fullstep_per_rev"
    SET_FULLSTEP_PER_REV = "set_fullstep_per_rev"
    GET_JOG_MODE_PARAMS = "get_jog_mode_params"
    SET_JOG_MODE_PARAMS = "set_jog_mode_params"
    GET_MAX_MODE_PARAMS = "get_max_mode_params"
    SET_MAX_MODE_PARAMS = "set_max_mode_params"
    GET_KVAL_PARAMS = "get_kval_params"
    SET_KVAL_PARAMS = "set_kval_params"
    GET_OC_THRESHOLD = "get_oc_threshold"
    SET_OC_THRESHOLD = "set_oc_threshold"


# Serial settings
BAUDRATE = 115200
LINE_TERMINATOR = b"\n"

# Busy-wait polling interval (seconds)
BUSYWAIT_INTERVAL_S = 0.01

# Start angle (degrees) used by the autoset position procedure
AUTOSET_POSITION_START_ANGLE = 5.0

DEFAULT_GEAR_RATIO = 1.0

# Units of the jog/max move mode parameters, for display
MOVE_MODE_UNITS = {
    "speed": "(deg/sec)",
    "accel": "(deg/sec**2)",
    "decel": "(deg/sec**2)",
}


@dataclass(frozen=True)
class Command:
    """
    A single command sent to the controller.

    The parameters are stored behind a read-only mapping so a built
    command cannot change between construction and transmission.
    """
    name: str
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    def as_dict(self) -> Dict[str, Any]:
        """Wire representation: ``command`` followed by the parameters."""
        return {"command": self.name, **self.params}

    def to_line(self) -> str:
        """Serialize to one line of JSON (without the terminator)."""
        return json.dumps(self.as_dict(), separators=(",", ":"))


def build_command(name: str, params: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Command:
    """
    Build a command from a name and its parameters.

    Args:
        name: Command name (see CommandType)
        params: Optional mapping of parameters
        **kwargs: Additional parameters, override ``params``

    Returns:
        Immutable Command
    """
    merged: Dict[str, Any] = dict(params or {})
    merged.update(kwargs)
    merged.pop("command", None)
    return Command(name, merged)


def parse_reply(line: str) -> Dict[str, Any]:
    """
    Parse one reply line.

    Args:
        line: Decoded line without terminator

    Returns:
        Reply dictionary, always containing ``success``

    Raises:
        MalformedReply: If the line is not a JSON object with ``success``
    """
    try:
        data = json.loads(line)
    except ValueError as e:
        raise MalformedReply(f"Reply is not valid JSON: {e}", line) from e

    if not isinstance(data, dict):
        raise MalformedReply("Reply is not a JSON object", line)
    if "success" not in data:
        raise MalformedReply("Reply has no 'success' field", line)
    return data


def parse_sample(line: str) -> Optional[Dict[str, Any]]:
    """
    Parse one stream sample.

    An empty line parses to an empty sample. Unlike replies, samples are
    not required to carry ``success``.

    Returns:
        Sample dictionary, or None if the line is not a JSON object
    """
    if not line:
        return {}
    try:
        data = json.loads(line)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def is_stream_end(sample: Optional[Mapping[str, Any]]) -> bool:
    """True if a sample terminates the stream (missing, empty or failed)."""
    if not sample:
        return True
    return sample.get("success") is False
