"""
Data Types for the Autostep Controller
======================================

Plain dataclasses and key names shared by the command façade and the
command line tools.
"""

import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, Mapping, Union


class ParamName:
    """Keys of the aggregate parameter mapping (see Autostep.get_params)."""
    FULLSTEP_PER_REV = "fullstep_per_rev"
    STEP_MODE = "step_mode"
    THRESHOLD = "threshold"
    JOG_MODE = "jog_mode"
    MAX_MODE = "max_mode"
    KVAL = "kval"

    ALL = (FULLSTEP_PER_REV, STEP_MODE, THRESHOLD, JOG_MODE, MAX_MODE, KVAL)


@dataclass
class SinusoidParams:
    """
    Parameters of a sinusoidal motion.

    position(t) = amplitude * sin(2*pi*t/period + phase) + offset

    Units:
        - amplitude, offset: degrees
        - period: seconds
        - phase: degrees
        - num_cycle: number of full periods
    """
    amplitude: float = 0.0
    period: float = 1.0
    phase: float = 0.0
    offset: float = 0.0
    num_cycle: int = 1

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'SinusoidParams':
        """Create from a mapping, ignoring unknown keys."""
        return cls(
            amplitude=float(data.get('amplitude', 0.0)),
            period=float(data.get('period', 1.0)),
            phase=float(data.get('phase', 0.0)),
            offset=float(data.get('offset', 0.0)),
            num_cycle=int(data.get('num_cycle', 1)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def start_angle(self) -> float:
        """Position of the motion at t = 0."""
        return self.amplitude * math.sin(math.radians(self.phase)) + self.offset


SinusoidLike = Union[SinusoidParams, Mapping[str, Any]]


def sinusoid_to_dict(params: SinusoidLike) -> Dict[str, Any]:
    """Copy sinusoid parameters into a new dictionary."""
    if isinstance(params, SinusoidParams):
        return params.to_dict()
    return dict(params)
