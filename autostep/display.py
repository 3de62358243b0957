"""
Text rendering of the controller parameter table.
"""

from typing import Any, List, Mapping

from .commands import MOVE_MODE_UNITS
from .data_types import ParamName

SEPARATOR = "-" * 27


def _format_move_mode(params: Mapping[str, Any]) -> List[str]:
    lines = []
    for key, value in params.items():
        units = MOVE_MODE_UNITS.get(key, "")
        lines.append(f"  {key:<5}: {value} {units}".rstrip())
    return lines


def format_params(params: Mapping[str, Any]) -> str:
    """
    Render the mapping returned by Autostep.get_params().

    Missing tables are rendered empty.
    """
    lines = [
        "",
        "Autostep params",
        SEPARATOR,
        "",
        f"fullstep/rev: {params.get(ParamName.FULLSTEP_PER_REV)}",
        f"step mode:    {params.get(ParamName.STEP_MODE)}",
        f"oc threshold: {params.get(ParamName.THRESHOLD)}",
        "",
        "jog mode:",
    ]
    lines.extend(_format_move_mode(params.get(ParamName.JOG_MODE) or {}))
    lines.append("")
    lines.append("max mode:")
    lines.extend(_format_move_mode(params.get(ParamName.MAX_MODE) or {}))
    lines.append("")
    lines.append("kvals (0-255)")
    for key, value in (params.get(ParamName.KVAL) or {}).items():
        lines.append(f"  {key:<5}: {value}")
    lines.append(SEPARATOR)
    lines.append("")
    return "\n".join(lines)
