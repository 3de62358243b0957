"""
Connection and polling settings for an Autostep controller.
"""

from dataclasses import dataclass

from .commands import BAUDRATE, BUSYWAIT_INTERVAL_S, DEFAULT_GEAR_RATIO


@dataclass
class AutostepConfig:
    """
    Configuration for an Autostep connection.

    Attributes
    ----------
    port : str
        Serial port path (e.g. '/dev/ttyACM0', 'COM3')
    baudrate : int
        Serial baudrate
    timeout : float
        Serial read timeout in seconds
    open_delay : float
        Time to wait after opening the port before sending commands.
        Most boards reset when the port is opened.
    gear_ratio : float
        Scale factor between controller angles and caller angles
    busy_wait_interval : float
        Delay between two busy-wait polls in seconds
    """
    port: str = "/dev/ttyACM0"
    baudrate: int = BAUDRATE
    timeout: float = 0.1
    open_delay: float = 2.0
    gear_ratio: float = DEFAULT_GEAR_RATIO
    busy_wait_interval: float = BUSYWAIT_INTERVAL_S

    def __post_init__(self):
        if self.gear_ratio == 0:
            raise ValueError("gear_ratio must be non-zero")
        if self.busy_wait_interval <= 0:
            raise ValueError("busy_wait_interval must be positive")
        if self.open_delay < 0:
            raise ValueError("open_delay must not be negative")
