"""
Autostep Serial Communication Library
=====================================

A Python library for controlling Autostep stepper-motor controllers via
JSON commands over serial communication.

Example:
    >>> from autostep import Autostep
    >>>
    >>> # Using context manager (recommended)
    >>> with Autostep('/dev/ttyACM0') as stepper:
    ...     stepper.move_to(90.0)
    ...     stepper.busy_wait()
    ...     print(stepper.get_position())
    >>>
    >>> # Manual connection
    >>> stepper = Autostep.create_new('/dev/ttyACM0')
    >>> stepper.set_gear_ratio(2.0)
    >>> stepper.move_to(45.0)
    >>> stepper.disconnect()

Angles and velocities crossing this class are in caller units. They are
multiplied by the gear ratio on the way to the controller and divided by
it on the way back.
"""

import dataclasses
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from .busy_wait import BusyPollCoordinator, BusyState
from .commands import AUTOSET_POSITION_START_ANGLE, CommandType, build_command
from .config import AutostepConfig
from .data_types import ParamName, SinusoidLike, SinusoidParams, sinusoid_to_dict
from .display import format_params
from .exceptions import AutosetError
from .router import Reply, ReplyRouter, StreamCallback
from .tools import log_exceptions
from .transport import SerialTransport, Transport

logger = logging.getLogger(__name__)


class Autostep:
    """
    Autostep controller.

    Provides typed, gear-ratio aware operations on top of the reply router.
    Every operation blocks until the controller replies and returns the
    reply dictionary. A reply with ``success`` false is returned, not raised.
    """

    def __init__(
        self,
        port: Optional[str] = None,
        config: Optional[AutostepConfig] = None,
        transport: Optional[Transport] = None,
        auto_connect: bool = False,
        **kwargs: Any,
    ):
        """
        Initialize Autostep controller.

        Args:
            port: Serial port path, overrides ``config.port``
            config: Connection settings (default: AutostepConfig())
            transport: Transport to use instead of a SerialTransport
            auto_connect: Automatically connect on initialization
            **kwargs: AutostepConfig fields, e.g. gear_ratio=2.0
        """
        if config is None:
            config = AutostepConfig(**kwargs)
        elif kwargs:
            raise TypeError("Pass either a config or keyword settings, not both")
        if port is not None:
            config = dataclasses.replace(config, port=port)
        self.config = config

        if transport is None:
            transport = SerialTransport(
                config.port,
                baudrate=config.baudrate,
                timeout=config.timeout,
                open_delay=config.open_delay,
            )
        self._transport = transport
        self._router = ReplyRouter(transport)
        self._gear_ratio = config.gear_ratio

        if auto_connect:
            self.connect()

    @classmethod
    def create_new(cls, port: str, **kwargs: Any) -> 'Autostep':
        """Create a controller and return it once the port is ready."""
        return cls(port, auto_connect=True, **kwargs)

    def __enter__(self) -> 'Autostep':
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        self.disconnect()

    # =========================================================================
    # Connection Management
    # =========================================================================

    def connect(self) -> None:
        """
        Open the transport.

        Raises:
            TransportError: If connection fails
        """
        self._transport.open()
        logger.info("Connected to Autostep on %s", self.config.port)

    def disconnect(self) -> None:
        """Close the transport."""
        self._transport.close()

    @property
    def is_connected(self) -> bool:
        return self._transport.is_open

    @property
    def router(self) -> ReplyRouter:
        return self._router

    @property
    def sinusoid_running(self) -> bool:
        """True while sinusoid samples are being streamed."""
        return self._router.streaming

    # =========================================================================
    # Gear Ratio
    # =========================================================================

    @property
    def gear_ratio(self) -> float:
        return self._gear_ratio

    def set_gear_ratio(self, gear_ratio: float) -> None:
        """
        Set the scale factor between controller and caller angles.

        Raises:
            ValueError: If gear_ratio is zero
        """
        if gear_ratio == 0:
            raise ValueError("gear_ratio must be non-zero")
        self._gear_ratio = float(gear_ratio)

    def _to_device(self, value: float) -> float:
        return value * self._gear_ratio

    def _from_device(self, reply: Reply, *keys: str) -> Reply:
        scaled = dict(reply)
        for key in keys:
            if isinstance(scaled.get(key), (int, float)) and not isinstance(scaled[key], bool):
                scaled[key] = scaled[key] / self._gear_ratio
        return scaled

    def _send(self, name: str, params: Optional[Mapping[str, Any]] = None,
              stream_callback: Optional[StreamCallback] = None, **kwargs: Any) -> Reply:
        return self._router.send(build_command(name, params, **kwargs), stream_callback)

    # =========================================================================
    # Motion Control
    # =========================================================================

    def enable(self) -> Reply:
        """Energize the motor windings."""
        return self._send(CommandType.ENABLE)

    def release(self) -> Reply:
        """De-energize the motor windings."""
        return self._send(CommandType.RELEASE)

    def run(self, velocity: float) -> Reply:
        """Run at a constant velocity (deg/sec)."""
        return self._send(CommandType.RUN, velocity=self._to_device(velocity))

    def sinusoid(
        self,
        params: SinusoidLike,
        stream_callback: Optional[StreamCallback] = None,
    ) -> Reply:
        """
        Start a sinusoidal motion and stream its samples.

        The acknowledgement is returned once the controller accepts the
        command; samples are then passed verbatim to ``stream_callback``
        until the stream ends. Use busy_wait() to block until then.

        Args:
            params: SinusoidParams or mapping with amplitude, period,
                phase, offset and num_cycle
            stream_callback: Called with every sample, including the
                terminating one

        Returns:
            Acknowledgement with amplitude and offset in caller units
        """
        params_adj = sinusoid_to_dict(params)
        for key in ("amplitude", "offset"):
            if key in params_adj:
                params_adj[key] = self._to_device(params_adj[key])

        reply = self._send(
            CommandType.SINUSOID,
            params_adj,
            stream_callback=stream_callback or _discard_sample,
        )
        return self._from_device(reply, "amplitude", "offset")

    def move_to_sinusoid_start(self, params: SinusoidLike) -> Reply:
        """Move to the position a sinusoid with these parameters starts at."""
        if not isinstance(params, SinusoidParams):
            params = SinusoidParams.from_dict(params)
        return self.move_to(params.start_angle())

    def move_to(self, position: float) -> Reply:
        """Move to an absolute position (degrees)."""
        return self._send(CommandType.MOVE_TO, position=self._to_device(position))

    def move_by(self, step: float) -> Reply:
        """Move relative to the current position (degrees)."""
        reply = self.get_position()
        return self.move_to(reply["position"] + step)

    def move_to_fullsteps(self, position: int) -> Reply:
        return self._send(CommandType.MOVE_TO_FULLSTEPS, position=position)

    def move_to_microsteps(self, position: int) -> Reply:
        return self._send(CommandType.MOVE_TO_MICROSTEPS, position=position)

    def soft_stop(self) -> Reply:
        """Decelerate to a stop."""
        return self._send(CommandType.SOFT_STOP)

    def hard_stop(self) -> Reply:
        """Stop immediately."""
        return self._send(CommandType.HARD_STOP)

    def is_busy(self) -> Reply:
        return self._send(CommandType.IS_BUSY)

    def busy_wait(self, timeout: Optional[float] = None) -> BusyState:
        """
        Block until the current motion (or sinusoid stream) has finished.

        Args:
            timeout: Optional bound in seconds

        Raises:
            TimeoutError: If ``timeout`` elapses first
        """
        coordinator = BusyPollCoordinator(self._router, self.config.busy_wait_interval)
        return coordinator.run(timeout)

    def set_move_mode_to_max(self) -> Reply:
        return self._send(CommandType.SET_MAX_MODE)

    def set_move_mode_to_jog(self) -> Reply:
        return self._send(CommandType.SET_JOG_MODE)

    # =========================================================================
    # Position
    # =========================================================================

    def get_position(self) -> Reply:
        """Current position (degrees)."""
        return self._from_device(self._send(CommandType.GET_POSITION), "position")

    def set_position(self, position: float) -> Reply:
        """Redefine the current position (degrees) without moving."""
        return self._send(CommandType.SET_POSITION, position=self._to_device(position))

    def get_position_fullsteps(self) -> Reply:
        return self._send(CommandType.GET_POSITION_FULLSTEPS)

    def get_position_microsteps(self) -> Reply:
        return self._send(CommandType.GET_POSITION_MICROSTEPS)

    def get_position_sensor(self) -> Reply:
        return self._send(CommandType.GET_POSITION_SENSOR)

    def get_voltage_sensor(self) -> Reply:
        return self._send(CommandType.GET_VOLTAGE_SENSOR)

    def autoset_position(self) -> Reply:
        """Set the position from the position sensor."""
        return self._send(CommandType.AUTOSET_POSITION)

    @log_exceptions
    def autoset_position_procedure(self) -> Reply:
        """
        Autoset the position, move to the start angle, wait, and autoset again.

        Raises:
            AutosetError: With the failing reply, at the first failed step
        """
        reply = self.autoset_position()
        if not reply.get("success"):
            raise AutosetError("autoset: set position failed", reply)

        reply = self.move_to(AUTOSET_POSITION_START_ANGLE)
        if not reply.get("success"):
            raise AutosetError("autoset: move to start position failed", reply)
        self.busy_wait()

        reply = self.autoset_position()
        if not reply.get("success"):
            raise AutosetError("autoset: set position failed", reply)
        return reply

    # =========================================================================
    # Parameters
    # =========================================================================

    def get_step_mode(self) -> Reply:
        return self._send(CommandType.GET_STEP_MODE)

    def set_step_mode(self, step_mode: str) -> Reply:
        return self._send(CommandType.SET_STEP_MODE, step_mode=step_mode)

    def get_fullstep_per_rev(self) -> Reply:
        return self._send(CommandType.GET_FULLSTEP_PER_REV)

    def set_fullstep_per_rev(self, fullstep_per_rev: float) -> Reply:
        """Set the number of full steps per revolution (rounded to int)."""
        return self._send(CommandType.SET_FULLSTEP_PER_REV,
                          fullstep_per_rev=int(round(fullstep_per_rev)))

    def get_jog_mode_params(self) -> Reply:
        return self._send(CommandType.GET_JOG_MODE_PARAMS)

    def set_jog_mode_params(self, params: Mapping[str, Any]) -> Reply:
        """Set jog mode speed, accel and decel."""
        return self._send(CommandType.SET_JOG_MODE_PARAMS, params)

    def get_max_mode_params(self) -> Reply:
        return self._send(CommandType.GET_MAX_MODE_PARAMS)

    def set_max_mode_params(self, params: Mapping[str, Any]) -> Reply:
        """Set max mode speed, accel and decel."""
        return self._send(CommandType.SET_MAX_MODE_PARAMS, params)

    def get_kval_params(self) -> Reply:
        return self._send(CommandType.GET_KVAL_PARAMS)

    def set_kval_params(self, params: Mapping[str, Any]) -> Reply:
        """Set the driver kvals (0-255)."""
        return self._send(CommandType.SET_KVAL_PARAMS, params)

    def get_oc_threshold(self) -> Reply:
        return self._send(CommandType.GET_OC_THRESHOLD)

    def set_oc_threshold(self, threshold: Any) -> Reply:
        """Set the over-current threshold."""
        return self._send(CommandType.SET_OC_THRESHOLD, threshold=threshold)

    def _param_setters(self) -> Sequence[Tuple[str, Callable[[Any], Reply]]]:
        # Fixed application order for set_params
        return (
            (ParamName.FULLSTEP_PER_REV, self.set_fullstep_per_rev),
            (ParamName.STEP_MODE, self.set_step_mode),
            (ParamName.THRESHOLD, self.set_oc_threshold),
            (ParamName.JOG_MODE, self.set_jog_mode_params),
            (ParamName.MAX_MODE, self.set_max_mode_params),
            (ParamName.KVAL, self.set_kval_params),
        )

    def set_params(self, params: Mapping[str, Any]) -> Reply:
        """
        Apply a parameter table in a fixed order.

        Keys missing from ``params`` are skipped. Stops at the first
        setter whose reply fails and returns that reply.

        Args:
            params: Mapping with any of the ParamName keys

        Returns:
            The first failing reply, or {'success': True}
        """
        for name, setter in self._param_setters():
            if params.get(name) is None:
                continue
            reply = setter(params[name])
            if not reply.get("success"):
                logger.warning("Setting %s failed: %s", name, reply)
                return reply
        return {"success": True}

    def get_params(self) -> Dict[str, Any]:
        """
        Read the full parameter table.

        All six getters are always called, even if one fails.

        Returns:
            Mapping with every ParamName key
        """
        fullstep_per_rev = self.get_fullstep_per_rev().get("fullstep_per_rev")
        step_mode = self.get_step_mode().get("step_mode")
        threshold = self.get_oc_threshold().get("threshold")
        jog_mode = _strip_success(self.get_jog_mode_params())
        max_mode = _strip_success(self.get_max_mode_params())
        kval = _strip_success(self.get_kval_params())

        return {
            ParamName.FULLSTEP_PER_REV: fullstep_per_rev,
            ParamName.STEP_MODE: step_mode,
            ParamName.THRESHOLD: threshold,
            ParamName.JOG_MODE: jog_mode,
            ParamName.MAX_MODE: max_mode,
            ParamName.KVAL: kval,
        }

    def print_params(self) -> None:
        """Print the parameter table to stdout."""
        print(format_params(self.get_params()))

    # =========================================================================
    # Utilities
    # =========================================================================

    @staticmethod
    def sleep(seconds: float) -> None:
        time.sleep(seconds)


def _strip_success(reply: Reply) -> Dict[str, Any]:
    table = dict(reply)
    table.pop("success", None)
    return table


def _discard_sample(sample: Dict[str, Any]) -> None:
    pass
