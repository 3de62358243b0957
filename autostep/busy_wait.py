"""
Busy-Poll Coordinator
=====================

Decides when a long-running motion command has completed.

State machine::

    IDLE --run()--> POLLING --not busy / query failed / stream ended--> DONE
                       |
                       +--transport error / timeout--> FAILED

While a sinusoid stream is active the transport is occupied by samples,
so no ``is_busy`` query is sent; completion is the end of the stream.

A failed ``is_busy`` query (``success`` false) counts as done, so a caller
never blocks forever on a broken status query.
"""

import logging
import time
from enum import Enum
from typing import Callable, Optional

from .commands import BUSYWAIT_INTERVAL_S, CommandType, build_command
from .router import ReplyRouter

logger = logging.getLogger(__name__)


class BusyState(Enum):
    IDLE = "idle"
    POLLING = "polling"
    DONE = "done"
    FAILED = "failed"


class BusyPollCoordinator:
    """
    One-shot busy wait. Create a new coordinator for every wait.

    Args:
        router: Router of the connection to poll
        interval: Delay between two ticks in seconds
        sleep: Sleep function, replaceable in tests
        clock: Monotonic clock, replaceable in tests
    """

    def __init__(
        self,
        router: ReplyRouter,
        interval: float = BUSYWAIT_INTERVAL_S,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._router = router
        self.interval = interval
        self._sleep = sleep
        self._clock = clock
        self.state = BusyState.IDLE
        self.polls = 0

    def run(self, timeout: Optional[float] = None) -> BusyState:
        """
        Poll until the motion is done.

        Args:
            timeout: Optional bound in seconds; None waits indefinitely

        Returns:
            BusyState.DONE

        Raises:
            TimeoutError: If ``timeout`` elapses first
            AutostepError: Any router error raised by a status query
        """
        if self.state is not BusyState.IDLE:
            raise RuntimeError("BusyPollCoordinator is single use")

        self.state = BusyState.POLLING
        deadline = None if timeout is None else self._clock() + timeout
        stream_seen = False

        try:
            while self.state is BusyState.POLLING:
                self._sleep(self.interval)

                if self._router.streaming:
                    stream_seen = True
                elif stream_seen:
                    self.state = BusyState.DONE
                else:
                    self._poll_status()

                if (self.state is BusyState.POLLING and deadline is not None
                        and self._clock() >= deadline):
                    raise TimeoutError(f"Busy wait did not finish within {timeout} s")
        except BaseException:
            self.state = BusyState.FAILED
            raise

        return self.state

    def _poll_status(self) -> None:
        self.polls += 1
        reply = self._router.send(build_command(CommandType.IS_BUSY))
        if not reply.get("success"):
            logger.warning("is_busy query failed, treating motion as done: %s", reply)
            self.state = BusyState.DONE
        elif not reply.get("is_busy"):
            self.state = BusyState.DONE
