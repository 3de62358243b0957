"""
Shared fixtures and fakes for the Autostep test suite.
"""

import json
import threading
import time
from io import BytesIO
from typing import Any, Callable, Dict, List, Optional

import pytest

from autostep import Autostep, ReplyRouter, Transport, TransportError


# =============================================================================
# HELPERS
# =============================================================================

def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.001)
    return predicate()


class Background:
    """Run a blocking call in a thread and keep its outcome."""

    def __init__(self, func: Callable[[], Any]):
        self.result: Any = None
        self.error: Optional[BaseException] = None
        self._thread = threading.Thread(target=self._run, args=(func,), daemon=True)
        self._thread.start()

    def _run(self, func):
        try:
            self.result = func()
        except BaseException as e:
            self.error = e

    def join(self, timeout: float = 2.0) -> 'Background':
        self._thread.join(timeout)
        assert not self._thread.is_alive(), "background call did not finish"
        return self

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()


# =============================================================================
# FAKE FIRMWARE AND TRANSPORTS
# =============================================================================

class FakeFirmware:
    """Minimal simulation of the Autostep firmware command handling."""

    VALID_STEP_MODES = ("STEP_FS", "STEP_FS_2", "STEP_FS_4", "STEP_FS_8",
                        "STEP_FS_16", "STEP_FS_32", "STEP_FS_64", "STEP_FS_128")

    def __init__(self):
        self.position = 0.0
        self.busy_after_move = 2
        self._busy_remaining = 0
        self.fail: set = set()
        self.calls: List[str] = []
        self.fullstep_per_rev = 200
        self.step_mode = "STEP_FS_64"
        self.threshold = "1500mA"
        self.jog_mode = {"speed": 200.0, "accel": 100.0, "decel": 100.0}
        self.max_mode = {"speed": 1000.0, "accel": 10000.0, "decel": 10000.0}
        self.kval = {"accel": 100, "decel": 100, "run": 100, "hold": 20}

    def handle(self, cmd: Dict[str, Any]) -> List[str]:
        name = cmd["command"]
        self.calls.append(name)
        if name in self.fail:
            return [json.dumps({"success": False})]

        rsp: Dict[str, Any] = {"success": True}
        if name in ("move_to", "move_to_fullsteps", "move_to_microsteps"):
            self.position = cmd["position"]
            self._busy_remaining = self.busy_after_move
        elif name == "set_position":
            self.position = cmd["position"]
        elif name == "get_position":
            rsp["position"] = self.position
        elif name == "is_busy":
            rsp["is_busy"] = self._busy_remaining > 0
            self._busy_remaining = max(0, self._busy_remaining - 1)
        elif name == "sinusoid":
            rsp.update({k: v for k, v in cmd.items() if k != "command"})
        elif name == "get_fullstep_per_rev":
            rsp["fullstep_per_rev"] = self.fullstep_per_rev
        elif name == "set_fullstep_per_rev":
            self.fullstep_per_rev = cmd["fullstep_per_rev"]
        elif name == "get_step_mode":
            rsp["step_mode"] = self.step_mode
        elif name == "set_step_mode":
            if cmd["step_mode"] not in self.VALID_STEP_MODES:
                return [json.dumps({"success": False, "message": "invalid step mode"})]
            self.step_mode = cmd["step_mode"]
        elif name == "get_oc_threshold":
            rsp["threshold"] = self.threshold
        elif name == "set_oc_threshold":
            self.threshold = cmd["threshold"]
        elif name == "get_jog_mode_params":
            rsp.update(self.jog_mode)
        elif name == "set_jog_mode_params":
            self.jog_mode = {k: v for k, v in cmd.items() if k != "command"}
        elif name == "get_max_mode_params":
            rsp.update(self.max_mode)
        elif name == "set_max_mode_params":
            self.max_mode = {k: v for k, v in cmd.items() if k != "command"}
        elif name == "get_kval_params":
            rsp.update(self.kval)
        elif name == "set_kval_params":
            self.kval = {k: v for k, v in cmd.items() if k != "command"}
        return [json.dumps(rsp)]


class ScriptedTransport(Transport):
    """
    In-memory transport.

    Written lines are recorded. If a responder is set, its reply lines are
    delivered synchronously from write(); otherwise tests push lines with
    feed().
    """

    def __init__(self, responder: Optional[Callable[[Dict[str, Any]], List[str]]] = None):
        super().__init__()
        self.responder = responder
        self.written: List[str] = []
        self.fail_writes = False
        self._open = False
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self._open = True

    def close(self) -> None:
        self._open = False

    def write(self, line: str) -> None:
        if self.fail_writes:
            raise TransportError("write failed")
        with self._lock:
            self.written.append(line)
        if self.responder is not None:
            for reply in self.responder(json.loads(line)):
                self._deliver_line(reply)

    def feed(self, line: str) -> None:
        self._deliver_line(line)

    def fail(self, exc: Exception) -> None:
        self._deliver_error(exc)

    def commands(self) -> List[str]:
        """Names of all commands written so far."""
        with self._lock:
            return [json.loads(line)["command"] for line in self.written]

    def sent(self, index: int = -1) -> Dict[str, Any]:
        with self._lock:
            return json.loads(self.written[index])


class MockSerial:
    """Mock serial port for testing without hardware."""

    def __init__(self, *args, **kwargs):
        self.written = []
        self.read_buffer = BytesIO()
        self.is_open = True
        self.read_error: Optional[Exception] = None
        self._lock = threading.Lock()

    def write(self, data: bytes) -> int:
        with self._lock:
            self.written.append(data)
        return len(data)

    def read(self, size: int = 1) -> bytes:
        if self.read_error is not None:
            raise self.read_error
        with self._lock:
            data = self.read_buffer.read(size)
        if not data:
            time.sleep(0.005)  # emulate read timeout
        return data

    def inject_response(self, data: bytes):
        """Inject bytes to be read."""
        with self._lock:
            pos = self.read_buffer.tell()
            self.read_buffer.seek(0, 2)  # End
            self.read_buffer.write(data)
            self.read_buffer.seek(pos)

    @property
    def in_waiting(self) -> int:
        with self._lock:
            return self.read_buffer.getbuffer().nbytes - self.read_buffer.tell()

    def close(self):
        self.is_open = False


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def firmware():
    return FakeFirmware()


@pytest.fixture
def transport():
    """Transport without automatic replies."""
    t = ScriptedTransport()
    t.open()
    return t


@pytest.fixture
def router(transport):
    return ReplyRouter(transport)


@pytest.fixture
def device_transport(firmware):
    """Transport answered by the fake firmware."""
    t = ScriptedTransport(firmware.handle)
    t.open()
    return t


@pytest.fixture
def stepper(device_transport):
    s = Autostep('/dev/test', transport=device_transport, busy_wait_interval=0.001)
    s.connect()
    yield s
    s.disconnect()
