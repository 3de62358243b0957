"""Tests for the busy-poll coordinator."""

import json
import time

import pytest

from autostep import (
    BusyPollCoordinator,
    BusyState,
    CommandType,
    ReplyRouter,
    TransportError,
    build_command,
)
from conftest import Background, ScriptedTransport, wait_until

pytestmark = pytest.mark.timeout(10)


class FakeClock:
    """Clock advanced by the coordinator's sleep calls."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = 0

    def sleep(self, seconds):
        self.sleeps += 1
        self.now += seconds

    def __call__(self):
        return self.now


def busy_replies(*states):
    """Responder answering successive is_busy queries with ``states``."""
    remaining = list(states)

    def respond(cmd):
        if cmd["command"] == "is_busy":
            return [json.dumps({"success": True, "is_busy": remaining.pop(0)})]
        return [json.dumps({"success": True})]
    return respond


@pytest.fixture
def clock():
    return FakeClock()


class TestPolling:
    """Test completion detection by is_busy polling."""

    def test_polls_until_not_busy(self, clock):
        transport = ScriptedTransport(busy_replies(True, True, False))
        router = ReplyRouter(transport)
        coordinator = BusyPollCoordinator(router, interval=0.01, sleep=clock.sleep, clock=clock)
        assert coordinator.state is BusyState.IDLE

        assert coordinator.run() is BusyState.DONE
        assert coordinator.polls == 3
        assert transport.commands() == ["is_busy"] * 3
        assert clock.sleeps == 3

    def test_not_busy_at_first_poll(self, clock):
        transport = ScriptedTransport(busy_replies(False))
        coordinator = BusyPollCoordinator(ReplyRouter(transport), sleep=clock.sleep, clock=clock)
        assert coordinator.run() is BusyState.DONE
        assert coordinator.polls == 1

    def test_failed_query_counts_as_done(self, clock):
        transport = ScriptedTransport(lambda cmd: ['{"success": false}'])
        coordinator = BusyPollCoordinator(ReplyRouter(transport), sleep=clock.sleep, clock=clock)
        assert coordinator.run() is BusyState.DONE
        assert coordinator.polls == 1

    def test_transport_error_fails(self, clock):
        transport = ScriptedTransport()
        transport.fail_writes = True
        coordinator = BusyPollCoordinator(ReplyRouter(transport), sleep=clock.sleep, clock=clock)
        with pytest.raises(TransportError):
            coordinator.run()
        assert coordinator.state is BusyState.FAILED

    def test_timeout(self, clock):
        transport = ScriptedTransport(lambda cmd: ['{"success": true, "is_busy": true}'])
        coordinator = BusyPollCoordinator(ReplyRouter(transport), interval=0.01,
                                          sleep=clock.sleep, clock=clock)
        with pytest.raises(TimeoutError):
            coordinator.run(timeout=0.05)
        assert coordinator.state is BusyState.FAILED
        assert 4 <= coordinator.polls <= 6

    def test_single_use(self, clock):
        transport = ScriptedTransport(busy_replies(False))
        coordinator = BusyPollCoordinator(ReplyRouter(transport), sleep=clock.sleep, clock=clock)
        coordinator.run()
        with pytest.raises(RuntimeError):
            coordinator.run()

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            BusyPollCoordinator(ReplyRouter(ScriptedTransport()), interval=0)


class TestStreamingCompletion:
    """While a stream is active, completion is the end of the stream."""

    def test_no_status_query_while_streaming(self):
        transport = ScriptedTransport(lambda cmd: ['{"success": true}'])
        router = ReplyRouter(transport)
        samples = []
        router.send(build_command(CommandType.SINUSOID, amplitude=1.0), samples.append)
        assert router.streaming

        ticks = []

        def sleep(seconds):
            ticks.append(seconds)
            time.sleep(seconds)

        coordinator = BusyPollCoordinator(router, interval=0.001, sleep=sleep)
        call = Background(coordinator.run)
        assert wait_until(lambda: len(ticks) > 5)
        assert call.alive
        assert coordinator.state is BusyState.POLLING

        transport.feed('{"success": true, "position": 0.5}')
        transport.feed('')
        call.join()

        assert call.error is None
        assert call.result is BusyState.DONE
        assert coordinator.polls == 0
        assert "is_busy" not in transport.commands()
        assert samples == [{"success": True, "position": 0.5}, {}]
