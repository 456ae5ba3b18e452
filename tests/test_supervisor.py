"""
Tests for the Supervisor: queued input, abort flag, counters and stuck detection.

A fake clock drives time so stuck detection is tested without sleeping.
"""

import threading
import time

from socpilot.config import AgentConfig
from socpilot.events import EventRecorder, Heartbeat, StuckDetected, TokenUsage
from socpilot.supervisor import STATUS_CHECK_REQUEST, Supervisor


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_supervisor(**overrides) -> tuple[Supervisor, FakeClock, EventRecorder]:
    config = AgentConfig(stuck_threshold_seconds=60, **overrides)
    clock = FakeClock()
    events = EventRecorder()
    return Supervisor(config, emit=events, clock=clock), clock, events


class TestInjectionQueue:
    """Tests for queued user input."""

    def test_fifo_order(self) -> None:
        supervisor, _, _ = make_supervisor()
        for text in ("first", "second", "third"):
            supervisor.queue_request(text)

        assert supervisor.pending_request_count() == 3
        assert supervisor.pop_request() == ("first", 2)
        assert supervisor.pop_request() == ("second", 1)
        assert supervisor.pop_request() == ("third", 0)
        assert supervisor.pop_request() is None
        assert not supervisor.has_pending_requests()

    def test_clear(self) -> None:
        supervisor, _, _ = make_supervisor()
        supervisor.queue_request("a")
        supervisor.queue_request("b")

        supervisor.clear_pending_requests()

        assert supervisor.pending_request_count() == 0

    def test_concurrent_producers(self) -> None:
        """Items queued from several threads are neither lost nor duplicated."""
        supervisor, _, _ = make_supervisor()

        def produce(prefix: str) -> None:
            for i in range(100):
                supervisor.queue_request(f"{prefix}-{i}")

        threads = [threading.Thread(target=produce, args=(p,)) for p in "abcd"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        drained = []
        while (item := supervisor.pop_request()) is not None:
            drained.append(item[0])

        assert len(drained) == 400
        assert len(set(drained)) == 400
        a_items = [d for d in drained if d.startswith("a-")]
        assert a_items == [f"a-{i}" for i in range(100)]


class TestAbortAndCounters:
    """Tests for the abort flag and per-run counters."""

    def test_abort_flag(self) -> None:
        supervisor, _, _ = make_supervisor()
        assert not supervisor.abort_requested

        supervisor.request_abort()
        supervisor.request_abort()
        assert supervisor.abort_requested

        supervisor.clear_abort()
        assert not supervisor.abort_requested

    def test_next_iteration_resets_retries(self) -> None:
        supervisor, _, _ = make_supervisor()
        supervisor.begin_run()
        assert supervisor.next_iteration() == 1
        assert supervisor.record_retry() == 1
        assert supervisor.record_retry() == 2

        assert supervisor.next_iteration() == 2
        assert supervisor.retry_count == 0

    def test_begin_run_resets_everything(self) -> None:
        supervisor, clock, _ = make_supervisor()
        supervisor.begin_run()
        supervisor.next_iteration()
        supervisor.add_input_tokens(100)
        supervisor.add_output_tokens(7)
        clock.advance(12)

        assert supervisor.token_usage == (100, 7)
        assert supervisor.elapsed_seconds == 12

        supervisor.begin_run()

        assert supervisor.iteration == 0
        assert supervisor.token_usage == (0, 0)
        assert supervisor.elapsed_seconds == 0


class TestStuckDetection:
    """Tests for stuck detection and the heartbeat tick."""

    def test_not_stuck_before_threshold(self) -> None:
        supervisor, clock, events = make_supervisor()
        supervisor.begin_run()
        clock.advance(59)

        assert supervisor.check_stuck() is False
        assert events.of_type(StuckDetected) == []

    def test_fires_once_then_waits_for_a_new_threshold(self) -> None:
        supervisor, clock, events = make_supervisor()
        supervisor.begin_run()
        supervisor.next_iteration()
        clock.advance(61)

        assert supervisor.check_stuck() is True
        clock.advance(5)
        assert supervisor.check_stuck() is False

        stuck = events.of_type(StuckDetected)
        assert len(stuck) == 1
        assert stuck[0].iteration == 1
        assert stuck[0].silent_seconds == 61

        clock.advance(60)
        assert supervisor.check_stuck() is True

    def test_progress_resets_the_timer(self) -> None:
        supervisor, clock, _ = make_supervisor()
        supervisor.begin_run()
        clock.advance(50)
        supervisor.mark_progress()
        clock.advance(50)

        assert supervisor.check_stuck() is False

    def test_stuck_queues_status_check(self) -> None:
        supervisor, clock, _ = make_supervisor()
        supervisor.begin_run()
        clock.advance(61)

        supervisor.check_stuck()

        assert supervisor.pop_request() == (STATUS_CHECK_REQUEST, 0)

    def test_status_check_can_be_disabled(self) -> None:
        supervisor, clock, events = make_supervisor(auto_status_check=False)
        supervisor.begin_run()
        clock.advance(61)

        assert supervisor.check_stuck() is True
        assert not supervisor.has_pending_requests()

    def test_detection_can_be_disabled(self) -> None:
        supervisor, clock, events = make_supervisor(enable_stuck_detection=False)
        supervisor.begin_run()
        clock.advance(600)

        assert supervisor.check_stuck() is False
        assert events.events == []

    def test_not_stuck_before_run(self) -> None:
        supervisor, clock, _ = make_supervisor()
        clock.advance(600)

        assert supervisor.check_stuck() is False

    def test_tick_reports_heartbeat_and_usage(self) -> None:
        supervisor, clock, events = make_supervisor()
        supervisor.begin_run()
        supervisor.next_iteration()
        supervisor.add_input_tokens(40)
        supervisor.add_output_tokens(3)
        clock.advance(10)

        supervisor.tick()

        assert events.events == [
            Heartbeat(iteration=1, elapsed_seconds=10),
            TokenUsage(input=40, output=3),
        ]


class TestHeartbeatThread:
    """Tests for the background heartbeat."""

    def test_start_and_stop(self) -> None:
        config = AgentConfig(heartbeat_interval_seconds=0.01)
        events = EventRecorder()
        supervisor = Supervisor(config, emit=events)
        supervisor.begin_run()

        supervisor.start()
        deadline = time.monotonic() + 2.0
        while not events.of_type(Heartbeat) and time.monotonic() < deadline:
            time.sleep(0.01)
        supervisor.stop()
        count = len(events.of_type(Heartbeat))
        time.sleep(0.05)

        assert count >= 1
        assert len(events.of_type(Heartbeat)) == count
