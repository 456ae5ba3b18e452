"""
Run supervision - heartbeats, stuck detection, queued input and abort.

The supervisor is the agent's only piece of shared state. The agent thread
updates progress and counters; a heartbeat thread reads them every few
seconds; any thread may queue user input or request an abort. Scalars are
guarded by one small lock and the input queue by another.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable

from socpilot.config import AgentConfig
from socpilot.events import EventCallback, Heartbeat, StuckDetected, TokenUsage

logger = logging.getLogger(__name__)

STATUS_CHECK_REQUEST = (
    "[System: No progress detected. Please briefly report: "
    "1) What are you doing? 2) Any issues? 3) Estimated time remaining?]"
)


class Supervisor:
    """
    Supervision state for one agent.

    The heartbeat thread only runs between start() and stop(). Everything
    else works whether or not it is running, which keeps the blocking run()
    path free of background threads.
    """

    def __init__(
        self,
        config: AgentConfig,
        emit: EventCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._emit = emit
        self._clock = clock

        self._queue: deque[str] = deque()
        self._queue_lock = threading.Lock()

        self._state_lock = threading.Lock()
        self._abort = threading.Event()
        self._last_progress: float | None = None
        self._started_at: float | None = None
        self._iteration = 0
        self._retry_count = 0
        self._input_tokens = 0
        self._output_tokens = 0

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # -- injection queue -----------------------------------------------------

    def queue_request(self, text: str) -> None:
        """Queue user input for the next checkpoint. Safe from any thread."""
        with self._queue_lock:
            self._queue.append(text)
        logger.debug(f"Queued request ({len(text)} chars)")

    def pop_request(self) -> tuple[str, int] | None:
        """Take the oldest queued request and the number still waiting."""
        with self._queue_lock:
            if not self._queue:
                return None
            text = self._queue.popleft()
            return text, len(self._queue)

    def has_pending_requests(self) -> bool:
        with self._queue_lock:
            return bool(self._queue)

    def pending_request_count(self) -> int:
        with self._queue_lock:
            return len(self._queue)

    def clear_pending_requests(self) -> None:
        with self._queue_lock:
            self._queue.clear()

    # -- abort -------------------------------------------------------------------

    def request_abort(self) -> None:
        self._abort.set()

    @property
    def abort_requested(self) -> bool:
        return self._abort.is_set()

    def clear_abort(self) -> None:
        self._abort.clear()

    # -- counters ----------------------------------------------------------------

    def begin_run(self) -> None:
        """Reset per-run state."""
        now = self._clock()
        with self._state_lock:
            self._started_at = now
            self._last_progress = now
            self._iteration = 0
            self._retry_count = 0
            self._input_tokens = 0
            self._output_tokens = 0

    def mark_progress(self) -> None:
        with self._state_lock:
            self._last_progress = self._clock()

    @property
    def iteration(self) -> int:
        with self._state_lock:
            return self._iteration

    def next_iteration(self) -> int:
        """Advance the iteration counter; the retry counter starts over."""
        with self._state_lock:
            self._iteration += 1
            self._retry_count = 0
            return self._iteration

    @property
    def retry_count(self) -> int:
        with self._state_lock:
            return self._retry_count

    def record_retry(self) -> int:
        with self._state_lock:
            self._retry_count += 1
            self._last_progress = self._clock()
            return self._retry_count

    def reset_retries(self) -> None:
        with self._state_lock:
            self._retry_count = 0

    def add_input_tokens(self, tokens: int) -> None:
        with self._state_lock:
            self._input_tokens += tokens

    def add_output_tokens(self, tokens: int) -> None:
        with self._state_lock:
            self._output_tokens += tokens

    @property
    def token_usage(self) -> tuple[int, int]:
        with self._state_lock:
            return self._input_tokens, self._output_tokens

    @property
    def elapsed_seconds(self) -> int:
        with self._state_lock:
            started = self._started_at
        return int(self._clock() - started) if started is not None else 0

    # -- heartbeat ---------------------------------------------------------------

    def start(self) -> None:
        """Start the heartbeat thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._heartbeat_loop,
            name="socpilot-heartbeat",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the heartbeat thread and wait for it to exit."""
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.config.heartbeat_interval_seconds + 1.0)
        self._thread = None

    def _heartbeat_loop(self) -> None:
        while not self._stop.wait(self.config.heartbeat_interval_seconds):
            self.tick()

    def tick(self) -> None:
        """One heartbeat: report progress, then check for a stall."""
        iteration = self.iteration
        self._send(Heartbeat(iteration=iteration, elapsed_seconds=self.elapsed_seconds))
        input_tokens, output_tokens = self.token_usage
        self._send(TokenUsage(input=input_tokens, output=output_tokens))
        self.check_stuck()

    def check_stuck(self) -> bool:
        """
        Fire StuckDetected when nothing has happened for the threshold.

        The progress timestamp is reset on firing, so another full threshold
        must pass before the same stall fires again.
        """
        if not self.config.enable_stuck_detection:
            return False

        now = self._clock()
        with self._state_lock:
            if self._last_progress is None:
                return False
            silent = now - self._last_progress
            if silent < self.config.stuck_threshold_seconds:
                return False
            self._last_progress = now
            iteration = self._iteration

        logger.warning(f"No progress for {int(silent)}s at iteration {iteration}")
        self._send(StuckDetected(iteration=iteration, silent_seconds=int(silent)))
        if self.config.auto_status_check:
            self.queue_request(STATUS_CHECK_REQUEST)
        return True

    def _send(self, event) -> None:
        if self._emit is not None:
            self._emit(event)
