"""
Agent - the turn-based loop between the model and the tools.

Each iteration:

1. Checks for an abort request and injects queued user input
2. Compacts the history if it is over a threshold
3. Sends system prompt + history + tool schemas to the model
4. If the model asked for tools: runs them in order, appends one tool
   response per call, and goes back to 1
5. Otherwise: appends the answer and stops, unless more user input is queued

run() does this on the caller's thread with blocking completions.
run_stream() does it on a background thread with streaming completions,
a heartbeat, stuck detection and retries of transient transport errors.
Both report what happens through a single event callback.

Whatever happens, every assistant turn that asked for tools is followed by
one tool response per call before anything else is appended. Aborted or
failed calls are answered with a filler message.
"""

import json
import logging
import threading
import time
from typing import Any, Callable

from socpilot.compaction import Compactor
from socpilot.config import AgentConfig
from socpilot.events import (
    AgentEvent,
    ContentChunk,
    EventCallback,
    ProcessingQueuedRequest,
    ReasoningChunk,
    Retrying,
    RunAborted,
    RunComplete,
    RunError,
    ToolCalled,
    ToolResult,
    VerboseOutput,
)
from socpilot.llm import ChatResponse, LLMError
from socpilot.session import Conversation, estimate_tokens
from socpilot.stream import StreamChunk, StreamDone, StreamError, StreamReasoning, ToolCallDelta
from socpilot.supervisor import Supervisor
from socpilot.tools import ToolRegistry
from socpilot.types import Message, Role, ToolCall

logger = logging.getLogger(__name__)

ABORTED_RESULT = "Aborted by user"
AUTO_CONTINUE_MESSAGE = "[System: Context compacted. Continue your current task.]"
NOT_CONFIGURED_ERROR = "LLM service or tool registry not configured"
TRANSIENT_ERROR_MARKERS = ("timeout", "network", "connection")
VERBOSE_RESULT_CHARS = 200


def is_transient_error(message: str) -> bool:
    """Transport errors worth retrying mention a timeout, network or connection."""
    lowered = message.lower()
    return any(marker in lowered for marker in TRANSIENT_ERROR_MARKERS)


class Agent:
    """
    Conversational agent driving a chat-completions model with tools.

    The agent owns its conversation and supervisor. The LLM client and tool
    registry are supplied by the caller and may be shared.
    """

    def __init__(
        self,
        llm: Any = None,
        tools: ToolRegistry | None = None,
        config: AgentConfig | None = None,
        on_event: EventCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the agent.

        Args:
            llm: Client offering complete(), stream() and cancel()
            tools: Registry of tools the model may call
            config: Agent configuration (defaults to AgentConfig())
            on_event: Callback receiving every AgentEvent
            clock: Monotonic time source for supervision
        """
        self.llm = llm
        self.tools = tools
        self._config = config or AgentConfig()
        self._on_event = on_event

        self.conversation = Conversation(system_prompt=self._config.system_prompt)
        self.supervisor = Supervisor(self._config, emit=self._emit, clock=clock)
        self.compactor = Compactor(self._config, llm=llm, emit=self._emit)

        self._running = threading.Event()
        self._thread: threading.Thread | None = None
        self._partial_content = ""

    # -- configuration and state ---------------------------------------------

    @property
    def config(self) -> AgentConfig:
        return self._config

    def set_config(self, config: AgentConfig) -> None:
        self._config = config
        self.conversation.system_prompt = config.system_prompt
        self.supervisor.config = config
        self.compactor.config = config

    def set_llm(self, llm: Any) -> None:
        self.llm = llm
        self.compactor.llm = llm

    def set_tools(self, tools: ToolRegistry) -> None:
        self.tools = tools

    def is_running(self) -> bool:
        return self._running.is_set()

    @property
    def iteration(self) -> int:
        return self.supervisor.iteration

    @property
    def current_retry_count(self) -> int:
        return self.supervisor.retry_count

    def get_messages(self) -> list[dict[str, Any]]:
        """Export the history as an OpenAI-compatible message list."""
        return self.conversation.to_list()

    def set_messages(self, messages: list[dict[str, Any]]) -> None:
        """Replace the history with an OpenAI-compatible message list."""
        self.conversation.load_list(messages)

    def clear_history(self) -> None:
        self.conversation.clear()

    def compact(self) -> int:
        """Run the compactor now. Returns estimated tokens saved."""
        return self.compactor.compact(self.conversation)

    # -- queued input and abort ----------------------------------------------

    def queue_request(self, text: str) -> None:
        """Queue user input to be injected at the next checkpoint."""
        self.supervisor.queue_request(text)

    def has_pending_requests(self) -> bool:
        return self.supervisor.has_pending_requests()

    def pending_request_count(self) -> int:
        return self.supervisor.pending_request_count()

    def clear_pending_requests(self) -> None:
        self.supervisor.clear_pending_requests()

    def abort(self) -> None:
        """
        Ask the current run to stop.

        Returns immediately. The in-flight stream is cancelled, every tool
        is asked to abort, and the loop stops at its next checkpoint.
        """
        logger.info("Abort requested")
        self.supervisor.request_abort()
        if self.llm is not None:
            self.llm.cancel()
        if self.tools is not None:
            self.tools.abort_all()

    # -- blocking run ----------------------------------------------------------

    def run(self, query: str) -> str:
        """
        Run the agent on one user query and return the final answer.

        On a safety limit, an error or an abort a bracketed diagnostic string
        is returned instead, and the matching terminal event is emitted.
        """
        if self.llm is None or self.tools is None:
            self._emit(RunError(NOT_CONFIGURED_ERROR))
            return f"[Agent error: {NOT_CONFIGURED_ERROR}]"
        if self._running.is_set():
            raise RuntimeError("Agent is already running")

        self._running.set()
        self.conversation.append_user(query)
        self.supervisor.begin_run()
        self.supervisor.clear_abort()
        self._partial_content = ""
        try:
            terminal = self._blocking_loop()
        except Exception as e:
            logger.exception("Agent run failed")
            self._close_open_tool_group(f"Error: {e}")
            terminal = RunError(str(e))
        finally:
            self.supervisor.reset_retries()
            self._running.clear()

        self._emit(terminal)
        if isinstance(terminal, RunComplete):
            return terminal.content
        if isinstance(terminal, RunAborted):
            return "[Agent aborted by user]"
        message = terminal.message if isinstance(terminal, RunError) else str(terminal)
        return message if message.startswith("[") else f"Error: {message}"

    def _blocking_loop(self) -> AgentEvent:
        while True:
            if self.supervisor.abort_requested:
                return self._aborted()
            self._inject_queued_requests()

            iteration = self.supervisor.next_iteration()
            if iteration > self._config.max_iterations:
                return self._safety_limit()

            self.compactor.compact(self.conversation)
            if self.supervisor.abort_requested:
                return self._aborted()
            self._verbose_iteration(iteration)

            prompt = self.conversation.build_prompt()
            self.supervisor.add_input_tokens(self.conversation.estimated_tokens())
            data = self.llm.complete(prompt, self.tools.definitions(), self._config.temperature)
            if self.supervisor.abort_requested:
                return self._aborted()

            try:
                message = ChatResponse.from_api_response(data).message
            except LLMError as e:
                logger.error(f"LLM error at iteration {iteration}: {e}")
                return RunError(str(e))
            self.supervisor.mark_progress()

            if message.has_tool_calls:
                self.conversation.append(message)
                self._verbose("[Assistant requesting tool calls]")
                if not self._handle_tool_calls(message.tool_calls or []):
                    return self._aborted()
                continue

            self.conversation.append(message)
            self._verbose(f"[Assistant]: {message.text}")
            if self.supervisor.has_pending_requests():
                continue
            return RunComplete(message.text)

    # -- streaming run ---------------------------------------------------------

    def run_stream(self, query: str) -> None:
        """
        Start a streaming run on a background thread and return at once.

        Progress arrives through the event callback and the run always ends
        with exactly one RunComplete, RunAborted or RunError. Use wait() to
        block until it is over.
        """
        if self.llm is None or self.tools is None:
            self._emit(RunError(NOT_CONFIGURED_ERROR))
            return
        if self._running.is_set():
            raise RuntimeError("Agent is already running")

        self._running.set()
        self.conversation.append_user(query)
        self.supervisor.begin_run()
        self.supervisor.clear_abort()
        self._partial_content = ""

        self.supervisor.start()
        self._thread = threading.Thread(
            target=self._stream_worker,
            name="socpilot-agent",
            daemon=True,
        )
        self._thread.start()

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for a streaming run to end. Returns False on timeout."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _stream_worker(self) -> None:
        try:
            terminal = self._stream_loop()
        except Exception as e:
            logger.exception("Streaming run failed")
            self._close_open_tool_group(f"Error: {e}")
            terminal = RunError(str(e))
        finally:
            self.supervisor.stop()
            self.supervisor.reset_retries()
            self._running.clear()

        if isinstance(terminal, RunError):
            logger.error(f"Run ended with error: {terminal.message}")
        self._emit(terminal)

    def _stream_loop(self) -> AgentEvent:
        while True:
            if self.supervisor.abort_requested:
                return self._aborted()
            self._inject_queued_requests()

            iteration = self.supervisor.next_iteration()
            if iteration > self._config.max_iterations:
                return self._safety_limit()

            saved = self.compactor.compact(self.conversation)
            if self.supervisor.abort_requested:
                return self._aborted()
            if saved > 0:
                self.conversation.append_user(AUTO_CONTINUE_MESSAGE)
            self._verbose_iteration(iteration)

            tool_schemas = self.tools.definitions()
            while True:
                self.supervisor.add_input_tokens(self.conversation.estimated_tokens())
                outcome = self._stream_once(self.conversation.build_prompt(), tool_schemas)
                if isinstance(outcome, Message):
                    break
                if outcome is None or self.supervisor.abort_requested:
                    return self._aborted()
                if is_transient_error(outcome) and self.supervisor.retry_count < self._config.max_retries:
                    attempt = self.supervisor.record_retry()
                    logger.info(f"Retrying iteration {iteration} ({attempt}/{self._config.max_retries}): {outcome}")
                    self._emit(Retrying(attempt=attempt, max_attempts=self._config.max_retries, error=outcome))
                    self._verbose(f"[Retry {attempt}/{self._config.max_retries}: {outcome}]")
                    continue
                return RunError(outcome)

            self.supervisor.reset_retries()
            message = outcome

            if message.has_tool_calls:
                self.conversation.append(message)
                self._verbose("[Assistant requesting tool calls]")
                if not self._handle_tool_calls(message.tool_calls or []):
                    return self._aborted()
                continue

            self.conversation.append(message)
            self._verbose(f"[Assistant]: {message.text}")
            if self.supervisor.has_pending_requests():
                continue
            return RunComplete(message.text)

    def _stream_once(
        self,
        prompt: list[dict[str, Any]],
        tool_schemas: list[dict[str, Any]],
    ) -> Message | str | None:
        """
        Run one streaming request.

        Returns the assembled assistant message, an error string, or None
        when the stream was cancelled by an abort.
        """
        self._partial_content = ""
        events = self.llm.stream(prompt, tool_schemas, self._config.temperature)
        try:
            for event in events:
                if self.supervisor.abort_requested:
                    return None
                if isinstance(event, StreamChunk):
                    self.supervisor.mark_progress()
                    self.supervisor.add_output_tokens(estimate_tokens(event.text))
                    self._partial_content += event.text
                    self._emit(ContentChunk(event.text))
                elif isinstance(event, StreamReasoning):
                    self.supervisor.mark_progress()
                    self.supervisor.add_output_tokens(estimate_tokens(event.text))
                    self._emit(ReasoningChunk(event.text))
                elif isinstance(event, ToolCallDelta):
                    self.supervisor.mark_progress()
                elif isinstance(event, StreamDone):
                    return event.message
                elif isinstance(event, StreamError):
                    logger.warning(f"Stream error: {event.message}")
                    return event.message
        finally:
            close = getattr(events, "close", None)
            if close is not None:
                close()

        if self.supervisor.abort_requested:
            return None
        return "Stream ended without a completion"

    # -- shared steps ------------------------------------------------------------

    def _handle_tool_calls(self, tool_calls: list[ToolCall]) -> bool:
        """
        Execute tool calls in order, appending one response per call.

        Returns False if an abort was requested; every call not yet run is
        then answered with the abort filler.
        """
        self.supervisor.mark_progress()
        for index, call in enumerate(tool_calls):
            if self.supervisor.abort_requested:
                for pending in tool_calls[index:]:
                    self.conversation.append_tool_response(pending.id, ABORTED_RESULT)
                return False

            self._verbose(f"  -> Calling tool: {call.name}")
            self._verbose(f"     Arguments: {call.arguments}")
            self._emit(ToolCalled(name=call.name, arguments=call.arguments))

            try:
                arguments = call.parse_arguments()
            except json.JSONDecodeError as e:
                result = f"Error: Invalid JSON arguments - {e}"
            else:
                result = self.tools.execute(call.name, arguments)

            self.supervisor.mark_progress()
            if len(result) > VERBOSE_RESULT_CHARS:
                self._verbose(f"     Result: {result[:VERBOSE_RESULT_CHARS]}... (truncated)")
            else:
                self._verbose(f"     Result: {result}")
            self._emit(ToolResult(name=call.name, result=result))
            self.conversation.append_tool_response(call.id, result)

        return not self.supervisor.abort_requested

    def _inject_queued_requests(self) -> None:
        while (item := self.supervisor.pop_request()) is not None:
            text, remaining = item
            logger.info(f"Injecting queued request ({remaining} remaining)")
            self._emit(ProcessingQueuedRequest(text=text, remaining=remaining))
            self.conversation.append_user(text)

    def _close_open_tool_group(self, filler: str) -> None:
        """Answer any tool call of the newest assistant turn left without a response."""
        messages = self.conversation.snapshot()
        for index in range(len(messages) - 1, -1, -1):
            message = messages[index]
            if message.role == Role.TOOL:
                continue
            if not message.has_tool_calls:
                return
            answered = len(messages) - index - 1
            for pending in (message.tool_calls or [])[answered:]:
                self.conversation.append_tool_response(pending.id, filler)
            return

    def _aborted(self) -> RunAborted:
        self._close_open_tool_group(ABORTED_RESULT)
        self.supervisor.clear_abort()
        self._verbose("[Aborted by user]")
        return RunAborted(self._partial_content)

    def _safety_limit(self) -> RunError:
        message = f"[Agent safety limit reached ({self._config.max_iterations} iterations)]"
        logger.warning(message)
        return RunError(message)

    def _verbose_iteration(self, iteration: int) -> None:
        if not self._config.verbose:
            return
        tokens = self.conversation.estimated_tokens()
        limit = self._config.max_context_tokens
        percent = 100.0 * tokens / limit if limit else 0.0
        self._verbose(
            f"[Iteration {iteration} | Tokens: {tokens}/{limit} ({percent:.1f}%) | "
            f"Messages: {len(self.conversation)}]"
        )

    def _verbose(self, text: str) -> None:
        if self._config.verbose:
            self._emit(VerboseOutput(text))

    def _emit(self, event: AgentEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)
