"""
Agent events - everything a caller can observe about a run.

The agent reports progress through a single callback that receives these
event objects in the order they happen. Callers dispatch on the event class.
Events are immutable; the final three (RunComplete, RunAborted, RunError)
are terminal and exactly one of them ends every streaming run.
"""

import threading
from dataclasses import dataclass, field
from typing import Callable, TypeVar


@dataclass(frozen=True)
class AgentEvent:
    """Base class for all agent events."""


@dataclass(frozen=True)
class ContentChunk(AgentEvent):
    text: str


@dataclass(frozen=True)
class ReasoningChunk(AgentEvent):
    text: str


@dataclass(frozen=True)
class ToolCalled(AgentEvent):
    name: str
    arguments: str


@dataclass(frozen=True)
class ToolResult(AgentEvent):
    name: str
    result: str


@dataclass(frozen=True)
class VerboseOutput(AgentEvent):
    text: str


@dataclass(frozen=True)
class Compacting(AgentEvent):
    layer: int
    before_tokens: int
    after_tokens: int


@dataclass(frozen=True)
class Heartbeat(AgentEvent):
    iteration: int
    elapsed_seconds: int


@dataclass(frozen=True)
class TokenUsage(AgentEvent):
    input: int
    output: int


@dataclass(frozen=True)
class StuckDetected(AgentEvent):
    iteration: int
    silent_seconds: int


@dataclass(frozen=True)
class Retrying(AgentEvent):
    attempt: int
    max_attempts: int
    error: str


@dataclass(frozen=True)
class ProcessingQueuedRequest(AgentEvent):
    text: str
    remaining: int


@dataclass(frozen=True)
class RunComplete(AgentEvent):
    content: str


@dataclass(frozen=True)
class RunAborted(AgentEvent):
    partial_content: str


@dataclass(frozen=True)
class RunError(AgentEvent):
    message: str


TERMINAL_EVENTS = (RunComplete, RunAborted, RunError)

EventCallback = Callable[[AgentEvent], None]

E = TypeVar("E", bound=AgentEvent)


@dataclass
class EventRecorder:
    """
    Thread-safe collector of agent events.

    Pass the recorder itself as the agent's event callback. Heartbeat events
    arrive from the supervisor thread, everything else from the agent thread.
    """
    events: list[AgentEvent] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __call__(self, event: AgentEvent) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: type[E]) -> list[E]:
        """All recorded events of one class, in order."""
        with self._lock:
            return [e for e in self.events if isinstance(e, event_type)]

    def last(self) -> AgentEvent | None:
        with self._lock:
            return self.events[-1] if self.events else None

    def clear(self) -> None:
        with self._lock:
            self.events.clear()
