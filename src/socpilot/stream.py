"""
Stream assembly for chat-completions server-sent events.

A streaming completion arrives as a sequence of ``data:`` lines, each holding
a JSON delta, terminated by ``data: [DONE]``. Content deltas are concatenated.
Tool calls arrive in fragments keyed by an ``index``: the id and name show up
once, the argument text is spread over many fragments. The assembler rebuilds
the complete assistant message and reports each piece as it arrives.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from socpilot.types import Message, ToolCall

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"

# Fragment keys consumed by the assembler; others are kept on the tool call.
_FRAGMENT_KEYS = frozenset({"index", "id", "type", "function"})


@dataclass(frozen=True)
class StreamEvent:
    """Base class for events produced while reading a stream."""


@dataclass(frozen=True)
class StreamChunk(StreamEvent):
    text: str


@dataclass(frozen=True)
class StreamReasoning(StreamEvent):
    text: str


@dataclass(frozen=True)
class ToolCallDelta(StreamEvent):
    index: int
    id: str | None = None
    name: str | None = None
    arguments_delta: str | None = None


@dataclass(frozen=True)
class StreamDone(StreamEvent):
    message: Message


@dataclass(frozen=True)
class StreamError(StreamEvent):
    message: str


@dataclass
class _PartialToolCall:
    id: str = ""
    name: str = ""
    arguments: str = ""
    type: str = "function"
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class StreamAssembler:
    """
    Rebuilds one assistant message from stream lines.

    Feed raw lines with feed(); call finish() when the transport closes.
    Once a completion event has been produced the assembler ignores any
    further input.
    """
    content: str = ""
    reasoning: str = ""
    tool_calls: dict[int, _PartialToolCall] = field(default_factory=dict)
    done: bool = False

    def feed(self, line: str) -> list[StreamEvent]:
        """Consume one SSE line and return the events it produced."""
        if self.done:
            return []

        line = line.strip()
        if not line or line.startswith(":"):
            return []
        if line.startswith("data:"):
            line = line[len("data:"):].strip()
        elif line.startswith(("event:", "id:", "retry:")):
            return []

        if line == DONE_SENTINEL:
            return [self._complete()]

        try:
            chunk = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse stream chunk: {e}")
            return []

        if not isinstance(chunk, dict):
            return []

        if "error" in chunk:
            self.done = True
            error = chunk["error"]
            if isinstance(error, dict):
                error = error.get("message") or json.dumps(error)
            return [StreamError(str(error))]

        choices = chunk.get("choices") or []
        if not choices:
            return []
        choice = choices[0]
        delta = choice.get("delta") or {}

        events: list[StreamEvent] = []

        text = delta.get("content")
        if isinstance(text, str) and text:
            self.content += text
            events.append(StreamChunk(text))

        reasoning = delta.get("reasoning_content")
        if isinstance(reasoning, str) and reasoning:
            self.reasoning += reasoning
            events.append(StreamReasoning(reasoning))

        for fragment in delta.get("tool_calls") or []:
            events.append(self._merge_tool_fragment(fragment))

        if choice.get("finish_reason") is not None:
            events.append(self._complete())

        return events

    def finish(self) -> list[StreamEvent]:
        """
        Handle a clean end of the transport.

        Providers sometimes close the stream without sending [DONE]. If
        anything was accumulated it is still delivered as a completion.
        """
        if self.done:
            return []
        if self.content or self.tool_calls or self.reasoning:
            logger.debug("Stream closed without [DONE]; completing with accumulated data")
            return [self._complete()]
        self.done = True
        return [StreamError("Stream closed before any data was received")]

    def build_message(self) -> Message:
        """The assistant message accumulated so far."""
        tool_calls = None
        if self.tool_calls:
            tool_calls = [
                ToolCall(id=p.id, name=p.name, arguments=p.arguments, type=p.type, extra=dict(p.extra))
                for _, p in sorted(self.tool_calls.items())
            ]
        extra: dict[str, Any] = {}
        if self.reasoning:
            extra["reasoning_content"] = self.reasoning
        content: str | None = self.content
        if tool_calls and not content:
            content = None
        return Message.assistant(
            content=content,
            tool_calls=tool_calls,
            extra=extra,
        )

    def _merge_tool_fragment(self, fragment: dict[str, Any]) -> ToolCallDelta:
        index = fragment.get("index", 0)
        partial = self.tool_calls.setdefault(index, _PartialToolCall())

        call_id = fragment.get("id")
        if call_id and not partial.id:
            partial.id = call_id
        for key, value in fragment.items():
            if key not in _FRAGMENT_KEYS:
                partial.extra[key] = value
        if fragment.get("type"):
            partial.type = fragment["type"]

        function = fragment.get("function") or {}
        name = function.get("name")
        if name and not partial.name:
            partial.name = name
        arguments = function.get("arguments")
        if arguments:
            partial.arguments += arguments

        return ToolCallDelta(
            index=index,
            id=call_id,
            name=name,
            arguments_delta=arguments,
        )

    def _complete(self) -> StreamDone:
        self.done = True
        message = self.build_message()
        logger.debug(
            f"Stream complete: {len(self.content)} chars, "
            f"{len(self.tool_calls)} tool call(s)"
        )
        return StreamDone(message)
