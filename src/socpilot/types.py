"""
Core types for the agent system.

These types represent the conversation as it flows between the agent loop,
the model and the tools. Messages keep the OpenAI chat-completions shape so
that provider extensions (reasoning traces, refusal fields, ...) survive a
round trip through the store untouched.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Message roles in the conversation."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# Keys owned by ToolCall itself, at the top level and inside "function".
_TOOL_CALL_KEYS = frozenset({"id", "type", "function"})
_FUNCTION_KEYS = frozenset({"name", "arguments"})


@dataclass
class ToolCall:
    """
    A request from the model to execute a tool.

    Arguments are kept as the raw JSON text the model produced. Parsing is
    deferred until dispatch so malformed arguments can be reported back to
    the model instead of being lost. Provider keys the agent does not use
    (signatures, indexes, ...) are kept in ``extra`` and ``function_extra``
    and written back unchanged.
    """
    id: str
    name: str
    arguments: str = ""
    type: str = "function"
    extra: dict[str, Any] = field(default_factory=dict)
    function_extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to OpenAI API format."""
        function: dict[str, Any] = {
            "name": self.name,
            "arguments": self.arguments,
        }
        function.update(self.function_extra)
        result: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "function": function,
        }
        result.update(self.extra)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        """Create from OpenAI API format."""
        function = data.get("function") or {}
        arguments = function.get("arguments", "")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return cls(
            id=data.get("id") or "",
            name=function.get("name") or "",
            arguments=arguments,
            type=data.get("type") or "function",
            extra={k: v for k, v in data.items() if k not in _TOOL_CALL_KEYS},
            function_extra={k: v for k, v in function.items() if k not in _FUNCTION_KEYS},
        )

    def parse_arguments(self) -> Any:
        """Decode the raw argument text. Empty arguments decode to {}."""
        if not self.arguments.strip():
            return {}
        return json.loads(self.arguments)


# Keys owned by Message itself; anything else lands in Message.extra.
_KNOWN_KEYS = frozenset({"role", "content", "tool_calls", "tool_call_id", "name"})


@dataclass
class Message:
    """
    A single message in the conversation history.

    Unknown keys from the provider are preserved in ``extra`` and written back
    verbatim by ``to_dict``.
    """
    role: Role
    content: str | None = ""
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(
        cls,
        content: str | None = "",
        tool_calls: list[ToolCall] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> "Message":
        return cls(
            role=Role.ASSISTANT,
            content=content,
            tool_calls=tool_calls,
            extra=dict(extra or {}),
        )

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> "Message":
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id)

    @property
    def has_tool_calls(self) -> bool:
        """True for an assistant turn that requests at least one tool."""
        return self.role == Role.ASSISTANT and bool(self.tool_calls)

    @property
    def reasoning(self) -> Any:
        """Provider reasoning trace, if any."""
        return self.extra.get("reasoning_content")

    @property
    def text(self) -> str:
        """Content as a string; null content reads as empty."""
        return self.content or ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to OpenAI API format."""
        result: dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
        }
        if self.name is not None:
            result["name"] = self.name
        if self.tool_call_id is not None:
            result["tool_call_id"] = self.tool_call_id
        if self.tool_calls is not None:
            result["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        result.update(self.extra)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        """Create from OpenAI API format."""
        raw_calls = data.get("tool_calls")
        tool_calls = None
        if raw_calls is not None:
            tool_calls = [ToolCall.from_dict(tc) for tc in raw_calls]
        return cls(
            role=Role(data["role"]),
            content=data.get("content"),
            tool_calls=tool_calls,
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
            extra={k: v for k, v in data.items() if k not in _KNOWN_KEYS},
        )
