"""
Tests for the core message types.
"""

import json

import pytest

from socpilot.types import Message, Role, ToolCall


class TestToolCall:
    """Tests for ToolCall."""

    def test_to_dict_uses_openai_shape(self) -> None:
        call = ToolCall(id="call_1", name="read_file", arguments='{"path": "/a"}')

        assert call.to_dict() == {
            "id": "call_1",
            "type": "function",
            "function": {"name": "read_file", "arguments": '{"path": "/a"}'},
        }

    def test_from_dict_serializes_object_arguments(self) -> None:
        """Some providers send arguments as an object instead of a string."""
        call = ToolCall.from_dict({
            "id": "call_2",
            "function": {"name": "ls", "arguments": {"path": "/tmp"}},
        })

        assert call.name == "ls"
        assert json.loads(call.arguments) == {"path": "/tmp"}
        assert call.type == "function"

    def test_parse_arguments_empty_is_empty_object(self) -> None:
        assert ToolCall(id="c", name="t", arguments="").parse_arguments() == {}
        assert ToolCall(id="c", name="t", arguments="  ").parse_arguments() == {}

    def test_parse_arguments_invalid_raises(self) -> None:
        with pytest.raises(json.JSONDecodeError):
            ToolCall(id="c", name="t", arguments="{not json").parse_arguments()


class TestMessage:
    """Tests for Message."""

    def test_constructors_set_roles(self) -> None:
        assert Message.system("s").role == Role.SYSTEM
        assert Message.user("u").role == Role.USER
        assert Message.assistant("a").role == Role.ASSISTANT
        tool = Message.tool("call_1", "result")
        assert tool.role == Role.TOOL
        assert tool.tool_call_id == "call_1"

    def test_has_tool_calls_only_for_assistant(self) -> None:
        call = ToolCall(id="c1", name="t")
        assert Message.assistant(None, tool_calls=[call]).has_tool_calls
        assert not Message.assistant("hi", tool_calls=[]).has_tool_calls
        assert not Message.user("hi").has_tool_calls

    def test_text_treats_none_as_empty(self) -> None:
        assert Message.assistant(None).text == ""

    def test_to_dict_keeps_null_content_with_tool_calls(self) -> None:
        message = Message.assistant(None, tool_calls=[ToolCall(id="c1", name="t", arguments="{}")])

        data = message.to_dict()

        assert data["role"] == "assistant"
        assert data["content"] is None
        assert data["tool_calls"][0]["id"] == "c1"
        assert "tool_call_id" not in data

    def test_unknown_fields_survive_round_trip(self) -> None:
        """Provider extensions such as reasoning traces are kept verbatim."""
        data = {
            "role": "assistant",
            "content": "answer",
            "reasoning_content": "thinking...",
            "refusal": None,
        }

        message = Message.from_dict(data)

        assert message.reasoning == "thinking..."
        assert message.extra == {"reasoning_content": "thinking...", "refusal": None}
        assert message.to_dict() == data

    def test_tool_message_round_trip(self) -> None:
        data = {"role": "tool", "content": "ok", "tool_call_id": "call_9"}

        assert Message.from_dict(data).to_dict() == data

    def test_tool_call_provider_fields_survive_round_trip(self) -> None:
        """Per-call provider fields such as thought signatures are written back."""
        data = {
            "role": "assistant",
            "content": None,
            "tool_calls": [{
                "id": "c1",
                "type": "function",
                "function": {"name": "ls", "arguments": "{}", "thought_signature": "sig-fn"},
                "extra_content": {"google": {"thought_signature": "sig-abc"}},
            }],
        }

        message = Message.from_dict(data)

        assert message.tool_calls is not None
        assert message.tool_calls[0].extra == {"extra_content": {"google": {"thought_signature": "sig-abc"}}}
        assert message.tool_calls[0].function_extra == {"thought_signature": "sig-fn"}
        assert message.to_dict() == data
