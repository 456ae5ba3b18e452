"""
Tests for StreamAssembler.
"""

import json
from typing import Any

from socpilot.stream import (
    StreamAssembler,
    StreamChunk,
    StreamDone,
    StreamError,
    StreamReasoning,
    ToolCallDelta,
)


def data_line(delta: dict[str, Any], finish_reason: str | None = None) -> str:
    return "data: " + json.dumps({"choices": [{"delta": delta, "finish_reason": finish_reason}]})


def feed_all(assembler: StreamAssembler, lines: list[str]) -> list:
    events = []
    for line in lines:
        events.extend(assembler.feed(line))
    return events


class TestStreamAssembler:
    """Tests for SSE line handling and message assembly."""

    def test_content_chunks_then_done(self) -> None:
        assembler = StreamAssembler()

        events = feed_all(assembler, [
            data_line({"role": "assistant", "content": "Hel"}),
            data_line({"content": "lo"}),
            "data: [DONE]",
        ])

        assert [e.text for e in events if isinstance(e, StreamChunk)] == ["Hel", "lo"]
        assert isinstance(events[-1], StreamDone)
        assert events[-1].message.content == "Hello"
        assert events[-1].message.tool_calls is None

    def test_ignores_blank_comment_and_bad_lines(self) -> None:
        assembler = StreamAssembler()

        events = feed_all(assembler, [
            "",
            ": keep-alive",
            "event: message",
            "data: {broken",
            data_line({"content": "x"}),
        ])

        assert events == [StreamChunk("x")]
        assert not assembler.done

    def test_tool_call_fragments_are_merged(self) -> None:
        """Fragments sharing an index build one call; indexes set the order."""
        assembler = StreamAssembler()

        events = feed_all(assembler, [
            data_line({"tool_calls": [
                {"index": 1, "id": "call_b", "type": "function",
                 "function": {"name": "write_file", "arguments": ""}},
            ]}),
            data_line({"tool_calls": [
                {"index": 0, "id": "call_a", "function": {"name": "read_file", "arguments": '{"pa'}},
            ]}),
            data_line({"tool_calls": [{"index": 0, "function": {"arguments": 'th": "/a"}'}}]}),
            data_line({"tool_calls": [{"index": 1, "function": {"arguments": "{}"}}]}),
            data_line({}, finish_reason="tool_calls"),
        ])

        deltas = [e for e in events if isinstance(e, ToolCallDelta)]
        assert len(deltas) == 4
        assert deltas[0].index == 1 and deltas[0].name == "write_file"

        done = events[-1]
        assert isinstance(done, StreamDone)
        calls = done.message.tool_calls
        assert calls is not None
        assert [c.id for c in calls] == ["call_a", "call_b"]
        assert calls[0].name == "read_file"
        assert json.loads(calls[0].arguments) == {"path": "/a"}
        assert done.message.content is None

    def test_reasoning_is_kept_separately(self) -> None:
        assembler = StreamAssembler()

        events = feed_all(assembler, [
            data_line({"reasoning_content": "think "}),
            data_line({"reasoning_content": "hard"}),
            data_line({"content": "Answer"}, finish_reason="stop"),
        ])

        assert [e.text for e in events if isinstance(e, StreamReasoning)] == ["think ", "hard"]
        done = events[-1]
        assert isinstance(done, StreamDone)
        assert done.message.reasoning == "think hard"
        assert done.message.content == "Answer"

    def test_input_after_done_is_ignored(self) -> None:
        assembler = StreamAssembler()
        feed_all(assembler, [data_line({"content": "a"}, finish_reason="stop")])

        assert assembler.feed("data: [DONE]") == []
        assert assembler.finish() == []

    def test_error_payload(self) -> None:
        assembler = StreamAssembler()

        events = assembler.feed('data: {"error": {"message": "model overloaded"}}')

        assert events == [StreamError("model overloaded")]
        assert assembler.done

    def test_finish_without_done_delivers_accumulated(self) -> None:
        assembler = StreamAssembler()
        assembler.feed(data_line({"content": "partial"}))

        events = assembler.finish()

        assert isinstance(events[0], StreamDone)
        assert events[0].message.content == "partial"

    def test_finish_with_nothing_is_error(self) -> None:
        events = StreamAssembler().finish()

        assert len(events) == 1
        assert isinstance(events[0], StreamError)

    def test_unknown_fragment_keys_are_kept(self) -> None:
        assembler = StreamAssembler()

        events = feed_all(assembler, [
            data_line({"tool_calls": [{
                "index": 0,
                "id": "call_a",
                "function": {"name": "ls", "arguments": "{}"},
                "extra_content": {"google": {"thought_signature": "sig"}},
            }]}),
            data_line({}, finish_reason="tool_calls"),
        ])

        done = events[-1]
        assert isinstance(done, StreamDone)
        assert done.message.tool_calls is not None
        call = done.message.to_dict()["tool_calls"][0]
        assert call["extra_content"] == {"google": {"thought_signature": "sig"}}
        assert "index" not in call
