"""
Conversation - the ordered message history of one agent.

The conversation owns every user, assistant and tool turn. The system prompt
is held separately and only prepended when a request is built, so it never
appears in the stored history and is never summarised away.

The store is append-mostly. Wholesale replacement is reserved for the
compactor, which is responsible for handing back a list that keeps every
assistant tool-call group intact.
"""

import json
import logging
from typing import Any

from socpilot.types import Message, Role

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 10


def estimate_tokens(text: str) -> int:
    """
    Estimate token count from text.

    This is a rough approximation (chars / 4). It only drives compaction
    thresholds, so being deterministic matters more than being exact.
    """
    return len(text) // CHARS_PER_TOKEN


def estimate_message_tokens(message: Message) -> int:
    """Estimate tokens for a single message, including structure overhead."""
    tokens = estimate_tokens(message.text)
    if message.tool_calls:
        payload = json.dumps([tc.to_dict() for tc in message.tool_calls])
        tokens += estimate_tokens(payload)
    return tokens + MESSAGE_OVERHEAD_TOKENS


def estimate_messages_tokens(messages: list[Message]) -> int:
    """Estimate tokens for a list of messages."""
    return sum(estimate_message_tokens(m) for m in messages)


def find_pairing_violations(messages: list[Message]) -> list[str]:
    """
    Check tool-call pairing across a message list.

    Every assistant turn with tool calls must be followed immediately by one
    tool message per call, in order, with matching ids. Every tool message
    must belong to such a group. Returns a description of each violation;
    an empty list means the history is well formed.
    """
    problems: list[str] = []
    i = 0
    while i < len(messages):
        msg = messages[i]
        if msg.has_tool_calls:
            for offset, call in enumerate(msg.tool_calls or [], start=1):
                j = i + offset
                if j >= len(messages):
                    problems.append(f"message {i}: no response for tool call {call.id}")
                    continue
                reply = messages[j]
                if reply.role != Role.TOOL:
                    problems.append(
                        f"message {j}: expected tool response for {call.id}, got {reply.role.value}"
                    )
                elif reply.tool_call_id != call.id:
                    problems.append(
                        f"message {j}: tool response id {reply.tool_call_id} does not match {call.id}"
                    )
            i += 1 + len(msg.tool_calls)
            continue
        if msg.role == Role.TOOL:
            problems.append(f"message {i}: orphan tool response {msg.tool_call_id}")
        i += 1
    return problems


class Conversation:
    """
    Ordered history of one agent plus its optional system prompt.

    The conversation is owned by the agent thread. Other threads should only
    read it through snapshot(), which returns a copy of the list.
    """

    def __init__(
        self,
        system_prompt: str = "",
        messages: list[Message] | None = None,
    ) -> None:
        self.system_prompt = system_prompt
        self._messages: list[Message] = list(messages or [])

    def append(self, message: Message) -> Message:
        """Append a message. Tool-call pairing is the caller's duty."""
        self._messages.append(message)
        return message

    def append_user(self, content: str) -> Message:
        return self.append(Message.user(content))

    def append_tool_response(self, tool_call_id: str, content: str) -> Message:
        """Append the response to one tool call."""
        return self.append(Message.tool(tool_call_id, content))

    def snapshot(self) -> list[Message]:
        """Return a stable copy of the message list."""
        return list(self._messages)

    def replace(self, messages: list[Message]) -> None:
        """Replace the whole history. Used by the compactor only."""
        self._messages = list(messages)

    def clear(self) -> None:
        self._messages.clear()

    def estimated_tokens(self) -> int:
        """Approximate token count of the stored history."""
        return estimate_messages_tokens(self._messages)

    def build_prompt(self) -> list[dict[str, Any]]:
        """Build the request message list: system prompt, then history."""
        prompt: list[dict[str, Any]] = []
        if self.system_prompt:
            prompt.append(Message.system(self.system_prompt).to_dict())
        prompt.extend(m.to_dict() for m in self._messages)
        return prompt

    def to_list(self) -> list[dict[str, Any]]:
        """Export the history as an OpenAI-compatible message list."""
        return [m.to_dict() for m in self._messages]

    def load_list(self, data: list[dict[str, Any]]) -> None:
        """Import an OpenAI-compatible message list, replacing the history."""
        messages = [Message.from_dict(item) for item in data]
        problems = find_pairing_violations(messages)
        if problems:
            logger.warning(
                f"Imported history has {len(problems)} tool pairing problem(s): {problems[0]}"
            )
        self._messages = messages

    @property
    def last(self) -> Message | None:
        return self._messages[-1] if self._messages else None

    def __len__(self) -> int:
        return len(self._messages)

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]
