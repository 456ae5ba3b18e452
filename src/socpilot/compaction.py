"""
History compaction - keeps the conversation inside the context budget.

Two layers run in order, each behind its own threshold:

1. Tool output pruning. Old, large tool results are replaced by a short
   placeholder. The newest tool output (up to a token budget) is protected,
   and pruning only happens when it saves enough to be worth it. The tool
   call ids stay in place, so the history keeps its structure.

2. Summarisation. Everything except the most recent messages is rendered as
   a transcript and summarised by the model. The cut point is moved so it
   never separates an assistant turn from the tool responses it asked for.
   If the model cannot be reached, a mechanical summary is used instead.

The pruning and boundary functions are pure functions on message lists;
only the Compactor touches a Conversation or the model.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any

from socpilot.config import AgentConfig
from socpilot.events import Compacting, EventCallback, VerboseOutput
from socpilot.llm import ChatResponse
from socpilot.session import Conversation, estimate_messages_tokens, estimate_tokens
from socpilot.types import Message, Role

logger = logging.getLogger(__name__)

PRUNED_PLACEHOLDER = "[output pruned]"
SUMMARY_MARKER = "[Conversation Summary]"

# Tool results smaller than this are not worth pruning.
PRUNE_MIN_TOOL_TOKENS = 100

SUMMARY_TOOL_RESULT_CHARS = 500
MECHANICAL_PREVIEW_CHARS = 100
SUMMARY_TEMPERATURE = 0.1

COMPACTION_SYSTEM_PROMPT = """You are summarising the earlier part of a conversation between a user and an
AI assistant working on System-on-Chip design tasks. The summary replaces
those messages, so the assistant must be able to continue from it alone.

Write the summary with exactly these sections:

## Task Overview
What the user asked for and any constraints they gave.

## Current State
What has been done so far and what is in progress.

## Key Files and Paths
Every file, directory and command that matters, with absolute paths.

## Decisions Made
Choices made and why, including approaches that were rejected.

## Important Context
Errors seen, tool quirks, configuration details, anything easy to forget.

## Next Steps
What remains to be done, in order.

Be concise and factual. Do not invent details that are not in the transcript."""


@dataclass
class PruneResult:
    """Outcome of a tool output pruning pass."""
    messages: list[Message]
    tokens_saved: int = 0
    pruned_count: int = 0

    @property
    def pruned(self) -> bool:
        return self.pruned_count > 0


def find_protection_boundary(messages: list[Message], protect_tokens: int) -> int:
    """
    Index from which tool outputs are protected from pruning.

    Walks backwards summing tool result tokens. The boundary is the earliest
    tool message at which the running total reaches protect_tokens. If the
    total never gets there, every message is protected and 0 is returned.
    """
    accumulated = 0
    for index in range(len(messages) - 1, -1, -1):
        message = messages[index]
        if message.role != Role.TOOL:
            continue
        accumulated += estimate_tokens(message.text)
        if accumulated >= protect_tokens:
            return index
    return 0


def prune_tool_outputs(
    messages: list[Message],
    protect_tokens: int,
    minimum_savings: int,
) -> PruneResult:
    """
    Replace old, large tool results with a placeholder.

    Returns the original list untouched when the total saving would be below
    minimum_savings. The input list and its messages are never mutated.
    """
    boundary = find_protection_boundary(messages, protect_tokens)
    placeholder_tokens = estimate_tokens(PRUNED_PLACEHOLDER)

    candidates: list[int] = []
    savings = 0
    for index in range(boundary):
        message = messages[index]
        if message.role != Role.TOOL or message.text == PRUNED_PLACEHOLDER:
            continue
        tokens = estimate_tokens(message.text)
        if tokens < PRUNE_MIN_TOOL_TOKENS:
            continue
        candidates.append(index)
        savings += tokens - placeholder_tokens

    if not candidates or savings < minimum_savings:
        logger.debug(
            f"Tool output pruning skipped: {len(candidates)} candidates, "
            f"{savings} tokens < {minimum_savings} minimum"
        )
        return PruneResult(messages=messages)

    pruned = list(messages)
    for index in candidates:
        pruned[index] = replace(pruned[index], content=PRUNED_PLACEHOLDER)

    return PruneResult(messages=pruned, tokens_saved=savings, pruned_count=len(candidates))


def find_safe_boundary(messages: list[Message], proposed: int) -> int:
    """
    Move a proposed cut index so it never splits a tool call group.

    If the cut lands on a tool response, or on an assistant turn that asked
    for tools, it is pushed forward past the whole group so the group ends
    up entirely before the cut. The result is clamped to [0, len(messages)].
    """
    count = len(messages)
    boundary = max(0, min(proposed, count))
    if boundary >= count:
        return count

    if messages[boundary].has_tool_calls:
        boundary += 1
    while boundary < count and messages[boundary].role == Role.TOOL:
        boundary += 1
    return boundary


def format_messages_for_summary(messages: list[Message], start: int, end: int) -> str:
    """Render messages[start:end] as a plain transcript for the summariser."""
    lines: list[str] = []
    for message in messages[start:end]:
        if message.role == Role.TOOL:
            content = message.text
            if len(content) > SUMMARY_TOOL_RESULT_CHARS:
                content = content[:SUMMARY_TOOL_RESULT_CHARS] + "... (truncated)"
            lines.append(f"[Tool result: {content}]")
            continue

        if message.text:
            lines.append(f"[{message.role.value}]: {message.text}")
        if message.has_tool_calls:
            names = " ".join(tc.name for tc in message.tool_calls or [])
            lines.append(f"[Assistant called tools: {names}]")
    return "\n".join(lines)


def mechanical_summary(messages: list[Message]) -> str:
    """Summary used when the model is unavailable: a preview of each message."""
    parts = ["[Previous conversation summary: "]
    for message in messages:
        content = message.text
        if not content and message.has_tool_calls:
            content = "called tools " + ", ".join(tc.name for tc in message.tool_calls or [])
        if not content:
            continue
        if len(content) > MECHANICAL_PREVIEW_CHARS:
            content = content[:MECHANICAL_PREVIEW_CHARS] + "..."
        parts.append(f"{message.role.value}: {content}; ")
    parts.append("]")
    return "".join(parts)


class Compactor:
    """
    Applies both compaction layers to a Conversation.

    The model client is optional. Without one, layer 2 always falls back to
    the mechanical summary.
    """

    def __init__(
        self,
        config: AgentConfig,
        llm: Any = None,
        emit: EventCallback | None = None,
    ) -> None:
        self.config = config
        self.llm = llm
        self._emit = emit

    def compact(self, conversation: Conversation) -> int:
        """
        Run whichever layers are over their threshold.

        Returns the estimated number of tokens saved (0 if nothing changed).
        """
        before = conversation.estimated_tokens()

        if before > self.config.prune_trigger_tokens:
            self._verbose(
                f"[Context at {before} tokens > {self.config.prune_trigger_tokens} prune threshold]"
            )
            self.prune(conversation)

        current = conversation.estimated_tokens()
        if current > self.config.compact_trigger_tokens:
            self._verbose(
                f"[Context at {current} tokens > {self.config.compact_trigger_tokens} compact threshold]"
            )
            self.summarize(conversation)

        return max(0, before - conversation.estimated_tokens())

    def prune(self, conversation: Conversation) -> int:
        """Layer 1. Returns tokens saved."""
        before = conversation.estimated_tokens()
        result = prune_tool_outputs(
            conversation.snapshot(),
            protect_tokens=self.config.prune_protect_tokens,
            minimum_savings=self.config.prune_minimum_savings,
        )
        if not result.pruned:
            self._verbose("[Tool output pruning skipped: savings below minimum]")
            return 0

        conversation.replace(result.messages)
        after = conversation.estimated_tokens()
        logger.info(
            f"Pruned {result.pruned_count} tool outputs: {before} -> {after} tokens"
        )
        self._verbose(
            f"[Pruned {result.pruned_count} tool outputs: {before} -> {after} tokens]"
        )
        self._send(Compacting(layer=1, before_tokens=before, after_tokens=after))
        return before - after

    def summarize(self, conversation: Conversation) -> int:
        """Layer 2. Returns tokens saved."""
        messages = conversation.snapshot()
        keep = self.config.keep_recent_messages
        if len(messages) <= keep:
            self._verbose(f"[Cannot compact: only {len(messages)} messages]")
            return 0

        boundary = find_safe_boundary(messages, len(messages) - keep)
        before = estimate_messages_tokens(messages)

        transcript = format_messages_for_summary(messages, 0, boundary)
        summary = self._summarize_with_llm(transcript)
        if summary is None:
            summary = mechanical_summary(messages[:boundary])

        compacted = [Message.user(f"{SUMMARY_MARKER}\n{summary}")] + messages[boundary:]
        after = estimate_messages_tokens(compacted)
        if after >= before:
            logger.warning(
                f"Summary would not shrink history ({before} -> {after} tokens); keeping it"
            )
            self._verbose("[Compaction skipped: summary not smaller than history]")
            return 0

        conversation.replace(compacted)
        logger.info(
            f"Compacted {boundary} messages into a summary: {before} -> {after} tokens"
        )
        self._verbose(
            f"[Compacted {len(messages)} -> {len(compacted)} messages: {before} -> {after} tokens]"
        )
        self._send(Compacting(layer=2, before_tokens=before, after_tokens=after))
        return before - after

    def _summarize_with_llm(self, transcript: str) -> str | None:
        if self.llm is None:
            self._verbose("[No LLM available for summary, using mechanical summary]")
            return None

        request = [
            Message.system(COMPACTION_SYSTEM_PROMPT).to_dict(),
            Message.user(transcript).to_dict(),
        ]
        kwargs: dict[str, Any] = {}
        if self.config.compaction_model:
            kwargs["model"] = self.config.compaction_model

        try:
            data = self.llm.complete(request, None, SUMMARY_TEMPERATURE, **kwargs)
            content = ChatResponse.from_api_response(data).content.strip()
        except Exception as e:
            logger.warning(f"LLM summary failed, using mechanical summary: {e}")
            self._verbose(f"[LLM summary failed ({e}), using mechanical summary]")
            return None

        if not content:
            self._verbose("[LLM summary was empty, using mechanical summary]")
            return None
        return content

    def _verbose(self, text: str) -> None:
        if self.config.verbose:
            self._send(VerboseOutput(text))

    def _send(self, event: Any) -> None:
        if self._emit is not None:
            self._emit(event)
