"""
SocPilot - the agent core of a System-on-Chip design assistant.

The agent talks to any OpenAI-compatible chat-completions backend and acts
only through registered tools:

1. Conversation: ordered history with strict tool-call pairing
2. Tool registry: named tools with JSON Schema arguments and text results
3. LLM client: blocking and cancellable streaming completions
4. Compaction: tool output pruning, then summarisation of old turns
5. Supervision: heartbeats, stuck detection, queued input, abort and retry

Everything a run does is reported through one event callback.
"""

__version__ = "0.1.0"

from socpilot.agent import Agent
from socpilot.compaction import Compactor, find_safe_boundary, prune_tool_outputs
from socpilot.config import AgentConfig, FallbackStrategy, LLMConfig, LLMEndpoint
from socpilot.events import (
    AgentEvent,
    Compacting,
    ContentChunk,
    EventRecorder,
    Heartbeat,
    ProcessingQueuedRequest,
    ReasoningChunk,
    Retrying,
    RunAborted,
    RunComplete,
    RunError,
    StuckDetected,
    TokenUsage,
    ToolCalled,
    ToolResult,
    VerboseOutput,
)
from socpilot.llm import ChatResponse, LLMClient, LLMError
from socpilot.session import Conversation
from socpilot.supervisor import Supervisor
from socpilot.tools import FunctionTool, Tool, ToolRegistry
from socpilot.types import Message, Role, ToolCall

__all__ = [
    "Agent",
    "AgentConfig",
    "AgentEvent",
    "ChatResponse",
    "Compacting",
    "Compactor",
    "ContentChunk",
    "Conversation",
    "EventRecorder",
    "FallbackStrategy",
    "FunctionTool",
    "Heartbeat",
    "LLMClient",
    "LLMConfig",
    "LLMEndpoint",
    "LLMError",
    "Message",
    "ProcessingQueuedRequest",
    "ReasoningChunk",
    "Retrying",
    "Role",
    "RunAborted",
    "RunComplete",
    "RunError",
    "StuckDetected",
    "Supervisor",
    "TokenUsage",
    "Tool",
    "ToolCall",
    "ToolCalled",
    "ToolRegistry",
    "ToolResult",
    "VerboseOutput",
    "find_safe_boundary",
    "prune_tool_outputs",
]
