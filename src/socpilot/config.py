"""
Configuration for the agent system.

All configuration can be loaded from environment variables. This keeps the
agent usable against any OpenAI-compatible backend (vLLM, Ollama, DeepSeek,
OpenAI itself) without hardcoding endpoint details.
"""

import os
from dataclasses import dataclass, field
from enum import Enum

DEFAULT_SYSTEM_PROMPT = """You are an AI assistant for System-on-Chip design automation.

Work through requests in this order:
1. Look for a user skill that matches the request and follow it if found.
2. For clock, reset, power or FSM infrastructure, query the built-in
   documentation, write a .soc_net netlist and generate Verilog from it.
   Never hand-write that Verilog.
3. For tasks with three or more steps, write a todo list first.
4. Execute with the file, shell and generation tools.

After each tool call, briefly explain the result. If a tool fails, explain
the error and try to fix it. Always use absolute paths. Do not stop until
every step is done."""


class FallbackStrategy(str, Enum):
    """How the client picks the next endpoint after a failure."""
    SEQUENTIAL = "sequential"
    RANDOM = "random"
    ROUND_ROBIN = "round_robin"


@dataclass
class LLMEndpoint:
    """A single OpenAI-compatible API endpoint."""
    base_url: str
    api_key: str = ""
    model: str = ""
    name: str = "default"
    timeout: float = 30.0


@dataclass
class LLMConfig:
    """Configuration for the LLM client."""
    endpoints: list[LLMEndpoint] = field(default_factory=list)
    fallback_strategy: FallbackStrategy = FallbackStrategy.SEQUENTIAL
    max_retries: int = 3
    retry_delay: float = 5.0

    @classmethod
    def from_env(cls) -> "LLMConfig":
        """Load configuration from environment variables."""
        endpoints = []
        base_url = os.getenv("LLM_BASE_URL", "")
        if base_url:
            endpoints.append(LLMEndpoint(
                base_url=base_url,
                api_key=os.getenv("LLM_API_KEY", ""),
                model=os.getenv("LLM_MODEL", ""),
                timeout=float(os.getenv("LLM_TIMEOUT", "30")),
            ))
        return cls(
            endpoints=endpoints,
            fallback_strategy=FallbackStrategy(
                os.getenv("LLM_FALLBACK_STRATEGY", "sequential")
            ),
            max_retries=int(os.getenv("LLM_MAX_RETRIES", "3")),
            retry_delay=float(os.getenv("LLM_RETRY_DELAY", "5.0")),
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AgentConfig:
    """
    Configuration for the agent loop and its history compactor.

    Thresholds are fractions of max_context_tokens. Layer 1 (tool output
    pruning) fires at prune_threshold, layer 2 (summarisation) at
    compact_threshold.
    """
    max_context_tokens: int = 128000

    # Layer 1: tool output pruning
    prune_threshold: float = 0.6
    prune_protect_tokens: int = 5000
    prune_minimum_savings: int = 1000

    # Layer 2: summarisation
    compact_threshold: float = 0.8
    compaction_model: str = ""  # Empty = primary model
    keep_recent_messages: int = 10

    max_iterations: int = 100
    max_retries: int = 3
    temperature: float = 0.2

    # Supervision
    enable_stuck_detection: bool = True
    auto_status_check: bool = True
    stuck_threshold_seconds: int = 60
    heartbeat_interval_seconds: float = 5.0

    verbose: bool = True
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    @classmethod
    def from_env(cls) -> "AgentConfig":
        """Load configuration from environment variables."""
        defaults = cls()
        return cls(
            max_context_tokens=int(os.getenv("AGENT_MAX_CONTEXT_TOKENS", str(defaults.max_context_tokens))),
            prune_threshold=float(os.getenv("AGENT_PRUNE_THRESHOLD", str(defaults.prune_threshold))),
            prune_protect_tokens=int(os.getenv("AGENT_PRUNE_PROTECT_TOKENS", str(defaults.prune_protect_tokens))),
            prune_minimum_savings=int(os.getenv("AGENT_PRUNE_MINIMUM_SAVINGS", str(defaults.prune_minimum_savings))),
            compact_threshold=float(os.getenv("AGENT_COMPACT_THRESHOLD", str(defaults.compact_threshold))),
            compaction_model=os.getenv("AGENT_COMPACTION_MODEL", ""),
            keep_recent_messages=int(os.getenv("AGENT_KEEP_RECENT_MESSAGES", str(defaults.keep_recent_messages))),
            max_iterations=int(os.getenv("AGENT_MAX_ITERATIONS", str(defaults.max_iterations))),
            max_retries=int(os.getenv("AGENT_MAX_RETRIES", str(defaults.max_retries))),
            temperature=float(os.getenv("AGENT_TEMPERATURE", str(defaults.temperature))),
            enable_stuck_detection=_env_bool("AGENT_ENABLE_STUCK_DETECTION", defaults.enable_stuck_detection),
            auto_status_check=_env_bool("AGENT_AUTO_STATUS_CHECK", defaults.auto_status_check),
            stuck_threshold_seconds=int(os.getenv("AGENT_STUCK_THRESHOLD_SECONDS", str(defaults.stuck_threshold_seconds))),
            heartbeat_interval_seconds=float(os.getenv("AGENT_HEARTBEAT_INTERVAL", str(defaults.heartbeat_interval_seconds))),
            verbose=_env_bool("AGENT_VERBOSE", defaults.verbose),
            system_prompt=os.getenv("AGENT_SYSTEM_PROMPT", defaults.system_prompt),
        )

    @property
    def prune_trigger_tokens(self) -> int:
        """Token estimate above which layer 1 runs."""
        return int(self.max_context_tokens * self.prune_threshold)

    @property
    def compact_trigger_tokens(self) -> int:
        """Token estimate above which layer 2 runs."""
        return int(self.max_context_tokens * self.compact_threshold)
