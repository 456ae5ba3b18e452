"""
Tool System - the agent's only way to act.

The agent cannot read files, run commands or query documentation by itself.
It emits tool calls, and the registry dispatches them to Tool objects that
return plain text. Failures are returned as text as well, so the model sees
them on its next turn and can correct itself.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Tool(ABC):
    """
    Base class for tools the agent can call.

    Subclasses provide a name, a description shown to the model, a JSON
    Schema for the arguments, and execute(). Tools that run for a long time
    should override abort() and stop cooperatively when it is called; the
    call may come from another thread.
    """

    name: str
    description: str

    @property
    def parameters(self) -> dict[str, Any]:
        """JSON Schema for the tool's arguments."""
        return {"type": "object", "properties": {}}

    @abstractmethod
    def execute(self, arguments: dict[str, Any]) -> str:
        """Run the tool and return its textual result."""

    def abort(self) -> None:
        """Ask a running execute() to stop. Default: nothing to stop."""
        return None

    def to_openai_schema(self) -> dict[str, Any]:
        """Convert to OpenAI tool format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolHandler(Protocol):
    """Protocol for tool handler functions."""
    def __call__(self, **kwargs: Any) -> str: ...


@dataclass(eq=False)
class FunctionTool(Tool):
    """A tool backed by a plain function taking keyword arguments."""
    name: str
    description: str
    schema: dict[str, Any]
    handler: ToolHandler

    @property
    def parameters(self) -> dict[str, Any]:
        return self.schema

    def execute(self, arguments: dict[str, Any]) -> str:
        if not isinstance(arguments, dict):
            return f"Error: Arguments for {self.name} must be a JSON object"
        try:
            return str(self.handler(**arguments))
        except Exception as e:
            logger.error(f"Tool {self.name} failed: {e}")
            return f"Error: {e}"


class ToolRegistry:
    """
    Registry of available tools.

    Registering a second tool under an existing name replaces the first.
    Definitions are exported in registration order.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        if tool.name in self._tools:
            logger.warning(f"Overwriting existing tool: {tool.name}")
        self._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name}")

    def register_function(
        self,
        name: str,
        description: str,
        parameters: dict[str, Any],
        handler: ToolHandler,
    ) -> Tool:
        """Convenience method to register a function as a tool."""
        tool = FunctionTool(
            name=name,
            description=description,
            schema=parameters,
            handler=handler,
        )
        self.register(tool)
        return tool

    def get(self, name: str) -> Tool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def definitions(self) -> list[dict[str, Any]]:
        """Get OpenAI-format schemas for all registered tools."""
        return [tool.to_openai_schema() for tool in self._tools.values()]

    def execute(self, name: str, arguments: dict[str, Any]) -> str:
        """
        Dispatch a call by tool name.

        Never raises for tool-level problems: an unknown name or a crashing
        tool produces an "Error:" string that goes back to the model.
        """
        tool = self._tools.get(name)
        if tool is None:
            logger.warning(f"Model requested unknown tool: {name}")
            return f"Error: Tool '{name}' not found"

        logger.info(f"Executing tool: {name}")
        try:
            return tool.execute(arguments)
        except Exception as e:
            logger.exception(f"Tool {name} raised")
            return f"Error: {e}"

    def abort_all(self) -> None:
        """Ask every registered tool to abort. Safe to call repeatedly."""
        for tool in list(self._tools.values()):
            try:
                tool.abort()
            except Exception:
                logger.exception(f"Tool {tool.name} failed to abort")

    @property
    def tool_names(self) -> list[str]:
        """List of registered tool names."""
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
