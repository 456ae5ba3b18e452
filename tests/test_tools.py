"""
Tests for ToolRegistry - the only way the agent affects the world.
"""

import threading
from typing import Any

from socpilot.tools import FunctionTool, Tool, ToolRegistry


class SlowTool(Tool):
    """A tool that runs until aborted."""

    name = "slow"
    description = "Waits until aborted"

    def __init__(self) -> None:
        self.stopped = threading.Event()
        self.abort_calls = 0

    def execute(self, arguments: dict[str, Any]) -> str:
        self.stopped.wait(timeout=5)
        return "stopped"

    def abort(self) -> None:
        self.abort_calls += 1
        self.stopped.set()


class BrokenTool(Tool):
    name = "broken"
    description = "Always raises"

    def execute(self, arguments: dict[str, Any]) -> str:
        raise RuntimeError("disk on fire")

    def abort(self) -> None:
        raise RuntimeError("cannot abort")


class TestToolDefinition:
    """Test tool definition and schema generation."""

    def test_tool_to_openai_schema(self) -> None:
        """Tool should generate valid OpenAI schema."""
        tool = FunctionTool(
            name="test_tool",
            description="A test tool",
            schema={
                "type": "object",
                "properties": {"arg1": {"type": "string"}},
                "required": ["arg1"],
            },
            handler=lambda arg1: f"Got: {arg1}",
        )

        schema = tool.to_openai_schema()

        assert schema["type"] == "function"
        assert schema["function"]["name"] == "test_tool"
        assert schema["function"]["description"] == "A test tool"
        assert schema["function"]["parameters"]["required"] == ["arg1"]

    def test_default_parameters(self) -> None:
        assert SlowTool().parameters == {"type": "object", "properties": {}}

    def test_function_tool_execution(self) -> None:
        tool = FunctionTool(
            name="echo",
            description="Echo input",
            schema={"type": "object", "properties": {}},
            handler=lambda text: text.upper(),
        )

        assert tool.execute({"text": "abc"}) == "ABC"

    def test_function_tool_failure_becomes_text(self) -> None:
        """Handler exceptions come back as an error string."""
        def failing_handler(**kwargs: object) -> str:
            raise ValueError("Something went wrong")

        tool = FunctionTool(
            name="failing",
            description="Always fails",
            schema={"type": "object", "properties": {}},
            handler=failing_handler,
        )

        assert tool.execute({}) == "Error: Something went wrong"

    def test_function_tool_rejects_non_object_arguments(self) -> None:
        tool = FunctionTool(name="t", description="d", schema={}, handler=lambda: "x")

        assert tool.execute([1, 2]).startswith("Error:")  # type: ignore[arg-type]


class TestToolRegistry:
    """Test ToolRegistry functionality."""

    def test_register_and_get(self) -> None:
        registry = ToolRegistry()
        tool = registry.register_function(
            name="my_tool",
            description="My tool",
            parameters={"type": "object", "properties": {}},
            handler=lambda: "ok",
        )

        assert registry.get("my_tool") is tool
        assert registry.get("missing") is None
        assert "my_tool" in registry
        assert len(registry) == 1

    def test_register_overwrites(self) -> None:
        registry = ToolRegistry()
        registry.register_function("t", "first", {}, lambda: "1")
        registry.register_function("t", "second", {}, lambda: "2")

        assert len(registry) == 1
        assert registry.execute("t", {}) == "2"

    def test_definitions_in_registration_order(self) -> None:
        registry = ToolRegistry()
        for name in ("read_file", "write_file", "bash"):
            registry.register_function(name, f"{name} tool", {"type": "object"}, lambda: "")

        names = [d["function"]["name"] for d in registry.definitions()]

        assert names == ["read_file", "write_file", "bash"]
        assert registry.tool_names == names

    def test_execute_unknown_tool(self) -> None:
        registry = ToolRegistry()

        assert registry.execute("nope", {}) == "Error: Tool 'nope' not found"

    def test_execute_passes_arguments(self) -> None:
        registry = ToolRegistry()
        registry.register_function("add", "Add", {}, lambda a, b: str(a + b))

        assert registry.execute("add", {"a": 2, "b": 3}) == "5"

    def test_execute_catches_raising_tool(self) -> None:
        registry = ToolRegistry()
        registry.register(BrokenTool())

        assert registry.execute("broken", {}) == "Error: disk on fire"

    def test_abort_all_reaches_every_tool(self) -> None:
        """A failing abort() does not stop the others from being aborted."""
        registry = ToolRegistry()
        registry.register(BrokenTool())
        slow = SlowTool()
        registry.register(slow)

        registry.abort_all()
        registry.abort_all()

        assert slow.abort_calls == 2
        assert slow.stopped.is_set()

    def test_abort_from_another_thread(self) -> None:
        registry = ToolRegistry()
        slow = SlowTool()
        registry.register(slow)
        results: list[str] = []

        worker = threading.Thread(target=lambda: results.append(registry.execute("slow", {})))
        worker.start()
        registry.abort_all()
        worker.join(timeout=5)

        assert results == ["stopped"]
