"""Unit tests for the Tool abstraction and ToolRegistry."""

import pytest

from agents.file_analyst.core.tools import FunctionTool, Tool, ToolFailure, ToolRegistry, tool
from agents.file_analyst.errors import InvalidArguments, ToolExecutionFailed, UnknownTool


class LookupTool(Tool):
    name = "lookup"
    description = "Look up a key"
    inputs = {
        "key": {"type": "string", "description": "Key to look up"},
        "limit": {"type": "integer", "description": "Max results", "nullable": True},
    }

    def forward(self, key, limit=None):
        return f"{key}:{limit}"


class TestToolSchema:
    """Tests for schema generation."""

    def test_openai_function_format(self):
        """Nullable inputs are optional, others required."""
        schema = LookupTool().to_schema()

        assert schema["type"] == "function"
        assert schema["function"]["name"] == "lookup"
        params = schema["function"]["parameters"]
        assert params["properties"]["key"] == {"description": "Key to look up", "type": "string"}
        assert params["required"] == ["key"]

    def test_decorator_builds_function_tool(self):
        """@tool reads name, docstring and annotations."""

        @tool
        def add(a: int, b: int = 0) -> str:
            """Add two numbers."""
            return str(a + b)

        assert isinstance(add, FunctionTool)
        assert add.name == "add"
        assert add.description == "Add two numbers."
        assert add.inputs["a"]["type"] == "integer"
        assert add.inputs["b"]["nullable"] is True
        assert add(a=2, b=3) == "5"

    def test_decorator_with_overrides(self):
        """Name and description can be overridden."""

        @tool(name="shout", description="Upper-case text")
        def upper(text: str) -> str:
            return text.upper()

        assert upper.name == "shout"
        assert upper.to_schema()["function"]["description"] == "Upper-case text"


class TestValidateArguments:
    """Tests for argument validation."""

    def test_valid_arguments_pass_through(self):
        """Unset optional inputs are not filled in."""
        assert LookupTool().validate_arguments({"key": "a"}) == {"key": "a"}

    def test_missing_required(self):
        """Missing inputs are reported by name."""
        with pytest.raises(InvalidArguments) as exc_info:
            LookupTool().validate_arguments({})

        assert exc_info.value.problems[0].startswith("key:")
        assert exc_info.value.code == "INVALID_ARGUMENTS"

    def test_unexpected_argument(self):
        """Extra inputs are rejected."""
        with pytest.raises(InvalidArguments) as exc_info:
            LookupTool().validate_arguments({"key": "a", "colour": "red"})

        assert any(p.startswith("colour:") for p in exc_info.value.problems)

    def test_wrong_type(self):
        """Type mismatches are rejected."""
        with pytest.raises(InvalidArguments):
            LookupTool().validate_arguments({"key": "a", "limit": "many"})


class TestToolRegistry:
    """Tests for registration and invocation."""

    def test_lookup_by_name(self):
        """Registered tools are found by name."""
        registry = ToolRegistry([LookupTool()])

        assert "lookup" in registry
        assert len(registry) == 1
        assert registry.names == ["lookup"]
        assert registry.get("lookup").name == "lookup"

    def test_duplicate_names_rejected(self):
        """Each name registers once."""
        with pytest.raises(ValueError):
            ToolRegistry([LookupTool(), LookupTool()])

    def test_unknown_tool(self):
        """Unknown names raise UnknownTool listing what exists."""
        registry = ToolRegistry([LookupTool()])

        with pytest.raises(UnknownTool) as exc_info:
            registry.invoke("missing", {})

        assert exc_info.value.available == ["lookup"]
        assert "Available tools: lookup" in exc_info.value.message_safe

    def test_invoke_validates_then_runs(self):
        """Arguments are validated before forward() runs."""
        registry = ToolRegistry([LookupTool()])

        assert registry.invoke("lookup", {"key": "k", "limit": 2}) == "k:2"
        with pytest.raises(InvalidArguments):
            registry.invoke("lookup", {"limit": 2})

    def test_raising_tool_wrapped(self):
        """Exceptions from forward() become ToolExecutionFailed."""

        @tool
        def broken(x: str) -> str:
            """Fails."""
            raise ZeroDivisionError("boom")

        registry = ToolRegistry([broken])

        with pytest.raises(ToolExecutionFailed) as exc_info:
            registry.invoke("broken", {"x": "1"})

        assert isinstance(exc_info.value.cause, ZeroDivisionError)

    def test_none_result_is_empty_string(self):
        """A tool returning None yields an empty result."""

        @tool
        def silent(x: str) -> str:
            """Returns nothing."""
            return None

        assert ToolRegistry([silent]).invoke("silent", {"x": "1"}) == ""

    @pytest.mark.asyncio
    async def test_reported_failure_keeps_its_type(self):
        """ToolFailure survives the registry on both paths; plain text stays plain."""

        @tool
        def picky(x: str) -> str:
            """Rejects anything but 'ok'."""
            return x if x == "ok" else ToolFailure(f"ERROR: bad value {x}")

        registry = ToolRegistry([picky])

        assert isinstance(registry.invoke("picky", {"x": "no"}), ToolFailure)
        assert isinstance(await registry.invoke_async("picky", {"x": "no"}), ToolFailure)
        assert not isinstance(registry.invoke("picky", {"x": "ok"}), ToolFailure)

    @pytest.mark.asyncio
    async def test_invoke_async(self):
        """invoke_async returns the same result from a worker thread."""
        registry = ToolRegistry([LookupTool()])

        assert await registry.invoke_async("lookup", {"key": "k"}) == "k:None"

    def test_schemas_in_registration_order(self):
        """schemas() lists every registered tool."""

        @tool
        def other(x: str) -> str:
            """Other."""
            return x

        registry = ToolRegistry([LookupTool(), other])
        assert [s["function"]["name"] for s in registry.schemas()] == ["lookup", "other"]
