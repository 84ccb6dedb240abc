"""Unit tests for the capability registry and loader."""
from typing import Dict, List, Optional

import pytest

from switchboard.core.loader import load_capabilities
from switchboard.core.registry import (
    capability,
    execute_tool,
    generate_function_schema,
    get_all_tool_schemas,
    get_tool,
    get_tool_registry,
    parse_docstring,
    python_type_to_json_schema,
)


@pytest.fixture
def cleanup_registry():
    names = []
    yield names
    for name in names:
        get_tool_registry().pop(name, None)


class TestSchemaGeneration:
    """Tests for JSON Schema generation from signatures."""

    def test_type_mapping(self):
        """Test basic and generic annotations."""
        assert python_type_to_json_schema(str) == {"type": "string"}
        assert python_type_to_json_schema(Optional[int]) == {"type": "integer"}
        assert python_type_to_json_schema(List[str]) == {"type": "array", "items": {"type": "string"}}
        assert python_type_to_json_schema(Dict[str, int]) == {"type": "object"}

    def test_parse_docstring(self):
        """Test description and argument docs are split apart."""
        info = parse_docstring("""Look up metrics.

        Args:
            period: Month label
                such as "11 月"
            limit: Max rows
        """)
        assert info["description"] == "Look up metrics."
        assert info["args"]["period"] == 'Month label such as "11 月"'
        assert info["args"]["limit"] == "Max rows"

    def test_function_schema(self):
        """Test required params and descriptions."""
        def lookup(period: str, limit: int = 5, **kwargs):
            """Look up metrics.

            Args:
                period: Month label
            """

        schema = generate_function_schema(lookup)["function"]
        assert schema["name"] == "lookup"
        assert schema["parameters"]["required"] == ["period"]
        assert schema["parameters"]["properties"]["period"]["description"] == "Month label"
        assert "kwargs" not in schema["parameters"]["properties"]


class TestCapabilityDecorator:
    """Tests for registration and execution."""

    def test_registration(self, cleanup_registry):
        """Test the decorator records metadata and keeps the function callable."""
        cleanup_registry.append("test_sum")

        @capability(name="test_sum", description="Add numbers", mutating=True)
        def add(a: int, b: int = 1) -> int:
            return a + b

        entry = get_tool("test_sum")
        assert entry.description == "Add numbers"
        assert entry.mutating is True
        assert entry.is_async is False
        assert add(2) == 3
        assert entry.schema in get_all_tool_schemas()

    @pytest.mark.asyncio
    async def test_execute_drops_unknown_kwargs(self, cleanup_registry):
        """Test extra context keys are filtered out for strict signatures."""
        cleanup_registry.extend(["test_strict", "test_loose"])

        @capability(name="test_strict")
        async def strict(query: str = ""):
            return query

        @capability(name="test_loose")
        def loose(**kwargs):
            return sorted(kwargs)

        assert await execute_tool("test_strict", {"query": "q", "chat_id": "oc_1"}) == "q"
        assert await execute_tool("test_loose", {"query": "q", "chat_id": "oc_1"}) == ["chat_id", "query"]

    @pytest.mark.asyncio
    async def test_execute_unknown(self):
        """Test unknown names raise KeyError."""
        with pytest.raises(KeyError):
            await execute_tool("missing_tool", {})


class TestLoader:
    """Tests for capability discovery."""

    def test_load_all(self):
        """Test every tools module loads and registers its capabilities."""
        loaded = load_capabilities()

        assert "switchboard.tools.gitlab" in loaded
        assert "switchboard.tools.okr" in loaded
        for name in ("gitlab_cli", "mgr_okr_review", "visualization"):
            assert get_tool(name) is not None

    def test_only_modules(self):
        """Test loading can be narrowed to named modules."""
        assert load_capabilities(only_modules=["okr"]) == ["switchboard.tools.okr"]
