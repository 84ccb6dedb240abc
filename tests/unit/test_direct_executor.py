"""Unit tests for single-shot capability execution."""
from typing import Optional
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import BaseModel

from switchboard.core.registry import capability, get_tool_registry
from switchboard.routing.direct_executor import (
    DirectExecutor,
    ToolResult,
    format_tool_result,
    is_mutating_glab_command,
    normalize_glab_command,
)


class EchoParams(BaseModel):
    period: Optional[str] = None


@pytest.fixture
def echo_tools():
    """Register throwaway capabilities and remove them afterwards."""
    calls = []

    @capability(name="test_echo", params=EchoParams, extraction_prompt="Extract the period.")
    def test_echo(period: str = "", query: str = "", chat_id: str = ""):
        """Echo arguments back."""
        calls.append({"period": period, "query": query, "chat_id": chat_id})
        return {"output": f"period={period}"}

    @capability(name="test_raw")
    async def test_raw(query: str = ""):
        """Echo the raw query."""
        calls.append({"query": query})
        return f"raw:{query}"

    @capability(name="test_delete", mutating=True)
    def test_delete(query: str = ""):
        """Delete something."""
        calls.append({"deleted": query})

    @capability(name="test_broken")
    def test_broken(query: str = ""):
        """Always fails."""
        raise RuntimeError("backend down")

    yield calls

    for name in ("test_echo", "test_raw", "test_delete", "test_broken"):
        get_tool_registry().pop(name, None)


class TestGlabHelpers:
    """Tests for GitLab command helpers."""

    def test_normalize(self):
        """Test the glab prefix and whitespace are stripped."""
        assert normalize_glab_command("  glab issue list ") == "issue list"
        assert normalize_glab_command("GLAB mr list") == "mr list"
        assert normalize_glab_command(None) == ""

    @pytest.mark.parametrize("command,mutating", [
        ("issue list --assignee=@me", False),
        ("mr view 12", False),
        ("ci status", False),
        ("issue create -t 'x'", True),
        ("issue close 3", True),
        ("mr note 4 -m hi", True),
        ("release create v1", True),
        ("label delete bug", True),
        ("api projects/1", True),
    ])
    def test_mutating_detection(self, command, mutating):
        """Test state-changing subcommands are recognised."""
        assert is_mutating_glab_command(command) is mutating


class TestFormatToolResult:
    """Tests for chat rendering of tool results."""

    def test_failure(self):
        """Test failures carry the error text."""
        result = ToolResult(success=False, tool_id="x", error="boom")
        assert format_tool_result(result) == "❌ Tool execution failed: boom"

    def test_output_key(self):
        """Test an output field is returned as-is."""
        result = ToolResult(success=True, tool_id="x", result={"output": "#1 Fix it"})
        assert format_tool_result(result) == "#1 Fix it"

    def test_string_and_json(self):
        """Test strings pass through and other data becomes JSON."""
        assert format_tool_result(ToolResult(success=True, tool_id="x", result="plain")) == "plain"
        rendered = format_tool_result(ToolResult(success=True, tool_id="x", result={"城市": 1}))
        assert '"城市": 1' in rendered

    def test_to_dict_keys(self):
        """Test the wire form uses camelCase keys."""
        data = ToolResult(success=True, tool_id="x", result=1, duration_ms=1.234).to_dict()
        assert data == {"success": True, "toolId": "x", "result": 1, "error": None, "durationMs": 1.2}


class TestDirectExecutor:
    """Tests for execute_direct."""

    @pytest.mark.asyncio
    async def test_extracted_params_and_context(self, echo_tools):
        """Test extracted params reach the capability and context wins."""
        extract = AsyncMock(return_value=EchoParams(period="11 月"))
        executor = DirectExecutor(extract=extract)

        result = await executor.execute_direct("test_echo", "11月", {"chat_id": "oc_1"})

        assert result.success
        assert result.result == {"output": "period=11 月"}
        assert echo_tools == [{"period": "11 月", "query": "11月", "chat_id": "oc_1"}]
        assert "Extract the period." in extract.call_args.args[0]
        assert extract.call_args.args[1] is EchoParams

    @pytest.mark.asyncio
    async def test_extraction_failure_falls_back_to_query(self, echo_tools):
        """Test a failed extraction still runs the capability with the raw query."""
        executor = DirectExecutor(extract=AsyncMock(side_effect=RuntimeError("429")))

        result = await executor.execute_direct("test_echo", "show coverage")

        assert result.success
        assert echo_tools[0]["query"] == "show coverage"
        assert echo_tools[0]["period"] == ""

    @pytest.mark.asyncio
    async def test_no_params_model_skips_extraction(self, echo_tools):
        """Test capabilities without a model never call the extractor."""
        extract = AsyncMock()
        result = await DirectExecutor(extract=extract).execute_direct("test_raw", "hello")

        assert result.result == "raw:hello"
        extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_mutating_capability_refused(self, echo_tools):
        """Test mutating capabilities never run directly."""
        result = await DirectExecutor(extract=AsyncMock()).execute_direct("test_delete", "everything")

        assert not result.success
        assert "Refusing" in result.error
        assert echo_tools == []

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        """Test unknown tools produce a failed result instead of raising."""
        result = await DirectExecutor(extract=AsyncMock()).execute_direct("nope", "q")
        assert not result.success
        assert "Unknown tool" in result.error

    @pytest.mark.asyncio
    async def test_capability_error_captured(self, echo_tools):
        """Test exceptions from the capability become a failed result."""
        result = await DirectExecutor(extract=AsyncMock()).execute_direct("test_broken", "q")
        assert not result.success
        assert result.error == "backend down"

    @pytest.mark.asyncio
    async def test_mutating_glab_command_refused(self):
        """Test the GitLab capability refuses state-changing commands."""
        import switchboard.tools.gitlab  # noqa: F401

        class Command(BaseModel):
            command: str

        executor = DirectExecutor(extract=AsyncMock(return_value=Command(command="glab issue close 3")))
        with patch("switchboard.tools.gitlab.run_glab", AsyncMock()) as run:
            result = await executor.execute_direct("gitlab_cli", "close issue 3")

        assert not result.success
        assert "mutating GitLab command" in result.error
        run.assert_not_called()
