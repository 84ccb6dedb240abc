"""Unit tests for the query router."""
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from switchboard.core.agent import AgentError, AgentResult
from switchboard.core.config import PACKAGE_ROOT
from switchboard.core.memory import get_memory, resolve_memory_scope
from switchboard.routing.classifier import Confidence, PatternClassifier
from switchboard.routing.direct_executor import ToolResult
from switchboard.routing.priority_router import PriorityRouter
from switchboard.routing.router import QueryRouter, RouterContext
from switchboard.routing.rules import load_intent_rules
from switchboard.tools.doc_tracking import DocumentTracker
from switchboard.tools.gitlab import GitLabCommandError
from switchboard.workflows.base import Workflow, WorkflowInput
from switchboard.workflows.dispatcher import WorkflowDispatcher
from switchboard.workflows.dpa_assistant import HELP_TEXT, DpaAssistantWorkflow, DpaIntent, IssueDraft
from switchboard.workflows.registry import WorkflowRegistry

ROUTING_DIR = PACKAGE_ROOT / "routing"


class RecordingOkrWorkflow(Workflow):
    """Stands in for okr-analysis and remembers its inputs."""

    id = "okr-analysis"
    name = "OKR Analysis"
    inputs = []

    async def run(self, input: WorkflowInput):
        RecordingOkrWorkflow.inputs.append(input)
        return self._completed("OKR report")


@pytest.fixture
def agent():
    mock = MagicMock()
    mock.run = AsyncMock(return_value=AgentResult(text="Agent answer", reasoning="thought"))
    return mock


@pytest.fixture
def executor():
    mock = MagicMock()
    mock.execute_direct = AsyncMock(
        return_value=ToolResult(success=True, tool_id="gitlab_cli", result={"output": "#1 Fix pipeline"})
    )
    return mock


@pytest.fixture
def router(agent, executor):
    RecordingOkrWorkflow.inputs = []
    registry = WorkflowRegistry()
    registry.register(DpaAssistantWorkflow)
    registry.register(RecordingOkrWorkflow)

    return QueryRouter(
        classifier=PatternClassifier(load_intent_rules(ROUTING_DIR / "intent_rules.yml")),
        priority_router=PriorityRouter.from_file(ROUTING_DIR / "routing_rules.yml"),
        executor=executor,
        dispatcher=WorkflowDispatcher(registry),
        agent=agent,
        memory=get_memory(),
        doc_tracker=DocumentTracker(client=MagicMock()),
    )


def chat_context(**kwargs):
    defaults = {"chat_id": "oc_chat", "user_id": "ou_user", "message_id": "om_msg"}
    defaults.update(kwargs)
    return RouterContext(**defaults)


class TestToolRouting:
    """Tests for queries that resolve to a direct capability."""

    @pytest.mark.asyncio
    async def test_gitlab_listing(self, router, executor, agent):
        """Test a listing query runs the gitlab tool once and skips the agent."""
        result = await router.route("列出我的issues")

        assert result.routed_via == "tool"
        assert result.tool_id == "gitlab_cli"
        assert result.response == "#1 Fix pipeline"
        assert result.classification.confidence == Confidence.PATTERN
        executor.execute_direct.assert_awaited_once_with("gitlab_cli", "列出我的issues", {})
        agent.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_chat_id_passed_as_tool_context(self, router, executor):
        """Test the chat id reaches the capability context."""
        await router.route("列出我的issues", chat_context())
        assert executor.execute_direct.call_args.args[2] == {"chat_id": "oc_chat"}

    @pytest.mark.asyncio
    async def test_tool_failure_does_not_fall_back(self, router, executor, agent):
        """Test a failed tool is reported without invoking the agent."""
        executor.execute_direct.return_value = ToolResult(success=False, tool_id="gitlab_cli", error="boom")

        result = await router.route("列出我的issues")

        assert result.response == "❌ Tool execution failed: boom"
        agent.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_error_text(self, router, executor):
        """Test exceptions surface as an error response instead of raising."""
        executor.execute_direct.side_effect = ValueError("bad command")

        result = await router.route("列出我的issues")

        assert result.routed_via == "error"
        assert result.response == "❌ Error: bad command"


class TestWorkflowRouting:
    """Tests for workflow dispatch, confirmation and fallback."""

    @pytest.mark.asyncio
    async def test_issue_creation_needs_confirmation(self, router, agent):
        """Test issue creation drafts a preview and asks for confirmation."""
        extract = AsyncMock(side_effect=[
            DpaIntent(intent="gitlab_create"),
            IssueDraft(title="Pipeline fails", description="Nightly run broken", priority=2),
        ])
        with patch("switchboard.workflows.dpa_assistant.extract_structured", extract), \
                patch("switchboard.workflows.dpa_assistant.run_glab", new_callable=AsyncMock) as run_glab:
            result = await router.route("创建一个bug issue")

        assert result.routed_via == "workflow"
        assert result.workflow_id == "dpa-assistant"
        assert result.needs_confirmation is True
        assert result.confirmation_payload["project"] == "dpa/dagster"
        assert "priority::2" in result.confirmation_payload["labels"]
        assert "Issue Preview" in result.response
        run_glab.assert_not_called()
        agent.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_confirmation_reenters_workflow_and_links_issue(self, router):
        """Test the confirm callback runs glab and links the issue to the thread."""
        payload = {
            "title": "Pipeline fails",
            "project": "dpa/analytics",
            "glab_command": "issue create -t 'Pipeline fails' -d 'Nightly run broken'",
        }
        query = "__gitlab_confirm__:" + json.dumps(payload)
        context = chat_context(root_id="om_root")
        glab = AsyncMock(return_value={"output": "https://gitlab.example.com/dpa/analytics/-/issues/42"})

        with patch("switchboard.workflows.dpa_assistant.run_glab", glab):
            result = await router.route(query, context)

        assert "Issue Created" in result.response
        assert glab.call_args.kwargs["config"].default_project == "dpa/analytics"

        scope = resolve_memory_scope("ou_user", "oc_chat", "om_root", "om_msg")
        assert get_memory().get_working_memory(scope)["linked_issue"]["iid"] == 42
        # Callback values are not conversation turns
        assert get_memory().get_messages(scope) == []

    @pytest.mark.asyncio
    async def test_failed_confirmation_stays_in_workflow(self, router, agent):
        """Test a glab failure on confirm is reported by the workflow, not retried by the agent."""
        payload = {"title": "Fix", "glab_command": "issue create -t Fix -d Fix"}
        glab = AsyncMock(side_effect=GitLabCommandError("403 Forbidden"))

        with patch("switchboard.workflows.dpa_assistant.run_glab", glab):
            result = await router.route("__gitlab_confirm__:" + json.dumps(payload), chat_context())

        assert result.routed_via == "workflow"
        assert result.workflow_id == "dpa-assistant"
        assert result.response.startswith("❌ Failed to create issue")
        assert "403 Forbidden" in result.response
        agent.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_callback(self, router):
        """Test the cancel callback completes without side effects."""
        result = await router.route("__gitlab_cancel__")
        assert result.response == "🚫 Issue creation cancelled."

    @pytest.mark.asyncio
    async def test_skip_hands_off_to_agent_once(self, router, agent):
        """Test a skipping workflow falls back to the agent exactly once."""
        extract = AsyncMock(return_value=DpaIntent(intent="general_chat"))
        with patch("switchboard.workflows.dpa_assistant.extract_structured", extract):
            result = await router.route("创建一个bug issue")

        assert result.routed_via == "workflow-fallback"
        assert result.workflow_id == "dpa-assistant"
        assert result.response == "Agent answer"
        agent.run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_workflow_and_failed_agent(self, router, agent):
        """Test both failures are reported together."""
        extract = AsyncMock(side_effect=[DpaIntent(intent="gitlab_create"), RuntimeError("extraction down")])
        agent.run.side_effect = AgentError("all tiers failed")

        with patch("switchboard.workflows.dpa_assistant.extract_structured", extract):
            result = await router.route("创建一个bug issue")

        assert result.routed_via == "error"
        assert "dpa-assistant" in result.response
        assert "extraction down" in result.response
        assert "all tiers failed" in result.response
        agent.run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_help_slash_command(self, router):
        """Test /help is answered by the workflow without any model call."""
        with patch("switchboard.workflows.dpa_assistant.extract_structured", new_callable=AsyncMock) as extract:
            result = await router.route("/help")

        assert result.response == HELP_TEXT
        assert result.workflow_id == "dpa-assistant"
        extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_workflow_receives_progress_and_linked_context(self, router):
        """Test workflow input carries working memory and the update callback."""
        scope = resolve_memory_scope("ou_user", "oc_chat", "om_root", "om_msg")
        get_memory().set_working_memory(scope, {"linked_issue": {"iid": 7}})
        updates = []

        async def on_update(text):
            updates.append(text)

        result = await router.route("分析Q4的OKR覆盖率", chat_context(root_id="om_root", on_update=on_update))

        assert result.response == "OKR report"
        recorded = RecordingOkrWorkflow.inputs[0]
        assert recorded.linked_context == {"linked_issue": {"iid": 7}}
        assert recorded.chat_id == "oc_chat"
        assert updates and updates[0].startswith("⏳")


class TestAgentRouting:
    """Tests for unmatched queries."""

    @pytest.mark.asyncio
    async def test_general_query_goes_to_agent(self, router, agent):
        """Test an unmatched query gets a general decision and the agent answers."""
        result = await router.route("Hello, how are you?")

        assert result.routed_via == "agent"
        assert result.response == "Agent answer"
        assert result.reasoning == "thought"
        assert result.routing_decision.destination_id == "manager"
        assert result.routing_decision.confidence == 0.5
        assert agent.run.call_args.kwargs["instructions"] == ""

    @pytest.mark.asyncio
    async def test_skill_instructions_reach_agent(self, router, agent):
        """Test a skill decision passes its instructions to the agent."""
        result = await router.route("How is our pnl and revenue?")

        assert result.routing_decision.destination_id == "pnl_agent"
        assert "P&L analyst" in agent.run.call_args.kwargs["instructions"]

    @pytest.mark.asyncio
    async def test_priority_workflow_decision(self, router, agent):
        """Test a workflow decision runs the workflow before any agent call."""
        extract = AsyncMock(return_value=DpaIntent(intent="general_chat"))
        with patch("switchboard.workflows.dpa_assistant.extract_structured", extract):
            result = await router.route("dpa weekly sync")

        assert result.routing_decision.destination_id == "dpa_mom"
        assert result.routed_via == "workflow-fallback"
        agent.run.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_agent_error_is_reported(self, router, agent):
        """Test an agent failure on the direct path becomes error text."""
        agent.run.side_effect = AgentError("rate limited")

        result = await router.route("Hello")

        assert result.routed_via == "error"
        assert result.response == "❌ Error: rate limited"


class TestMemory:
    """Tests for conversation persistence."""

    @pytest.mark.asyncio
    async def test_turns_are_persisted_and_replayed(self, router, agent):
        """Test both turns are stored and passed as history next time."""
        context = chat_context()
        await router.route("Hello", context)
        await router.route("And again?", context)

        history = agent.run.call_args.kwargs["messages"]
        assert history == [
            {"role": "user", "content": "Hello"},
            {"role": "assistant", "content": "Agent answer"},
        ]

        scope = resolve_memory_scope("ou_user", "oc_chat", None, "om_msg")
        assert len(get_memory().get_messages(scope)) == 4

    @pytest.mark.asyncio
    async def test_no_chat_id_means_no_memory(self, router, agent):
        """Test requests without a chat id use only the given messages."""
        messages = [{"role": "user", "content": "earlier"}]
        await router.route("Hello", messages=messages)

        assert agent.run.call_args.kwargs["messages"] == messages
        assert agent.run.call_args.kwargs["scope"] is None


class TestDocCommands:
    """Tests for document tracking commands."""

    @pytest.mark.asyncio
    async def test_watched_with_no_documents(self, router, agent):
        """Test 'watched' lists nothing in a fresh chat."""
        result = await router.route("watched", chat_context())

        assert result.routed_via == "doc-command"
        assert "No documents" in result.response
        agent.run.assert_not_called()
