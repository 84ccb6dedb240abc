"""
Query Router

Single entry point for a chat query:

1. Pattern classifier picks a target (cheap, deterministic)
2. Doc commands, slash commands, workflows and tools run directly
3. Unmatched queries go through the priority router, which may still pick
   a workflow; otherwise the reasoning agent answers
4. A workflow that skips or fails hands off to the agent exactly once

Every path produces text. The outermost boundary turns any remaining
exception into ``❌ Error: {message}``.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from switchboard.core.agent import AgentError, ReasoningAgent, get_agent
from switchboard.core.config import get_config
from switchboard.core.loader import load_capabilities
from switchboard.core.memory import ConversationMemory, MemoryScope, get_memory, resolve_memory_scope
from switchboard.tools.doc_tracking import DocumentTracker, handle_doc_command
from switchboard.workflows.base import UpdateCallback, WorkflowInput, WorkflowOutcome
from switchboard.workflows.dispatcher import WorkflowDispatcher, get_workflow_dispatcher
from switchboard.workflows.dpa_assistant import HELP_COMMANDS, SLASH_COMMANDS

from .classifier import ClassificationResult, PatternClassifier, extract_slash_command, get_classifier
from .direct_executor import DirectExecutor, format_tool_result, get_direct_executor
from .priority_router import PriorityRouter, RoutingDecision, get_priority_router
from .rules import (
    AgentTarget,
    DecisionType,
    DocCommandTarget,
    SlashCommandTarget,
    ToolTarget,
    WorkflowTarget,
)

logger = logging.getLogger(__name__)

SLASH_COMMAND_WORKFLOW = "dpa-assistant"
MAX_AGENT_ATTEMPTS = 1
INTERNAL_QUERY_PREFIX = "__"


@dataclass
class RouterContext:
    """Where a query came from and where progress goes."""
    chat_id: Optional[str] = None
    root_id: Optional[str] = None
    message_id: Optional[str] = None
    user_id: Optional[str] = None
    on_update: Optional[UpdateCallback] = None


@dataclass
class RouterResult:
    response: str
    routed_via: str
    classification: Optional[ClassificationResult] = None
    routing_decision: Optional[RoutingDecision] = None
    workflow_id: Optional[str] = None
    tool_id: Optional[str] = None
    duration_ms: float = 0.0
    needs_confirmation: bool = False
    confirmation_payload: Optional[Dict[str, Any]] = None
    reasoning: str = ""

    @property
    def confirmation_data(self) -> Optional[str]:
        if self.confirmation_payload is None:
            return None
        return json.dumps(self.confirmation_payload, ensure_ascii=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "routedVia": self.routed_via,
            "classification": self.classification.to_dict() if self.classification else None,
            "routingDecision": self.routing_decision.to_dict() if self.routing_decision else None,
            "workflowId": self.workflow_id,
            "toolId": self.tool_id,
            "durationMs": round(self.duration_ms, 1),
            "needsConfirmation": self.needs_confirmation,
            "confirmationData": self.confirmation_data,
            "reasoning": self.reasoning,
        }


@dataclass
class _RequestState:
    """Per-request bookkeeping."""
    scope: Optional[MemoryScope]
    history: List[Dict[str, str]]
    linked_context: Dict[str, Any] = field(default_factory=dict)
    agent_attempts: int = 0


class QueryRouter:
    """Composes classifier, priority router, executor, dispatcher and agent."""

    def __init__(
        self,
        classifier: Optional[PatternClassifier] = None,
        priority_router: Optional[PriorityRouter] = None,
        executor: Optional[DirectExecutor] = None,
        dispatcher: Optional[WorkflowDispatcher] = None,
        agent: Optional[ReasoningAgent] = None,
        memory: Optional[ConversationMemory] = None,
        doc_tracker: Optional[DocumentTracker] = None,
    ):
        self.classifier = classifier or get_classifier()
        self.priority_router = priority_router or get_priority_router()
        self.executor = executor or get_direct_executor()
        self.dispatcher = dispatcher or get_workflow_dispatcher()
        self._agent = agent
        self._memory = memory
        self._doc_tracker = doc_tracker

    @property
    def agent(self) -> ReasoningAgent:
        if self._agent is None:
            self._agent = get_agent()
        return self._agent

    @property
    def memory(self) -> ConversationMemory:
        if self._memory is None:
            self._memory = get_memory()
        return self._memory

    async def route(
        self,
        query: str,
        context: Optional[RouterContext] = None,
        messages: Optional[List[Dict[str, str]]] = None,
    ) -> RouterResult:
        """Route one query and return the answer. Never raises.

        Args:
            query: Raw user text (or a confirmation callback value)
            context: Chat identifiers and the progress callback
            messages: Prior conversation; loaded from memory when omitted

        Returns:
            RouterResult with the response and how it was produced
        """
        start = time.monotonic()
        context = context or RouterContext()
        query = (query or "").strip()

        classification: Optional[ClassificationResult] = None
        state = _RequestState(scope=None, history=list(messages or []))
        try:
            state = self._load_state(context, messages)
            classification = self.classifier.classify(query)
            logger.info(
                f"[Router] {query[:50]!r} -> {classification.intent} "
                f"({classification.target.type.value}, {classification.confidence.value})"
            )
            result = await self._dispatch(query, classification, context, state)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(f"[Router] Error routing query: {message}", exc_info=True)
            result = RouterResult(response=f"❌ Error: {message}", routed_via="error")

        result.classification = classification
        result.duration_ms = (time.monotonic() - start) * 1000
        self._persist(query, result, state)
        logger.info(f"[Router] Answered via {result.routed_via} in {result.duration_ms:.0f}ms")
        return result

    # -------------------------------------------------------------------------
    # Memory
    # -------------------------------------------------------------------------

    def _load_state(self, context: RouterContext, messages: Optional[List[Dict[str, str]]]) -> _RequestState:
        if not context.chat_id:
            return _RequestState(scope=None, history=list(messages or []))

        memory_config = get_config().memory
        scope = resolve_memory_scope(
            context.user_id or "unknown",
            context.chat_id,
            context.root_id,
            context.message_id,
            thread_override=memory_config.thread_override,
        )
        history = list(messages) if messages is not None else self.memory.get_messages(
            scope, limit=memory_config.last_messages
        )
        linked_context = self.memory.get_working_memory(scope)
        return _RequestState(scope=scope, history=history, linked_context=linked_context)

    def _persist(self, query: str, result: RouterResult, state: _RequestState) -> None:
        if state.scope is None or not query or query.startswith(INTERNAL_QUERY_PREFIX):
            return
        try:
            self.memory.append_message(state.scope, "user", query)
            self.memory.append_message(
                state.scope, "assistant", result.response, metadata={"routed_via": result.routed_via}
            )
        except Exception as e:
            logger.warning(f"[Router] Failed to persist conversation turn: {e}")

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def _dispatch(
        self,
        query: str,
        classification: ClassificationResult,
        context: RouterContext,
        state: _RequestState,
    ) -> RouterResult:
        target = classification.target

        if isinstance(target, DocCommandTarget):
            response = await handle_doc_command(
                query, context.chat_id or "", context.user_id or "", tracker=self._doc_tracker
            )
            return RouterResult(response=response, routed_via="doc-command")

        if isinstance(target, SlashCommandTarget):
            command = target.command or extract_slash_command(query)
            if command in SLASH_COMMANDS or command in HELP_COMMANDS:
                return await self._run_workflow(SLASH_COMMAND_WORKFLOW, query, context, state)
            logger.info(f"[Router] Unknown slash command {command}, using agent")
            return await self._run_agent(query, context, state)

        if isinstance(target, WorkflowTarget):
            return await self._run_workflow(target.workflow_id, query, context, state)

        if isinstance(target, ToolTarget):
            tool_context = {"chat_id": context.chat_id} if context.chat_id else {}
            tool_result = await self.executor.execute_direct(target.tool_id, query, tool_context)
            return RouterResult(
                response=format_tool_result(tool_result),
                routed_via="tool",
                tool_id=target.tool_id,
            )

        if isinstance(target, AgentTarget):
            decision = self.priority_router.route(query)
            logger.info(
                f"[Router] Priority decision: {decision.destination_id} "
                f"({decision.type.value}, {decision.confidence:.2f})"
            )
            if (
                decision.type == DecisionType.WORKFLOW
                and decision.workflow_id
                and self.dispatcher.has(decision.workflow_id)
            ):
                result = await self._run_workflow(decision.workflow_id, query, context, state)
            else:
                result = await self._run_agent(query, context, state, instructions=decision.instructions)
            result.routing_decision = decision
            return result

        raise ValueError(f"Unsupported route target: {target!r}")

    async def _run_workflow(
        self,
        workflow_id: str,
        query: str,
        context: RouterContext,
        state: _RequestState,
    ) -> RouterResult:
        workflow_input = WorkflowInput(
            query=query,
            chat_id=context.chat_id,
            root_id=context.root_id,
            message_id=context.message_id,
            user_id=context.user_id,
            linked_context=state.linked_context,
            on_update=context.on_update,
        )
        outcome = await self.dispatcher.execute(workflow_id, workflow_input)

        if outcome.outcome in (WorkflowOutcome.SKIP, WorkflowOutcome.FAILED):
            return await self._fallback_to_agent(workflow_id, outcome.error, query, context, state)

        return RouterResult(
            response=outcome.response,
            routed_via="workflow",
            workflow_id=workflow_id,
            needs_confirmation=outcome.needs_confirmation,
            confirmation_payload=outcome.confirmation_payload,
        )

    async def _fallback_to_agent(
        self,
        workflow_id: str,
        workflow_error: Optional[str],
        query: str,
        context: RouterContext,
        state: _RequestState,
    ) -> RouterResult:
        logger.info(f"[Router] Workflow {workflow_id} handed off to agent ({workflow_error or 'skip'})")
        try:
            result = await self._run_agent(query, context, state)
        except AgentError as e:
            logger.error(f"[Router] Agent fallback for {workflow_id} failed: {e}")
            reason = workflow_error or "workflow skipped"
            return RouterResult(
                response=f"❌ 抱歉，处理请求时出错。\n\n工作流 {workflow_id}: {reason}\n备用回答: {e}",
                routed_via="error",
                workflow_id=workflow_id,
            )
        result.routed_via = "workflow-fallback"
        result.workflow_id = workflow_id
        return result

    async def _run_agent(
        self,
        query: str,
        context: RouterContext,
        state: _RequestState,
        instructions: str = "",
    ) -> RouterResult:
        if state.agent_attempts >= MAX_AGENT_ATTEMPTS:
            raise AgentError("Agent fallback already attempted for this request")
        state.agent_attempts += 1

        answer = await self.agent.run(
            query,
            messages=state.history,
            scope=state.scope,
            on_update=context.on_update,
            instructions=instructions,
        )
        return RouterResult(response=answer.text, routed_via="agent", reasoning=answer.reasoning)


_router: Optional[QueryRouter] = None


def get_query_router() -> QueryRouter:
    """Get the global query router, loading capabilities on first use."""
    global _router
    if _router is None:
        load_capabilities()
        _router = QueryRouter()
    return _router
