"""
Switchboard Reasoning Agent

The terminal fallback: a general language-model agent that answers anything
no deterministic path handled. It streams through the rate-limit-aware model
selector, hides ``<think>`` blocks from the visible answer, and reports
failures to the health monitor.

Usage:
    from switchboard.core.agent import get_agent

    result = await get_agent().run("总结一下这周的进展", messages=history, scope=scope)
    print(result.text)
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .config import ModelConfig
from .health import HealthMonitor, categorize_error, health_monitor
from .llm import LLMClient, get_llm_client
from .memory import ConversationMemory, MemoryScope
from .model_selector import ModelSelector, ModelTier, get_model_selector
from .thinking import ThinkingExtractor, ThinkingState

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[str], Awaitable[None]]

EMPTY_RESPONSE_TEXT = "抱歉，我没能生成回答。请换个说法再试一次。"


# =============================================================================
# System Prompt
# =============================================================================

SYSTEM_PROMPT_TEMPLATE = """You are a Feishu/Lark AI assistant for the DPA team. Most user queries will be in Chinese (中文).

GENERAL GUIDELINES:
- Do not tag users. 不要@用户。
- Current date is: {current_date}
- Format your responses using Markdown syntax (Lark Markdown format), which will be rendered in Feishu cards.
- If you cannot handle a query, say so and suggest what the user could ask instead.
{working_memory}{instructions}"""


class AgentError(Exception):
    """The reasoning agent could not produce an answer."""
    pass


@dataclass
class AgentResult:
    """Final answer of one agent run."""
    text: str
    reasoning: str = ""
    tier: Optional[ModelTier] = None
    duration_ms: float = 0.0


# =============================================================================
# Reasoning Agent
# =============================================================================

class ReasoningAgent:
    """Streams a chat completion over the full conversation history."""

    def __init__(
        self,
        selector: Optional[ModelSelector] = None,
        memory: Optional[ConversationMemory] = None,
        health: Optional[HealthMonitor] = None,
        client_factory: Callable[[ModelConfig], LLMClient] = get_llm_client,
    ):
        """Initialize the agent.

        Args:
            selector: Model tier selector (defaults to the configured one)
            memory: Store used to read working memory for the scope
            health: Health monitor notified of calls and failures
            client_factory: Builds an LLM client for a model tier
        """
        self.selector = selector or get_model_selector()
        self.memory = memory
        self.health = health or health_monitor
        self._client_factory = client_factory

    def _build_system_prompt(self, scope: Optional[MemoryScope], instructions: str) -> str:
        working_memory = ""
        if self.memory is not None and scope is not None:
            try:
                facts = self.memory.get_working_memory(scope)
            except Exception as e:
                logger.warning(f"[Agent] Failed to load working memory: {e}")
                facts = {}
            if facts:
                working_memory = (
                    "\nWORKING MEMORY (facts about this user and thread):\n"
                    f"{json.dumps(facts, ensure_ascii=False, indent=2)}\n"
                )

        extra = f"\nSPECIALIST INSTRUCTIONS:\n{instructions.strip()}\n" if instructions else ""

        return SYSTEM_PROMPT_TEMPLATE.format(
            current_date=datetime.now().strftime("%Y-%m-%d"),
            working_memory=working_memory,
            instructions=extra,
        )

    def build_messages(
        self,
        query: str,
        messages: Optional[List[Dict[str, str]]] = None,
        scope: Optional[MemoryScope] = None,
        instructions: str = "",
    ) -> List[Dict[str, str]]:
        """System prompt, then history, then the query unless history already ends with it."""
        history = [m for m in (messages or []) if m.get("role") != "system"]
        built = [{"role": "system", "content": self._build_system_prompt(scope, instructions)}]
        built.extend({"role": m["role"], "content": m["content"]} for m in history)

        last = history[-1] if history else None
        if not last or last.get("role") != "user" or last.get("content") != query:
            built.append({"role": "user", "content": query})
        return built

    async def run(
        self,
        query: str,
        messages: Optional[List[Dict[str, str]]] = None,
        scope: Optional[MemoryScope] = None,
        on_update: Optional[UpdateCallback] = None,
        instructions: str = "",
    ) -> AgentResult:
        """Answer a query.

        Args:
            query: The user's question
            messages: Prior conversation in OpenAI format
            scope: Memory scope, used for working memory
            on_update: Receives the visible text so far after every delta
            instructions: Skill instructions appended to the system prompt

        Returns:
            AgentResult with visible text and extracted reasoning

        Raises:
            AgentError: When every model tier failed
        """
        chat_messages = self.build_messages(query, messages, scope, instructions)
        extractor = ThinkingExtractor()
        start = time.monotonic()

        async def call(model: ModelConfig, tier: ModelTier) -> Tuple[ThinkingState, ModelTier]:
            # A retried tier starts from scratch; snapshots carry the full text
            extractor.reset()
            client = self._client_factory(model)
            logger.info(f"[Agent] Streaming from {tier.value} ({model.model})")

            async for chunk in client.generate_stream(chat_messages):
                if chunk.kind == "reasoning":
                    extractor.add_reasoning(chunk.text)
                    continue
                state = extractor.feed(chunk.text)
                if on_update is not None:
                    await on_update(state.visible_text())

            return extractor.state(), tier

        try:
            state, tier = await self.selector.run(call)
        except Exception as e:
            duration_ms = (time.monotonic() - start) * 1000
            message = str(e) or type(e).__name__
            self.health.track_error(categorize_error(message), message)
            self.health.track_agent_call(duration_ms, success=False)
            logger.error(f"[Agent] Failed after {duration_ms:.0f}ms: {message}")
            raise AgentError(message) from e

        duration_ms = (time.monotonic() - start) * 1000
        self.health.track_agent_call(duration_ms, success=True)

        text = state.display.strip()
        if not text:
            logger.warning("[Agent] Model returned an empty answer")
            text = EMPTY_RESPONSE_TEXT

        logger.info(f"[Agent] Answered via {tier.value} in {duration_ms:.0f}ms ({len(text)} chars)")
        return AgentResult(text=text, reasoning=state.reasoning, tier=tier, duration_ms=duration_ms)


# =============================================================================
# Global Instance
# =============================================================================

_agent: Optional[ReasoningAgent] = None


def get_agent() -> ReasoningAgent:
    """Get the global reasoning agent."""
    global _agent
    if _agent is None:
        from .memory import get_memory
        _agent = ReasoningAgent(memory=get_memory())
    return _agent
