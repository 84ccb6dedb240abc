"""
Direct Capability Executor

Runs exactly one capability exactly once, without agent reasoning. A minimal
structured-extraction call turns the free-text query into parameters; when
that fails, or the capability declares no parameter model, the raw query is
passed through instead.

Mutating capabilities are refused here. Anything that changes external state
must go through a workflow so it can ask for confirmation first.
"""

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from pydantic import BaseModel

from switchboard.core.extraction import extract_structured
from switchboard.core.registry import ToolEntry, execute_tool, get_tool

logger = logging.getLogger(__name__)

GITLAB_TOOL_ID = "gitlab_cli"

_MUTATING_GLAB_PATTERNS = [
    re.compile(r"\b(issue|mr)\s+(create|close|reopen|edit|update|delete|note|comment)\b"),
    re.compile(r"\brelease\s+create\b"),
    re.compile(r"\blabel\s+(create|delete|edit)\b"),
    re.compile(r"\bmilestone\s+(create|delete|edit)\b"),
    re.compile(r"\bapi\b"),
]

_GLAB_PREFIX_RE = re.compile(r"^glab\s+", re.IGNORECASE)

Extractor = Callable[[str, Type[BaseModel]], Awaitable[BaseModel]]


class MutatingCommandError(Exception):
    """A state-changing capability or command was requested on the direct path."""
    pass


@dataclass
class ToolResult:
    """Outcome of one direct capability invocation."""
    success: bool
    tool_id: str
    result: Any = None
    error: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "toolId": self.tool_id,
            "result": self.result,
            "error": self.error,
            "durationMs": round(self.duration_ms, 1),
        }


def normalize_glab_command(raw: Optional[str]) -> str:
    """Strip whitespace and a leading ``glab`` from a command."""
    trimmed = (raw or "").strip()
    if not trimmed:
        return ""
    return _GLAB_PREFIX_RE.sub("", trimmed).strip()


def is_mutating_glab_command(command: str) -> bool:
    """True for glab subcommands that create, change or delete anything."""
    lowered = command.lower()
    return any(pattern.search(lowered) for pattern in _MUTATING_GLAB_PATTERNS)


def format_tool_result(result: ToolResult) -> str:
    """Render a tool result as chat text."""
    if not result.success:
        return f"❌ Tool execution failed: {result.error}"

    data = result.result
    if isinstance(data, str):
        return data

    if isinstance(data, dict):
        if data.get("output"):
            return str(data["output"])
        if data.get("result"):
            inner = data["result"]
            return inner if isinstance(inner, str) else json.dumps(inner, indent=2, ensure_ascii=False, default=str)

    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


class DirectExecutor:
    """Single-shot capability execution with parameter extraction."""

    def __init__(self, extract: Extractor = extract_structured):
        self._extract = extract

    async def extract_params(
        self,
        entry: Optional[ToolEntry],
        query: str,
        context: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Structured parameters for a capability, merged under the caller's context."""
        if entry is None or entry.params_model is None:
            logger.debug(f"[DirectExecutor] No parameter model for {entry.name if entry else 'unknown tool'}, using raw query")
            return {"query": query, **context}

        prompt = (
            f"{entry.extraction_prompt}\n\n"
            f"User query: \"{query}\"\n\n"
            f"Context: {json.dumps(context, ensure_ascii=False, default=str)}"
        )
        try:
            extracted = await self._extract(prompt, entry.params_model)
        except Exception as e:
            logger.warning(f"[DirectExecutor] Parameter extraction failed for {entry.name}: {e}")
            return {"query": query, **context}

        # Keep the raw query around for capabilities that infer defaults from it
        return {"query": query, **extracted.model_dump(exclude_none=True), **context}

    async def execute_direct(
        self,
        tool_id: str,
        query: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> ToolResult:
        """Execute one capability for a query.

        Args:
            tool_id: Registered capability name
            query: The user's query
            context: Request context (chat_id, root_id, user_id) merged over extracted params

        Returns:
            ToolResult; never raises
        """
        start = time.monotonic()
        context = context or {}
        logger.info(f"[DirectExecutor] Executing {tool_id} for: {query[:50]!r}")

        try:
            entry = get_tool(tool_id)
            if entry is None:
                raise ValueError(f"Unknown tool: {tool_id}")
            if entry.mutating:
                raise MutatingCommandError(
                    f"Refusing to run mutating capability {tool_id} directly. "
                    f"Use the matching workflow so it can request confirmation."
                )

            params = await self.extract_params(entry, query, context)

            if tool_id == GITLAB_TOOL_ID:
                command = normalize_glab_command(params.get("command") or params.get("query"))
                if not command:
                    raise ValueError("No GitLab command provided")
                if is_mutating_glab_command(command):
                    raise MutatingCommandError(
                        f"Refusing to run mutating GitLab command via direct tool ({command}). "
                        f"Use the GitLab workflow (/创建, /create, etc.) so it can request confirmation."
                    )
                params["command"] = command

            logger.debug(f"[DirectExecutor] Params: {json.dumps(params, ensure_ascii=False, default=str)[:200]}")
            result = await execute_tool(tool_id, params)

            return ToolResult(
                success=True,
                tool_id=tool_id,
                result=result,
                duration_ms=(time.monotonic() - start) * 1000,
            )

        except Exception as e:
            logger.error(f"[DirectExecutor] Error executing {tool_id}: {e}")
            return ToolResult(
                success=False,
                tool_id=tool_id,
                error=str(e),
                duration_ms=(time.monotonic() - start) * 1000,
            )


_executor: Optional[DirectExecutor] = None


def get_direct_executor() -> DirectExecutor:
    global _executor
    if _executor is None:
        _executor = DirectExecutor()
    return _executor
