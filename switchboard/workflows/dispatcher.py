"""
Workflow Dispatcher

Runs a named workflow and reports its outcome. The dispatcher owns timing,
the initial progress update and error capture; it never raises.
"""

import logging
import time
from typing import Optional

from .base import WorkflowExecutionResult, WorkflowInput, WorkflowOutcome
from .registry import WorkflowRegistry, get_workflow_registry

logger = logging.getLogger(__name__)


class WorkflowDispatcher:
    """Executes workflows by id."""

    def __init__(self, registry: Optional[WorkflowRegistry] = None):
        self._registry = registry

    @property
    def registry(self) -> WorkflowRegistry:
        if self._registry is None:
            self._registry = get_workflow_registry()
        return self._registry

    def has(self, workflow_id: str) -> bool:
        return self.registry.has(workflow_id)

    async def execute(self, workflow_id: str, input: WorkflowInput) -> WorkflowExecutionResult:
        """Execute a workflow.

        Args:
            workflow_id: Registered workflow id
            input: Query and chat context

        Returns:
            WorkflowExecutionResult; unknown ids and exceptions become ``failed``
        """
        start = time.monotonic()
        workflow = self.registry.get(workflow_id)

        if workflow is None:
            error = f"Workflow not found: {workflow_id}"
            logger.error(f"[Workflow] {error}")
            result = WorkflowExecutionResult.failed(
                error, response=f"抱歉，无法执行请求的工作流: {workflow_id}", workflow_id=workflow_id
            )
            result.duration_ms = (time.monotonic() - start) * 1000
            return result

        logger.info(f"[Workflow] Executing {workflow_id} for: {input.query[:50]!r}")

        try:
            await input.update(f"⏳ 正在执行工作流: {workflow.name}...")
            result = await workflow.run(input)
        except Exception as e:
            logger.error(f"[Workflow] Error executing {workflow_id}: {e}", exc_info=True)
            result = WorkflowExecutionResult.failed(
                str(e) or type(e).__name__,
                response=f"抱歉，执行工作流时出错: {e}",
                workflow_id=workflow_id,
            )

        result.workflow_id = workflow_id
        result.duration_ms = (time.monotonic() - start) * 1000

        if result.outcome == WorkflowOutcome.SKIP:
            logger.info(f"[Workflow] {workflow_id} skipped ({result.error or 'no reason'}), handing off")
        elif result.outcome == WorkflowOutcome.FAILED:
            logger.warning(f"[Workflow] {workflow_id} failed in {result.duration_ms:.0f}ms: {result.error}")
        else:
            logger.info(f"[Workflow] {workflow_id} {result.outcome.value} in {result.duration_ms:.0f}ms")

        return result


_dispatcher: Optional[WorkflowDispatcher] = None


def get_workflow_dispatcher() -> WorkflowDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = WorkflowDispatcher()
    return _dispatcher
