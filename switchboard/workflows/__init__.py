"""Multi-step workflows with confirmation before side effects."""

from switchboard.workflows.base import Workflow, WorkflowExecutionResult, WorkflowInput, WorkflowOutcome

__all__ = [
    "Workflow",
    "WorkflowExecutionResult",
    "WorkflowInput",
    "WorkflowOutcome",
]
