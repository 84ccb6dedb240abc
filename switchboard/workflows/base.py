"""Base classes for workflows."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

UpdateCallback = Callable[[str], Awaitable[None]]


@dataclass
class WorkflowInput:
    """Request data passed to a workflow."""
    query: str
    chat_id: Optional[str] = None
    root_id: Optional[str] = None
    message_id: Optional[str] = None
    user_id: Optional[str] = None
    linked_context: Dict[str, Any] = field(default_factory=dict)
    on_update: Optional[UpdateCallback] = None

    async def update(self, text: str) -> None:
        """Report progress to the chat surface, if anyone is listening."""
        if self.on_update is not None:
            await self.on_update(text)


class WorkflowOutcome(str, Enum):
    COMPLETED = "completed"
    NEEDS_CONFIRMATION = "needs_confirmation"
    SKIP = "skip"
    FAILED = "failed"


@dataclass
class WorkflowExecutionResult:
    """Outcome of one workflow run.

    Build with the classmethods; the outcome decides which fields matter.
    A ``skip`` result carries no displayable response.
    """
    outcome: WorkflowOutcome
    workflow_id: str = ""
    response: str = ""
    confirmation_payload: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    duration_ms: float = 0.0

    @classmethod
    def completed(cls, response: str, workflow_id: str = "") -> "WorkflowExecutionResult":
        return cls(outcome=WorkflowOutcome.COMPLETED, workflow_id=workflow_id, response=response)

    @classmethod
    def confirmation(cls, response: str, payload: Dict[str, Any], workflow_id: str = "") -> "WorkflowExecutionResult":
        return cls(
            outcome=WorkflowOutcome.NEEDS_CONFIRMATION,
            workflow_id=workflow_id,
            response=response,
            confirmation_payload=payload,
        )

    @classmethod
    def skip(cls, reason: str = "", workflow_id: str = "") -> "WorkflowExecutionResult":
        return cls(outcome=WorkflowOutcome.SKIP, workflow_id=workflow_id, error=reason or None)

    @classmethod
    def failed(cls, error: str, response: str = "", workflow_id: str = "") -> "WorkflowExecutionResult":
        return cls(outcome=WorkflowOutcome.FAILED, workflow_id=workflow_id, response=response, error=error)

    @property
    def success(self) -> bool:
        return self.outcome in (WorkflowOutcome.COMPLETED, WorkflowOutcome.NEEDS_CONFIRMATION)

    @property
    def needs_confirmation(self) -> bool:
        return self.outcome == WorkflowOutcome.NEEDS_CONFIRMATION

    @property
    def skip_workflow(self) -> bool:
        return self.outcome == WorkflowOutcome.SKIP

    @property
    def confirmation_data(self) -> Optional[str]:
        """Payload as the JSON string carried by confirm buttons."""
        if self.confirmation_payload is None:
            return None
        return json.dumps(self.confirmation_payload, ensure_ascii=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "workflowId": self.workflow_id,
            "success": self.success,
            "response": "" if self.skip_workflow else self.response,
            "needsConfirmation": self.needs_confirmation,
            "confirmationData": self.confirmation_data,
            "skipWorkflow": self.skip_workflow,
            "error": self.error,
            "durationMs": round(self.duration_ms, 1),
        }


class Workflow(ABC):
    """Abstract base class for workflows.

    Each workflow is a fixed multi-step procedure identified by ``id``.
    Workflows never perform side effects before the user confirms them.
    """

    id: str = ""
    name: str = ""
    description: str = ""
    tags: List[str] = []

    @abstractmethod
    async def run(self, input: WorkflowInput) -> WorkflowExecutionResult:
        """
        Run the workflow.

        Args:
            input: WorkflowInput with the query and chat context

        Returns:
            WorkflowExecutionResult describing the outcome
        """
        pass

    def _completed(self, response: str) -> WorkflowExecutionResult:
        return WorkflowExecutionResult.completed(response, workflow_id=self.id)

    def _confirmation(self, response: str, payload: Dict[str, Any]) -> WorkflowExecutionResult:
        return WorkflowExecutionResult.confirmation(response, payload, workflow_id=self.id)

    def _skip(self, reason: str = "") -> WorkflowExecutionResult:
        return WorkflowExecutionResult.skip(reason, workflow_id=self.id)

    def _failed(self, error: str, response: str = "") -> WorkflowExecutionResult:
        return WorkflowExecutionResult.failed(error, response or f"❌ {error}", workflow_id=self.id)
