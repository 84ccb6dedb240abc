"""Workflow registry.

Workflows register by class; one instance per class is kept and looked up
by the workflow id.
"""

import logging
import threading
from typing import Dict, List, Optional, Type

from .base import Workflow

logger = logging.getLogger(__name__)


class WorkflowRegistry:
    """Maps workflow ids to workflow instances."""

    def __init__(self):
        self._workflows: Dict[str, Workflow] = {}

    def register(self, workflow_class: Type[Workflow]) -> None:
        """Register a workflow class under its declared id."""
        workflow = workflow_class()
        if not workflow.id:
            raise ValueError(f"{workflow_class.__name__} has no workflow id")

        if workflow.id in self._workflows:
            logger.warning(
                f"Workflow '{workflow.id}' already registered to "
                f"{self._workflows[workflow.id].__class__.__name__}, overwriting with {workflow_class.__name__}"
            )
        self._workflows[workflow.id] = workflow
        logger.debug(f"Registered workflow {workflow_class.__name__} as '{workflow.id}'")

    def get(self, workflow_id: str) -> Optional[Workflow]:
        return self._workflows.get(workflow_id)

    def has(self, workflow_id: str) -> bool:
        return workflow_id in self._workflows

    def ids(self) -> List[str]:
        return list(self._workflows)

    def list_workflows(self) -> Dict[str, str]:
        """Workflow ids and their display names."""
        return {wf_id: wf.name for wf_id, wf in self._workflows.items()}

    def clear(self) -> None:
        """Clear all registered workflows (useful for testing)."""
        self._workflows.clear()


_registry: Optional[WorkflowRegistry] = None
_registry_lock = threading.Lock()


def get_workflow_registry() -> WorkflowRegistry:
    """Get the global registry with the built-in workflows registered."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                from .document_tracking import DocumentTrackingWorkflow
                from .dpa_assistant import DpaAssistantWorkflow
                from .feishu_task import FeishuTaskWorkflow
                from .okr_analysis import OkrAnalysisWorkflow
                from .release_notes import ReleaseNotesWorkflow

                registry = WorkflowRegistry()
                for workflow_class in (
                    DpaAssistantWorkflow,
                    FeishuTaskWorkflow,
                    OkrAnalysisWorkflow,
                    ReleaseNotesWorkflow,
                    DocumentTrackingWorkflow,
                ):
                    registry.register(workflow_class)
                _registry = registry
                logger.info(f"[Workflow] Registered workflows: {', '.join(registry.ids())}")
    return _registry
