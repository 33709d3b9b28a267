"""
Automation Engine Interface
Abstract base class for external workflow engines (n8n)
"""
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any

from app.domain.models.workflow import (
    WorkflowDefinition,
    DeployedWorkflow,
    EngineExecution,
    TriggerResult,
)


class AutomationEngine(ABC):
    """
    Abstract base class for automation engines.

    Implementations must bound every call with a timeout and raise
    EngineUnreachableError instead of hanging.
    """

    @abstractmethod
    async def create_workflow(self, definition: WorkflowDefinition) -> DeployedWorkflow:
        """
        Register a new workflow.

        Raises:
            DeploymentRejectedError: If the engine refuses the definition
            EngineUnreachableError: If the engine cannot be reached
        """
        pass

    @abstractmethod
    async def update_workflow(self, workflow_id: str, definition: WorkflowDefinition) -> DeployedWorkflow:
        """Replace an existing workflow's definition."""
        pass

    @abstractmethod
    async def activate_workflow(self, workflow_id: str) -> DeployedWorkflow:
        """Activate a workflow so its webhook trigger starts listening."""
        pass

    @abstractmethod
    async def get_workflow(self, workflow_id: str) -> Optional[DeployedWorkflow]:
        """Fetch deployment state, None when the engine no longer knows it."""
        pass

    @abstractmethod
    async def list_executions(self, workflow_id: str, limit: int = 20) -> List[EngineExecution]:
        """Recent executions of a workflow, newest first."""
        pass

    @abstractmethod
    async def trigger_webhook(self, webhook_path: str, payload: Dict[str, Any]) -> TriggerResult:
        """Start one execution through the workflow's production webhook."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Reachability check. Never raises."""
        pass

    @abstractmethod
    def webhook_url(self, webhook_path: str) -> str:
        """Public production webhook URL for a path."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Engine name"""
        pass
