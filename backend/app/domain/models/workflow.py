"""
Automation Engine Workflow Models
What the controller knows about workflows living in n8n
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class EngineExecutionStatus(str, Enum):
    """Execution status as reported by n8n"""
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    WAITING = "waiting"
    CANCELED = "canceled"
    UNKNOWN = "unknown"


class WorkflowDefinition(BaseModel):
    """Engine-side workflow JSON (nodes + connections)"""
    name: str
    nodes: List[Dict[str, Any]]
    connections: Dict[str, Any]
    settings: Dict[str, Any] = Field(default_factory=lambda: {
        "saveManualExecutions": True,
        "saveExecutionProgress": True,
    })
    webhook_path: Optional[str] = Field(default=None, exclude=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"webhook_path"})


class DeployedWorkflow(BaseModel):
    workflow_id: str
    active: bool = False
    name: Optional[str] = None


class EngineExecution(BaseModel):
    """One entry of the engine's execution history"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    status: str = EngineExecutionStatus.UNKNOWN.value
    finished: bool = False
    mode: Optional[str] = None
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None

    @classmethod
    def from_engine(cls, data: Dict[str, Any]) -> "EngineExecution":
        """Parse an n8n execution object; older n8n versions omit `status`."""
        status = data.get("status")
        if not status:
            status = EngineExecutionStatus.SUCCESS.value if data.get("finished") else EngineExecutionStatus.UNKNOWN.value
        return cls(
            id=str(data.get("id")),
            status=status,
            finished=bool(data.get("finished", False)),
            mode=data.get("mode"),
            started_at=data.get("startedAt"),
            stopped_at=data.get("stoppedAt"),
        )


class WorkflowStatus(BaseModel):
    """Response of the workflow-status poll"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    is_deployed: bool
    n8n_workflow_id: Optional[str] = Field(default=None, alias="n8nWorkflowId")
    is_active: bool = False
    is_stale: bool = False
    deployed_at: Optional[datetime] = None
    executions: List[EngineExecution] = Field(default_factory=list)


class DeploymentResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    n8n_workflow_id: str = Field(alias="n8nWorkflowId")
    webhook_url: Optional[str] = None


class TriggerResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    execution_id: str
    started: bool = True
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)
