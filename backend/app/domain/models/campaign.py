"""
Campaign Domain Models
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, Dict, FrozenSet
from datetime import datetime
from enum import Enum

from app.domain.models.flow import FlowData


class CampaignStatus(str, Enum):
    """Campaign lifecycle status"""
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


# current status -> statuses reachable from it
ALLOWED_TRANSITIONS: Dict[CampaignStatus, FrozenSet[CampaignStatus]] = {
    CampaignStatus.DRAFT: frozenset({CampaignStatus.SCHEDULED}),
    CampaignStatus.SCHEDULED: frozenset({CampaignStatus.RUNNING, CampaignStatus.DRAFT}),
    CampaignStatus.RUNNING: frozenset({
        CampaignStatus.PAUSED,
        CampaignStatus.COMPLETED,
        CampaignStatus.FAILED,
    }),
    CampaignStatus.PAUSED: frozenset({CampaignStatus.RUNNING, CampaignStatus.FAILED}),
    CampaignStatus.COMPLETED: frozenset(),
    CampaignStatus.FAILED: frozenset({CampaignStatus.DRAFT}),
}

# Statuses from which schedule() and run_now() may start
SCHEDULABLE_STATUSES = frozenset({CampaignStatus.DRAFT, CampaignStatus.SCHEDULED})
RUNNABLE_STATUSES = frozenset({
    CampaignStatus.DRAFT,
    CampaignStatus.SCHEDULED,
    CampaignStatus.FAILED,
})

TERMINAL_STATUSES = frozenset({CampaignStatus.COMPLETED, CampaignStatus.FAILED})


def allowed_transitions(current: str) -> FrozenSet[CampaignStatus]:
    """Statuses reachable from `current` (empty for unknown values)."""
    try:
        return ALLOWED_TRANSITIONS[CampaignStatus(current)]
    except ValueError:
        return frozenset()


def can_transition(current: str, target: str) -> bool:
    try:
        return CampaignStatus(target) in allowed_transitions(current)
    except ValueError:
        return False


class Campaign(BaseModel):
    """Campaign targeting a recipient segment through an n8n workflow"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    id: str
    name: str
    description: Optional[str] = None
    status: CampaignStatus = CampaignStatus.DRAFT
    segment_id: Optional[str] = None
    flow_data: Optional[FlowData] = None
    n8n_workflow_id: Optional[str] = Field(default=None, alias="n8nWorkflowId")
    webhook_path: Optional[str] = None

    scheduled_at: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    deployed_at: Optional[datetime] = None
    flow_updated_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    total_users_targeted: int = 0
    total_jobs_created: int = 0
    total_sent: int = 0
    total_failed: int = 0
    version: int = 1

    @property
    def is_deployed(self) -> bool:
        return self.n8n_workflow_id is not None

    @property
    def is_stale(self) -> bool:
        """True when the flow was saved after the last deployment."""
        if not self.is_deployed or self.deployed_at is None or self.flow_updated_at is None:
            return False
        return self.flow_updated_at > self.deployed_at


class CampaignCreate(BaseModel):
    """Request body for creating a campaign"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    segment_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
