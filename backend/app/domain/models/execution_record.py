"""
Execution Record Model
Per-recipient attempt state for a campaign run
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, Dict, FrozenSet
from datetime import datetime
from enum import Enum


class ExecutionStatus(str, Enum):
    """Status of a recipient's execution record"""
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


TERMINAL_EXECUTION_STATUSES: FrozenSet[ExecutionStatus] = frozenset({
    ExecutionStatus.SUCCESS,
    ExecutionStatus.FAILED,
})

# failed -> pending is the retry re-entry; success is final
EXECUTION_TRANSITIONS: Dict[ExecutionStatus, FrozenSet[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset({
        ExecutionStatus.PROCESSING,
        ExecutionStatus.SUCCESS,
        ExecutionStatus.FAILED,
    }),
    ExecutionStatus.PROCESSING: frozenset({ExecutionStatus.SUCCESS, ExecutionStatus.FAILED}),
    ExecutionStatus.FAILED: frozenset({ExecutionStatus.PENDING}),
    ExecutionStatus.SUCCESS: frozenset(),
}


def counts_as_attempt(current: ExecutionStatus, target: ExecutionStatus) -> bool:
    """
    Whether moving current -> target starts a new attempt.

    Entering processing is an attempt; so is reaching a terminal state
    straight from pending (the engine reported before we saw processing).
    """
    if target == ExecutionStatus.PROCESSING:
        return True
    return current == ExecutionStatus.PENDING and target in TERMINAL_EXECUTION_STATUSES


class ExecutionRecord(BaseModel):
    """
    One targeted recipient in a campaign run.

    Only the worker that claimed the record (claimed_by) writes to it.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    id: str
    campaign_id: str
    email: str
    name: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    attempts: int = Field(default=0, ge=0)
    processed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    claimed_by: Optional[str] = None
    engine_execution_id: Optional[str] = None
    sequence: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return ExecutionStatus(self.status) in TERMINAL_EXECUTION_STATUSES

    def __repr__(self) -> str:
        return (
            f"ExecutionRecord(id={self.id[:8]}..., "
            f"email={self.email}, "
            f"status={self.status}, "
            f"attempts={self.attempts})"
        )


class AttemptUpdate(BaseModel):
    """Request body for reporting an attempt result"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: ExecutionStatus
    processed_at: Optional[datetime] = None
    error: Optional[str] = None
    worker_id: Optional[str] = None
