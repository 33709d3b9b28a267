"""
Progress Snapshot Model
Aggregate view of a campaign run, derived from execution records
"""
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional
from datetime import datetime, timedelta


class ProgressSnapshot(BaseModel):
    """Derived on every read; never persisted"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    campaign_id: str
    status: str
    total_recipients: int = 0
    processed_count: int = 0
    success_count: int = 0
    failed_count: int = 0
    pending_count: int = 0
    processing_count: int = 0
    progress_percent: float = Field(default=0.0, ge=0.0, le=100.0)
    scheduled_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    estimated_completion: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_counts(self) -> "ProgressSnapshot":
        if self.processed_count != self.success_count + self.failed_count:
            raise ValueError("processed_count must equal success_count + failed_count")
        return self

    @classmethod
    def from_counts(
        cls,
        campaign_id: str,
        status: str,
        counts: dict,
        scheduled_at: Optional[datetime] = None,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> "ProgressSnapshot":
        """
        Build a snapshot from per-status record counts.

        Args:
            counts: Mapping of execution status -> number of records
            now: Reference time for the completion estimate
        """
        success = counts.get("success", 0)
        failed = counts.get("failed", 0)
        pending = counts.get("pending", 0)
        processing = counts.get("processing", 0)
        total = success + failed + pending + processing
        processed = success + failed

        percent = round(processed / total * 100, 2) if total else 0.0

        estimated = None
        if completed_at is None and started_at and processed and processed < total:
            elapsed = (now or datetime.utcnow()) - started_at
            remaining = total - processed
            estimated = (now or datetime.utcnow()) + timedelta(
                seconds=elapsed.total_seconds() / processed * remaining
            )

        return cls(
            campaign_id=campaign_id,
            status=status,
            total_recipients=total,
            processed_count=processed,
            success_count=success,
            failed_count=failed,
            pending_count=pending,
            processing_count=processing,
            progress_percent=min(percent, 100.0),
            scheduled_at=scheduled_at,
            started_at=started_at,
            completed_at=completed_at,
            estimated_completion=estimated,
        )
