"""
Campaign Lifecycle Controller
State machine over campaign status; gates schedule / run / pause / resume
/ retry and orchestrates the ledger and the deployment service.

Status writes are compare-and-set on the status the caller observed, so
of two conflicting concurrent callers exactly one wins and the other gets
InvalidTransitionError.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session, sessionmaker

from app.domain.errors import (
    FlowValidationError,
    InvalidScheduleTimeError,
    InvalidTransitionError,
    WorkflowNotDeployedError,
)
from app.domain.models.campaign import (
    Campaign,
    CampaignStatus,
    RUNNABLE_STATUSES,
    SCHEDULABLE_STATUSES,
    allowed_transitions,
    can_transition,
)
from app.domain.models.execution_record import ExecutionStatus
from app.domain.services.deployment_service import WorkflowDeploymentService
from app.domain.services.execution_ledger import ExecutionLedger
from app.infrastructure.storage.campaign_store import CampaignStore
from app.infrastructure.storage.database import session_scope
from app.infrastructure.storage.segment_store import SegmentStore

logger = logging.getLogger(__name__)


def to_naive_utc(value: datetime) -> datetime:
    """Timestamps are stored as naive UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class CampaignLifecycleController:
    """
    Campaign state machine.

    Transition table (current -> allowed next):
        draft     -> scheduled
        scheduled -> running, draft
        running   -> paused, completed, failed
        paused    -> running, failed
        completed -> (terminal)
        failed    -> draft
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        ledger: ExecutionLedger,
        deployment: WorkflowDeploymentService,
        store: Optional[CampaignStore] = None,
        segments: Optional[SegmentStore] = None,
    ):
        self._session_factory = session_factory
        self.ledger = ledger
        self.deployment = deployment
        self.store = store or CampaignStore()
        self.segments = segments or SegmentStore()

    def _transition(
        self,
        db: Session,
        campaign: Campaign,
        target: CampaignStatus,
        values: Optional[Dict[str, Any]] = None,
        check_version: bool = False,
    ) -> None:
        """CAS the status; losing the race is reported as an invalid transition."""
        won = self.store.compare_and_set_status(
            db,
            campaign.id,
            campaign.status,
            target.value,
            values,
            expected_version=campaign.version if check_version else None,
        )
        if not won:
            raise InvalidTransitionError(
                f"Campaign {campaign.id} changed status concurrently; refresh and try again"
            )
        logger.info(f"Campaign {campaign.id}: {campaign.status} -> {target.value}")

    async def change_status(self, campaign_id: str, target: str) -> Campaign:
        """
        Move the campaign to `target` if the transition table allows it.

        scheduled -> running starts the run through run_now, so the campaign
        never becomes running without queued recipients.

        Raises:
            NotFoundError: Unknown campaign
            FlowValidationError: Unknown status value
            InvalidTransitionError: Not allowed from the current status
        """
        try:
            target_status = CampaignStatus(target)
        except ValueError:
            allowed = ", ".join(s.value for s in CampaignStatus)
            raise FlowValidationError(f"Unknown campaign status '{target}'. Expected one of: {allowed}")

        with session_scope(self._session_factory) as db:
            campaign = self.store.get(db, campaign_id)

        if not can_transition(campaign.status, target_status.value):
            options = ", ".join(sorted(s.value for s in allowed_transitions(campaign.status))) or "none"
            raise InvalidTransitionError(
                f"Cannot change status from '{campaign.status}' to '{target_status.value}' "
                f"(allowed: {options})"
            )

        if campaign.status == CampaignStatus.SCHEDULED.value and target_status == CampaignStatus.RUNNING:
            result = await self.run_now(campaign_id)
            return result["campaign"]

        with session_scope(self._session_factory) as db:
            now = datetime.utcnow()
            values: Dict[str, Any] = {}
            if target_status == CampaignStatus.RUNNING and campaign.start_date is None:
                values["start_date"] = now
            if target_status in (CampaignStatus.COMPLETED, CampaignStatus.FAILED):
                values["end_date"] = now

            self._transition(db, campaign, target_status, values)
            return self.store.get(db, campaign_id)

    def schedule(self, campaign_id: str, scheduled_at: datetime, now: Optional[datetime] = None) -> Campaign:
        """
        Schedule a deployed draft (or reschedule a scheduled) campaign.

        Raises:
            WorkflowNotDeployedError: No workflow, or status not draft/scheduled
            InvalidScheduleTimeError: scheduled_at is not in the future
        """
        scheduled_at = to_naive_utc(scheduled_at)
        now = to_naive_utc(now) if now else datetime.utcnow()

        with session_scope(self._session_factory) as db:
            campaign = self.store.get(db, campaign_id)

            if not campaign.is_deployed:
                raise WorkflowNotDeployedError("Deploy the campaign flow to n8n before scheduling it")
            if CampaignStatus(campaign.status) not in SCHEDULABLE_STATUSES:
                raise WorkflowNotDeployedError(
                    f"Only draft or scheduled campaigns can be scheduled (status is '{campaign.status}')"
                )
            if scheduled_at <= now:
                raise InvalidScheduleTimeError(
                    f"Scheduled time {scheduled_at.isoformat()} must be in the future"
                )

            self._transition(db, campaign, CampaignStatus.SCHEDULED, {"scheduled_at": scheduled_at})
            return self.store.get(db, campaign_id)

    async def run_now(self, campaign_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Start a campaign run immediately.

        Nothing is written until the engine accepted the trigger, and no
        transaction is open while the trigger is in flight. The status
        change and the seeded execution records are then committed together,
        guarded by the campaign version read before the trigger.

        Returns:
            {"execution_id", "queued", "campaign"}

        Raises:
            WorkflowNotDeployedError: No workflow, or status not runnable
            FlowValidationError: No recipients, or no trigger node
            InvalidTransitionError: Campaign changed while the trigger was in flight
        """
        now = now or datetime.utcnow()

        with session_scope(self._session_factory) as db:
            campaign = self.store.get(db, campaign_id)

            if not campaign.is_deployed:
                raise WorkflowNotDeployedError("Deploy the campaign flow to n8n before running it")
            if CampaignStatus(campaign.status) not in RUNNABLE_STATUSES:
                raise WorkflowNotDeployedError(
                    f"Campaign cannot be started from status '{campaign.status}'"
                )

            recipients = []
            if campaign.segment_id:
                recipients, _ = self.segments.list_members(db, campaign.segment_id)

        if not recipients:
            raise FlowValidationError(
                "Campaign has no recipients. Add members to its segment before running it."
            )

        result = await self.deployment.trigger_campaign(campaign, {
            "event": "run_started",
            "campaignId": campaign_id,
            "segmentId": campaign.segment_id,
            "recipients": len(recipients),
            "startedAt": now.isoformat(),
        })

        with session_scope(self._session_factory) as db:
            try:
                self._transition(db, campaign, CampaignStatus.RUNNING, {
                    "start_date": now,
                    "end_date": None,
                    "total_users_targeted": len(recipients),
                    "total_jobs_created": len(recipients),
                    "total_sent": 0,
                    "total_failed": 0,
                }, check_version=True)
            except InvalidTransitionError:
                logger.warning(
                    f"Campaign {campaign_id} changed while starting; "
                    f"engine execution {result.execution_id} was not recorded"
                )
                raise
            queued = self.ledger.seed(db, campaign_id, recipients)

            logger.info(
                f"Campaign {campaign_id} running: {queued} recipients queued "
                f"(execution={result.execution_id})"
            )
            return {
                "execution_id": result.execution_id,
                "queued": queued,
                "campaign": self.store.get(db, campaign_id),
            }

    def pause(self, campaign_id: str) -> Campaign:
        """Stop issuing new recipient work; in-flight sends finish."""
        return self._require_and_move(campaign_id, CampaignStatus.RUNNING, CampaignStatus.PAUSED)

    def resume(self, campaign_id: str) -> Campaign:
        """Continue from the next unprocessed recipient."""
        return self._require_and_move(campaign_id, CampaignStatus.PAUSED, CampaignStatus.RUNNING)

    def _require_and_move(self, campaign_id: str, required: CampaignStatus, target: CampaignStatus) -> Campaign:
        with session_scope(self._session_factory) as db:
            campaign = self.store.get(db, campaign_id)
            if campaign.status != required.value:
                raise InvalidTransitionError(
                    f"Campaign must be {required.value} to become {target.value} "
                    f"(status is '{campaign.status}')"
                )
            self._transition(db, campaign, target)
            return self.store.get(db, campaign_id)

    def retry_failed(self, campaign_id: str) -> int:
        """
        Requeue failed records as pending. Campaign status is unchanged;
        allowed at any status.

        Returns:
            Number of records requeued (0 when nothing had failed)
        """
        with session_scope(self._session_factory) as db:
            self.store.get(db, campaign_id)
            count = self.ledger.requeue_failed(db, campaign_id)

        if count:
            logger.info(f"Campaign {campaign_id}: requeued {count} failed records")
        return count

    def complete_if_finished(self, campaign_id: str) -> bool:
        """
        Mark a running campaign completed once every record reached a
        terminal state.

        Returns:
            True if this call completed the campaign
        """
        with session_scope(self._session_factory) as db:
            campaign = self.store.get(db, campaign_id)
            if campaign.status != CampaignStatus.RUNNING.value:
                return False

            counts = self.ledger.status_counts(db, campaign_id)
            total = sum(counts.values())
            open_records = counts.get(ExecutionStatus.PENDING.value, 0) + counts.get(ExecutionStatus.PROCESSING.value, 0)
            if total == 0 or open_records:
                return False

            won = self.store.compare_and_set_status(
                db,
                campaign_id,
                CampaignStatus.RUNNING.value,
                CampaignStatus.COMPLETED.value,
                {
                    "end_date": datetime.utcnow(),
                    "total_sent": counts.get(ExecutionStatus.SUCCESS.value, 0),
                    "total_failed": counts.get(ExecutionStatus.FAILED.value, 0),
                },
            )
            if won:
                logger.info(f"Campaign {campaign_id} completed ({total} recipients)")
            return won
