"""
Execution Scheduler
Decides when campaign work runs and hands recipients to the engine.

- Scheduled campaigns whose time has come are started through run_now
- Running campaigns have their pending recipients claimed in batches and
  triggered one by one; paused campaigns are skipped, which is how pause
  stops new work while already-claimed recipients finish
- Claims older than the claim timeout are released back to pending
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, List, Dict

from sqlalchemy.orm import sessionmaker

from app.domain.errors import CampaignError
from app.domain.models.campaign import Campaign, CampaignStatus
from app.domain.models.execution_record import ExecutionRecord, ExecutionStatus
from app.domain.services.deployment_service import WorkflowDeploymentService
from app.domain.services.execution_ledger import ExecutionLedger
from app.domain.services.lifecycle_controller import CampaignLifecycleController
from app.infrastructure.storage.campaign_store import CampaignStore
from app.infrastructure.storage.database import session_scope

logger = logging.getLogger(__name__)


class ExecutionScheduler:

    DEFAULT_BATCH_SIZE = 25
    DEFAULT_CLAIM_TIMEOUT = 300.0

    def __init__(
        self,
        session_factory: sessionmaker,
        controller: CampaignLifecycleController,
        ledger: ExecutionLedger,
        deployment: WorkflowDeploymentService,
        store: Optional[CampaignStore] = None,
        claim_timeout: float = DEFAULT_CLAIM_TIMEOUT,
    ):
        self._session_factory = session_factory
        self.controller = controller
        self.ledger = ledger
        self.deployment = deployment
        self.store = store or CampaignStore()
        self.claim_timeout = claim_timeout

    async def process_due_schedules(self, now: Optional[datetime] = None) -> List[str]:
        """
        Start every scheduled campaign whose scheduled time has passed.

        A campaign that fails to start is logged and left scheduled; the
        sweep carries on with the others.

        Returns:
            Ids of campaigns that were started
        """
        now = now or datetime.utcnow()
        with session_scope(self._session_factory) as db:
            due = self.store.list_due_scheduled(db, now)

        started: List[str] = []
        for campaign_id in due:
            try:
                result = await self.controller.run_now(campaign_id, now=now)
                started.append(campaign_id)
                logger.info(f"Scheduled campaign {campaign_id} started ({result['queued']} recipients)")
            except CampaignError as e:
                logger.warning(f"Scheduled campaign {campaign_id} could not start: {e.message}")

        return started

    async def dispatch_pending(
        self,
        worker_id: str,
        batch_size: int = DEFAULT_BATCH_SIZE,
        now: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """
        Claim and trigger one batch of pending recipients per running campaign.

        Returns:
            Counters: claimed, sent, failed, completed (campaigns finished)
        """
        now = now or datetime.utcnow()
        stale_before = now - timedelta(seconds=self.claim_timeout)
        stats = {"claimed": 0, "sent": 0, "failed": 0, "completed": 0}

        with session_scope(self._session_factory) as db:
            running = self.store.list_ids_by_status(db, CampaignStatus.RUNNING.value)

        for campaign_id in running:
            self.ledger.release_stale_claims(campaign_id, stale_before)

            with session_scope(self._session_factory) as db:
                campaign = self.store.get(db, campaign_id)

            records = self.ledger.claim_pending(campaign_id, worker_id, batch_size)
            stats["claimed"] += len(records)

            for record in records:
                if await self._dispatch_one(campaign, record, worker_id):
                    stats["sent"] += 1
                else:
                    stats["failed"] += 1

            if self.controller.complete_if_finished(campaign_id):
                stats["completed"] += 1

        return stats

    async def _dispatch_one(self, campaign: Campaign, record: ExecutionRecord, worker_id: str) -> bool:
        """Trigger the workflow for one recipient and record the outcome."""
        try:
            result = await self.deployment.trigger_campaign(campaign, {
                "event": "recipient",
                "campaignId": campaign.id,
                "executionId": record.id,
                "email": record.email,
                "name": record.name,
                "attempt": record.attempts,
            })
        except CampaignError as e:
            logger.warning(f"Dispatch of {record.email} for campaign {campaign.id} failed: {e.message}")
            return self._record_failure(record, worker_id, e.message)
        except Exception as e:
            logger.error(
                f"Unexpected error dispatching {record.email} for campaign {campaign.id}: {e}",
                exc_info=True,
            )
            return self._record_failure(record, worker_id, str(e) or type(e).__name__)

        self.ledger.record_attempt(
            record.id,
            ExecutionStatus.SUCCESS,
            worker_id=worker_id,
            engine_execution_id=result.execution_id,
        )
        return True

    def _record_failure(self, record: ExecutionRecord, worker_id: str, error: str) -> bool:
        self.ledger.record_attempt(
            record.id,
            ExecutionStatus.FAILED,
            worker_id=worker_id,
            error=error,
        )
        return False
