"""
Execution Ledger
Per-recipient attempt tracking for campaign runs.

Records are partitioned by recipient: a worker claims a record
(pending -> processing, claimed_by=worker) and only that worker reports
its outcome. Every write is a compare-and-set on the record's previous
status, so two writers racing on one record cannot both succeed and no
cross-recipient lock is needed.
"""
import logging
import math
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import select, update, delete, func, case
from sqlalchemy.orm import Session, sessionmaker

from app.domain.errors import FlowValidationError, InvalidTransitionError, NotFoundError
from app.domain.models.execution_record import (
    ExecutionRecord,
    ExecutionStatus,
    EXECUTION_TRANSITIONS,
    TERMINAL_EXECUTION_STATUSES,
    counts_as_attempt,
)
from app.domain.models.progress import ProgressSnapshot
from app.domain.models.segment import Recipient
from app.infrastructure.storage import models as db_models
from app.infrastructure.storage.database import session_scope

logger = logging.getLogger(__name__)


def to_record(row: db_models.ExecutionRecord) -> ExecutionRecord:
    return ExecutionRecord(
        id=row.id,
        campaign_id=row.campaign_id,
        email=row.email,
        name=row.name,
        status=row.status,
        attempts=row.attempts or 0,
        processed_at=row.processed_at,
        last_error=row.last_error,
        claimed_by=row.claimed_by,
        engine_execution_id=row.engine_execution_id,
        sequence=row.sequence,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _parse_status(value: Any) -> ExecutionStatus:
    try:
        return ExecutionStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in ExecutionStatus)
        raise FlowValidationError(f"Unknown execution status '{value}'. Expected one of: {allowed}")


class ExecutionLedger:
    """Execution records store plus progress aggregation"""

    DEFAULT_PAGE_SIZE = 20

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def seed(self, db: Session, campaign_id: str, recipients: List[Recipient]) -> int:
        """
        Start a fresh run: drop the previous run's records and insert one
        pending record per recipient, in order. Runs inside the caller's
        transaction.
        """
        table = db_models.ExecutionRecord
        db.execute(delete(table).where(table.campaign_id == campaign_id))

        now = datetime.utcnow()
        for sequence, recipient in enumerate(recipients, start=1):
            db.add(table(
                id=db_models.new_id(),
                campaign_id=campaign_id,
                sequence=sequence,
                email=recipient.email,
                name=recipient.name,
                status=ExecutionStatus.PENDING.value,
                attempts=0,
                created_at=now,
                updated_at=now,
            ))
        db.flush()
        return len(recipients)

    def record_attempt(
        self,
        execution_id: str,
        status: Any,
        processed_at: Optional[datetime] = None,
        worker_id: Optional[str] = None,
        error: Optional[str] = None,
        campaign_id: Optional[str] = None,
        engine_execution_id: Optional[str] = None,
    ) -> ExecutionRecord:
        """
        Move a record to `status`.

        Re-applying the record's current status is a no-op.

        Raises:
            NotFoundError: Unknown record (or not part of campaign_id)
            InvalidTransitionError: Transition not allowed, record owned by
                another worker, or a concurrent write won the race
        """
        target = _parse_status(status)

        with session_scope(self._session_factory) as db:
            row = db.get(db_models.ExecutionRecord, execution_id)
            if row is None or (campaign_id is not None and row.campaign_id != campaign_id):
                raise NotFoundError(f"Execution record {execution_id} not found")

            current = ExecutionStatus(row.status)
            if current == target:
                return to_record(row)

            if target not in EXECUTION_TRANSITIONS[current]:
                raise InvalidTransitionError(
                    f"Execution record cannot move from '{current.value}' to '{target.value}'"
                )

            if worker_id and row.claimed_by and row.claimed_by != worker_id:
                raise InvalidTransitionError(
                    f"Execution record {execution_id} is owned by worker {row.claimed_by}"
                )

            now = datetime.utcnow()
            table = db_models.ExecutionRecord
            values: Dict[str, Any] = {"status": target.value, "updated_at": now}

            if counts_as_attempt(current, target):
                values["attempts"] = table.attempts + 1

            if target == ExecutionStatus.PROCESSING:
                values["claimed_by"] = worker_id or row.claimed_by
            elif target in TERMINAL_EXECUTION_STATUSES:
                values["processed_at"] = processed_at or now
                values["last_error"] = error if target == ExecutionStatus.FAILED else None
                values["claimed_by"] = None
            else:
                # failed -> pending retry re-entry
                values["processed_at"] = None
                values["last_error"] = None
                values["claimed_by"] = None

            if engine_execution_id:
                values["engine_execution_id"] = engine_execution_id

            result = db.execute(
                update(table)
                .where(table.id == execution_id, table.status == current.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTransitionError(
                    f"Execution record {execution_id} was modified concurrently"
                )

            self._adjust_counters(db, row.campaign_id, current, target)
            db.refresh(row)

            logger.debug(f"Execution {execution_id}: {current.value} -> {target.value}")
            return to_record(row)

    def claim_pending(self, campaign_id: str, worker_id: str, limit: int) -> List[ExecutionRecord]:
        """
        Claim up to `limit` pending records in insertion order.

        Claimed records are processing, owned by `worker_id`, with one
        more attempt. Records grabbed by another worker in between are
        skipped.
        """
        table = db_models.ExecutionRecord
        claimed: List[ExecutionRecord] = []

        with session_scope(self._session_factory) as db:
            candidate_ids = list(db.scalars(
                select(table.id)
                .where(table.campaign_id == campaign_id, table.status == ExecutionStatus.PENDING.value)
                .order_by(table.sequence)
                .limit(limit)
            ))

            now = datetime.utcnow()
            for record_id in candidate_ids:
                result = db.execute(
                    update(table)
                    .where(table.id == record_id, table.status == ExecutionStatus.PENDING.value)
                    .values(
                        status=ExecutionStatus.PROCESSING.value,
                        claimed_by=worker_id,
                        attempts=table.attempts + 1,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    row = db.get(table, record_id)
                    db.refresh(row)
                    claimed.append(to_record(row))

        if claimed:
            logger.info(f"Worker {worker_id} claimed {len(claimed)} records of campaign {campaign_id}")
        return claimed

    def release_stale_claims(self, campaign_id: str, older_than: datetime) -> int:
        """
        Put records claimed before `older_than` and never reported back
        (worker crashed or lost its database) back to pending. Attempts are
        kept; the next claim counts a new one.

        Returns:
            Number of records released
        """
        table = db_models.ExecutionRecord
        with session_scope(self._session_factory) as db:
            result = db.execute(
                update(table)
                .where(
                    table.campaign_id == campaign_id,
                    table.status == ExecutionStatus.PROCESSING.value,
                    table.updated_at < older_than,
                )
                .values(
                    status=ExecutionStatus.PENDING.value,
                    claimed_by=None,
                    updated_at=datetime.utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount or 0

        if count:
            logger.warning(f"Released {count} stale claims of campaign {campaign_id}")
        return count

    def requeue_failed(self, db: Session, campaign_id: str) -> int:
        """Reset failed records to pending, keeping attempts. Returns the count."""
        table = db_models.ExecutionRecord
        result = db.execute(
            update(table)
            .where(table.campaign_id == campaign_id, table.status == ExecutionStatus.FAILED.value)
            .values(
                status=ExecutionStatus.PENDING.value,
                last_error=None,
                claimed_by=None,
                processed_at=None,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
        if count:
            campaigns = db_models.Campaign
            db.execute(
                update(campaigns)
                .where(campaigns.id == campaign_id)
                .values(total_failed=case(
                    (campaigns.total_failed > count, campaigns.total_failed - count),
                    else_=0,
                ))
                .execution_options(synchronize_session=False)
            )
        return count

    def _adjust_counters(
        self,
        db: Session,
        campaign_id: str,
        current: ExecutionStatus,
        target: ExecutionStatus,
    ) -> None:
        sent_delta = 0
        failed_delta = 0
        if target == ExecutionStatus.SUCCESS:
            sent_delta = 1
        elif target == ExecutionStatus.FAILED:
            failed_delta = 1
        elif current == ExecutionStatus.FAILED:
            failed_delta = -1

        if not sent_delta and not failed_delta:
            return

        campaigns = db_models.Campaign
        db.execute(
            update(campaigns)
            .where(campaigns.id == campaign_id)
            .values(
                total_sent=campaigns.total_sent + sent_delta,
                total_failed=campaigns.total_failed + failed_delta,
            )
            .execution_options(synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def status_counts(self, db: Session, campaign_id: str) -> Dict[str, int]:
        """Record count per status in a single aggregate read"""
        table = db_models.ExecutionRecord
        rows = db.execute(
            select(table.status, func.count())
            .where(table.campaign_id == campaign_id)
            .group_by(table.status)
        ).all()
        return {status: count for status, count in rows}

    def query(
        self,
        campaign_id: str,
        status: Optional[str] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Dict[str, Any]:
        """
        One page of records in insertion order.

        Returns:
            {"data", "page", "pageSize", "totalPages", "total"}; pages past
            the end come back with an empty data list.
        """
        if page < 1 or page_size < 1:
            raise FlowValidationError("page and limit must be >= 1")

        status_filter = _parse_status(status).value if status else None
        table = db_models.ExecutionRecord

        with session_scope(self._session_factory) as db:
            if db.get(db_models.Campaign, campaign_id) is None:
                raise NotFoundError(f"Campaign {campaign_id} not found")

            conditions = [table.campaign_id == campaign_id]
            if status_filter:
                conditions.append(table.status == status_filter)

            total = db.scalar(select(func.count()).select_from(table).where(*conditions)) or 0
            rows = db.scalars(
                select(table)
                .where(*conditions)
                .order_by(table.sequence)
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()

            return {
                "data": [to_record(row) for row in rows],
                "page": page,
                "pageSize": page_size,
                "totalPages": math.ceil(total / page_size) if total else 0,
                "total": total,
            }

    def snapshot(self, campaign_id: str, now: Optional[datetime] = None) -> ProgressSnapshot:
        """Aggregate progress over all of the campaign's records"""
        with session_scope(self._session_factory) as db:
            campaign = db.get(db_models.Campaign, campaign_id)
            if campaign is None:
                raise NotFoundError(f"Campaign {campaign_id} not found")

            counts = self.status_counts(db, campaign_id)
            completed_at = campaign.end_date if campaign.status in ("completed", "failed") else None

            return ProgressSnapshot.from_counts(
                campaign_id=campaign_id,
                status=campaign.status,
                counts=counts,
                scheduled_at=campaign.scheduled_at,
                started_at=campaign.start_date,
                completed_at=completed_at,
                now=now,
            )
