"""
Campaign Store
Campaign records and their flow definitions.

All methods take the caller's session so that services decide the
transaction boundaries (a lifecycle operation and the work it queues are
committed together).
"""
import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.domain.errors import NotFoundError
from app.domain.models.campaign import Campaign, CampaignCreate
from app.domain.models.flow import FlowData
from app.infrastructure.storage import models as db_models

logger = logging.getLogger(__name__)


def default_webhook_path(campaign_id: str) -> str:
    return f"campaign-{campaign_id}"


def to_campaign(row: db_models.Campaign) -> Campaign:
    """Convert a campaigns row to the domain model."""
    return Campaign.model_validate({
        "id": row.id,
        "name": row.name,
        "description": row.description,
        "status": row.status,
        "segment_id": row.segment_id,
        "flow_data": row.flow_data,
        "n8n_workflow_id": row.n8n_workflow_id,
        "webhook_path": row.webhook_path,
        "scheduled_at": row.scheduled_at,
        "start_date": row.start_date,
        "end_date": row.end_date,
        "deployed_at": row.deployed_at,
        "flow_updated_at": row.flow_updated_at,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
        "total_users_targeted": row.total_users_targeted or 0,
        "total_jobs_created": row.total_jobs_created or 0,
        "total_sent": row.total_sent or 0,
        "total_failed": row.total_failed or 0,
        "version": row.version or 1,
    })


class CampaignStore:
    """Campaign Store + Flow Definition Store"""

    def create(self, db: Session, data: CampaignCreate) -> Campaign:
        now = datetime.utcnow()
        row = db_models.Campaign(
            id=db_models.new_id(),
            name=data.name,
            description=data.description,
            status="draft",
            segment_id=data.segment_id,
            start_date=data.start_date,
            end_date=data.end_date,
            created_at=now,
            updated_at=now,
        )
        row.webhook_path = default_webhook_path(row.id)
        db.add(row)
        db.flush()
        logger.info(f"Campaign created: {row.id} ({row.name})")
        return to_campaign(row)

    def list(self, db: Session, status: Optional[str] = None) -> List[Campaign]:
        stmt = select(db_models.Campaign).order_by(db_models.Campaign.created_at.desc())
        if status:
            stmt = stmt.where(db_models.Campaign.status == status)
        return [to_campaign(row) for row in db.scalars(stmt)]

    def get_row(self, db: Session, campaign_id: str) -> db_models.Campaign:
        row = db.get(db_models.Campaign, campaign_id)
        if row is None:
            raise NotFoundError(f"Campaign {campaign_id} not found")
        return row

    def get(self, db: Session, campaign_id: str) -> Campaign:
        return to_campaign(self.get_row(db, campaign_id))

    def get_flow(self, db: Session, campaign_id: str) -> FlowData:
        row = self.get_row(db, campaign_id)
        if not row.flow_data:
            return FlowData.empty()
        return FlowData.model_validate(row.flow_data)

    def save_flow(self, db: Session, campaign_id: str, flow: FlowData) -> Campaign:
        """Replace the campaign's flow wholesale. Status is untouched."""
        row = self.get_row(db, campaign_id)
        now = datetime.utcnow()
        row.flow_data = flow.to_storage()
        row.flow_updated_at = now
        row.updated_at = now
        db.flush()
        return to_campaign(row)

    def compare_and_set_status(
        self,
        db: Session,
        campaign_id: str,
        expected: str,
        target: str,
        values: Optional[Dict[str, Any]] = None,
        expected_version: Optional[int] = None,
    ) -> bool:
        """
        Move status expected -> target only if nobody changed it meanwhile.

        With `expected_version` the row must also still be at that version,
        which rejects any status write that happened in between.

        Returns:
            True if this caller won the write, False if the row's status
            (or version) no longer matched.
        """
        table = db_models.Campaign
        conditions = [table.id == campaign_id, table.status == expected]
        if expected_version is not None:
            conditions.append(table.version == expected_version)
        stmt = (
            update(table)
            .where(*conditions)
            .values(
                status=target,
                version=table.version + 1,
                updated_at=datetime.utcnow(),
                **(values or {}),
            )
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        won = result.rowcount == 1
        if won:
            # keep identity-map copies in sync with the UPDATE we just issued
            row = db.get(table, campaign_id)
            if row is not None:
                db.refresh(row)
        return won

    def update_fields(self, db: Session, campaign_id: str, **values: Any) -> Campaign:
        row = self.get_row(db, campaign_id)
        for key, value in values.items():
            setattr(row, key, value)
        row.updated_at = datetime.utcnow()
        db.flush()
        return to_campaign(row)

    def list_due_scheduled(self, db: Session, now: datetime) -> List[str]:
        table = db_models.Campaign
        stmt = (
            select(table.id)
            .where(table.status == "scheduled", table.scheduled_at <= now)
            .order_by(table.scheduled_at)
        )
        return list(db.scalars(stmt))

    def list_ids_by_status(self, db: Session, status: str) -> List[str]:
        table = db_models.Campaign
        stmt = select(table.id).where(table.status == status).order_by(table.updated_at)
        return list(db.scalars(stmt))
