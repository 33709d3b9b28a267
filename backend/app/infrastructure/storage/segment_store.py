"""
Segment Store
Recipient groups that campaign runs are seeded from
"""
import logging
from datetime import datetime
from typing import List, Tuple

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from app.domain.errors import NotFoundError
from app.domain.models.segment import Segment, Recipient
from app.infrastructure.storage import models as db_models

logger = logging.getLogger(__name__)


class SegmentStore:

    def create(self, db: Session, name: str, description: str = None) -> Segment:
        row = db_models.Segment(
            id=db_models.new_id(),
            name=name,
            description=description,
            created_at=datetime.utcnow(),
        )
        db.add(row)
        db.flush()
        return self._to_segment(db, row)

    def get(self, db: Session, segment_id: str) -> Segment:
        return self._to_segment(db, self._get_row(db, segment_id))

    def add_members(self, db: Session, segment_id: str, members: List[Recipient]) -> Tuple[int, int]:
        """
        Add recipients, skipping emails already in the segment.

        Returns:
            (added, skipped)
        """
        self._get_row(db, segment_id)

        existing = set(db.scalars(
            select(db_models.SegmentMember.email).where(db_models.SegmentMember.segment_id == segment_id)
        ))

        added = 0
        skipped = 0
        for member in members:
            if member.email in existing:
                skipped += 1
                continue
            db.add(db_models.SegmentMember(
                segment_id=segment_id,
                email=member.email,
                name=member.name,
                created_at=datetime.utcnow(),
            ))
            existing.add(member.email)
            added += 1

        db.flush()
        logger.info(f"Segment {segment_id}: added {added} members, skipped {skipped} duplicates")
        return added, skipped

    def list_members(self, db: Session, segment_id: str, offset: int = 0, limit: int = None) -> Tuple[List[Recipient], int]:
        """Members in insertion order plus the total count."""
        self._get_row(db, segment_id)
        table = db_models.SegmentMember

        total = db.scalar(select(func.count()).select_from(table).where(table.segment_id == segment_id)) or 0

        stmt = select(table).where(table.segment_id == segment_id).order_by(table.id).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)

        members = [Recipient(email=row.email, name=row.name) for row in db.scalars(stmt)]
        return members, total

    def _get_row(self, db: Session, segment_id: str) -> db_models.Segment:
        row = db.get(db_models.Segment, segment_id)
        if row is None:
            raise NotFoundError(f"Segment {segment_id} not found")
        return row

    def _to_segment(self, db: Session, row: db_models.Segment) -> Segment:
        count = db.scalar(
            select(func.count()).select_from(db_models.SegmentMember)
            .where(db_models.SegmentMember.segment_id == row.id)
        ) or 0
        return Segment(
            id=row.id,
            name=row.name,
            description=row.description,
            member_count=count,
            created_at=row.created_at,
        )
