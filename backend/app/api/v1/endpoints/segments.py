"""
Segments API
Recipient groups that campaign runs are seeded from
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.v1.dependencies import get_db, get_segment_store
from app.domain.models.segment import MembersAdd, Segment, SegmentCreate
from app.infrastructure.storage.segment_store import SegmentStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/segments", tags=["segments"])


@router.post("/", status_code=201)
async def create_segment(
    body: SegmentCreate,
    db: Session = Depends(get_db),
    store: SegmentStore = Depends(get_segment_store),
):
    """Create a segment, optionally with initial members"""
    segment = store.create(db, body.name, body.description)
    added, skipped = 0, 0
    if body.members:
        added, skipped = store.add_members(db, segment.id, body.members)
        segment = store.get(db, segment.id)

    logger.info(f"Segment created: {segment.id} ({segment.name}, {added} members)")
    return {
        "segment": segment.model_dump(by_alias=True, mode="json"),
        "added": added,
        "skipped": skipped,
    }


@router.get("/{segment_id}", response_model=Segment)
async def get_segment(
    segment_id: str,
    db: Session = Depends(get_db),
    store: SegmentStore = Depends(get_segment_store),
):
    """Get segment details with its member count"""
    return store.get(db, segment_id)


@router.post("/{segment_id}/members")
async def add_segment_members(
    segment_id: str,
    body: MembersAdd,
    db: Session = Depends(get_db),
    store: SegmentStore = Depends(get_segment_store),
):
    """
    Bulk-add recipients.

    Emails already in the segment (case-insensitive) are skipped rather
    than rejected.
    """
    added, skipped = store.add_members(db, segment_id, body.members)
    segment = store.get(db, segment_id)
    return {
        "message": f"Added {added} members ({skipped} duplicates skipped)",
        "added": added,
        "skipped": skipped,
        "memberCount": segment.member_count,
    }


@router.get("/{segment_id}/members")
async def list_segment_members(
    segment_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    store: SegmentStore = Depends(get_segment_store),
):
    """List segment members in the order they were added"""
    members, total = store.list_members(
        db,
        segment_id,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    return {
        "items": [member.model_dump(mode="json") for member in members],
        "page": page,
        "pageSize": page_size,
        "total": total,
    }
