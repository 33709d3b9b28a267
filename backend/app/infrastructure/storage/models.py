"""
SQLAlchemy Database Models
Tables backing the campaign controller
"""
from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime
import uuid

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


class Campaign(Base):
    """Campaign model - maps to campaigns table"""
    __tablename__ = "campaigns"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    status = Column(String(50), nullable=False, default="draft", index=True)
    segment_id = Column(String(36), ForeignKey("segments.id", ondelete="SET NULL"))
    flow_data = Column(JSON)
    n8n_workflow_id = Column(String(100))
    webhook_path = Column(String(255))
    scheduled_at = Column(DateTime)
    start_date = Column(DateTime)
    end_date = Column(DateTime)
    deployed_at = Column(DateTime)
    flow_updated_at = Column(DateTime)
    total_users_targeted = Column(Integer, nullable=False, default=0)
    total_jobs_created = Column(Integer, nullable=False, default=0)
    total_sent = Column(Integer, nullable=False, default=0)
    total_failed = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    executions = relationship("ExecutionRecord", back_populates="campaign", cascade="all, delete-orphan")
    segment = relationship("Segment")


class ExecutionRecord(Base):
    """Execution record model - maps to execution_records table"""
    __tablename__ = "execution_records"
    __table_args__ = (
        Index("ix_execution_records_campaign_sequence", "campaign_id", "sequence"),
        Index("ix_execution_records_campaign_status", "campaign_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    campaign_id = Column(String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False)
    sequence = Column(Integer, nullable=False)
    email = Column(String(255), nullable=False)
    name = Column(String(255))
    status = Column(String(20), nullable=False, default="pending")
    attempts = Column(Integer, nullable=False, default=0)
    processed_at = Column(DateTime)
    last_error = Column(Text)
    claimed_by = Column(String(100))
    engine_execution_id = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    campaign = relationship("Campaign", back_populates="executions")


class Segment(Base):
    """Segment model - maps to segments table"""
    __tablename__ = "segments"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    members = relationship("SegmentMember", back_populates="segment", cascade="all, delete-orphan")


class SegmentMember(Base):
    """Segment member model - maps to segment_members table"""
    __tablename__ = "segment_members"
    __table_args__ = (
        UniqueConstraint("segment_id", "email", name="uq_segment_members_segment_email"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    segment_id = Column(String(36), ForeignKey("segments.id", ondelete="CASCADE"), nullable=False)
    email = Column(String(255), nullable=False)
    name = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    segment = relationship("Segment", back_populates="members")
