"""
Segment Models
Named recipient groups targeted by campaigns
"""
import re
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    """
    Normalize an email address for de-duplication.

    Raises:
        ValueError: If the address is not a plausible email
    """
    cleaned = email.strip().lower()
    if not cleaned:
        raise ValueError("Email cannot be empty")
    if not EMAIL_PATTERN.match(cleaned):
        raise ValueError(f"Invalid email address: {email}")
    return cleaned


class Recipient(BaseModel):
    email: str = Field(..., max_length=255)
    name: Optional[str] = Field(None, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return normalize_email(v)


class Segment(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    description: Optional[str] = None
    member_count: int = 0
    created_at: Optional[datetime] = None


class SegmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    members: List[Recipient] = Field(default_factory=list)


class MembersAdd(BaseModel):
    members: List[Recipient] = Field(..., min_length=1)
