from datetime import datetime, timezone
from uuid import UUID, uuid4
from typing import Optional
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UUIDMixin(SQLModel):
    id: Optional[UUID] = Field(default_factory=uuid4, primary_key=True)


class TimestampMixin(SQLModel):
    # Orphan reaping compares against aware datetimes, so keep the zone
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)
