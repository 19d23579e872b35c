"""Task ORM model (reminder-relevant columns)."""
from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, ForeignKey, Index, String, Text, event
from sqlalchemy.dialects.postgresql import UUID

from reminder_service.db.base import Base
from reminder_service.db.types import UTCDateTime

OPEN_STATUSES = ("pending", "in-progress")
CLOSED_STATUSES = ("completed", "cancelled")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_user_status", "user_id", "status"),
        Index("ix_tasks_user_due_date", "user_id", "due_date"),
        Index("ix_tasks_reminder_scan", "reminder_enabled", "reminder_sent", "reminder_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(length=200), nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(String(length=20), nullable=False, default="pending")
    priority = Column(String(length=10), nullable=False, default="medium")
    due_date = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    archived = Column(Boolean, nullable=False, default=False)

    reminder_enabled = Column(Boolean, nullable=False, default=False)
    reminder_at = Column(UTCDateTime, nullable=True)
    reminder_sent = Column(Boolean, nullable=False, default=False)
    reminder_sent_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    last_modified = Column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)


@event.listens_for(Task.reminder_at, "set", active_history=True)
def _reset_sent_on_reschedule(target: Task, value, oldvalue, initiator) -> None:
    """A reminder moved to a new instant must be delivered again."""
    # oldvalue is a sentinel symbol while the object is being constructed.
    if not isinstance(oldvalue, datetime):
        return
    if value != oldvalue and target.reminder_sent:
        target.reminder_sent = False
        target.reminder_sent_at = None
