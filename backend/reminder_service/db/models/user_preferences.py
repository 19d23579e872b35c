"""User notification preferences ORM model."""
from __future__ import annotations

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, func, true
from sqlalchemy.dialects.postgresql import UUID

from reminder_service.db.base import Base


class UserPreferences(Base):
    __tablename__ = "user_preferences"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    email_enabled = Column(Boolean, nullable=False, server_default=true())
    push_enabled = Column(Boolean, nullable=False, server_default=true())
    daily_digest_enabled = Column(Boolean, nullable=False, server_default=true())
    overdue_alerts_enabled = Column(Boolean, nullable=False, server_default=true())
    weekly_summary_enabled = Column(Boolean, nullable=False, server_default=true())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
