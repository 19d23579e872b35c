"""User ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID

from reminder_service.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String(length=255), nullable=True)
    name = Column(String(length=100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
