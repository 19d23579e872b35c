"""Schemas for task reminder editing."""
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class ReminderScheduleRequest(BaseModel):
    reminder_at: datetime


class ReminderStateResponse(BaseModel):
    task_id: UUID
    enabled: bool
    reminder_at: Optional[datetime]
    sent: bool
    request_id: str
