"""Schemas for notification triggers, summaries and push tokens."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class NotificationTokenRequest(BaseModel):
    user_id: UUID
    token: str = Field(..., min_length=10)
    platform: str | None = None
    device_name: str | None = None


class NotificationTokenResponse(BaseModel):
    registered: bool
    request_id: str


class ManualRunRequest(BaseModel):
    now: Optional[datetime] = Field(default=None, description="Override the cycle instant (defaults to the current time)")


class CycleReportResponse(BaseModel):
    attempted: int
    sent: int
    skipped: int
    failed: int
    duration_ms: float
    store_unavailable: bool
    overlapped: bool
    request_id: str


class DigestRunResponse(BaseModel):
    users_processed: int
    notifications_sent: int
    skipped: int
    failed: int
    duration_ms: float
    store_unavailable: bool
    request_id: str


class UpcomingTaskPayload(BaseModel):
    task_id: UUID
    title: str
    due_date: datetime
    priority: str


class SummaryResponse(BaseModel):
    user_id: UUID
    total_tasks: int
    completed: int
    pending: int
    overdue: int
    due_today: int
    completion_rate: int
    upcoming: List[UpcomingTaskPayload]
    request_id: str


class ReminderStatsResponse(BaseModel):
    total: int
    active: int
    sent: int
    overdue: int
    efficiency: int
    request_id: str
