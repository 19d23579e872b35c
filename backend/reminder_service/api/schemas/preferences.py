"""Schemas for notification preference endpoints."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class PreferencesResponse(BaseModel):
    user_id: UUID
    email_enabled: bool
    push_enabled: bool
    daily_digest_enabled: bool
    overdue_alerts_enabled: bool
    weekly_summary_enabled: bool
    request_id: str


class PreferencesUpdateRequest(BaseModel):
    user_id: UUID
    email_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    daily_digest_enabled: Optional[bool] = None
    overdue_alerts_enabled: Optional[bool] = None
    weekly_summary_enabled: Optional[bool] = None
