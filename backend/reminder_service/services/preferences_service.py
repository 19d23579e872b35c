"""Helpers for user notification preferences."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from reminder_service.db.models.user import User
from reminder_service.db.models.user_preferences import UserPreferences


class NotificationChannel(str, Enum):
    EMAIL = "email"
    PUSH = "push"


DEFAULTS = {
    "email_enabled": True,
    "push_enabled": True,
    "daily_digest_enabled": True,
    "overdue_alerts_enabled": True,
    "weekly_summary_enabled": True,
}


@dataclass(frozen=True)
class NotificationPreferences:
    """Immutable view of a user's notification settings; absent rows mean defaults."""

    email_enabled: bool = True
    push_enabled: bool = True
    daily_digest_enabled: bool = True
    overdue_alerts_enabled: bool = True
    weekly_summary_enabled: bool = True

    @classmethod
    def from_model(cls, prefs: UserPreferences | None) -> "NotificationPreferences":
        if prefs is None:
            return cls(**DEFAULTS)
        values = {}
        for field, default in DEFAULTS.items():
            raw = getattr(prefs, field, None)
            values[field] = default if raw is None else bool(raw)
        return cls(**values)

    def channel_enabled(self, channel: NotificationChannel) -> bool:
        if channel is NotificationChannel.EMAIL:
            return self.email_enabled
        if channel is NotificationChannel.PUSH:
            return self.push_enabled
        return False


def load_notification_preferences(db: Session, user_id: UUID) -> NotificationPreferences:
    return NotificationPreferences.from_model(db.get(UserPreferences, user_id))


def get_or_create_preferences(db: Session, user_id: UUID) -> UserPreferences:
    if not db.get(User, user_id):
        raise ValueError("User not found")

    prefs = db.get(UserPreferences, user_id)
    if not prefs:
        prefs = UserPreferences(user_id=user_id, **DEFAULTS)
        db.add(prefs)
        db.commit()
        db.refresh(prefs)
    return prefs


def update_preferences(
    db: Session,
    *,
    user_id: UUID,
    email_enabled: Optional[bool] = None,
    push_enabled: Optional[bool] = None,
    daily_digest_enabled: Optional[bool] = None,
    overdue_alerts_enabled: Optional[bool] = None,
    weekly_summary_enabled: Optional[bool] = None,
) -> UserPreferences:
    prefs = get_or_create_preferences(db, user_id)
    requested = {
        "email_enabled": email_enabled,
        "push_enabled": push_enabled,
        "daily_digest_enabled": daily_digest_enabled,
        "overdue_alerts_enabled": overdue_alerts_enabled,
        "weekly_summary_enabled": weekly_summary_enabled,
    }
    changed = False
    for field, value in requested.items():
        if value is not None and value != getattr(prefs, field):
            setattr(prefs, field, value)
            changed = True

    if changed:
        db.add(prefs)
        db.commit()
        db.refresh(prefs)
    return prefs
