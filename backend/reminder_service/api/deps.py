"""Shared API dependencies."""
from __future__ import annotations

from functools import lru_cache

from reminder_service.core.config import settings
from reminder_service.db.session import SessionLocal
from reminder_service.services.runtime import ReminderRuntime, build_runtime


@lru_cache
def get_runtime() -> ReminderRuntime:
    """Process-wide reminder components for manual triggers."""
    return build_runtime(settings, SessionLocal)
