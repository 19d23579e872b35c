"""Timezone helpers shared by the scanner and aggregator."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_bounds(now: datetime, tz_name: str) -> tuple[datetime, datetime]:
    """Inclusive [start, end] of the local day containing ``now``, as UTC instants.

    Both bounds derive from one conversion of ``now`` so they can never land on
    different local days.
    """
    local_now = ensure_utc(now).astimezone(ZoneInfo(tz_name))
    local_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    # Wall-clock arithmetic: the next local midnight, even across DST shifts.
    next_local_start = local_start + timedelta(days=1)
    start = local_start.astimezone(timezone.utc)
    end = next_local_start.astimezone(timezone.utc) - timedelta(microseconds=1)
    return start, end
