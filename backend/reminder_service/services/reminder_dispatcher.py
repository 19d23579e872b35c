"""Per-task reminder delivery.

The notifier is called first; the reminder is marked sent only after it
reports success, through the store's compare-and-swap.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from reminder_service.core.errors import (
    DeliveryFailed,
    OwnerNotFound,
    RecipientUnreachable,
    StoreUnavailable,
)
from reminder_service.core.time_utils import Clock, utc_now
from reminder_service.services.notifier import NotificationKind, Notifier, Recipient, TimeoutNotifier
from reminder_service.services.preferences_service import NotificationChannel
from reminder_service.services.task_store import Owner, TaskSnapshot, TaskStore

logger = logging.getLogger(__name__)


class DispatchOutcome(str, Enum):
    SENT = "sent"
    ALREADY_HANDLED = "already_handled"
    OWNER_MISSING = "owner_missing"
    DELIVERY_FAILED = "delivery_failed"
    STORE_ERROR = "store_error"


@dataclass(frozen=True)
class DispatchResult:
    task_id: UUID
    outcome: DispatchOutcome
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome in (DispatchOutcome.SENT, DispatchOutcome.ALREADY_HANDLED)


class ReminderDispatcher:
    """Delivers one reminder per due task and records it with a conditional update."""

    def __init__(
        self,
        store: TaskStore,
        notifier: Notifier,
        *,
        channel: NotificationChannel = NotificationChannel.EMAIL,
        disabled_channel_policy: str = "suppress",
        notify_timeout_seconds: float = 10.0,
        clock: Clock = utc_now,
    ) -> None:
        if disabled_channel_policy not in ("suppress", "recheck"):
            raise ValueError(f"Unknown disabled channel policy: {disabled_channel_policy}")
        self._store = store
        self._notifier = TimeoutNotifier(notifier, notify_timeout_seconds)
        self._channel = channel
        self._policy = disabled_channel_policy
        self._clock = clock

    @property
    def overrunning_notifications(self) -> int:
        return self._notifier.overrunning

    def dispatch(self, task: TaskSnapshot) -> DispatchResult:
        if task.reminder_at is None:
            return DispatchResult(task.id, DispatchOutcome.ALREADY_HANDLED, "no_reminder_at")

        try:
            owner = self._store.get_owner(task.user_id)
        except OwnerNotFound:
            logger.warning("Reminder skipped: owner missing task=%s user=%s", task.id, task.user_id)
            return DispatchResult(task.id, DispatchOutcome.OWNER_MISSING, "owner_not_found")
        except StoreUnavailable as exc:
            logger.warning("Reminder skipped: store unavailable task=%s error=%s", task.id, exc)
            return DispatchResult(task.id, DispatchOutcome.STORE_ERROR, str(exc))

        if not owner.preferences.channel_enabled(self._channel):
            return self._handle_disabled_channel(task, "channel_disabled")

        try:
            delivered, error = self._deliver(owner, task)
        except RecipientUnreachable as exc:
            logger.info("Reminder has no delivery target task=%s user=%s: %s", task.id, task.user_id, exc)
            return self._handle_disabled_channel(task, "no_delivery_target")
        if not delivered:
            logger.warning("Reminder delivery failed task=%s user=%s error=%s", task.id, task.user_id, error)
            return DispatchResult(task.id, DispatchOutcome.DELIVERY_FAILED, error)

        try:
            applied = self._store.mark_reminder_sent(task.id, task.reminder_at, sent_at=self._clock())
        except StoreUnavailable as exc:
            logger.error(
                "Reminder delivered but not recorded task=%s reminder_at=%s error=%s",
                task.id,
                task.reminder_at.isoformat(),
                exc,
            )
            return DispatchResult(task.id, DispatchOutcome.STORE_ERROR, str(exc))

        if not applied:
            logger.info(
                "Reminder delivered but already handled or rescheduled task=%s reminder_at=%s",
                task.id,
                task.reminder_at.isoformat(),
            )
            return DispatchResult(task.id, DispatchOutcome.ALREADY_HANDLED, "concurrent_edit")

        logger.info(
            "Task reminder sent user=%s task=%s reminder_at=%s",
            task.user_id,
            task.id,
            task.reminder_at.isoformat(),
        )
        return DispatchResult(task.id, DispatchOutcome.SENT)

    def _handle_disabled_channel(self, task: TaskSnapshot, reason: str) -> DispatchResult:
        if self._policy == "recheck":
            logger.debug("Reminder not deliverable (%s); rechecking next cycle task=%s", reason, task.id)
            return DispatchResult(task.id, DispatchOutcome.ALREADY_HANDLED, reason)
        try:
            suppressed = self._store.suppress_reminder(task.id, task.reminder_at)
        except StoreUnavailable as exc:
            return DispatchResult(task.id, DispatchOutcome.STORE_ERROR, str(exc))
        logger.info(
            "Reminder suppressed: %s on %s user=%s task=%s applied=%s",
            reason,
            self._channel.value,
            task.user_id,
            task.id,
            suppressed,
        )
        return DispatchResult(task.id, DispatchOutcome.ALREADY_HANDLED, reason)

    def _deliver(self, owner: Owner, task: TaskSnapshot) -> tuple[bool, Optional[str]]:
        recipient = Recipient(user_id=owner.id, email=owner.email, name=owner.name)
        payload = build_reminder_payload(task, self._clock())
        try:
            delivered = self._notifier.notify(recipient, NotificationKind.REMINDER, payload)
        except RecipientUnreachable:
            raise
        except DeliveryFailed as exc:
            return False, str(exc)
        except Exception as exc:  # noqa: BLE001 - any notifier error means "not delivered"
            return False, f"{type(exc).__name__}: {exc}"
        if not delivered:
            return False, "notifier reported failure"
        return True, None


def build_reminder_payload(task: TaskSnapshot, now: datetime) -> Dict[str, Any]:
    is_overdue = bool(task.due_date and task.due_date < now)
    return {
        "task_id": str(task.id),
        "title": task.title,
        "description": task.description or "No description",
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "priority": task.priority,
        "reminder_at": task.reminder_at.isoformat() if task.reminder_at else None,
        "is_overdue": is_overdue,
    }
