"""Outbound notifier implementations.

The core only selects structured payload fields; rendering and transport
belong to whatever sits behind the notifier.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol
from uuid import UUID

import httpx

from reminder_service.core.config import Settings
from reminder_service.core.errors import DeliveryFailed, RecipientUnreachable

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    REMINDER = "reminder"
    DAILY_DIGEST = "daily_digest"
    OVERDUE_ALERT = "overdue_alert"
    WEEKLY_SUMMARY = "weekly_summary"


@dataclass(frozen=True)
class Recipient:
    user_id: UUID
    email: Optional[str] = None
    name: Optional[str] = None


class Notifier(Protocol):
    def notify(self, recipient: Recipient, kind: NotificationKind, payload: Mapping[str, Any]) -> bool:
        """Deliver one notification.

        False or DeliveryFailed means not delivered; RecipientUnreachable means
        the recipient has nowhere to receive it on this channel.
        """
        ...


class LoggingNotifier:
    """Writes notifications to the log; used when no provider is configured."""

    def notify(self, recipient: Recipient, kind: NotificationKind, payload: Mapping[str, Any]) -> bool:
        logger.info(
            "Notification kind=%s user=%s email=%s payload_keys=%s",
            kind.value,
            recipient.user_id,
            recipient.email,
            sorted(payload),
        )
        return True


class WebhookNotifier:
    """POSTs notifications to a delivery gateway (email, chat, etc.)."""

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        if not url:
            raise ValueError("NOTIFICATIONS_WEBHOOK_URL is required for the webhook provider")
        self._url = url
        self._timeout = timeout

    def notify(self, recipient: Recipient, kind: NotificationKind, payload: Mapping[str, Any]) -> bool:
        body = {
            "recipient": {
                "user_id": str(recipient.user_id),
                "email": recipient.email,
                "name": recipient.name,
            },
            "kind": kind.value,
            "payload": dict(payload),
        }
        headers = {"accept": "application/json", "content-type": "application/json"}
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.post(self._url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise DeliveryFailed(f"Webhook request failed: {exc}") from exc
        if response.status_code >= 400:
            raise DeliveryFailed(f"Webhook rejected notification: {response.status_code} {response.text}")
        return True


class ExpoPushNotifier:
    """Sends push notifications to every active device token of the recipient."""

    def __init__(
        self,
        url: str,
        token_lookup: Callable[[UUID], List[str]],
        timeout: float = 10.0,
        title: str = "Task reminder",
    ) -> None:
        self._url = url
        self._token_lookup = token_lookup
        self._timeout = timeout
        self._title = title

    def notify(self, recipient: Recipient, kind: NotificationKind, payload: Mapping[str, Any]) -> bool:
        tokens = self._token_lookup(recipient.user_id)
        if not tokens:
            logger.info("No active push tokens user=%s kind=%s", recipient.user_id, kind.value)
            raise RecipientUnreachable(f"No active push tokens for user {recipient.user_id}")

        body = _push_body(kind, payload)
        messages = [
            {
                "to": token,
                "title": self._title,
                "body": body,
                "sound": "default",
                "data": {"kind": kind.value, **_jsonable(payload)},
            }
            for token in tokens
        ]
        headers = {"accept": "application/json", "content-type": "application/json"}
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.post(self._url, json=messages, headers=headers)
        except httpx.HTTPError as exc:
            raise DeliveryFailed(f"Push request failed: {exc}") from exc
        if response.status_code >= 400:
            raise DeliveryFailed(f"Failed to send push notification: {response.text}")
        return True


class TimeoutNotifier:
    """Bounds every call of the wrapped notifier to ``timeout`` seconds.

    Each call runs on its own daemon thread, so a call that never returns
    holds only that thread and later calls are not queued behind it.
    """

    def __init__(self, notifier: Notifier, timeout: float) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self._notifier = notifier
        self._timeout = timeout
        self._lock = threading.Lock()
        self._overrunning = 0

    @property
    def overrunning(self) -> int:
        """Number of timed-out calls whose thread has not returned yet."""
        with self._lock:
            return self._overrunning

    def notify(self, recipient: Recipient, kind: NotificationKind, payload: Mapping[str, Any]) -> bool:
        done = threading.Event()
        state: Dict[str, Any] = {"abandoned": False}

        def run() -> None:
            try:
                state["value"] = self._notifier.notify(recipient, kind, payload)
            except Exception as exc:  # noqa: BLE001 - re-raised on the calling thread
                state["error"] = exc
            finally:
                with self._lock:
                    done.set()
                    if state["abandoned"]:
                        self._overrunning -= 1

        worker = threading.Thread(target=run, name=f"notify_{kind.value}", daemon=True)
        worker.start()
        done.wait(self._timeout)
        with self._lock:
            if not done.is_set():
                state["abandoned"] = True
                self._overrunning += 1
                overrunning = self._overrunning
        if state["abandoned"]:
            logger.warning(
                "Notifier call abandoned after %.1fs kind=%s user=%s overrunning=%s",
                self._timeout,
                kind.value,
                recipient.user_id,
                overrunning,
            )
            raise DeliveryFailed(f"notifier timed out after {self._timeout:.1f}s")
        if "error" in state:
            raise state["error"]
        return bool(state.get("value"))


def _push_body(kind: NotificationKind, payload: Mapping[str, Any]) -> str:
    if kind is NotificationKind.REMINDER:
        return f"Reminder: {payload.get('title', 'a task')}"
    if kind is NotificationKind.OVERDUE_ALERT:
        return f"You have {payload.get('count', 0)} overdue task(s)."
    if kind is NotificationKind.DAILY_DIGEST:
        return f"{payload.get('due_today', 0)} due today, {payload.get('overdue', 0)} overdue."
    return f"Completed {payload.get('completed_tasks', 0)} task(s) this week."


def _jsonable(payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in payload.items() if isinstance(value, (str, int, float, bool)) or value is None}


def build_notifier(settings: Settings, token_lookup: Callable[[UUID], List[str]] | None = None) -> Notifier:
    provider = settings.notifications_provider
    if provider == "webhook":
        return WebhookNotifier(settings.notifications_webhook_url or "", timeout=settings.notify_timeout_seconds)
    if provider == "expo":
        if token_lookup is None:
            raise ValueError("The expo provider requires a push token lookup")
        return ExpoPushNotifier(settings.expo_push_url, token_lookup, timeout=settings.notify_timeout_seconds)
    return LoggingNotifier()
