from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest

from fakes import FailingNotifier, FakeTaskStore, HangingNotifier, RecordingNotifier, UnreachableNotifier
from helpers import utc
from reminder_service.core.errors import StoreUnavailable
from reminder_service.services.notifier import NotificationKind
from reminder_service.services.preferences_service import NotificationChannel, NotificationPreferences
from reminder_service.services.reminder_dispatcher import (
    DispatchOutcome,
    ReminderDispatcher,
    build_reminder_payload,
)

NOW = utc(2024, 6, 15, 12, 0)


@pytest.fixture()
def dispatchers():
    def _build(store, notifier, **kwargs):
        kwargs.setdefault("clock", lambda: NOW)
        return ReminderDispatcher(store, notifier, **kwargs)

    return _build


def test_notifies_before_marking_sent(dispatchers):
    events = []
    store = FakeTaskStore(events=events)
    notifier = RecordingNotifier(events=events)
    task = store.add_task(store.add_owner(), NOW - timedelta(minutes=1))

    result = dispatchers(store, notifier).dispatch(task)

    assert result.outcome is DispatchOutcome.SENT
    assert [name for name, _ in events] == ["notify", "mark"]
    recipient, kind, payload = notifier.calls[0]
    assert kind is NotificationKind.REMINDER
    assert recipient.user_id == task.user_id
    assert payload["task_id"] == str(task.id)
    assert store.is_sent(task.id)


def test_failed_delivery_is_not_marked(dispatchers):
    store = FakeTaskStore()
    task = store.add_task(store.add_owner(), NOW)

    result = dispatchers(store, FailingNotifier()).dispatch(task)

    assert result.outcome is DispatchOutcome.DELIVERY_FAILED
    assert "gateway rejected" in result.detail
    assert store.cas_attempts == 0
    assert not store.is_sent(task.id)


def test_notifier_returning_false_is_a_failure(dispatchers):
    store = FakeTaskStore()
    task = store.add_task(store.add_owner(), NOW)

    result = dispatchers(store, RecordingNotifier(result=False)).dispatch(task)

    assert result.outcome is DispatchOutcome.DELIVERY_FAILED
    assert not store.is_sent(task.id)


def test_hung_notifier_times_out(dispatchers):
    store = FakeTaskStore()
    task = store.add_task(store.add_owner(), NOW)
    notifier = HangingNotifier()

    try:
        result = dispatchers(store, notifier, notify_timeout_seconds=0.05).dispatch(task)
    finally:
        notifier.release.set()

    assert result.outcome is DispatchOutcome.DELIVERY_FAILED
    assert "timed out" in result.detail
    assert store.cas_attempts == 0


def test_hung_calls_do_not_starve_later_deliveries(dispatchers):
    store = FakeTaskStore()
    owner = store.add_owner()
    stuck = [store.add_task(owner, NOW), store.add_task(owner, NOW), store.add_task(owner, NOW)]
    healthy = store.add_task(owner, NOW)
    notifier = HangingNotifier(hang_for={task.id for task in stuck})
    dispatcher = dispatchers(store, notifier, notify_timeout_seconds=0.2)

    try:
        stuck_results = [dispatcher.dispatch(task) for task in stuck]
        assert dispatcher.overrunning_notifications == 3
        result = dispatcher.dispatch(healthy)
    finally:
        notifier.release.set()

    assert [r.outcome for r in stuck_results] == [DispatchOutcome.DELIVERY_FAILED] * 3
    assert result.outcome is DispatchOutcome.SENT
    assert store.is_sent(healthy.id)
    assert not any(store.is_sent(task.id) for task in stuck)


def test_unreachable_recipient_is_suppressed_not_retried(dispatchers):
    store = FakeTaskStore()
    task = store.add_task(store.add_owner(), NOW)
    notifier = UnreachableNotifier()
    dispatcher = dispatchers(store, notifier, channel=NotificationChannel.PUSH)

    result = dispatcher.dispatch(task)

    assert result.outcome is DispatchOutcome.ALREADY_HANDLED
    assert result.detail == "no_delivery_target"
    assert result.ok
    assert store.cas_attempts == 0
    assert store.find_due_reminders(NOW) == []
    assert notifier.calls == 1


def test_unreachable_recipient_recheck_keeps_reminder_armed(dispatchers):
    store = FakeTaskStore()
    task = store.add_task(store.add_owner(), NOW)
    dispatcher = dispatchers(
        store,
        UnreachableNotifier(),
        channel=NotificationChannel.PUSH,
        disabled_channel_policy="recheck",
    )

    result = dispatcher.dispatch(task)

    assert result.outcome is DispatchOutcome.ALREADY_HANDLED
    assert result.detail == "no_delivery_target"
    assert [due.id for due in store.find_due_reminders(NOW)] == [task.id]


def test_missing_owner_is_skipped(dispatchers):
    store = FakeTaskStore()
    notifier = RecordingNotifier()
    task = store.add_task(uuid4(), NOW)

    result = dispatchers(store, notifier).dispatch(task)

    assert result.outcome is DispatchOutcome.OWNER_MISSING
    assert notifier.calls == []


def test_concurrent_edit_reports_already_handled(dispatchers):
    store = FakeTaskStore()
    task = store.add_task(store.add_owner(), NOW)
    store.reschedule(task.id, NOW + timedelta(hours=1))

    result = dispatchers(store, RecordingNotifier()).dispatch(task)

    assert result.outcome is DispatchOutcome.ALREADY_HANDLED
    assert result.detail == "concurrent_edit"
    assert not store.is_sent(task.id)


def test_store_failure_while_marking(dispatchers):
    class Store(FakeTaskStore):
        def mark_reminder_sent(self, task_id, expected_reminder_at, sent_at=None):
            raise StoreUnavailable("timeout")

    store = Store()
    task = store.add_task(store.add_owner(), NOW)

    result = dispatchers(store, RecordingNotifier()).dispatch(task)

    assert result.outcome is DispatchOutcome.STORE_ERROR
    assert not result.ok


def test_disabled_channel_suppresses_reminder(dispatchers):
    store = FakeTaskStore()
    owner = store.add_owner(preferences=NotificationPreferences(email_enabled=False))
    task = store.add_task(owner, NOW)
    notifier = RecordingNotifier()

    result = dispatchers(store, notifier).dispatch(task)

    assert result.outcome is DispatchOutcome.ALREADY_HANDLED
    assert result.detail == "channel_disabled"
    assert notifier.calls == []
    assert store.find_due_reminders(NOW) == []


def test_disabled_channel_recheck_keeps_reminder_armed(dispatchers):
    store = FakeTaskStore()
    owner = store.add_owner(preferences=NotificationPreferences(push_enabled=False))
    task = store.add_task(owner, NOW)
    notifier = RecordingNotifier()

    result = dispatchers(
        store,
        notifier,
        channel=NotificationChannel.PUSH,
        disabled_channel_policy="recheck",
    ).dispatch(task)

    assert result.outcome is DispatchOutcome.ALREADY_HANDLED
    assert notifier.calls == []
    assert [due.id for due in store.find_due_reminders(NOW)] == [task.id]


def test_unknown_policy_is_rejected():
    with pytest.raises(ValueError):
        ReminderDispatcher(FakeTaskStore(), RecordingNotifier(), disabled_channel_policy="drop")


def test_reminder_payload_flags_overdue_tasks():
    store = FakeTaskStore()
    task = store.add_task(uuid4(), NOW, title="Pay rent", due_date=NOW - timedelta(days=1))

    payload = build_reminder_payload(task, NOW)

    assert payload["title"] == "Pay rent"
    assert payload["is_overdue"] is True
    assert payload["description"] == "No description"
    assert payload["reminder_at"] == NOW.isoformat()
