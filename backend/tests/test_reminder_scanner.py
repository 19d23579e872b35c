from __future__ import annotations

import threading
from collections import Counter
from datetime import timedelta
from uuid import uuid4

import pytest

from fakes import FailingNotifier, FakeTaskStore, RecordingNotifier
from helpers import load_task, seed_task, seed_user, utc
from reminder_service.services.reminder_dispatcher import DispatchOutcome, DispatchResult, ReminderDispatcher
from reminder_service.services.reminder_scanner import CycleReport, ReminderScanner
from reminder_service.services.task_store import TaskStore

NOW = utc(2024, 6, 15, 12, 0)


@pytest.fixture()
def build():
    def _build(store, notifier, **kwargs):
        dispatcher = ReminderDispatcher(store, notifier, clock=lambda: NOW)
        return ReminderScanner(store, dispatcher, **kwargs)

    return _build


def test_running_cycle_twice_sends_once(session_factory, build):
    store = TaskStore(session_factory)
    notifier = RecordingNotifier()
    user_id = seed_user(session_factory)
    task_id = seed_task(session_factory, user_id, reminder_at=NOW - timedelta(minutes=1))
    scanner = build(store, notifier)

    first = scanner.run_cycle(NOW)
    second = scanner.run_cycle(NOW + timedelta(minutes=1))

    assert (first.attempted, first.sent) == (1, 1)
    assert (second.attempted, second.sent) == (0, 0)
    assert notifier.count(task_id) == 1
    assert load_task(session_factory, task_id).reminder_sent is True


def test_reminder_due_long_ago_fires_once(session_factory, build):
    store = TaskStore(session_factory)
    notifier = RecordingNotifier()
    user_id = seed_user(session_factory)
    task_id = seed_task(session_factory, user_id, reminder_at=NOW - timedelta(days=3))

    report = build(store, notifier).run_cycle(NOW)

    assert report.sent == 1
    assert notifier.count(task_id) == 1


def test_rescheduled_reminder_is_delivered_again(session_factory, build):
    store = TaskStore(session_factory)
    notifier = RecordingNotifier()
    user_id = seed_user(session_factory)
    task_id = seed_task(session_factory, user_id, reminder_at=NOW - timedelta(minutes=1))
    scanner = build(store, notifier)

    scanner.run_cycle(NOW)
    store.schedule_reminder(task_id, NOW + timedelta(hours=1))
    assert scanner.run_cycle(NOW + timedelta(minutes=30)).sent == 0
    report = scanner.run_cycle(NOW + timedelta(hours=1))

    assert report.sent == 1
    assert notifier.count(task_id) == 2


def test_completed_task_is_not_reminded(session_factory, build):
    store = TaskStore(session_factory)
    notifier = RecordingNotifier()
    user_id = seed_user(session_factory)
    seed_task(session_factory, user_id, reminder_at=NOW, status="completed")

    report = build(store, notifier).run_cycle(NOW)

    assert report.attempted == 0
    assert notifier.calls == []


def test_one_failure_does_not_block_the_rest(session_factory, build):
    store = TaskStore(session_factory)
    user_id = seed_user(session_factory)
    failing = seed_task(session_factory, user_id, reminder_at=NOW - timedelta(minutes=2))
    ok_ids = [seed_task(session_factory, user_id, reminder_at=NOW - timedelta(minutes=1)) for _ in range(3)]
    notifier = FailingNotifier(fail_for={failing})

    report = build(store, notifier, worker_limit=2).run_cycle(NOW)

    assert (report.attempted, report.sent, report.failed) == (4, 3, 1)
    assert sorted(notifier.delivered) == sorted(str(task_id) for task_id in ok_ids)
    assert load_task(session_factory, failing).reminder_sent is False

    retry = build(store, RecordingNotifier()).run_cycle(NOW + timedelta(minutes=1))
    assert retry.sent == 1


def test_owner_missing_is_counted_as_skipped(build):
    store = FakeTaskStore()
    store.add_task(uuid4(), NOW)
    store.add_task(store.add_owner(), NOW)

    report = build(store, RecordingNotifier()).run_cycle(NOW)

    assert (report.attempted, report.sent, report.skipped, report.failed) == (2, 1, 1, 0)


def test_bounded_pool_attempts_each_task_once(build):
    store = FakeTaskStore()
    owner = store.add_owner()
    tasks = [store.add_task(owner, NOW - timedelta(seconds=index)) for index in range(100)]
    notifier = RecordingNotifier()

    report = build(store, notifier, worker_limit=5).run_cycle(NOW)

    assert report.attempted == 100
    assert report.sent == 100
    assert store.cas_attempts == 100
    assert len(notifier.calls) <= 100
    assert all(store.marks_applied[task.id] == 1 for task in tasks)


def test_duplicate_rows_in_one_fetch_dispatch_once(build):
    class DuplicatingStore(FakeTaskStore):
        def find_due_reminders(self, as_of, lookahead=timedelta(0), limit=None):
            due = super().find_due_reminders(as_of, lookahead, limit)
            return due + due

    store = DuplicatingStore()
    task = store.add_task(store.add_owner(), NOW)
    notifier = RecordingNotifier()

    report = build(store, notifier).run_cycle(NOW)

    assert report.attempted == 1
    assert notifier.count(task.id) == 1


def test_overlapping_cycles_never_double_mark(build):
    store = FakeTaskStore()
    owner = store.add_owner()
    tasks = [store.add_task(owner, NOW) for _ in range(20)]
    notifier = RecordingNotifier(delay=0.02)
    scanner = build(store, notifier, worker_limit=5)

    reports = []
    lock = threading.Lock()

    def run():
        report = scanner.run_cycle(NOW)
        with lock:
            reports.append(report)

    threads = [threading.Thread(target=run) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(report.sent for report in reports) == 20
    assert all(store.marks_applied[task.id] == 1 for task in tasks)
    assert all(store.is_sent(task.id) for task in tasks)


def test_overlapping_cycles_on_the_database_mark_each_task_once(session_factory, build):
    class CountingStore(TaskStore):
        def __init__(self, factory):
            super().__init__(factory)
            self.applied = Counter()
            self._lock = threading.Lock()

        def mark_reminder_sent(self, task_id, expected_reminder_at, sent_at=None):
            applied = super().mark_reminder_sent(task_id, expected_reminder_at, sent_at=sent_at)
            if applied:
                with self._lock:
                    self.applied[task_id] += 1
            return applied

    store = CountingStore(session_factory)
    user_id = seed_user(session_factory)
    task_ids = [seed_task(session_factory, user_id, reminder_at=NOW - timedelta(minutes=1)) for _ in range(10)]
    notifier = RecordingNotifier(delay=0.02)
    scanner = build(store, notifier, worker_limit=3)

    reports = []
    lock = threading.Lock()

    def run():
        report = scanner.run_cycle(NOW)
        with lock:
            reports.append(report)

    threads = [threading.Thread(target=run) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(report.sent for report in reports) == 10
    assert all(store.applied[task_id] == 1 for task_id in task_ids)
    assert all(load_task(session_factory, task_id).reminder_sent for task_id in task_ids)
    assert all(notifier.count(task_id) <= 2 for task_id in task_ids)
    assert scanner.run_cycle(NOW + timedelta(minutes=1)).attempted == 0


def test_skip_if_running_reports_overlap(build):
    store = FakeTaskStore()
    store.add_task(store.add_owner(), NOW)
    started = threading.Event()
    release = threading.Event()

    class BlockingNotifier(RecordingNotifier):
        def notify(self, recipient, kind, payload):
            started.set()
            release.wait(5)
            return super().notify(recipient, kind, payload)

    scanner = build(store, BlockingNotifier(), skip_if_running=True)
    results = []
    worker = threading.Thread(target=lambda: results.append(scanner.run_cycle(NOW)))
    worker.start()
    try:
        assert started.wait(5)
        overlapped = scanner.run_cycle(NOW)
    finally:
        release.set()
        worker.join()

    assert overlapped.overlapped is True
    assert overlapped.attempted == 0
    assert results[0].sent == 1


def test_empty_due_set_reports_zeros(build):
    report = build(FakeTaskStore(), RecordingNotifier()).run_cycle(NOW)

    assert report.to_dict() | {"duration_ms": 0.0} == CycleReport().to_dict()


def test_store_unavailable_returns_degraded_report(build):
    store = FakeTaskStore(unavailable=True)

    report = build(store, RecordingNotifier()).run_cycle(NOW)

    assert report.store_unavailable is True
    assert report.attempted == 0


def test_lookahead_waits_until_reminder_at(build):
    store = FakeTaskStore()
    task = store.add_task(store.add_owner(), NOW + timedelta(seconds=30))
    sleeps = []

    def fake_sleep(seconds):
        sleeps.append(seconds)

    report = build(store, RecordingNotifier(), lookahead=timedelta(minutes=1), sleep=fake_sleep).run_cycle(NOW)

    assert report.sent == 1
    assert len(sleeps) == 1
    assert 29 < sleeps[0] <= 30
    assert store.is_sent(task.id)


def test_crashing_dispatch_counts_as_failure(build):
    store = FakeTaskStore()
    store.add_task(store.add_owner(), NOW)

    class ExplodingDispatcher:
        def dispatch(self, task):
            raise RuntimeError("boom")

    scanner = ReminderScanner(store, ExplodingDispatcher())
    report = scanner.run_cycle(NOW)

    assert (report.attempted, report.failed) == (1, 1)


def test_invalid_scanner_arguments():
    with pytest.raises(ValueError):
        ReminderScanner(FakeTaskStore(), None, worker_limit=0)
    with pytest.raises(ValueError):
        ReminderScanner(FakeTaskStore(), None, lookahead=timedelta(seconds=-1))


def test_report_buckets_outcomes():
    report = CycleReport()
    for outcome in DispatchOutcome:
        report.record(DispatchResult(task_id=None, outcome=outcome))

    assert (report.attempted, report.sent, report.skipped, report.failed) == (5, 1, 2, 2)
