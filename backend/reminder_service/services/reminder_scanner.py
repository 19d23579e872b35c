"""Due-reminder scanning cycle."""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from time import perf_counter
from typing import Callable, Dict, List

from reminder_service.core.errors import StoreUnavailable
from reminder_service.core.time_utils import ensure_utc
from reminder_service.observability.metrics import log_metric
from reminder_service.services.reminder_dispatcher import (
    DispatchOutcome,
    DispatchResult,
    ReminderDispatcher,
)
from reminder_service.services.task_store import TaskSnapshot, TaskStore

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    attempted: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    duration_ms: float = 0.0
    store_unavailable: bool = False
    overlapped: bool = False

    def record(self, result: DispatchResult) -> None:
        self.attempted += 1
        if result.outcome is DispatchOutcome.SENT:
            self.sent += 1
        elif result.outcome in (DispatchOutcome.ALREADY_HANDLED, DispatchOutcome.OWNER_MISSING):
            self.skipped += 1
        else:
            self.failed += 1

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


class ReminderScanner:
    """Fetches the due set once per cycle and feeds it to the dispatcher.

    Dispatch runs on a small worker pool. Overlapping cycles are safe without
    any locking here; ``skip_if_running`` only avoids redundant work.
    """

    def __init__(
        self,
        store: TaskStore,
        dispatcher: ReminderDispatcher,
        *,
        worker_limit: int = 5,
        lookahead: timedelta = timedelta(0),
        batch_limit: int | None = None,
        skip_if_running: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if worker_limit < 1:
            raise ValueError("worker_limit must be >= 1")
        if lookahead < timedelta(0):
            raise ValueError("lookahead must not be negative")
        self._store = store
        self._dispatcher = dispatcher
        self._worker_limit = worker_limit
        self._lookahead = lookahead
        self._batch_limit = batch_limit
        self._skip_if_running = skip_if_running
        self._sleep = sleep
        self._running = threading.Lock()

    def run_cycle(self, now: datetime) -> CycleReport:
        if self._skip_if_running:
            if not self._running.acquire(blocking=False):
                logger.info("Reminder cycle skipped: previous cycle still running")
                return CycleReport(overlapped=True)
            try:
                return self._run(now)
            finally:
                self._running.release()
        return self._run(now)

    def _run(self, now: datetime) -> CycleReport:
        now = ensure_utc(now)
        start = perf_counter()
        report = CycleReport()

        try:
            due = self._store.find_due_reminders(now, self._lookahead, limit=self._batch_limit)
        except StoreUnavailable as exc:
            logger.error("Reminder cycle aborted: store unavailable (%s)", exc)
            report.store_unavailable = True
            report.duration_ms = (perf_counter() - start) * 1000
            self._emit(report)
            return report

        if not due:
            logger.debug("Reminder cycle found no due reminders as_of=%s", now.isoformat())
        else:
            logger.info("Reminder cycle found %s due reminder(s) as_of=%s", len(due), now.isoformat())
            for result in self._dispatch_all(due, now, start):
                report.record(result)

        report.duration_ms = (perf_counter() - start) * 1000
        self._emit(report)
        return report

    def _dispatch_all(self, due: List[TaskSnapshot], now: datetime, started: float) -> List[DispatchResult]:
        # A task appears at most once per fetch, so one cycle never dispatches it twice.
        unique: Dict[object, TaskSnapshot] = {}
        for task in due:
            unique.setdefault(task.id, task)

        workers = min(self._worker_limit, len(unique))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reminder_dispatch") as pool:
            futures = [pool.submit(self._dispatch_one, task, now, started) for task in unique.values()]
            results: List[DispatchResult] = []
            for task, future in zip(unique.values(), futures):
                try:
                    results.append(future.result())
                except Exception as exc:  # noqa: BLE001 - one task never aborts the cycle
                    logger.exception("Reminder dispatch crashed task=%s", task.id)
                    results.append(DispatchResult(task.id, DispatchOutcome.DELIVERY_FAILED, str(exc)))
        return results

    def _dispatch_one(self, task: TaskSnapshot, now: datetime, started: float) -> DispatchResult:
        # Lookahead prefetches reminders; none is delivered before its reminder_at.
        if task.reminder_at is not None and task.reminder_at > now:
            elapsed = perf_counter() - started
            delay = (task.reminder_at - now).total_seconds() - elapsed
            if delay > 0:
                self._sleep(delay)
        return self._dispatcher.dispatch(task)

    @staticmethod
    def _emit(report: CycleReport) -> None:
        logger.info(
            "Reminder cycle complete: attempted=%s sent=%s skipped=%s failed=%s duration_ms=%0.2f",
            report.attempted,
            report.sent,
            report.skipped,
            report.failed,
            report.duration_ms,
        )
        log_metric("reminders.attempted", report.attempted)
        log_metric("reminders.sent", report.sent)
        log_metric("reminders.skipped", report.skipped)
        log_metric("reminders.failed", report.failed)
        log_metric("reminders.duration_ms", report.duration_ms)
