"""Daily digest, overdue alert and weekly summary jobs."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from time import perf_counter
from typing import Any, Callable, Dict, Mapping

from reminder_service.core.errors import RecipientUnreachable, StoreUnavailable
from reminder_service.core.time_utils import day_bounds, ensure_utc
from reminder_service.observability.metrics import log_metric
from reminder_service.services.notifier import NotificationKind, Notifier, Recipient, TimeoutNotifier
from reminder_service.services.preferences_service import NotificationChannel, NotificationPreferences
from reminder_service.services.summary_aggregator import SummaryAggregator
from reminder_service.services.task_store import Owner, TaskStore

logger = logging.getLogger(__name__)


@dataclass
class DigestRunStats:
    users_processed: int = 0
    notifications_sent: int = 0
    skipped: int = 0
    failed: int = 0
    duration_ms: float = 0.0
    store_unavailable: bool = False

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


class DigestJobs:
    """Per-user rollup notifications. One user's failure never stops the run."""

    def __init__(
        self,
        store: TaskStore,
        aggregator: SummaryAggregator,
        notifier: Notifier,
        *,
        channel: NotificationChannel = NotificationChannel.EMAIL,
        timezone: str = "UTC",
        notify_timeout_seconds: float = 10.0,
    ) -> None:
        self._store = store
        self._aggregator = aggregator
        self._notifier = TimeoutNotifier(notifier, notify_timeout_seconds)
        self._channel = channel
        self._timezone = timezone

    def run_daily_summaries(self, now: datetime) -> DigestRunStats:
        now = ensure_utc(now)

        def build(owner: Owner) -> Mapping[str, Any] | None:
            summary = self._aggregator.summarize(owner.id, now)
            if summary.total_tasks == 0:
                return None
            return summary.to_dict()

        return self._run(
            "daily_digest",
            NotificationKind.DAILY_DIGEST,
            lambda prefs: prefs.daily_digest_enabled,
            build,
        )

    def send_daily_digest(self, owner: Owner, now: datetime) -> bool:
        """Send one user's digest on demand; returns whether anything was sent."""
        summary = self._aggregator.summarize(owner.id, ensure_utc(now))
        if summary.total_tasks == 0:
            return False
        try:
            return self._notify(owner, NotificationKind.DAILY_DIGEST, summary.to_dict())
        except RecipientUnreachable as exc:
            logger.info("Daily digest not sent to user=%s: %s", owner.id, exc)
            return False

    def run_overdue_alerts(self, now: datetime) -> DigestRunStats:
        start = perf_counter()
        day_start, _ = day_bounds(ensure_utc(now), self._timezone)
        try:
            overdue = self._store.find_overdue_by_user(day_start)
        except StoreUnavailable as exc:
            logger.error("Overdue alerts aborted: store unavailable (%s)", exc)
            return self._finish("overdue_alerts", DigestRunStats(store_unavailable=True), start)

        def build(owner: Owner) -> Mapping[str, Any] | None:
            tasks = overdue.get(owner.id)
            if not tasks:
                return None
            return {
                "count": len(tasks),
                "tasks": [
                    {
                        "task_id": str(task.id),
                        "title": task.title,
                        "due_date": task.due_date.isoformat() if task.due_date else None,
                        "priority": task.priority,
                    }
                    for task in tasks
                ],
            }

        return self._run(
            "overdue_alerts",
            NotificationKind.OVERDUE_ALERT,
            lambda prefs: prefs.overdue_alerts_enabled,
            build,
            start=start,
        )

    def run_weekly_summaries(self, now: datetime) -> DigestRunStats:
        now = ensure_utc(now)

        def build(owner: Owner) -> Mapping[str, Any] | None:
            weekly = self._aggregator.weekly_summary(owner.id, now)
            if weekly.total_tasks == 0 and weekly.completed_tasks == 0:
                return None
            return weekly.to_dict()

        return self._run(
            "weekly_summary",
            NotificationKind.WEEKLY_SUMMARY,
            lambda prefs: prefs.weekly_summary_enabled,
            build,
        )

    def _run(
        self,
        job_name: str,
        kind: NotificationKind,
        wants: Callable[[NotificationPreferences], bool],
        build: Callable[[Owner], Mapping[str, Any] | None],
        start: float | None = None,
    ) -> DigestRunStats:
        start = perf_counter() if start is None else start
        stats = DigestRunStats()
        try:
            owners = self._store.list_owners()
        except StoreUnavailable as exc:
            logger.error("Job %s aborted: store unavailable (%s)", job_name, exc)
            stats.store_unavailable = True
            return self._finish(job_name, stats, start)

        for owner in owners:
            if not owner.preferences.channel_enabled(self._channel) or not wants(owner.preferences):
                stats.skipped += 1
                continue
            stats.users_processed += 1
            try:
                payload = build(owner)
            except StoreUnavailable as exc:
                logger.warning("Job %s could not load data for user=%s: %s", job_name, owner.id, exc)
                stats.failed += 1
                continue
            if payload is None:
                stats.skipped += 1
                continue
            try:
                delivered = self._notify(owner, kind, payload)
            except RecipientUnreachable as exc:
                logger.info("Job %s has no delivery target for user=%s: %s", job_name, owner.id, exc)
                stats.skipped += 1
                continue
            if delivered:
                stats.notifications_sent += 1
            else:
                stats.failed += 1

        return self._finish(job_name, stats, start)

    def _notify(self, owner: Owner, kind: NotificationKind, payload: Mapping[str, Any]) -> bool:
        recipient = Recipient(user_id=owner.id, email=owner.email, name=owner.name)
        try:
            delivered = bool(self._notifier.notify(recipient, kind, payload))
        except RecipientUnreachable:
            raise
        except Exception:  # noqa: BLE001 - isolate per-user failures
            logger.exception("Failed to send %s to user=%s", kind.value, owner.id)
            return False
        if not delivered:
            logger.warning("Notifier declined %s for user=%s", kind.value, owner.id)
        return delivered

    @staticmethod
    def _finish(job_name: str, stats: DigestRunStats, start: float) -> DigestRunStats:
        stats.duration_ms = (perf_counter() - start) * 1000
        logger.info(
            "Job %s complete: users=%s sent=%s skipped=%s failed=%s duration_ms=%0.2f",
            job_name,
            stats.users_processed,
            stats.notifications_sent,
            stats.skipped,
            stats.failed,
            stats.duration_ms,
        )
        log_metric(f"{job_name}.sent", stats.notifications_sent)
        log_metric(f"{job_name}.failed", stats.failed)
        return stats
