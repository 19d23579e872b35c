"""Dedicated APScheduler worker process."""
from __future__ import annotations

import logging
import signal
import sys
import threading
from datetime import datetime
from time import perf_counter
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler

from reminder_service.core.config import Settings, settings
from reminder_service.core.logging import configure_logging
from reminder_service.core.time_utils import Clock, utc_now
from reminder_service.db.session import SessionLocal
from reminder_service.observability.client import flush_opik, init_opik
from reminder_service.observability.metrics import log_metric
from reminder_service.observability.tracing import trace
from reminder_service.services.digest_jobs import DigestRunStats
from reminder_service.services.reminder_scanner import CycleReport
from reminder_service.services.runtime import ReminderRuntime, build_runtime

logger = logging.getLogger(__name__)


class ReminderScheduler:
    """Periodic driver for the reminder scanner and the digest jobs.

    Holds its own BackgroundScheduler; nothing is registered until start().
    """

    def __init__(
        self,
        runtime: ReminderRuntime,
        config: Settings,
        *,
        clock: Clock = utc_now,
        scheduler_factory: Callable[..., BackgroundScheduler] | None = None,
    ) -> None:
        self._runtime = runtime
        self._config = config
        self._clock = clock
        self._scheduler_factory = scheduler_factory or BackgroundScheduler
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and bool(self._scheduler.running)

    def start(self) -> None:
        if self.running:
            return
        scheduler = self._scheduler_factory(timezone=self._config.scheduler_timezone)
        self._register_jobs(scheduler)
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Reminder scheduler started (tz=%s)", self._config.scheduler_timezone)

    def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Reminder scheduler stopped")

    def run_reminder_cycle(self, now: datetime | None = None) -> CycleReport:
        return self._runtime.scanner.run_cycle(now or self._clock())

    def run_daily_summaries(self, now: datetime | None = None) -> DigestRunStats:
        return self._runtime.digests.run_daily_summaries(now or self._clock())

    def run_overdue_alerts(self, now: datetime | None = None) -> DigestRunStats:
        return self._runtime.digests.run_overdue_alerts(now or self._clock())

    def run_weekly_summaries(self, now: datetime | None = None) -> DigestRunStats:
        return self._runtime.digests.run_weekly_summaries(now or self._clock())

    def run_all_once(self) -> None:
        self._job("task_reminders", self.run_reminder_cycle)
        self._job("daily_digest", self.run_daily_summaries)
        self._job("overdue_alerts", self.run_overdue_alerts)
        self._job("weekly_summary", self.run_weekly_summaries)

    def _register_jobs(self, scheduler: BackgroundScheduler) -> None:
        config = self._config
        scheduler.add_job(
            self._job,
            args=("task_reminders", self.run_reminder_cycle),
            trigger="interval",
            minutes=max(1, config.reminder_interval_minutes),
            id="task_reminders_job",
            max_instances=max(1, config.reminder_job_max_instances),
            coalesce=True,
            replace_existing=True,
        )
        scheduler.add_job(
            self._job,
            args=("daily_digest", self.run_daily_summaries),
            trigger="cron",
            hour=config.daily_digest_hour,
            minute=config.daily_digest_minute,
            id="daily_digest_job",
            replace_existing=True,
        )
        scheduler.add_job(
            self._job,
            args=("overdue_alerts", self.run_overdue_alerts),
            trigger="cron",
            hour=config.overdue_alert_hour,
            minute=config.overdue_alert_minute,
            id="overdue_alerts_job",
            replace_existing=True,
        )
        scheduler.add_job(
            self._job,
            args=("weekly_summary", self.run_weekly_summaries),
            trigger="cron",
            day_of_week=str(config.weekly_summary_day),
            hour=config.weekly_summary_hour,
            minute=config.weekly_summary_minute,
            id="weekly_summary_job",
            replace_existing=True,
        )
        logger.info(
            "Registered scheduler jobs (tz=%s): task_reminders every %s min, daily_digest %02d:%02d, "
            "overdue_alerts %02d:%02d, weekly_summary day=%s %02d:%02d",
            config.scheduler_timezone,
            config.reminder_interval_minutes,
            config.daily_digest_hour,
            config.daily_digest_minute,
            config.overdue_alert_hour,
            config.overdue_alert_minute,
            config.weekly_summary_day,
            config.weekly_summary_hour,
            config.weekly_summary_minute,
        )

    def _job(self, job_name: str, runner: Callable[[], object]) -> None:
        _execute_job(job_name, runner, scheduled_run_time=self._clock(), config=self._config)


def main() -> None:
    configure_logging(log_level=settings.log_level)
    init_opik()
    try:
        _validate_config()
    except ValueError as exc:
        logger.error("Invalid scheduler configuration: %s", exc)
        sys.exit(1)

    logger.info("Scheduler worker starting (enabled=%s)", settings.scheduler_enabled)

    if not settings.scheduler_enabled:
        logger.warning("Scheduler worker started but SCHEDULER_ENABLED=false. No jobs will run.")
        return

    logger.info(
        "Notifications config: enabled=%s provider=%s channel=%s interval=%s lookahead=%s workers=%s policy=%s",
        settings.notifications_enabled,
        settings.notifications_provider,
        settings.reminder_channel,
        settings.reminder_interval_minutes,
        settings.reminder_lookahead_minutes,
        settings.reminder_worker_limit,
        settings.disabled_channel_policy,
    )
    if not settings.notifications_enabled:
        logger.warning("NOTIFICATIONS_ENABLED=false. Jobs are registered but will not notify.")

    runtime = build_runtime(settings, SessionLocal)
    reminder_scheduler = ReminderScheduler(runtime, settings)
    reminder_scheduler.start()
    logger.info("Scheduler enabled (tz=%s)", settings.scheduler_timezone)
    if settings.jobs_run_on_startup:
        logger.info("Running jobs once on startup")
        reminder_scheduler.run_all_once()

    stop_event = threading.Event()

    def shutdown(signum, frame):  # pragma: no cover - signal handler
        logger.info("Scheduler worker shutting down (signal=%s)", signum)
        reminder_scheduler.stop()
        flush_opik()
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        _wait_forever(stop_event)
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        shutdown(signal.SIGINT, None)


def _execute_job(
    job_name: str,
    runner: Callable[[], object],
    scheduled_run_time: datetime | None = None,
    config: Settings | None = None,
) -> None:
    if not (config or settings).notifications_enabled:
        logger.debug("Job %s skipped: notifications disabled", job_name)
        return

    start = perf_counter()
    scheduled_str = scheduled_run_time.isoformat() if scheduled_run_time else None
    metadata = {"job": job_name, "scheduled_run_time": scheduled_str}
    logger.info("Job %s starting (scheduled_run_time=%s)", job_name, scheduled_str or "now")

    success = 0
    result = None
    try:
        with trace(f"jobs.{job_name}", metadata=metadata):
            result = runner()
            success = 0 if getattr(result, "store_unavailable", False) else 1
    except Exception:  # pragma: no cover - keeps the scheduler thread alive
        logger.exception("Job %s failed", job_name)

    duration_ms = (perf_counter() - start) * 1000
    log_metric("jobs.success", success, metadata={"job": job_name})
    log_metric("jobs.duration_ms", duration_ms, metadata={"job": job_name})

    if success:
        logger.info("Job %s complete: result=%s duration_ms=%0.2f", job_name, _describe(result), duration_ms)


def _describe(result: object) -> object:
    to_dict = getattr(result, "to_dict", None)
    return to_dict() if callable(to_dict) else result


def _validate_config() -> None:
    if not (0 <= settings.daily_digest_hour <= 23):
        raise ValueError("DAILY_DIGEST_HOUR must be between 0 and 23")
    if not (0 <= settings.daily_digest_minute <= 59):
        raise ValueError("DAILY_DIGEST_MINUTE must be between 0 and 59")
    if not (0 <= settings.overdue_alert_hour <= 23):
        raise ValueError("OVERDUE_ALERT_HOUR must be between 0 and 23")
    if not (0 <= settings.overdue_alert_minute <= 59):
        raise ValueError("OVERDUE_ALERT_MINUTE must be between 0 and 59")
    if not (0 <= settings.weekly_summary_day <= 6):
        raise ValueError("WEEKLY_SUMMARY_DAY must be between 0 and 6")
    if not (0 <= settings.weekly_summary_hour <= 23):
        raise ValueError("WEEKLY_SUMMARY_HOUR must be between 0 and 23")
    if not (0 <= settings.weekly_summary_minute <= 59):
        raise ValueError("WEEKLY_SUMMARY_MINUTE must be between 0 and 59")
    if settings.reminder_interval_minutes < 1:
        raise ValueError("REMINDER_INTERVAL_MINUTES must be >= 1")
    if settings.reminder_lookahead_minutes < 0:
        raise ValueError("REMINDER_LOOKAHEAD_MINUTES must be >= 0")
    if settings.reminder_worker_limit < 1:
        raise ValueError("REMINDER_WORKER_LIMIT must be >= 1")
    if settings.notify_timeout_seconds <= 0:
        raise ValueError("NOTIFY_TIMEOUT_SECONDS must be > 0")
    if settings.notifications_provider == "webhook" and not settings.notifications_webhook_url:
        raise ValueError("NOTIFICATIONS_WEBHOOK_URL is required when NOTIFICATIONS_PROVIDER=webhook")


def _wait_forever(stop_event: threading.Event) -> None:
    stop_event.wait()


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
