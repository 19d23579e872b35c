"""Wiring of the reminder components from settings."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

from sqlalchemy.orm import Session

from reminder_service.core.config import Settings
from reminder_service.core.time_utils import Clock, utc_now
from reminder_service.services.digest_jobs import DigestJobs
from reminder_service.services.notification_tokens import active_token_lookup
from reminder_service.services.notifier import Notifier, build_notifier
from reminder_service.services.preferences_service import NotificationChannel
from reminder_service.services.reminder_dispatcher import ReminderDispatcher
from reminder_service.services.reminder_scanner import ReminderScanner
from reminder_service.services.summary_aggregator import SummaryAggregator
from reminder_service.services.task_store import TaskStore


@dataclass
class ReminderRuntime:
    store: TaskStore
    notifier: Notifier
    dispatcher: ReminderDispatcher
    scanner: ReminderScanner
    aggregator: SummaryAggregator
    digests: DigestJobs


def build_runtime(
    settings: Settings,
    session_factory: Callable[[], Session],
    *,
    notifier: Notifier | None = None,
    clock: Clock = utc_now,
) -> ReminderRuntime:
    store = TaskStore(session_factory)
    notifier = notifier or build_notifier(settings, token_lookup=active_token_lookup(session_factory))
    dispatcher = ReminderDispatcher(
        store,
        notifier,
        channel=NotificationChannel(settings.reminder_channel),
        disabled_channel_policy=settings.disabled_channel_policy,
        notify_timeout_seconds=settings.notify_timeout_seconds,
        clock=clock,
    )
    scanner = ReminderScanner(
        store,
        dispatcher,
        worker_limit=settings.reminder_worker_limit,
        lookahead=timedelta(minutes=settings.reminder_lookahead_minutes),
        batch_limit=settings.reminder_batch_limit,
        skip_if_running=settings.skip_overlapping_cycles,
    )
    aggregator = SummaryAggregator(
        store,
        timezone=settings.scheduler_timezone,
        upcoming_window=timedelta(days=settings.upcoming_window_days),
        upcoming_limit=settings.upcoming_limit,
    )
    digests = DigestJobs(
        store,
        aggregator,
        notifier,
        channel=NotificationChannel(settings.reminder_channel),
        timezone=settings.scheduler_timezone,
        notify_timeout_seconds=settings.notify_timeout_seconds,
    )
    return ReminderRuntime(
        store=store,
        notifier=notifier,
        dispatcher=dispatcher,
        scanner=scanner,
        aggregator=aggregator,
        digests=digests,
    )
