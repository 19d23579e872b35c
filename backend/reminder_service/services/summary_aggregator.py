"""Per-user task rollups for digests and summaries."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from uuid import UUID

from reminder_service.core.time_utils import day_bounds, ensure_utc
from reminder_service.db.models.task import OPEN_STATUSES, Task
from reminder_service.services.task_store import TaskSnapshot, TaskStore, percent


@dataclass(frozen=True)
class UpcomingTask:
    task_id: UUID
    title: str
    due_date: datetime
    priority: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "task_id": str(self.task_id),
            "title": self.title,
            "due_date": self.due_date.isoformat(),
            "priority": self.priority,
        }


@dataclass(frozen=True)
class Summary:
    total_tasks: int
    completed: int
    pending: int
    overdue: int
    due_today: int
    completion_rate: int
    upcoming: List[UpcomingTask] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "total_tasks": self.total_tasks,
            "completed": self.completed,
            "pending": self.pending,
            "overdue": self.overdue,
            "due_today": self.due_today,
            "completion_rate": self.completion_rate,
            "upcoming": [item.to_dict() for item in self.upcoming],
        }


@dataclass(frozen=True)
class WeeklySummary:
    completed_tasks: int
    total_tasks: int
    completion_rate: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "completed_tasks": self.completed_tasks,
            "total_tasks": self.total_tasks,
            "completion_rate": self.completion_rate,
        }


class SummaryAggregator:
    """Read-only rollups over a user's tasks.

    Day windows are computed in ``timezone`` (one reference zone for every
    user), from a single ``now`` per call.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        timezone: str = "UTC",
        upcoming_window: timedelta = timedelta(days=7),
        upcoming_limit: int = 5,
    ) -> None:
        self._store = store
        self._timezone = timezone
        self._upcoming_window = upcoming_window
        self._upcoming_limit = upcoming_limit

    def summarize(self, user_id: UUID, now: datetime) -> Summary:
        now = ensure_utc(now)
        day_start, day_end = day_bounds(now, self._timezone)
        count = self._store.count_by_filter
        active = Task.archived.is_(False)
        open_status = Task.status.in_(OPEN_STATUSES)

        total = count(user_id, active)
        completed = count(user_id, active, Task.status == "completed")
        pending = count(user_id, active, open_status)
        overdue = count(user_id, active, open_status, Task.due_date < day_start)
        due_today = count(
            user_id,
            active,
            open_status,
            Task.due_date >= day_start,
            Task.due_date <= day_end,
        )
        upcoming = self._store.find_by_window(
            user_id,
            now,
            now + self._upcoming_window,
            start_inclusive=False,
            limit=self._upcoming_limit,
        )

        return Summary(
            total_tasks=total,
            completed=completed,
            pending=pending,
            overdue=overdue,
            due_today=due_today,
            completion_rate=percent(completed, total),
            upcoming=[_upcoming(task) for task in upcoming],
        )

    def weekly_summary(self, user_id: UUID, now: datetime) -> WeeklySummary:
        now = ensure_utc(now)
        week_ago = now - timedelta(days=7)
        active = Task.archived.is_(False)
        completed = self._store.count_by_filter(
            user_id,
            active,
            Task.status == "completed",
            Task.completed_at >= week_ago,
            Task.completed_at <= now,
        )
        total = self._store.count_by_filter(
            user_id,
            active,
            Task.created_at >= week_ago,
            Task.created_at <= now,
        )
        return WeeklySummary(
            completed_tasks=completed,
            total_tasks=total,
            completion_rate=percent(completed, total),
        )

    def classify_due_date(self, due_date: Optional[datetime], now: datetime) -> str:
        """Return ``overdue``, ``due_today``, ``upcoming`` or ``none`` for a due date."""
        if due_date is None:
            return "none"
        due = ensure_utc(due_date)
        day_start, day_end = day_bounds(now, self._timezone)
        if due < day_start:
            return "overdue"
        if due <= day_end:
            return "due_today"
        return "upcoming"


def _upcoming(task: TaskSnapshot) -> UpcomingTask:
    return UpcomingTask(
        task_id=task.id,
        title=task.title,
        due_date=task.due_date,
        priority=task.priority,
    )
