"""Task store adapter for the reminder subsystem.

Every mutation here is a single conditional ``UPDATE``; nothing reads a row,
changes it in Python and writes it back.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, List, Optional
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from reminder_service.core.errors import OwnerNotFound, StoreUnavailable, TaskNotFound
from reminder_service.core.time_utils import ensure_utc, utc_now
from reminder_service.db.models.task import OPEN_STATUSES, Task
from reminder_service.db.models.user import User
from reminder_service.db.models.user_preferences import UserPreferences
from reminder_service.services.preferences_service import NotificationPreferences

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskSnapshot:
    id: UUID
    user_id: UUID
    title: str
    description: str
    status: str
    priority: str
    due_date: Optional[datetime]
    reminder_at: Optional[datetime]
    last_modified: Optional[datetime]


@dataclass(frozen=True)
class Owner:
    id: UUID
    email: Optional[str]
    name: Optional[str]
    preferences: NotificationPreferences


@dataclass(frozen=True)
class ReminderState:
    task_id: UUID
    enabled: bool
    reminder_at: Optional[datetime]
    sent: bool


@dataclass(frozen=True)
class ReminderStats:
    total: int
    active: int
    sent: int
    overdue: int
    efficiency: int


def percent(part: int, whole: int) -> int:
    """Round-half-up integer percentage; 0 when ``whole`` is 0."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


def _snapshot(task: Task) -> TaskSnapshot:
    return TaskSnapshot(
        id=task.id,
        user_id=task.user_id,
        title=task.title,
        description=task.description or "",
        status=task.status,
        priority=task.priority or "medium",
        due_date=task.due_date,
        reminder_at=task.reminder_at,
        last_modified=task.last_modified,
    )


class TaskStore:
    """Read/write access to task reminder state.

    Each call opens and closes its own session, so one instance can be
    shared by dispatch worker threads.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except (OperationalError, InterfaceError, PoolTimeoutError) as exc:
            raise StoreUnavailable(str(exc)) from exc
        finally:
            db.close()

    # ---- scanner / dispatcher ----

    def find_due_reminders(
        self,
        as_of: datetime,
        lookahead: timedelta = timedelta(0),
        limit: int | None = None,
    ) -> List[TaskSnapshot]:
        """Armed, unsent reminders at or before ``as_of + lookahead`` on open, unarchived tasks."""
        horizon = ensure_utc(as_of) + lookahead
        with self._session() as db:
            query = db.query(Task).filter(
                Task.reminder_enabled.is_(True),
                Task.reminder_sent.is_(False),
                Task.reminder_at.isnot(None),
                Task.reminder_at <= horizon,
                Task.status.in_(OPEN_STATUSES),
                Task.archived.is_(False),
            )
            if limit:
                query = query.order_by(Task.reminder_at.asc()).limit(limit)
            return [_snapshot(task) for task in query.all()]

    def mark_reminder_sent(
        self,
        task_id: UUID,
        expected_reminder_at: datetime,
        sent_at: datetime | None = None,
    ) -> bool:
        """Set ``sent`` only if ``reminder_at`` is unchanged and still unsent.

        Returns whether this call applied the update.
        """
        stamp = ensure_utc(sent_at) if sent_at else utc_now()
        with self._session() as db:
            updated = (
                db.query(Task)
                .filter(
                    Task.id == task_id,
                    Task.reminder_at == ensure_utc(expected_reminder_at),
                    Task.reminder_sent.is_(False),
                )
                .update(
                    {
                        Task.reminder_sent: True,
                        Task.reminder_sent_at: stamp,
                        Task.last_modified: stamp,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
        return updated == 1

    def suppress_reminder(self, task_id: UUID, expected_reminder_at: datetime) -> bool:
        """Disarm a reminder whose owner turned the channel off, unless it was rescheduled."""
        with self._session() as db:
            updated = (
                db.query(Task)
                .filter(
                    Task.id == task_id,
                    Task.reminder_at == ensure_utc(expected_reminder_at),
                    Task.reminder_sent.is_(False),
                    Task.reminder_enabled.is_(True),
                )
                .update(
                    {Task.reminder_enabled: False, Task.last_modified: utc_now()},
                    synchronize_session=False,
                )
            )
            db.commit()
        return updated == 1

    def get_owner(self, user_id: UUID) -> Owner:
        with self._session() as db:
            user = db.get(User, user_id)
            if not user:
                raise OwnerNotFound(user_id)
            prefs = db.get(UserPreferences, user_id)
            return Owner(
                id=user.id,
                email=user.email,
                name=user.name,
                preferences=NotificationPreferences.from_model(prefs),
            )

    # ---- reminder editing ----

    def schedule_reminder(self, task_id: UUID, reminder_at: datetime) -> ReminderState:
        """Arm a reminder; a new instant clears ``sent`` so it is delivered again."""
        target = ensure_utc(reminder_at)
        with self._session() as db:
            updated = (
                db.query(Task)
                .filter(Task.id == task_id)
                .update(
                    {
                        Task.reminder_enabled: True,
                        Task.reminder_sent: case(
                            (Task.reminder_at == target, Task.reminder_sent),
                            else_=False,
                        ),
                        Task.reminder_sent_at: case(
                            (Task.reminder_at == target, Task.reminder_sent_at),
                            else_=None,
                        ),
                        Task.reminder_at: target,
                        Task.last_modified: utc_now(),
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
        if not updated:
            raise TaskNotFound(task_id)
        logger.info("Reminder scheduled task=%s reminder_at=%s", task_id, target.isoformat())
        return self.get_reminder_state(task_id)

    def cancel_reminder(self, task_id: UUID) -> ReminderState:
        with self._session() as db:
            updated = (
                db.query(Task)
                .filter(Task.id == task_id)
                .update(
                    {
                        Task.reminder_enabled: False,
                        Task.reminder_sent: False,
                        Task.reminder_sent_at: None,
                        Task.reminder_at: None,
                        Task.last_modified: utc_now(),
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
        if not updated:
            raise TaskNotFound(task_id)
        logger.info("Reminder cancelled task=%s", task_id)
        return self.get_reminder_state(task_id)

    def get_reminder_state(self, task_id: UUID) -> ReminderState:
        with self._session() as db:
            task = db.get(Task, task_id)
            if not task:
                raise TaskNotFound(task_id)
            return ReminderState(
                task_id=task.id,
                enabled=bool(task.reminder_enabled),
                reminder_at=task.reminder_at,
                sent=bool(task.reminder_sent),
            )

    # ---- aggregator ----

    def count_by_filter(self, user_id: UUID, *criteria) -> int:
        """Count the user's tasks matching all SQLAlchemy ``criteria``."""
        with self._session() as db:
            total = db.query(func.count(Task.id)).filter(Task.user_id == user_id, *criteria).scalar()
        return int(total or 0)

    def find_by_window(
        self,
        user_id: UUID,
        start: datetime,
        end: datetime,
        *,
        start_inclusive: bool = True,
        statuses=OPEN_STATUSES,
        limit: int | None = None,
    ) -> List[TaskSnapshot]:
        """Unarchived tasks whose due date falls in the window, earliest first; ``end`` is inclusive."""
        lower = ensure_utc(start)
        with self._session() as db:
            query = db.query(Task).filter(
                Task.user_id == user_id,
                Task.archived.is_(False),
                Task.due_date.isnot(None),
                Task.due_date >= lower if start_inclusive else Task.due_date > lower,
                Task.due_date <= ensure_utc(end),
            )
            if statuses:
                query = query.filter(Task.status.in_(statuses))
            query = query.order_by(Task.due_date.asc(), Task.created_at.asc())
            if limit:
                query = query.limit(limit)
            return [_snapshot(task) for task in query.all()]

    def list_owners(self) -> List[Owner]:
        with self._session() as db:
            rows = (
                db.query(User, UserPreferences)
                .outerjoin(UserPreferences, UserPreferences.user_id == User.id)
                .order_by(User.created_at.asc())
                .all()
            )
            return [
                Owner(
                    id=user.id,
                    email=user.email,
                    name=user.name,
                    preferences=NotificationPreferences.from_model(prefs),
                )
                for user, prefs in rows
            ]

    def find_overdue_by_user(self, before: datetime) -> Dict[UUID, List[TaskSnapshot]]:
        """Open, unarchived tasks due strictly before ``before``, grouped by owner."""
        grouped: Dict[UUID, List[TaskSnapshot]] = defaultdict(list)
        with self._session() as db:
            rows = (
                db.query(Task)
                .filter(
                    Task.due_date.isnot(None),
                    Task.due_date < ensure_utc(before),
                    Task.status.in_(OPEN_STATUSES),
                    Task.archived.is_(False),
                )
                .order_by(Task.user_id, Task.due_date.asc())
                .all()
            )
            for task in rows:
                grouped[task.user_id].append(_snapshot(task))
        return dict(grouped)

    def reminder_stats(self, now: datetime) -> ReminderStats:
        as_of = ensure_utc(now)
        with self._session() as db:
            enabled = db.query(func.count(Task.id)).filter(Task.reminder_enabled.is_(True))
            total = enabled.scalar() or 0
            active = enabled.filter(Task.reminder_sent.is_(False)).scalar() or 0
            sent = enabled.filter(Task.reminder_sent.is_(True)).scalar() or 0
            overdue = (
                enabled.filter(Task.reminder_sent.is_(False), Task.reminder_at < as_of).scalar() or 0
            )
        return ReminderStats(
            total=int(total),
            active=int(active),
            sent=int(sent),
            overdue=int(overdue),
            efficiency=percent(int(sent), int(total)),
        )
