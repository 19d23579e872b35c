"""Seeding helpers shared by the database-backed tests."""
from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from reminder_service.db.models.task import Task
from reminder_service.db.models.user import User
from reminder_service.db.models.user_preferences import UserPreferences


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def seed_user(session_factory, *, email="owner@example.com", **prefs):
    session = session_factory()
    try:
        user_id = uuid4()
        session.add(User(id=user_id, email=email, name="Owner"))
        if prefs:
            session.flush()
            session.add(UserPreferences(user_id=user_id, **prefs))
        session.commit()
        return user_id
    finally:
        session.close()


def seed_task(session_factory, user_id, **fields):
    values = {"title": "Write report", "status": "pending"}
    values.update(fields)
    if values.get("reminder_at") is not None:
        values.setdefault("reminder_enabled", True)
    session = session_factory()
    try:
        task = Task(id=uuid4(), user_id=user_id, **values)
        session.add(task)
        session.commit()
        return task.id
    finally:
        session.close()


def load_task(session_factory, task_id) -> Task:
    session = session_factory()
    try:
        return session.get(Task, task_id)
    finally:
        session.close()
