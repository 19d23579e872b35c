from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("NOTIFICATIONS_PROVIDER", "log")

import pytest
from sqlalchemy.orm import sessionmaker

from reminder_service.db import models  # noqa: F401 - registers every table on Base.metadata
from reminder_service.db.base import Base
from reminder_service.db.session import build_engine


@pytest.fixture()
def session_factory(tmp_path):
    # A file database so dispatch threads get their own connections.
    engine = build_engine(f"sqlite:///{tmp_path / 'reminders.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    yield factory
    engine.dispose()

