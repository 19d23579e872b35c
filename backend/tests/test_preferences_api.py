from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from helpers import seed_user
from reminder_service.db.deps import get_db
from reminder_service.db.models.user_preferences import UserPreferences
from reminder_service.main import app


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client, session_factory
    app.dependency_overrides.clear()


def test_get_preferences_creates_defaults(client):
    test_client, session_factory = client
    user_id = seed_user(session_factory)
    resp = test_client.get("/preferences", params={"user_id": str(user_id)})
    assert resp.status_code == 200
    data = resp.json()
    assert data["email_enabled"] is True
    assert data["push_enabled"] is True
    assert data["daily_digest_enabled"] is True
    assert data["request_id"]


def test_patch_updates_only_given_fields(client):
    test_client, session_factory = client
    user_id = seed_user(session_factory)
    resp = test_client.patch(
        "/preferences",
        json={"user_id": str(user_id), "email_enabled": False},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["email_enabled"] is False
    assert data["overdue_alerts_enabled"] is True

    session = session_factory()
    try:
        prefs = session.get(UserPreferences, user_id)
        assert prefs.email_enabled is False
    finally:
        session.close()


def test_preferences_for_unknown_user(client):
    test_client, _ = client
    resp = test_client.get("/preferences", params={"user_id": str(uuid4())})
    assert resp.status_code == 404
