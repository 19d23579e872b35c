from __future__ import annotations

import pytest

import reminder_service.observability.client as opik_client
from reminder_service.observability.metrics import log_metric
from reminder_service.observability.tracing import current_trace, trace


class FakeTrace:
    def __init__(self, **kwargs):
        self.id = f"trace-{kwargs['name']}"
        self.kwargs = kwargs
        self.ended = []

    def end(self, **kwargs):
        self.ended.append(kwargs)


class FakeOpik:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.traces = []
        self.scores = []
        self.flushed = 0

    def trace(self, **kwargs):
        created = FakeTrace(**kwargs)
        self.traces.append(created)
        return created

    def log_traces_feedback_scores(self, scores):
        self.scores.extend(scores)

    def flush(self):
        self.flushed += 1


@pytest.fixture()
def fake_opik(monkeypatch):
    client = FakeOpik()
    monkeypatch.setattr(opik_client, "get_opik_client", lambda: client)
    return client


@pytest.fixture()
def fresh_client(monkeypatch):
    monkeypatch.setattr(opik_client, "_initialized", False)
    monkeypatch.setattr(opik_client, "_client", None)
    return opik_client.get_settings()


def test_span_opens_and_ends_an_opik_trace(fake_opik):
    with trace("jobs.task_reminders", metadata={"job": "task_reminders"}, request_id="req-1"):
        assert current_trace() is fake_opik.traces[0]
        log_metric("reminders.sent", 3, metadata={"job": "task_reminders"})

    assert current_trace() is None
    span = fake_opik.traces[0]
    assert span.kwargs["name"] == "jobs.task_reminders"
    assert span.kwargs["metadata"] == {"job": "task_reminders", "request_id": "req-1"}
    assert span.kwargs["tags"] == ["jobs"]
    assert "duration_ms" in span.ended[0]["output"]
    assert fake_opik.scores == [
        {"id": "trace-jobs.task_reminders", "name": "reminders.sent", "value": 3.0, "reason": "job=task_reminders"}
    ]


def test_span_records_errors_and_reraises(fake_opik):
    with pytest.raises(RuntimeError):
        with trace("reminders.schedule"):
            raise RuntimeError("boom")

    assert fake_opik.traces[0].ended[0]["output"]["error"] == "RuntimeError: boom"


def test_metric_outside_a_span_is_only_logged(fake_opik, caplog):
    caplog.set_level("INFO", logger="reminder_service.metrics")

    log_metric("jobs.duration_ms", 12.5, metadata={"job": "daily_digest"})

    assert fake_opik.scores == []
    assert "metric jobs.duration_ms=12.50 job=daily_digest" in caplog.text


def test_tracing_without_client_still_runs_the_block(monkeypatch):
    monkeypatch.setattr(opik_client, "get_opik_client", lambda: None)
    ran = []

    with trace("reminders.cancel"):
        ran.append(True)
        log_metric("reminders.cancelled", 1)

    assert ran == [True]


def test_init_opik_disabled_returns_none(monkeypatch, fresh_client):
    monkeypatch.setattr(fresh_client, "opik_enabled", False)

    assert opik_client.init_opik() is None
    assert opik_client.get_opik_client() is None


def test_init_opik_builds_client_for_configured_project(monkeypatch, fresh_client):
    monkeypatch.setattr(fresh_client, "opik_enabled", True)
    monkeypatch.setattr(fresh_client, "opik_project", "reminders-test")
    monkeypatch.setattr(fresh_client, "opik_api_key", "key-123")
    monkeypatch.setattr(opik_client.opik, "Opik", FakeOpik)

    client = opik_client.init_opik()

    assert isinstance(client, FakeOpik)
    assert client.kwargs == {"project_name": "reminders-test", "api_key": "key-123"}
    assert opik_client.get_opik_client() is client
    opik_client.flush_opik()
    assert client.flushed == 1
