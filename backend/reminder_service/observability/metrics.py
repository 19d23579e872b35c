"""Metric emission as structured log lines and Opik feedback scores."""
from __future__ import annotations

import logging
from typing import Any, Mapping

from reminder_service.observability import client as opik_client
from reminder_service.observability.tracing import current_trace

logger = logging.getLogger("reminder_service.metrics")


def log_metric(name: str, value: float, metadata: Mapping[str, Any] | None = None) -> None:
    """Emit a single metric sample.

    Inside a span the sample is also attached to the active Opik trace as a
    feedback score named after the metric.
    """
    tags = " ".join(f"{key}={val}" for key, val in sorted((metadata or {}).items()) if val is not None)
    if isinstance(value, float):
        logger.info("metric %s=%0.2f %s", name, value, tags)
    else:
        logger.info("metric %s=%s %s", name, value, tags)

    span = current_trace()
    if span is None:
        return
    client = opik_client.get_opik_client()
    if client is None:
        return
    score = {"id": span.id, "name": name, "value": float(value)}
    if tags:
        score["reason"] = tags
    try:
        client.log_traces_feedback_scores([score])
    except Exception as exc:  # noqa: BLE001 - metrics never fail the measured work
        logger.warning("Opik metric %s could not be recorded: %s", name, exc)
