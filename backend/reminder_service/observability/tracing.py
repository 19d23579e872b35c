"""Span tracing on top of Opik traces, mirrored to the log."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from time import perf_counter
from typing import Any, Iterator, Mapping, Optional

from reminder_service.observability import client as opik_client

logger = logging.getLogger("reminder_service.tracing")

_current_trace: ContextVar[Optional[Any]] = ContextVar("reminder_service_current_trace", default=None)


def current_trace() -> Optional[Any]:
    """The Opik trace opened by the innermost active span, if any."""
    return _current_trace.get()


@contextmanager
def trace(
    name: str,
    metadata: Mapping[str, Any] | None = None,
    user_id: str | None = None,
    request_id: str | None = None,
) -> Iterator[None]:
    """Record a named span.

    With an Opik client the span becomes an Opik trace; the start, end and
    duration are always logged. Exceptions raised inside the span are
    recorded on the trace and re-raised.
    """
    start = perf_counter()
    context = {"user_id": user_id, "request_id": request_id, **dict(metadata or {})}
    context = {key: value for key, value in context.items() if value is not None}
    logger.debug("span start %s %s", name, context)

    span = _open(name, context)
    token = _current_trace.set(span) if span is not None else None
    try:
        yield
    except Exception as exc:
        duration_ms = (perf_counter() - start) * 1000
        logger.warning("span error %s duration_ms=%0.2f %s", name, duration_ms, context, exc_info=True)
        _close(span, {"duration_ms": duration_ms, "error": f"{type(exc).__name__}: {exc}"})
        raise
    else:
        duration_ms = (perf_counter() - start) * 1000
        logger.debug("span end %s duration_ms=%0.2f", name, duration_ms)
        _close(span, {"duration_ms": duration_ms})
    finally:
        if token is not None:
            _current_trace.reset(token)


def _open(name: str, context: Mapping[str, Any]) -> Optional[Any]:
    client = opik_client.get_opik_client()
    if client is None:
        return None
    tags = [name.split(".", 1)[0]]
    try:
        return client.trace(name=name, input=dict(context), metadata=dict(context), tags=tags)
    except Exception as exc:  # noqa: BLE001 - a tracing outage never fails the traced work
        logger.warning("Opik trace could not be opened for %s: %s", name, exc)
        return None


def _close(span: Optional[Any], output: Mapping[str, Any]) -> None:
    if span is None:
        return
    try:
        span.end(output=dict(output))
    except Exception as exc:  # noqa: BLE001
        logger.warning("Opik trace could not be closed: %s", exc)
