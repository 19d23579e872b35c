"""Opik client used as the span and metric backend."""
from __future__ import annotations

import logging
import threading
from typing import Optional

import opik

from reminder_service.core.config import get_settings

logger = logging.getLogger(__name__)

_client: Optional[opik.Opik] = None
_client_lock = threading.Lock()
_initialized = False


def init_opik() -> Optional[opik.Opik]:
    """Create the process-wide Opik client when OPIK_ENABLED is set.

    Returns None when tracing is disabled or the client cannot be created;
    spans and metrics then go to the log only.
    """
    global _client, _initialized
    with _client_lock:
        if _initialized:
            return _client
        _initialized = True
        settings = get_settings()
        if not settings.opik_enabled:
            logger.info("Opik tracing disabled")
            return None
        try:
            _client = opik.Opik(project_name=settings.opik_project, api_key=settings.opik_api_key)
        except Exception as exc:  # noqa: BLE001 - tracing never blocks startup
            logger.warning("Opik client could not be created: %s", exc)
            _client = None
            return None
        logger.info("Opik tracing enabled (project=%s)", settings.opik_project)
        return _client


def get_opik_client() -> Optional[opik.Opik]:
    if not _initialized:
        return init_opik()
    return _client


def flush_opik() -> None:
    client = get_opik_client()
    if client is None:
        return
    try:
        client.flush()
    except Exception as exc:  # noqa: BLE001 - shutdown continues without the backend
        logger.warning("Opik flush failed: %s", exc)
