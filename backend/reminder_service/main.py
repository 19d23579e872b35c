"""FastAPI application for manual triggers and reminder editing."""
from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import FastAPI, Request

from reminder_service.api.routes import notifications, preferences, reminders
from reminder_service.core.config import settings
from reminder_service.core.logging import configure_logging
from reminder_service.observability.client import init_opik

logger = logging.getLogger(__name__)

configure_logging(log_level=settings.log_level)
init_opik()

app = FastAPI(title=settings.app_name, debug=settings.debug)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.get("/health", tags=["health"])
def health() -> dict:
    return {"status": "ok", "service": settings.app_name}


app.include_router(notifications.router)
app.include_router(reminders.router)
app.include_router(preferences.router)
