"""Notification triggers, summaries and push token routes."""
from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from reminder_service.api.deps import get_runtime
from reminder_service.api.schemas.notifications import (
    CycleReportResponse,
    DigestRunResponse,
    ManualRunRequest,
    NotificationTokenRequest,
    NotificationTokenResponse,
    ReminderStatsResponse,
    SummaryResponse,
    UpcomingTaskPayload,
)
from reminder_service.core.config import settings
from reminder_service.core.errors import StoreUnavailable
from reminder_service.core.time_utils import utc_now
from reminder_service.db.deps import get_db
from reminder_service.observability.metrics import log_metric
from reminder_service.observability.tracing import trace
from reminder_service.services.digest_jobs import DigestRunStats
from reminder_service.services.notification_tokens import deactivate_tokens, register_token
from reminder_service.services.runtime import ReminderRuntime

router = APIRouter()


def _run_instant(payload: Optional[ManualRunRequest]) -> datetime:
    if payload is not None and payload.now is not None:
        return payload.now
    return utc_now()


@router.get("/notifications/config", tags=["notifications"])
def get_notifications_config(request: Request) -> dict:
    request_id = getattr(request.state, "request_id", None)
    return {
        "enabled": settings.notifications_enabled,
        "provider": settings.notifications_provider,
        "channel": settings.reminder_channel,
        "disabled_channel_policy": settings.disabled_channel_policy,
        "request_id": request_id or "",
    }


@router.post("/notifications/reminders/run", response_model=CycleReportResponse, tags=["notifications"])
def run_reminder_cycle(
    request: Request,
    payload: Optional[ManualRunRequest] = Body(default=None),
    runtime: ReminderRuntime = Depends(get_runtime),
) -> CycleReportResponse:
    request_id = getattr(request.state, "request_id", None)
    with trace("notifications.reminders.run", request_id=request_id):
        report = runtime.scanner.run_cycle(_run_instant(payload))
    log_metric("notifications.reminders.run", report.sent, metadata={"request_id": request_id})
    return CycleReportResponse(**report.to_dict(), request_id=request_id or "")


@router.post("/notifications/daily-digest/run", response_model=DigestRunResponse, tags=["notifications"])
def run_daily_digest(
    request: Request,
    payload: Optional[ManualRunRequest] = Body(default=None),
    runtime: ReminderRuntime = Depends(get_runtime),
) -> DigestRunResponse:
    request_id = getattr(request.state, "request_id", None)
    with trace("notifications.daily_digest.run", request_id=request_id):
        stats = runtime.digests.run_daily_summaries(_run_instant(payload))
    return _digest_response(stats, request_id)


@router.post("/notifications/overdue-alerts/run", response_model=DigestRunResponse, tags=["notifications"])
def run_overdue_alerts(
    request: Request,
    payload: Optional[ManualRunRequest] = Body(default=None),
    runtime: ReminderRuntime = Depends(get_runtime),
) -> DigestRunResponse:
    request_id = getattr(request.state, "request_id", None)
    with trace("notifications.overdue_alerts.run", request_id=request_id):
        stats = runtime.digests.run_overdue_alerts(_run_instant(payload))
    return _digest_response(stats, request_id)


@router.post("/notifications/weekly-summary/run", response_model=DigestRunResponse, tags=["notifications"])
def run_weekly_summary(
    request: Request,
    payload: Optional[ManualRunRequest] = Body(default=None),
    runtime: ReminderRuntime = Depends(get_runtime),
) -> DigestRunResponse:
    request_id = getattr(request.state, "request_id", None)
    with trace("notifications.weekly_summary.run", request_id=request_id):
        stats = runtime.digests.run_weekly_summaries(_run_instant(payload))
    return _digest_response(stats, request_id)


@router.get("/notifications/summary", response_model=SummaryResponse, tags=["notifications"])
def get_summary(
    request: Request,
    user_id: UUID = Query(..., description="User ID"),
    runtime: ReminderRuntime = Depends(get_runtime),
) -> SummaryResponse:
    request_id = getattr(request.state, "request_id", None)
    with trace("notifications.summary", metadata={"user_id": str(user_id)}, user_id=str(user_id), request_id=request_id):
        try:
            summary = runtime.aggregator.summarize(user_id, utc_now())
        except StoreUnavailable as exc:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Task store unavailable") from exc

    log_metric("notifications.summary.success", 1, metadata={"user_id": str(user_id)})
    return SummaryResponse(
        user_id=user_id,
        total_tasks=summary.total_tasks,
        completed=summary.completed,
        pending=summary.pending,
        overdue=summary.overdue,
        due_today=summary.due_today,
        completion_rate=summary.completion_rate,
        upcoming=[
            UpcomingTaskPayload(
                task_id=item.task_id,
                title=item.title,
                due_date=item.due_date,
                priority=item.priority,
            )
            for item in summary.upcoming
        ],
        request_id=request_id or "",
    )


@router.get("/notifications/reminders/stats", response_model=ReminderStatsResponse, tags=["notifications"])
def get_reminder_stats(
    request: Request,
    runtime: ReminderRuntime = Depends(get_runtime),
) -> ReminderStatsResponse:
    request_id = getattr(request.state, "request_id", None)
    try:
        stats = runtime.store.reminder_stats(utc_now())
    except StoreUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Task store unavailable") from exc
    return ReminderStatsResponse(
        total=stats.total,
        active=stats.active,
        sent=stats.sent,
        overdue=stats.overdue,
        efficiency=stats.efficiency,
        request_id=request_id or "",
    )


@router.post("/notifications/register", response_model=NotificationTokenResponse, tags=["notifications"])
def register_notification_token(
    payload: NotificationTokenRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> NotificationTokenResponse:
    request_id = getattr(request.state, "request_id", None)
    metadata = {"user_id": str(payload.user_id), "platform": payload.platform, "request_id": request_id}
    with trace("notifications.register", metadata=metadata, user_id=str(payload.user_id), request_id=request_id):
        try:
            register_token(
                db,
                user_id=payload.user_id,
                token=payload.token,
                platform=payload.platform,
                device_name=payload.device_name,
            )
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_metric("notifications.register.success", 1, metadata={"user_id": str(payload.user_id)})
    return NotificationTokenResponse(registered=True, request_id=request_id or "")


@router.delete("/notifications/register", response_model=NotificationTokenResponse, tags=["notifications"])
def unregister_notification_token(
    payload: NotificationTokenRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> NotificationTokenResponse:
    request_id = getattr(request.state, "request_id", None)
    metadata = {"user_id": str(payload.user_id), "request_id": request_id}
    with trace("notifications.unregister", metadata=metadata, user_id=str(payload.user_id), request_id=request_id):
        removed = deactivate_tokens(db, user_id=payload.user_id, tokens=[payload.token])
        if not removed:
            raise HTTPException(status_code=404, detail="Token not found")
    log_metric("notifications.unregister.success", 1, metadata={"user_id": str(payload.user_id)})
    return NotificationTokenResponse(registered=False, request_id=request_id or "")


def _digest_response(stats: DigestRunStats, request_id: str | None) -> DigestRunResponse:
    return DigestRunResponse(**stats.to_dict(), request_id=request_id or "")
