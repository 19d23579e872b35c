"""Task reminder editing routes."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status

from reminder_service.api.deps import get_runtime
from reminder_service.api.schemas.reminders import ReminderScheduleRequest, ReminderStateResponse
from reminder_service.core.errors import StoreUnavailable, TaskNotFound
from reminder_service.observability.metrics import log_metric
from reminder_service.observability.tracing import trace
from reminder_service.services.runtime import ReminderRuntime
from reminder_service.services.task_store import ReminderState

router = APIRouter()


@router.put("/tasks/{task_id}/reminder", response_model=ReminderStateResponse, tags=["reminders"])
def schedule_task_reminder(
    task_id: UUID,
    payload: ReminderScheduleRequest,
    request: Request,
    runtime: ReminderRuntime = Depends(get_runtime),
) -> ReminderStateResponse:
    """Arm or move a task's reminder; moving it re-enables delivery."""
    request_id = getattr(request.state, "request_id", None)
    with trace("reminders.schedule", metadata={"task_id": str(task_id)}, request_id=request_id):
        try:
            state = runtime.store.schedule_reminder(task_id, payload.reminder_at)
        except TaskNotFound as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found") from exc
        except StoreUnavailable as exc:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Task store unavailable") from exc
    log_metric("reminders.schedule.success", 1, metadata={"task_id": str(task_id)})
    return _serialize(state, request_id)


@router.delete("/tasks/{task_id}/reminder", response_model=ReminderStateResponse, tags=["reminders"])
def cancel_task_reminder(
    task_id: UUID,
    request: Request,
    runtime: ReminderRuntime = Depends(get_runtime),
) -> ReminderStateResponse:
    request_id = getattr(request.state, "request_id", None)
    with trace("reminders.cancel", metadata={"task_id": str(task_id)}, request_id=request_id):
        try:
            state = runtime.store.cancel_reminder(task_id)
        except TaskNotFound as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found") from exc
        except StoreUnavailable as exc:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Task store unavailable") from exc
    log_metric("reminders.cancel.success", 1, metadata={"task_id": str(task_id)})
    return _serialize(state, request_id)


def _serialize(state: ReminderState, request_id: str | None) -> ReminderStateResponse:
    return ReminderStateResponse(
        task_id=state.task_id,
        enabled=state.enabled,
        reminder_at=state.reminder_at,
        sent=state.sent,
        request_id=request_id or "",
    )
