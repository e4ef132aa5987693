"""Reminder scheduling endpoints."""

import logging
import uuid

from fastapi import APIRouter, HTTPException, Request

from app.api.deps import DbSession, limiter
from app.schemas.reminders import (
    CallLogResponse,
    ReminderCreate,
    ReminderDetailResponse,
    ReminderResponse,
)
from app.services.reminders import (
    ReminderService,
    ReminderValidationError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/reminders", tags=["Reminders"])


@router.post("", response_model=ReminderResponse, status_code=201)
@limiter.limit("30/minute")
async def create_reminder(request: Request, body: ReminderCreate, db: DbSession) -> ReminderResponse:
    """Schedule a reminder call.

    The call is placed by the dispatch loop on its first tick at or after
    ``scheduled_at``.
    """
    try:
        reminder = await ReminderService(db).schedule_reminder(
            user_id=body.user_id,
            phone_number=body.phone_number,
            message=body.message,
            scheduled_at=body.scheduled_at,
        )
    except (ReminderValidationError, UserNotFoundError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return ReminderResponse.model_validate(reminder)


@router.get("/{reminder_id}", response_model=ReminderDetailResponse)
async def get_reminder(reminder_id: uuid.UUID, db: DbSession) -> ReminderDetailResponse:
    """Reminder details with its call logs."""
    found = await ReminderService(db).get_reminder(reminder_id)
    if found is None:
        raise HTTPException(status_code=404, detail="reminder not found")

    reminder, call_logs = found
    return ReminderDetailResponse(
        **ReminderResponse.model_validate(reminder).model_dump(),
        call_logs=[CallLogResponse.model_validate(c) for c in call_logs],
    )
