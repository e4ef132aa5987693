"""User registration and per-user reminder listing."""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query

from app.api.deps import DbSession
from app.models.reminder import ReminderStatus
from app.schemas.reminders import ReminderPage, ReminderResponse, UserCreate, UserResponse
from app.services.reminders import (
    ReminderService,
    ReminderValidationError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/users", tags=["Users"])


@router.post("", response_model=UserResponse, status_code=201)
async def create_user(body: UserCreate, db: DbSession) -> UserResponse:
    """Register a user by email."""
    try:
        user = await ReminderService(db).register_user(body.email)
    except ReminderValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return UserResponse.model_validate(user)


@router.get("", response_model=list[UserResponse])
async def list_users(db: DbSession) -> list[UserResponse]:
    users = await ReminderService(db).list_users()
    return [UserResponse.model_validate(u) for u in users]


@router.get("/{user_id}/reminders", response_model=ReminderPage)
async def list_user_reminders(
    user_id: uuid.UUID,
    db: DbSession,
    status: ReminderStatus | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 25,
) -> ReminderPage:
    """List a user's reminders, latest scheduled first."""
    try:
        reminders, total = await ReminderService(db).list_user_reminders(
            user_id, status=status, page=page, page_size=page_size
        )
    except UserNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return ReminderPage(
        items=[ReminderResponse.model_validate(r) for r in reminders],
        total=total,
        page=page,
        page_size=page_size,
    )
