"""Request/response models for users and reminders."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.call_log import CallProvider
from app.models.reminder import ReminderStatus


class UserCreate(BaseModel):
    """Registration request."""

    email: str = Field(min_length=3, max_length=255)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    email: str
    created_at: datetime


class ReminderCreate(BaseModel):
    """Reminder scheduling request.

    ``scheduled_at`` is an ISO 8601 timestamp with a timezone offset.
    """

    user_id: uuid.UUID
    phone_number: str = Field(min_length=1, max_length=32)
    message: str = Field(min_length=1)
    scheduled_at: datetime


class ReminderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    phone_number: str
    message: str
    scheduled_at: datetime
    status: ReminderStatus
    external_call_id: str | None = None
    created_at: datetime
    updated_at: datetime


class CallLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    external_call_id: str
    provider: CallProvider
    status: str
    transcript: str | None = None
    received_at: datetime


class ReminderDetailResponse(ReminderResponse):
    """Reminder with every provider event recorded for it."""

    call_logs: list[CallLogResponse] = []


class ReminderPage(BaseModel):
    """One page of a user's reminders."""

    items: list[ReminderResponse]
    total: int
    page: int
    page_size: int
