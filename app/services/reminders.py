"""User registration and reminder scheduling.

Validation lives here so the routers only translate errors into HTTP
responses.
"""

import logging
import re
import uuid
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.call_log import CallLog
from app.models.reminder import Reminder, ReminderStatus
from app.models.user import User
from app.services.store import ReminderStore
from app.utils.phone import is_e164, normalize_phone

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")
MAX_MESSAGE_LENGTH = 1000
MAX_PAGE_SIZE = 100


class ReminderValidationError(Exception):
    """Client-supplied data is missing or malformed."""


class UserNotFoundError(Exception):
    """Referenced user does not exist."""


class DuplicateEmailError(ReminderValidationError):
    """Email is already registered."""


class ReminderService:
    """Business logic for users and reminders."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db
        self._store = ReminderStore(db)

    # =========================================================================
    # Users
    # =========================================================================

    async def register_user(self, email: str) -> User:
        """Create a user with a lowercased, unique email.

        Raises:
            ReminderValidationError: Invalid email format
            DuplicateEmailError: Email already registered
        """
        email = (email or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ReminderValidationError("invalid email format")

        if await self._store.find_user_by_email(email):
            raise DuplicateEmailError("email already exists")

        try:
            async with self._db.begin_nested():
                user = await self._store.create_user(email)
        except IntegrityError as e:
            raise DuplicateEmailError("email already exists") from e

        logger.info(f"User created: {user.id}")
        return user

    async def list_users(self) -> list[User]:
        return await self._store.list_users()

    # =========================================================================
    # Reminders
    # =========================================================================

    async def schedule_reminder(
        self,
        user_id: uuid.UUID,
        phone_number: str,
        message: str,
        scheduled_at: datetime,
        now: datetime | None = None,
    ) -> Reminder:
        """Create a reminder in ``scheduled`` state.

        Args:
            user_id: Owner of the reminder
            phone_number: Number to call, E.164
            message: Text read out during the call
            scheduled_at: When to call; must be timezone-aware and in the future
            now: Override for the current time

        Raises:
            ReminderValidationError: Invalid phone number, message or time
            UserNotFoundError: Unknown user
        """
        now = now or datetime.now(timezone.utc)

        phone_number = normalize_phone(phone_number)
        if not is_e164(phone_number):
            raise ReminderValidationError("invalid phone_number")

        message = (message or "").strip()
        if not message:
            raise ReminderValidationError("message is required")
        if len(message) > MAX_MESSAGE_LENGTH:
            raise ReminderValidationError(f"message exceeds {MAX_MESSAGE_LENGTH} characters")

        if scheduled_at.tzinfo is None:
            raise ReminderValidationError("scheduled_at must include a timezone offset")
        if scheduled_at <= now:
            raise ReminderValidationError("scheduled_at must be in the future")

        if not await self._store.find_user_by_id(user_id):
            raise UserNotFoundError("user not found")

        reminder = await self._store.create_reminder(
            user_id=user_id,
            phone_number=phone_number,
            message=message,
            scheduled_at=scheduled_at,
        )
        logger.info(f"Reminder created: {reminder.id} for {scheduled_at.isoformat()}")
        return reminder

    async def get_reminder(self, reminder_id: uuid.UUID) -> tuple[Reminder, list[CallLog]] | None:
        """Reminder with its call logs, or None."""
        reminder = await self._store.find_reminder_by_id(reminder_id)
        if reminder is None:
            return None
        return reminder, await self._store.list_call_logs(reminder.id)

    async def list_user_reminders(
        self,
        user_id: uuid.UUID,
        status: ReminderStatus | None = None,
        page: int = 1,
        page_size: int = 25,
    ) -> tuple[list[Reminder], int]:
        """Page through a user's reminders.

        Raises:
            UserNotFoundError: Unknown user
        """
        if not await self._store.find_user_by_id(user_id):
            raise UserNotFoundError("user not found")

        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        return await self._store.list_reminders_for_user(
            user_id, status=status, page=page, page_size=page_size
        )
