"""Persistence operations for users, reminders and call logs.

All reads and writes the dispatch loop and webhook reconciler perform go
through ``ReminderStore``. Status changes are conditional updates so the
lifecycle rules hold even when two writers race on the same row.
"""

import logging
import uuid
from collections.abc import Collection
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.call_log import PROVISIONAL_STATUSES, CallLog, CallProvider
from app.models.reminder import Reminder, ReminderStatus, legal_sources
from app.models.user import User

logger = logging.getLogger(__name__)

# Dialects with native INSERT ... ON CONFLICT DO NOTHING
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class ReminderStore:
    """Data access for the reminder domain, bound to one session."""

    def __init__(self, db: AsyncSession) -> None:
        """Initialize the store.

        Args:
            db: Async database session
        """
        self._db = db

    # =========================================================================
    # Users
    # =========================================================================

    async def create_user(self, email: str) -> User:
        user = User(email=email)
        self._db.add(user)
        await self._db.flush()
        return user

    async def find_user_by_id(self, user_id: uuid.UUID) -> User | None:
        return await self._db.get(User, user_id)

    async def find_user_by_email(self, email: str) -> User | None:
        result = await self._db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def list_users(self) -> list[User]:
        result = await self._db.execute(select(User).order_by(User.created_at))
        return list(result.scalars().all())

    # =========================================================================
    # Reminders
    # =========================================================================

    async def create_reminder(
        self,
        user_id: uuid.UUID,
        phone_number: str,
        message: str,
        scheduled_at: datetime,
    ) -> Reminder:
        reminder = Reminder(
            user_id=user_id,
            phone_number=phone_number,
            message=message,
            scheduled_at=scheduled_at,
            status=ReminderStatus.SCHEDULED,
        )
        self._db.add(reminder)
        await self._db.flush()
        return reminder

    async def find_reminder_by_id(self, reminder_id: uuid.UUID) -> Reminder | None:
        result = await self._db.execute(select(Reminder).where(Reminder.id == reminder_id))
        return result.scalar_one_or_none()

    async def find_reminder_by_external_call_id(self, external_call_id: str) -> Reminder | None:
        """Most recent reminder whose outbound call has this id."""
        result = await self._db.execute(
            select(Reminder)
            .where(Reminder.external_call_id == external_call_id)
            .order_by(Reminder.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_due_reminders(self, now: datetime, limit: int) -> list[Reminder]:
        """Scheduled reminders whose time has come, earliest first.

        Args:
            now: Cut-off instant (inclusive)
            limit: Maximum number of reminders returned

        Returns:
            Up to ``limit`` reminders ordered by ``scheduled_at`` ascending
        """
        result = await self._db.execute(
            select(Reminder)
            .where(
                Reminder.status == ReminderStatus.SCHEDULED,
                Reminder.scheduled_at <= now,
            )
            .order_by(Reminder.scheduled_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_reminders_for_user(
        self,
        user_id: uuid.UUID,
        status: ReminderStatus | None = None,
        page: int = 1,
        page_size: int = 25,
    ) -> tuple[list[Reminder], int]:
        """Page through a user's reminders, latest scheduled first.

        Returns:
            Tuple of (reminders on this page, total matching count)
        """
        conditions = [Reminder.user_id == user_id]
        if status is not None:
            conditions.append(Reminder.status == status)

        total = await self._db.scalar(
            select(func.count(Reminder.id)).where(*conditions)
        ) or 0

        result = await self._db.execute(
            select(Reminder)
            .where(*conditions)
            .order_by(Reminder.scheduled_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def transition(
        self,
        reminder_id: uuid.UUID,
        target: ReminderStatus,
        sources: Collection[ReminderStatus],
        external_call_id: str | None = None,
    ) -> bool:
        """Move a reminder to ``target`` if it is currently in one of ``sources``.

        The check and the write happen in a single UPDATE, so a reminder that
        a concurrent writer already moved to a terminal state is left alone.
        Sources that cannot legally reach ``target`` are ignored.

        Args:
            reminder_id: Reminder to update
            target: Desired status
            sources: States this caller is allowed to move the reminder from
            external_call_id: Provider call id to store alongside the change

        Returns:
            True if the row was updated
        """
        values: dict = {
            "status": target,
            "updated_at": datetime.now(timezone.utc),
        }
        if external_call_id is not None:
            values["external_call_id"] = external_call_id

        allowed = [state for state in legal_sources(target) if state in sources]
        if not allowed:
            return False

        result = await self._db.execute(
            update(Reminder)
            .where(
                Reminder.id == reminder_id,
                Reminder.status.in_(allowed),
            )
            .values(**values)
            .returning(Reminder.id)
            .execution_options(synchronize_session="evaluate")
        )
        return result.scalar_one_or_none() is not None

    # =========================================================================
    # Call logs
    # =========================================================================

    async def find_call_log(
        self, external_call_id: str, provider: CallProvider
    ) -> CallLog | None:
        result = await self._db.execute(
            select(CallLog).where(
                CallLog.external_call_id == external_call_id,
                CallLog.provider == provider,
            )
        )
        return result.scalar_one_or_none()

    async def list_call_logs(self, reminder_id: uuid.UUID) -> list[CallLog]:
        result = await self._db.execute(
            select(CallLog)
            .where(CallLog.reminder_id == reminder_id)
            .order_by(CallLog.received_at)
        )
        return list(result.scalars().all())

    async def advance_call_log(
        self,
        external_call_id: str,
        provider: CallProvider,
        status: str,
        transcript: str | None = None,
        received_at: datetime | None = None,
    ) -> bool:
        """Compare-and-swap an existing call log to a newer provider status.

        Only rows whose status is still provisional, and differs from
        ``status``, are rewritten. A redelivered event therefore never matches.

        Returns:
            True if the row was advanced
        """
        values: dict = {
            "status": status,
            "received_at": received_at or datetime.now(timezone.utc),
        }
        if transcript is not None:
            values["transcript"] = transcript

        result = await self._db.execute(
            update(CallLog)
            .where(
                CallLog.external_call_id == external_call_id,
                CallLog.provider == provider,
                CallLog.status.in_(PROVISIONAL_STATUSES),
                CallLog.status != status,
            )
            .values(**values)
            .returning(CallLog.id)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none() is not None

    async def record_call_log(
        self,
        reminder_id: uuid.UUID,
        external_call_id: str,
        provider: CallProvider,
        status: str,
        transcript: str | None = None,
        received_at: datetime | None = None,
    ) -> bool:
        """Insert a call log unless one already exists for the idempotency key.

        Uses ``INSERT ... ON CONFLICT DO NOTHING`` on the
        ``(external_call_id, provider)`` unique constraint, so two concurrent
        deliveries of the same event cannot both insert.

        Returns:
            True if this call inserted the row, False if it already existed
        """
        values = {
            "id": uuid.uuid4(),
            "reminder_id": reminder_id,
            "external_call_id": external_call_id,
            "provider": provider,
            "status": status,
            "transcript": transcript,
            "received_at": received_at or datetime.now(timezone.utc),
        }

        dialect = self._db.get_bind().dialect.name
        insert_fn = _UPSERT_INSERTS.get(dialect)
        if insert_fn is not None:
            result = await self._db.execute(
                insert_fn(CallLog)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["external_call_id", "provider"])
                .returning(CallLog.id)
            )
            return result.scalar_one_or_none() is not None

        # Other backends: rely on the unique constraint inside a savepoint
        try:
            async with self._db.begin_nested():
                self._db.add(CallLog(**values))
        except IntegrityError:
            logger.info(f"Call log already exists: {external_call_id}/{provider.value}")
            return False
        return True
