"""Dispatch loop: places calls for reminders whose time has come.

Each tick:
1. Loads up to ``dispatch_batch_size`` scheduled reminders that are due,
   earliest first
2. Asks the provider to place a call for each one
3. Records a ``created`` call log and moves the reminder to ``processing``,
   or moves it straight to ``failed`` if the provider refused the call

A provider failure only affects its own reminder. A database failure ends
the tick; the next tick picks up whatever is still due.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, get_settings
from app.models.call_log import CREATED_STATUS
from app.models.reminder import ReminderStatus
from app.services.providers import CallProviderClient, ProviderError
from app.services.store import ReminderStore

logger = logging.getLogger(__name__)

DISPATCH_LOCK_KEY = "reminders:dispatch:lock"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DispatchLoop:
    """Periodic scan-and-dispatch task with an explicit start/stop lifecycle."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: CallProviderClient,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
        redis_client: redis.Redis | None = None,
    ) -> None:
        """Initialize the dispatch loop.

        Args:
            session_factory: Creates database sessions
            provider: Client used to place calls
            settings: Overrides the cached application settings
            clock: Returns the current time, used for the "due" comparison
            redis_client: If set, ticks take a leader lock so only one process
                dispatches per interval
        """
        self._session_factory = session_factory
        self._provider = provider
        self._settings = settings or get_settings()
        self._clock = clock
        self._redis = redis_client
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def batch_size(self) -> int:
        return self._settings.dispatch_batch_size

    @property
    def interval(self) -> float:
        return self._settings.dispatch_interval_seconds

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start ticking: once immediately, then every ``interval`` seconds."""
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="reminder-dispatch-loop")
        logger.info(
            f"Dispatch loop started: interval={self.interval}s, batch_size={self.batch_size}"
        )

    async def stop(self) -> None:
        """Signal the loop to stop and wait for the current tick to finish."""
        if self._task is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Dispatch loop stopped")

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_tick()
            except Exception:
                logger.exception("Dispatch tick crashed")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    # =========================================================================
    # Tick
    # =========================================================================

    async def run_tick(self, now: datetime | None = None) -> dict[str, Any]:
        """Dispatch every due reminder in one batch.

        Args:
            now: Override for the current time

        Returns:
            Counts of reminders found, dispatched, failed and skipped
        """
        now = now or self._clock()
        stats = {"found": 0, "dispatched": 0, "failed": 0, "skipped": 0}

        if not await self._acquire_lock():
            logger.info("Dispatch tick skipped: another worker holds the lock")
            return stats

        try:
            async with self._session_factory() as db:
                due = await ReminderStore(db).find_due_reminders(now, self.batch_size)
                # Plain tuples so each dispatch can use its own session
                batch = [(r.id, r.phone_number, r.message) for r in due]
        except SQLAlchemyError:
            logger.exception("Dispatch tick aborted: could not load due reminders")
            return stats

        stats["found"] = len(batch)
        logger.info(f"Found {len(batch)} due reminders")
        if not batch:
            return stats

        if self._settings.dispatch_concurrency <= 1:
            for reminder_id, phone_number, message in batch:
                try:
                    outcome = await self._dispatch_one(reminder_id, phone_number, message)
                except SQLAlchemyError:
                    logger.exception(
                        f"Dispatch tick ended early: store error on reminder {reminder_id}"
                    )
                    break
                stats[outcome] += 1
            return stats

        semaphore = asyncio.Semaphore(self._settings.dispatch_concurrency)

        async def _bounded(reminder_id: uuid.UUID, phone_number: str, message: str) -> str:
            async with semaphore:
                return await self._dispatch_one(reminder_id, phone_number, message)

        results = await asyncio.gather(
            *(_bounded(*item) for item in batch), return_exceptions=True
        )
        for (reminder_id, _, _), result in zip(batch, results):
            if isinstance(result, BaseException):
                logger.error(f"Store error while dispatching reminder {reminder_id}: {result}")
                continue
            stats[result] += 1
        return stats

    async def _dispatch_one(
        self, reminder_id: uuid.UUID, phone_number: str, message: str
    ) -> str:
        """Place one call and record the outcome.

        Returns:
            "dispatched", "failed" or "skipped" (reminder no longer scheduled)
        """
        logger.info(f"Processing reminder {reminder_id}")

        try:
            call = await self._provider.create_call(phone_number, message, str(reminder_id))
        except ProviderError as e:
            logger.error(f"Error triggering call for reminder {reminder_id}, marking as failed: {e}")
            return await self._mark_failed(reminder_id)
        except Exception:
            logger.exception(f"Unexpected error triggering call for reminder {reminder_id}")
            return await self._mark_failed(reminder_id)

        async with self._session_factory() as db:
            store = ReminderStore(db)
            await store.record_call_log(
                reminder_id=reminder_id,
                external_call_id=call.external_call_id,
                provider=call.provider,
                status=CREATED_STATUS,
                received_at=self._clock(),
            )
            updated = await store.transition(
                reminder_id,
                ReminderStatus.PROCESSING,
                sources={ReminderStatus.SCHEDULED},
                external_call_id=call.external_call_id,
            )
            if not updated:
                # Someone else moved the reminder on; keep the store untouched
                await db.rollback()
                logger.warning(
                    f"Reminder {reminder_id} left scheduled state during dispatch "
                    f"(call {call.external_call_id})"
                )
                return "skipped"
            await db.commit()

        logger.info(
            f"Triggered {call.provider.value} call {call.external_call_id} "
            f"for reminder {reminder_id}"
        )
        return "dispatched"

    async def _acquire_lock(self) -> bool:
        """Take the cross-process leader lock for this interval, if configured."""
        if self._redis is None:
            return True
        ttl = max(int(self.interval), 1)
        try:
            return bool(await self._redis.set(DISPATCH_LOCK_KEY, "1", nx=True, ex=ttl))
        except redis.RedisError as e:
            # Redis unavailable: dispatch without the lock
            logger.warning(f"Could not acquire dispatch lock: {e}")
            return True

    async def _mark_failed(self, reminder_id: uuid.UUID) -> str:
        async with self._session_factory() as db:
            updated = await ReminderStore(db).transition(
                reminder_id, ReminderStatus.FAILED, sources={ReminderStatus.SCHEDULED}
            )
            await db.commit()
        return "failed" if updated else "skipped"
