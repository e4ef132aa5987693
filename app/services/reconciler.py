"""Webhook reconciliation: applies provider call events to reminders.

Both providers report on the same underlying call. The telephony provider
says whether the call connected; the voice-AI provider says whether the
message was delivered and transcribed. Every distinct event is recorded once
in ``call_logs`` (keyed by external call id and provider) and, if it moves
the reminder forward, applied with a conditional status update.

A call has one log row per provider. While that row holds a provisional
status (``created``, ``ringing``...) a newer status from the same provider
replaces it; once it holds a final status, further events for the call are
duplicates.
"""

import enum
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.models.call_log import CallProvider
from app.models.reminder import Reminder, ReminderStatus
from app.schemas.webhooks import WebhookEvent
from app.services.store import ReminderStore

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, enum.Enum):
    """What happened to an event that passed signature verification."""

    APPLIED = "applied"  # Logged and reminder status updated
    DUPLICATE = "duplicate"  # Event already recorded
    UNMAPPED = "unmapped"  # No reminder matches the event
    STALE = "stale"  # Logged, but the reminder was not awaiting a call outcome


# Provider statuses meaning the reminder was not delivered
FAILURE_STATUSES = frozenset({"failed", "busy", "no-answer", "canceled", "cancelled", "error"})

# Voice-AI statuses meaning the message was delivered
VOICE_AI_SUCCESS_STATUSES = frozenset({"completed", "transcribed", "ended"})


def map_provider_status(
    provider: CallProvider,
    status: str,
    await_transcript: bool = True,
) -> ReminderStatus:
    """Translate a provider status into the reminder status it implies.

    Args:
        provider: Event source
        status: Provider status, any case
        await_transcript: Whether a telephony "completed" still waits for
            the voice-AI transcript before counting as delivered

    Returns:
        CALLED, FAILED, or PROCESSING for intermediate/unknown statuses
    """
    status = status.strip().lower()

    if status in FAILURE_STATUSES:
        return ReminderStatus.FAILED

    if provider == CallProvider.VOICE_AI and status in VOICE_AI_SUCCESS_STATUSES:
        return ReminderStatus.CALLED

    if provider == CallProvider.TELEPHONY and status == "completed":
        return ReminderStatus.PROCESSING if await_transcript else ReminderStatus.CALLED

    return ReminderStatus.PROCESSING


class WebhookReconciler:
    """Applies ``WebhookEvent``s to the store exactly once."""

    def __init__(self, db: AsyncSession, settings: Settings | None = None) -> None:
        """Initialize the reconciler.

        Args:
            db: Async database session; the caller commits
            settings: Overrides the cached application settings
        """
        self._store = ReminderStore(db)
        self._settings = settings or get_settings()

    async def resolve_reminder(self, event: WebhookEvent) -> Reminder | None:
        """Find the reminder an event belongs to.

        An explicit reminder id in the payload wins; otherwise the event's
        call id is matched against the call id stored at dispatch time.
        """
        reminder_uuid = event.reminder_uuid
        if reminder_uuid is not None:
            reminder = await self._store.find_reminder_by_id(reminder_uuid)
            if reminder:
                return reminder
            logger.info(
                f"Explicit reminder id {event.explicit_reminder_id} not found, "
                f"falling back to call id {event.external_call_id}"
            )

        return await self._store.find_reminder_by_external_call_id(event.external_call_id)

    async def reconcile(self, event: WebhookEvent) -> ReconcileOutcome:
        """Record ``event`` and advance its reminder.

        Returns:
            The outcome; every outcome is acknowledged to the provider
        """
        provider = event.provider.value

        reminder = await self.resolve_reminder(event)
        if reminder is None:
            logger.warning(f"{provider} callback: reminder not found for call {event.external_call_id}")
            return ReconcileOutcome.UNMAPPED

        recorded = False
        existing = await self._store.find_call_log(event.external_call_id, event.provider)
        if existing is None:
            recorded = await self._store.record_call_log(
                reminder_id=reminder.id,
                external_call_id=event.external_call_id,
                provider=event.provider,
                status=event.status,
                transcript=event.transcript,
            )
        if not recorded:
            # Row exists, possibly inserted concurrently; replace it while provisional
            recorded = await self._store.advance_call_log(
                external_call_id=event.external_call_id,
                provider=event.provider,
                status=event.status,
                transcript=event.transcript,
            )
        if not recorded:
            logger.info(f"{provider} webhook duplicate for call {event.external_call_id}, ignoring")
            return ReconcileOutcome.DUPLICATE

        target = map_provider_status(
            event.provider, event.status, await_transcript=self._settings.await_transcript
        )
        applied = await self._store.transition(
            reminder.id, target, sources={ReminderStatus.PROCESSING}
        )
        if not applied:
            logger.info(
                f"{provider} event '{event.status}' for reminder {reminder.id} not applied: "
                f"reminder is {reminder.status.value}"
            )
            return ReconcileOutcome.STALE

        logger.info(
            f"Reminder {reminder.id} -> {target.value} "
            f"({provider} '{event.status}', call {event.external_call_id})"
        )
        return ReconcileOutcome.APPLIED
