import uuid
from datetime import timedelta

from app.models import CallProvider, ReminderStatus
from app.schemas.webhooks import WebhookEvent
from app.services.dispatcher import DispatchLoop
from app.services.reconciler import ReconcileOutcome, WebhookReconciler
from app.services.store import ReminderStore
from tests.conftest import (
    NOW,
    create_reminder,
    create_user,
    load_call_logs,
    load_reminder,
)


async def reconcile(session_factory, settings, event: WebhookEvent) -> ReconcileOutcome:
    async with session_factory() as db:
        outcome = await WebhookReconciler(db, settings=settings).reconcile(event)
        await db.commit()
        return outcome


def telephony_event(call_id: str, status: str, reminder_id: str | None = None) -> WebhookEvent:
    return WebhookEvent(
        provider=CallProvider.TELEPHONY,
        external_call_id=call_id,
        raw_status=status,
        explicit_reminder_id=reminder_id,
    )


def voice_ai_event(call_id: str, status: str, transcript: str | None = None, reminder_id: str | None = None) -> WebhookEvent:
    return WebhookEvent(
        provider=CallProvider.VOICE_AI,
        external_call_id=call_id,
        raw_status=status,
        transcript=transcript,
        explicit_reminder_id=reminder_id,
    )


async def dispatched_reminder(session_factory, provider, settings):
    user = await create_user(session_factory)
    reminder = await create_reminder(session_factory, user, scheduled_at=NOW - timedelta(seconds=1))
    await DispatchLoop(session_factory, provider, settings=settings, clock=lambda: NOW).run_tick()
    return reminder


async def test_telephony_completed_keeps_reminder_processing(session_factory, provider, settings):
    reminder = await dispatched_reminder(session_factory, provider, settings)

    outcome = await reconcile(session_factory, settings, telephony_event("CALL1", "completed"))

    assert outcome == ReconcileOutcome.APPLIED
    stored = await load_reminder(session_factory, reminder.id)
    assert stored.status == ReminderStatus.PROCESSING
    logs = await load_call_logs(session_factory, reminder.id)
    assert [(log.provider, log.status) for log in logs] == [(CallProvider.TELEPHONY, "completed")]


async def test_telephony_busy_after_dispatch_fails_reminder(session_factory, provider, settings):
    reminder = await dispatched_reminder(session_factory, provider, settings)

    outcome = await reconcile(session_factory, settings, telephony_event("CALL1", "busy"))

    assert outcome == ReconcileOutcome.APPLIED
    assert (await load_reminder(session_factory, reminder.id)).status == ReminderStatus.FAILED
    logs = await load_call_logs(session_factory, reminder.id)
    assert [log.status for log in logs] == ["busy"]


async def test_progress_events_advance_log_until_final(session_factory, provider, settings):
    reminder = await dispatched_reminder(session_factory, provider, settings)

    assert await reconcile(session_factory, settings, telephony_event("CALL1", "ringing")) == ReconcileOutcome.APPLIED
    assert await reconcile(session_factory, settings, telephony_event("CALL1", "completed")) == ReconcileOutcome.APPLIED
    # Redelivered final callback
    assert await reconcile(session_factory, settings, telephony_event("CALL1", "completed")) == ReconcileOutcome.DUPLICATE
    # A final status is never replaced
    assert await reconcile(session_factory, settings, telephony_event("CALL1", "failed")) == ReconcileOutcome.DUPLICATE

    assert (await load_reminder(session_factory, reminder.id)).status == ReminderStatus.PROCESSING
    logs = await load_call_logs(session_factory, reminder.id)
    assert [log.status for log in logs] == ["completed"]


async def test_transcribed_event_completes_reminder(session_factory, provider, settings):
    reminder = await dispatched_reminder(session_factory, provider, settings)
    await reconcile(session_factory, settings, telephony_event("CALL1", "completed"))

    outcome = await reconcile(
        session_factory,
        settings,
        voice_ai_event("CALL1", "transcribed", transcript="Reminder: take your medication"),
    )

    assert outcome == ReconcileOutcome.APPLIED
    stored = await load_reminder(session_factory, reminder.id)
    assert stored.status == ReminderStatus.CALLED

    logs = await load_call_logs(session_factory, reminder.id)
    assert len(logs) == 2
    voice_log = next(log for log in logs if log.provider == CallProvider.VOICE_AI)
    assert voice_log.status == "transcribed"
    assert voice_log.transcript == "Reminder: take your medication"


async def test_duplicate_delivery_is_a_no_op(session_factory, settings):
    user = await create_user(session_factory)
    reminder = await create_reminder(
        session_factory, user, status=ReminderStatus.PROCESSING, external_call_id="CA100"
    )
    event = telephony_event("CA100", "ringing")

    first = await reconcile(session_factory, settings, event)
    second = await reconcile(session_factory, settings, event)

    assert first == ReconcileOutcome.APPLIED
    assert second == ReconcileOutcome.DUPLICATE
    assert len(await load_call_logs(session_factory, reminder.id)) == 1
    assert (await load_reminder(session_factory, reminder.id)).status == ReminderStatus.PROCESSING


async def test_duplicate_failure_event_does_not_transition_twice(session_factory, settings):
    user = await create_user(session_factory)
    reminder = await create_reminder(
        session_factory, user, status=ReminderStatus.PROCESSING, external_call_id="CA200"
    )

    assert await reconcile(session_factory, settings, telephony_event("CA200", "busy")) == ReconcileOutcome.APPLIED
    assert await reconcile(session_factory, settings, telephony_event("CA200", "busy")) == ReconcileOutcome.DUPLICATE

    stored = await load_reminder(session_factory, reminder.id)
    assert stored.status == ReminderStatus.FAILED
    assert len(await load_call_logs(session_factory, reminder.id)) == 1


async def test_terminal_state_is_never_overwritten(session_factory, settings):
    user = await create_user(session_factory)
    reminder = await create_reminder(
        session_factory, user, status=ReminderStatus.PROCESSING, external_call_id="CA300"
    )

    assert await reconcile(session_factory, settings, voice_ai_event("CA300", "transcribed")) == ReconcileOutcome.APPLIED
    late = await reconcile(session_factory, settings, telephony_event("CA300", "failed"))

    assert late == ReconcileOutcome.STALE
    assert (await load_reminder(session_factory, reminder.id)).status == ReminderStatus.CALLED
    # The late event is still recorded for auditing
    assert len(await load_call_logs(session_factory, reminder.id)) == 2


async def test_failed_reminder_does_not_return_to_processing(session_factory, settings):
    user = await create_user(session_factory)
    reminder = await create_reminder(
        session_factory, user, status=ReminderStatus.FAILED, external_call_id="CA310"
    )

    outcome = await reconcile(session_factory, settings, voice_ai_event("CA310", "in-progress"))

    assert outcome == ReconcileOutcome.STALE
    assert (await load_reminder(session_factory, reminder.id)).status == ReminderStatus.FAILED


async def test_unmapped_event_is_acknowledged_without_mutation(session_factory, settings):
    user = await create_user(session_factory)
    reminder = await create_reminder(
        session_factory, user, status=ReminderStatus.PROCESSING, external_call_id="CA400"
    )

    outcome = await reconcile(session_factory, settings, voice_ai_event("UNKNOWN", "transcribed"))

    assert outcome == ReconcileOutcome.UNMAPPED
    assert await load_call_logs(session_factory) == []
    assert (await load_reminder(session_factory, reminder.id)).status == ReminderStatus.PROCESSING


async def test_explicit_reminder_id_takes_precedence(session_factory, settings):
    user = await create_user(session_factory)
    reminder = await create_reminder(
        session_factory, user, status=ReminderStatus.PROCESSING, external_call_id="CA500"
    )

    # Voice-AI uses its own call id; metadata carries the reminder id
    outcome = await reconcile(
        session_factory,
        settings,
        voice_ai_event("vai-call-9", "completed", reminder_id=str(reminder.id)),
    )

    assert outcome == ReconcileOutcome.APPLIED
    assert (await load_reminder(session_factory, reminder.id)).status == ReminderStatus.CALLED
    logs = await load_call_logs(session_factory, reminder.id)
    assert [log.external_call_id for log in logs] == ["vai-call-9"]


async def test_unknown_explicit_id_falls_back_to_call_id(session_factory, settings):
    user = await create_user(session_factory)
    reminder = await create_reminder(
        session_factory, user, status=ReminderStatus.PROCESSING, external_call_id="CA600"
    )

    for explicit in (str(uuid.uuid4()), "not-a-uuid"):
        event = voice_ai_event("CA600", "ringing", reminder_id=explicit)
        async with session_factory() as db:
            resolved = await WebhookReconciler(db, settings=settings).resolve_reminder(event)
        assert resolved is not None and resolved.id == reminder.id


async def test_concurrent_insert_loses_as_duplicate(session_factory):
    user = await create_user(session_factory)
    reminder = await create_reminder(
        session_factory, user, status=ReminderStatus.PROCESSING, external_call_id="CA700"
    )

    async with session_factory() as db:
        store = ReminderStore(db)
        first = await store.record_call_log(reminder.id, "CA700", CallProvider.TELEPHONY, "completed")
        second = await store.record_call_log(reminder.id, "CA700", CallProvider.TELEPHONY, "completed")
        other_provider = await store.record_call_log(reminder.id, "CA700", CallProvider.VOICE_AI, "completed")
        await db.commit()

    assert first is True
    assert second is False
    assert other_provider is True
    assert len(await load_call_logs(session_factory, reminder.id)) == 2


async def test_telephony_completed_counts_as_called_without_transcript(session_factory, settings):
    settings.await_transcript = False
    user = await create_user(session_factory)
    reminder = await create_reminder(
        session_factory, user, status=ReminderStatus.PROCESSING, external_call_id="CA800"
    )

    await reconcile(session_factory, settings, telephony_event("CA800", "completed"))

    assert (await load_reminder(session_factory, reminder.id)).status == ReminderStatus.CALLED


async def test_advance_call_log_only_replaces_provisional_rows(session_factory):
    user = await create_user(session_factory)
    reminder = await create_reminder(
        session_factory, user, status=ReminderStatus.PROCESSING, external_call_id="CA900"
    )

    async with session_factory() as db:
        store = ReminderStore(db)
        await store.record_call_log(reminder.id, "CA900", CallProvider.TELEPHONY, "created")
        same = await store.advance_call_log("CA900", CallProvider.TELEPHONY, "created")
        ringing = await store.advance_call_log("CA900", CallProvider.TELEPHONY, "ringing")
        completed = await store.advance_call_log("CA900", CallProvider.TELEPHONY, "completed")
        after_final = await store.advance_call_log("CA900", CallProvider.TELEPHONY, "busy")
        missing = await store.advance_call_log("CA900", CallProvider.VOICE_AI, "completed")
        await db.commit()

    assert (same, ringing, completed, after_final, missing) == (False, True, True, False, False)
    logs = await load_call_logs(session_factory, reminder.id)
    assert [log.status for log in logs] == ["completed"]


async def test_webhook_for_scheduled_reminder_is_stale_and_leaves_it_dispatchable(
    session_factory, provider, settings
):
    user = await create_user(session_factory)
    reminder = await create_reminder(session_factory, user, scheduled_at=NOW + timedelta(hours=1))

    ringing = await reconcile(
        session_factory, settings, telephony_event("CA-early", "ringing", reminder_id=str(reminder.id))
    )
    busy = await reconcile(
        session_factory, settings, voice_ai_event("vai-early", "busy", reminder_id=str(reminder.id))
    )

    assert ringing == ReconcileOutcome.STALE
    assert busy == ReconcileOutcome.STALE
    assert (await load_reminder(session_factory, reminder.id)).status == ReminderStatus.SCHEDULED

    later = NOW + timedelta(hours=2)
    stats = await DispatchLoop(session_factory, provider, settings=settings, clock=lambda: later).run_tick()

    assert stats["dispatched"] == 1
    assert [c[2] for c in provider.calls] == [str(reminder.id)]
    assert (await load_reminder(session_factory, reminder.id)).status == ReminderStatus.PROCESSING


async def test_final_event_losing_insert_race_still_advances_log(
    session_factory, provider, settings, monkeypatch
):
    reminder = await dispatched_reminder(session_factory, provider, settings)

    # The dispatch-time row is not visible to the lookup, so the insert hits the unique key
    async def no_call_log(self, external_call_id, provider):
        return None

    monkeypatch.setattr(ReminderStore, "find_call_log", no_call_log)

    outcome = await reconcile(session_factory, settings, telephony_event("CALL1", "busy"))
    redelivered = await reconcile(session_factory, settings, telephony_event("CALL1", "busy"))

    assert outcome == ReconcileOutcome.APPLIED
    assert redelivered == ReconcileOutcome.DUPLICATE
    assert (await load_reminder(session_factory, reminder.id)).status == ReminderStatus.FAILED
    logs = await load_call_logs(session_factory, reminder.id)
    assert [log.status for log in logs] == ["busy"]


async def test_transition_only_moves_from_given_sources(session_factory):
    user = await create_user(session_factory)
    reminder = await create_reminder(session_factory, user)

    async with session_factory() as db:
        store = ReminderStore(db)
        from_processing = await store.transition(
            reminder.id, ReminderStatus.FAILED, sources={ReminderStatus.PROCESSING}
        )
        illegal_source = await store.transition(
            reminder.id, ReminderStatus.CALLED, sources={ReminderStatus.SCHEDULED}
        )
        from_scheduled = await store.transition(
            reminder.id, ReminderStatus.PROCESSING, sources={ReminderStatus.SCHEDULED}
        )
        await db.commit()

    assert (from_processing, illegal_source, from_scheduled) == (False, False, True)
    assert (await load_reminder(session_factory, reminder.id)).status == ReminderStatus.PROCESSING
