"""Telephony webhook for call status callbacks.

The telephony provider posts form-urlencoded status updates for every call we
place (initiated, ringing, answered, completed, busy, no-answer, failed,
canceled). The body is signed with HMAC-SHA256 in ``X-Telephony-Signature``.

A "completed" call only means the callee picked up; the reminder stays in
``processing`` until the voice-AI provider confirms delivery (see
``await_transcript``).
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Header, Query, Request
from pydantic import ValidationError

from app.api.deps import DbSession, TelephonyProvider
from app.models.call_log import CallProvider
from app.schemas.webhooks import TelephonyStatusCallback
from app.services.providers import SignatureError
from app.services.reconciler import WebhookReconciler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks/telephony", tags=["Telephony"])


@router.get("/health")
async def health() -> dict[str, str]:
    """Health check for telephony webhook."""
    return {"status": "ok", "service": "telephony-webhook"}


@router.post("")
async def handle_telephony_webhook(
    request: Request,
    db: DbSession,
    client: TelephonyProvider,
    reminder_id: Annotated[str | None, Query()] = None,
    x_telephony_signature: Annotated[str | None, Header()] = None,
) -> dict[str, str]:
    """Handle a telephony status callback.

    Form fields:
    - CallSid: Unique call identifier
    - CallStatus: Call progress/outcome
    - ReminderId: Optional reminder id (also accepted as ``reminder_id`` query param)

    Returns 200 for every correctly signed request, including duplicates and
    events that cannot be matched to a reminder, so the provider does not
    redeliver them.
    """
    body = await request.body()

    if not client.verify_signature(body, x_telephony_signature):
        logger.warning("Invalid telephony webhook signature")
        raise SignatureError(CallProvider.TELEPHONY)

    form_data = await request.form()
    data = dict(form_data)

    try:
        payload = TelephonyStatusCallback.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Telephony webhook ignored, invalid payload: {e.errors()}")
        return {"status": "ignored", "reason": "invalid_payload"}

    logger.info(f"Telephony webhook received: CallSid={payload.call_sid}, CallStatus={payload.call_status}")

    event = payload.to_event(reminder_id=reminder_id)
    outcome = await WebhookReconciler(db).reconcile(event)
    await db.commit()

    return {"status": outcome.value, "call_id": event.external_call_id}
