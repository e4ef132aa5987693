"""Voice-AI webhook for delivery and transcription results.

The voice-AI provider posts JSON with ``call_id``, ``status``, an optional
``transcript`` and the ``metadata.reminder_id`` we attached when creating
the call. The raw JSON body is signed with HMAC-SHA256 in
``X-VoiceAI-Signature``.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Header, Request
from pydantic import ValidationError

from app.api.deps import DbSession, VoiceAIProvider
from app.models.call_log import CallProvider
from app.schemas.webhooks import VoiceAIWebhookPayload
from app.services.providers import SignatureError
from app.services.reconciler import WebhookReconciler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks/voiceai", tags=["Voice AI"])


@router.get("/health")
async def health() -> dict[str, str]:
    """Health check for voice-AI webhook."""
    return {"status": "ok", "service": "voiceai-webhook"}


@router.post("")
async def handle_voice_ai_webhook(
    request: Request,
    db: DbSession,
    client: VoiceAIProvider,
    x_voiceai_signature: Annotated[str | None, Header(alias="X-VoiceAI-Signature")] = None,
) -> dict[str, str]:
    """Handle a voice-AI call event.

    Always acknowledged with 200 once the signature checks out.
    """
    body = await request.body()

    if not client.verify_signature(body, x_voiceai_signature):
        logger.warning("Invalid voice-AI webhook signature")
        raise SignatureError(CallProvider.VOICE_AI)

    try:
        payload = VoiceAIWebhookPayload.model_validate_json(body)
    except ValidationError as e:
        logger.warning(f"Voice-AI webhook ignored, invalid payload: {e.errors()}")
        return {"status": "ignored", "reason": "invalid_payload"}

    logger.info(f"Voice-AI webhook received: call_id={payload.call_id}, status={payload.status}")

    event = payload.to_event()
    outcome = await WebhookReconciler(db).reconcile(event)
    await db.commit()

    return {"status": outcome.value, "call_id": event.external_call_id}
