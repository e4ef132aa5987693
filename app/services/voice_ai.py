"""Voice-AI provider client.

The voice-AI assistant speaks the reminder as its first message and reports
transcription results for the call through its own webhook.
"""

import logging
from typing import Any

from app.models.call_log import CallProvider
from app.services.providers import BaseProviderClient, CallResult, ProviderError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a friendly reminder assistant. "
    "Deliver the reminder message clearly and concisely."
)


class VoiceAIClient(BaseProviderClient):
    """Client for the voice-AI platform's call API."""

    provider = CallProvider.VOICE_AI

    def _client_options(self) -> dict[str, Any]:
        if not self._settings.voice_ai_api_key:
            raise ProviderError(self.provider, "VOICE_AI_API_KEY not configured")
        return {
            "base_url": self._settings.voice_ai_base_url,
            "headers": {
                "Authorization": f"Bearer {self._settings.voice_ai_api_key}",
                "Content-Type": "application/json",
            },
        }

    @property
    def webhook_secret(self) -> str:
        return self._settings.voice_ai_webhook_secret

    def build_payload(self, phone_number: str, message: str, reminder_id: str) -> dict[str, Any]:
        """Request body for a reminder call."""
        payload: dict[str, Any] = {
            "customer": {"number": phone_number},
            "metadata": {"reminder_id": reminder_id},
        }
        if self._settings.voice_ai_assistant_id:
            payload["assistantId"] = self._settings.voice_ai_assistant_id
            payload["assistantOverrides"] = {"firstMessage": message}
        else:
            payload["assistant"] = {
                "model": {
                    "provider": "openai",
                    "model": "gpt-4o-mini",
                    "messages": [{"role": "system", "content": SYSTEM_PROMPT}],
                },
                "firstMessage": message,
            }
        return payload

    async def create_call(self, phone_number: str, message: str, reminder_id: str) -> CallResult:
        """Initiate a reminder call through the voice-AI platform.

        Raises:
            ProviderError: If the call could not be created
        """
        logger.info(f"Creating voice-AI call for reminder {reminder_id}")

        body = await self._request_call(
            "/call",
            json=self.build_payload(phone_number, message, reminder_id),
        )

        call_id = body.get("id") or body.get("call_id")
        if not call_id:
            raise ProviderError(self.provider, "Response did not include a call id")

        logger.info(f"Voice-AI call created: {call_id}")
        return CallResult(
            provider=self.provider,
            external_call_id=call_id,
            provider_status=body.get("status") or "created",
        )
