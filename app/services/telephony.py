"""Telephony provider client (Twilio-compatible REST API).

This service handles:
- Placing outbound calls that read the reminder message aloud
- Verifying status-callback webhook signatures
"""

import logging
from typing import Any
from xml.sax.saxutils import escape

import httpx

from app.models.call_log import CallProvider
from app.services.providers import BaseProviderClient, CallResult, ProviderError

logger = logging.getLogger(__name__)

# Call progress events we ask the provider to report back
STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]


def build_twiml(message: str) -> str:
    """Build the TwiML document that speaks ``message`` to the callee."""
    return f'<Response><Say voice="alice">{escape(message)}</Say></Response>'


class TelephonyClient(BaseProviderClient):
    """Client for the telephony provider's Calls API."""

    provider = CallProvider.TELEPHONY

    def _client_options(self) -> dict[str, Any]:
        if not self._settings.telephony_account_sid or not self._settings.telephony_auth_token:
            raise ProviderError(self.provider, "Telephony credentials not configured")
        return {
            "base_url": self._settings.telephony_base_url,
            "auth": httpx.BasicAuth(
                self._settings.telephony_account_sid,
                self._settings.telephony_auth_token,
            ),
        }

    @property
    def webhook_secret(self) -> str:
        return self._settings.telephony_webhook_secret

    def status_callback_url(self, reminder_id: str) -> str | None:
        """Webhook URL the provider posts call progress to."""
        if not self._settings.public_base_url:
            return None
        base = self._settings.public_base_url.rstrip("/")
        return f"{base}/webhooks/telephony?reminder_id={reminder_id}"

    async def create_call(self, phone_number: str, message: str, reminder_id: str) -> CallResult:
        """Place a call that reads ``message`` to ``phone_number``.

        Args:
            phone_number: Destination in E.164 format
            message: Text spoken to the callee
            reminder_id: Reminder the call belongs to, echoed in the status callback

        Returns:
            CallResult with the provider's call SID

        Raises:
            ProviderError: If the call could not be created
        """
        data: dict[str, Any] = {
            "To": phone_number,
            "From": self._settings.telephony_from_number,
            "Twiml": build_twiml(message),
        }
        callback_url = self.status_callback_url(reminder_id)
        if callback_url:
            data["StatusCallback"] = callback_url
            data["StatusCallbackMethod"] = "POST"
            data["StatusCallbackEvent"] = STATUS_CALLBACK_EVENTS

        logger.info(f"Creating telephony call for reminder {reminder_id}")

        body = await self._request_call(
            f"/Accounts/{self._settings.telephony_account_sid}/Calls.json",
            data=data,
        )

        call_sid = body.get("sid")
        if not call_sid:
            raise ProviderError(self.provider, "Response did not include a call SID")

        logger.info(f"Telephony call created: {call_sid}")
        return CallResult(
            provider=self.provider,
            external_call_id=call_sid,
            provider_status=body.get("status") or "queued",
        )
