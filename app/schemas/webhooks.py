"""Inbound webhook payloads.

The telephony and voice-AI providers report on the same calls in different
shapes. Each payload model converts itself into a provider-agnostic
``WebhookEvent`` that the reconciler consumes.
"""

import uuid

from pydantic import BaseModel, ConfigDict, Field

from app.models.call_log import CallProvider


class WebhookEvent(BaseModel):
    """A provider status event for one call."""

    model_config = ConfigDict(frozen=True)

    provider: CallProvider
    external_call_id: str
    raw_status: str
    transcript: str | None = None
    explicit_reminder_id: str | None = None

    @property
    def status(self) -> str:
        """Provider status, lowercased and trimmed."""
        return self.raw_status.strip().lower()

    @property
    def reminder_uuid(self) -> uuid.UUID | None:
        """The explicit reminder id as a UUID, if it is one."""
        if not self.explicit_reminder_id:
            return None
        try:
            return uuid.UUID(self.explicit_reminder_id)
        except ValueError:
            return None


class TelephonyStatusCallback(BaseModel):
    """Status callback posted by the telephony provider.

    Sent as form-urlencoded data with fields:
    - CallSid: Unique call identifier
    - CallStatus: queued, initiated, ringing, in-progress, completed,
      busy, no-answer, failed, canceled
    - ReminderId: Optional, echoed back when we set it on the call
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    call_sid: str = Field(alias="CallSid", min_length=1)
    call_status: str = Field(alias="CallStatus", min_length=1)
    reminder_id: str | None = Field(default=None, alias="ReminderId")
    call_duration: str | None = Field(default=None, alias="CallDuration")

    def to_event(self, reminder_id: str | None = None) -> WebhookEvent:
        """Build the reconciler event.

        Args:
            reminder_id: Reminder id from the callback URL query string,
                used when the form body does not carry one
        """
        return WebhookEvent(
            provider=CallProvider.TELEPHONY,
            external_call_id=self.call_sid,
            raw_status=self.call_status,
            explicit_reminder_id=self.reminder_id or reminder_id,
        )


class VoiceAIMetadata(BaseModel):
    """Metadata we attach when creating a voice-AI call."""

    model_config = ConfigDict(extra="allow")

    reminder_id: str | None = None


class VoiceAIWebhookPayload(BaseModel):
    """Status/transcription webhook posted by the voice-AI provider."""

    model_config = ConfigDict(extra="ignore")

    call_id: str = Field(min_length=1)
    status: str = Field(min_length=1)
    transcript: str | None = None
    metadata: VoiceAIMetadata | None = None

    def to_event(self) -> WebhookEvent:
        return WebhookEvent(
            provider=CallProvider.VOICE_AI,
            external_call_id=self.call_id,
            raw_status=self.status,
            transcript=self.transcript,
            explicit_reminder_id=self.metadata.reminder_id if self.metadata else None,
        )

