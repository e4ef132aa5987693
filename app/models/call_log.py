"""Call log model: one row per distinct provider event for a call."""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Enum, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.types import UTCDateTime


class CallProvider(str, enum.Enum):
    """Source of a call event."""

    TELEPHONY = "telephony"
    VOICE_AI = "voice-ai"


# Status recorded when the dispatch loop places a call
CREATED_STATUS = "created"

# Provider statuses that a later event for the same call may still replace.
# Anything else is final for its (external_call_id, provider) row.
PROVISIONAL_STATUSES = frozenset(
    {CREATED_STATUS, "queued", "initiated", "ringing", "in-progress", "answered"}
)


class CallLog(Base):
    """Provider events recorded against a reminder.

    ``(external_call_id, provider)`` is unique: it is the idempotency key that
    stops a redelivered webhook from being processed twice. A row is only
    rewritten while its status is provisional (see ``PROVISIONAL_STATUSES``),
    e.g. when the provider's final callback replaces the ``created`` row the
    dispatch loop wrote.
    """

    __tablename__ = "call_logs"
    __table_args__ = (
        UniqueConstraint(
            "external_call_id", "provider", name="uq_call_logs_external_call_id_provider"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reminder_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("reminders.id"), nullable=False, index=True
    )
    external_call_id: Mapped[str] = mapped_column(String(100), nullable=False)
    provider: Mapped[CallProvider] = mapped_column(
        Enum(
            CallProvider,
            name="callprovider",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(50), nullable=False)  # Provider vocabulary
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    reminder: Mapped["Reminder"] = relationship(  # noqa: F821
        "Reminder", back_populates="call_logs"
    )
