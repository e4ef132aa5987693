"""Reminder model and its lifecycle state machine.

A reminder moves through::

    scheduled -> processing -> called
        |            |
        +------------+------> failed

``called`` and ``failed`` are terminal. ``processing -> processing`` is allowed
so intermediate provider events (ringing, answered, telephony completed while
a transcript is pending) can be recorded without changing state.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Enum, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.types import UTCDateTime


class ReminderStatus(str, enum.Enum):
    """Reminder lifecycle states."""

    SCHEDULED = "scheduled"  # Waiting for its time to come
    PROCESSING = "processing"  # Call placed, waiting for provider outcome
    CALLED = "called"  # Delivered
    FAILED = "failed"  # Call could not be placed or was not delivered


TERMINAL_STATES: frozenset[ReminderStatus] = frozenset(
    {ReminderStatus.CALLED, ReminderStatus.FAILED}
)

TRANSITIONS: dict[ReminderStatus, frozenset[ReminderStatus]] = {
    ReminderStatus.SCHEDULED: frozenset({ReminderStatus.PROCESSING, ReminderStatus.FAILED}),
    ReminderStatus.PROCESSING: frozenset(
        {ReminderStatus.PROCESSING, ReminderStatus.CALLED, ReminderStatus.FAILED}
    ),
    ReminderStatus.CALLED: frozenset(),
    ReminderStatus.FAILED: frozenset(),
}


def is_terminal(status: ReminderStatus) -> bool:
    """Return True if no transition may leave ``status``."""
    return status in TERMINAL_STATES


def can_transition(current: ReminderStatus, target: ReminderStatus) -> bool:
    """Return True if ``current -> target`` is a legal edge."""
    return target in TRANSITIONS[current]


def legal_sources(target: ReminderStatus) -> list[ReminderStatus]:
    """States from which ``target`` may be reached, in declaration order."""
    return [state for state in ReminderStatus if target in TRANSITIONS[state]]


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Reminder(Base):
    """A voice call scheduled for a point in time."""

    __tablename__ = "reminders"
    __table_args__ = (
        Index("ix_reminders_status_scheduled_at", "status", "scheduled_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)  # E.164
    message: Mapped[str] = mapped_column(Text, nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[ReminderStatus] = mapped_column(
        Enum(ReminderStatus, name="reminderstatus", values_callable=_enum_values),
        default=ReminderStatus.SCHEDULED,
        nullable=False,
    )
    external_call_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="reminders")  # noqa: F821
    call_logs: Mapped[list["CallLog"]] = relationship(  # noqa: F821
        "CallLog", back_populates="reminder", lazy="raise", order_by="CallLog.received_at"
    )
