"""SQLAlchemy models."""

from app.models.user import User
from app.models.reminder import Reminder, ReminderStatus
from app.models.call_log import CallLog, CallProvider

__all__ = [
    "User",
    "Reminder",
    "ReminderStatus",
    "CallLog",
    "CallProvider",
]
