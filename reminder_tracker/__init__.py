"""Reminder tracker: persisted reminder lifecycle kept in sync with notification triggers."""

from .errors import (
    ReminderError,
    CorruptDataError,
    NotFoundError,
    DuplicateIdError,
    SchedulerUnavailableError,
    StorageError,
)
from .reminder import Reminder, Status
from .manager import ReminderManager

__version__ = "1.0.0"

__all__ = [
    "ReminderError",
    "CorruptDataError",
    "NotFoundError",
    "DuplicateIdError",
    "SchedulerUnavailableError",
    "StorageError",
    "Reminder",
    "Status",
    "ReminderManager",
]
