"""Exceptions raised by the reminder tracker."""


class ReminderError(Exception):
    """Base class for all reminder tracker errors."""


class StorageError(ReminderError):
    """The key-value transport could not be read or committed."""


class CorruptDataError(ReminderError):
    """Persisted reminder data could not be parsed."""


class NotFoundError(ReminderError):
    """No reminder with the requested id exists."""

    def __init__(self, reminder_id: int):
        super().__init__(f"Reminder with id {reminder_id} does not exist")
        self.reminder_id = reminder_id


class DuplicateIdError(ReminderError):
    """A reminder with the same id is already present."""

    def __init__(self, reminder_id: int):
        super().__init__(f"Reminder with id {reminder_id} already exists")
        self.reminder_id = reminder_id


class SchedulerUnavailableError(ReminderError):
    """An arm or cancel request could not be delivered to the scheduler."""
