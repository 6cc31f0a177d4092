"""Reminder records and their serialized form."""

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List

from .errors import CorruptDataError, DuplicateIdError

DUE_AT_FORMAT = "%Y-%m-%dT%H:%M"


def to_due_time(value) -> datetime:
    """
    Convert a due time to the form reminders are stored in.

    Accepts ISO strings. Aware datetimes are converted to local time and
    made naive, and seconds are dropped.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.replace(second=0, microsecond=0)


class Status(Enum):
    """Lifecycle status of a reminder."""
    SCHEDULED = "scheduled"
    NOTIFIED = "notified"
    DONE = "done"


@dataclass
class Reminder:
    """
    A single reminder.

    Treat instances as immutable outside of an ``update_where`` transform;
    the manager hands out fresh copies on every read, so mutating one
    changes nothing until it is passed back to ``update``.
    """
    id: int
    text: str
    due_at: datetime  # Minute granularity
    status: Status = Status.SCHEDULED

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = Status(self.status)
        self.normalize()

    def normalize(self) -> None:
        """Bring ``due_at`` to local naive time with minute granularity."""
        self.due_at = to_due_time(self.due_at)

    def sort_key(self) -> tuple:
        """Natural order: due time first, id breaks ties."""
        return (self.due_at, self.id)

    def __lt__(self, other: "Reminder") -> bool:
        if not isinstance(other, Reminder):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    def is_due(self, now: datetime) -> bool:
        """Return True if the due time is not strictly in the future."""
        return self.due_at <= now

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "due_at": self.due_at.strftime(DUE_AT_FORMAT),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Reminder":
        """
        Create a Reminder from its serialized dictionary.

        Raises:
            CorruptDataError: If a field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise CorruptDataError(f"Reminder record is not an object: {data!r}")
        for key in ("id", "text", "due_at", "status"):
            if key not in data:
                raise CorruptDataError(f"Reminder record is missing '{key}' field: {data!r}")

        reminder_id = data["id"]
        # bool is a subclass of int
        if not isinstance(reminder_id, int) or isinstance(reminder_id, bool):
            raise CorruptDataError(f"Reminder id must be an integer, got {reminder_id!r}")
        if not isinstance(data["text"], str):
            raise CorruptDataError(f"Reminder {reminder_id} has non-string text")

        try:
            due_at = datetime.fromisoformat(data["due_at"])
        except (TypeError, ValueError) as e:
            raise CorruptDataError(f"Reminder {reminder_id} has invalid due time: {e}") from e
        try:
            status = Status(data["status"])
        except ValueError as e:
            raise CorruptDataError(f"Reminder {reminder_id} has unknown status {data['status']!r}") from e

        return cls(id=reminder_id, text=data["text"], due_at=due_at, status=status)


def ensure_unique_ids(reminders: Iterable[Reminder]) -> None:
    """Raise DuplicateIdError for the first id that appears twice."""
    seen = set()
    for reminder in reminders:
        if reminder.id in seen:
            raise DuplicateIdError(reminder.id)
        seen.add(reminder.id)


def reminders_to_json(reminders: Iterable[Reminder]) -> str:
    """Serialize a collection of reminders, preserving order."""
    return json.dumps([r.to_dict() for r in reminders], ensure_ascii=False)


def reminders_from_json(text: str) -> List[Reminder]:
    """
    Parse a serialized collection of reminders.

    Args:
        text: JSON array produced by ``reminders_to_json``

    Returns:
        The reminders in persisted order

    Raises:
        CorruptDataError: If the text is not a valid reminder collection
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise CorruptDataError(f"Persisted reminders are not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise CorruptDataError("Persisted reminders must be a JSON array")

    reminders = [Reminder.from_dict(item) for item in data]
    try:
        ensure_unique_ids(reminders)
    except DuplicateIdError as e:
        raise CorruptDataError(f"Persisted reminders contain duplicate id {e.reminder_id}") from e
    return reminders
