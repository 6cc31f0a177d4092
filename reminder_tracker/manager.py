"""Transactional state management for reminders."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Set

from .errors import DuplicateIdError, NotFoundError, SchedulerUnavailableError
from .guard import ExclusiveTransactionGuard
from .reminder import Reminder, Status, ensure_unique_ids
from .scheduler import SchedulerAdapter, SchedulerBackend
from .storage import ReminderStore

logger = logging.getLogger(__name__)

ReminderTransformation = Callable[[Reminder], None]


@dataclass
class ReconcileResult:
    """Outcome of a reconciliation sweep."""
    armed: List[int] = field(default_factory=list)
    cancelled: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)


class ReminderManager:
    """
    Adds, changes and removes reminders, keeping notification triggers in sync.

    Every mutation loads the whole collection, transforms it and persists
    it again while holding the transaction guard, so concurrent callers
    never lose each other's changes. Scheduler calls happen after the
    persist, still inside the guard. A scheduler failure is logged and the
    reminder id is remembered in ``unsynced_ids``; the persisted state is
    never rolled back because of it.

    Reads go straight to the store and are not guarded.
    """

    def __init__(
        self,
        store: ReminderStore,
        scheduler: SchedulerBackend,
        guard: Optional[ExclusiveTransactionGuard] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the ReminderManager.

        Args:
            store: Persistence for the reminder collection
            scheduler: Backend (or adapter) that arms and cancels triggers
            guard: Transaction guard; a private one is created if omitted
            clock: Source of the current time for reschedule decisions
        """
        self.store = store
        self.scheduler = scheduler if isinstance(scheduler, SchedulerAdapter) else SchedulerAdapter(scheduler)
        self.guard = guard or ExclusiveTransactionGuard()
        self.clock = clock
        self._unsynced: Set[int] = set()

    @property
    def unsynced_ids(self) -> Set[int]:
        """Ids whose last arm or cancel request failed."""
        with self.guard:
            return set(self._unsynced)

    def add(self, text: str, due_at: datetime) -> Reminder:
        """
        Add a new scheduled reminder and arm its trigger.

        The id is taken from the persisted counter, which is incremented
        in the same commit as the new collection.

        Raises:
            DuplicateIdError: If the allocated id is already in use
        """
        with self.guard:
            reminders = self.store.load_all()
            reminder_id = self.store.next_id()
            if any(r.id == reminder_id for r in reminders):
                raise DuplicateIdError(reminder_id)

            reminder = Reminder(id=reminder_id, text=text, due_at=due_at)
            reminders.append(reminder)
            self.store.replace_all(reminders, next_id=reminder_id + 1)
            logger.info("Added reminder %d due %s", reminder.id, reminder.due_at)

            self._arm(reminder)
        return reminder

    def update(self, reminder: Reminder, reschedule: bool) -> None:
        """
        Replace the stored reminder that has the same id.

        Args:
            reminder: New version of the reminder
            reschedule: Whether to re-evaluate its trigger afterwards

        Raises:
            NotFoundError: If no reminder with that id exists
        """
        reminder.normalize()
        with self.guard:
            reminders = self.store.load_all()
            reminders[_index_of(reminders, reminder.id)] = reminder
            self.store.replace_all(reminders)

            if reschedule:
                self._reschedule(reminder, self.clock())

    def update_many(self, updated: Iterable[Reminder], reschedule: bool) -> None:
        """
        Replace several reminders in a single transaction.

        Nothing is persisted if any id is missing or repeated.

        Raises:
            NotFoundError: If one of the ids does not exist
            DuplicateIdError: If the same id is given twice
        """
        updated = list(updated)
        ensure_unique_ids(updated)
        for reminder in updated:
            reminder.normalize()

        with self.guard:
            reminders = self.store.load_all()
            positions = {r.id: i for i, r in enumerate(reminders)}
            for reminder in updated:
                if reminder.id not in positions:
                    raise NotFoundError(reminder.id)
            for reminder in updated:
                reminders[positions[reminder.id]] = reminder
            self.store.replace_all(reminders)

            if reschedule:
                now = self.clock()
                for reminder in updated:
                    self._reschedule(reminder, now)

    def update_where(self, transform: ReminderTransformation, ids: Iterable[int], reschedule: bool) -> None:
        """
        Apply ``transform`` in place to every reminder whose id is in ``ids``.

        This is the batch primitive behind "mark selection as done". Ids
        without a matching reminder are ignored.

        Raises:
            ValueError: If the transform changes a reminder's id
        """
        ids = set(ids)
        with self.guard:
            reminders = self.store.load_all()
            changed = []
            for reminder in reminders:
                if reminder.id not in ids:
                    continue
                original_id = reminder.id
                transform(reminder)
                if reminder.id != original_id:
                    raise ValueError(f"Transform changed id of reminder {original_id} to {reminder.id}")
                reminder.normalize()
                changed.append(reminder)
            self.store.replace_all(reminders)

            if reschedule:
                now = self.clock()
                for reminder in changed:
                    self._reschedule(reminder, now)

    def remove(self, ids: Iterable[int]) -> None:
        """Remove reminders and cancel their triggers."""
        ids = set(ids)
        with self.guard:
            reminders = self.store.load_all()
            remaining = [r for r in reminders if r.id not in ids]
            self.store.replace_all(remaining)
            logger.info("Removed %d reminder(s)", len(reminders) - len(remaining))

            for reminder_id in sorted(ids):
                self._cancel(reminder_id)

    def get_all(self) -> List[Reminder]:
        return self.store.load_all()

    def get_sorted(self) -> List[Reminder]:
        """All reminders ordered by due time, then id."""
        return sorted(self.store.load_all())

    def get_by_id(self, reminder_id: int) -> Reminder:
        """
        Get the reminder with the given id.

        Raises:
            NotFoundError: If no reminder with the id exists
        """
        reminders = self.store.load_all()
        return reminders[_index_of(reminders, reminder_id)]

    def mark_notified(self, reminder_id: int) -> bool:
        """
        Record that a reminder's trigger fired.

        Only a reminder that is still scheduled moves to NOTIFIED. A
        reminder that was removed or already moved on (for example marked
        done before the trigger fired) is left alone.

        Returns:
            True if the reminder was changed
        """
        with self.guard:
            reminders = self.store.load_all()
            reminder = next((r for r in reminders if r.id == reminder_id), None)
            if reminder is None:
                logger.info("Trigger fired for reminder %d which no longer exists", reminder_id)
                return False
            if reminder.status is not Status.SCHEDULED:
                logger.debug("Reminder %d is already %s", reminder_id, reminder.status.value)
                return False

            reminder.status = Status.NOTIFIED
            self.store.replace_all(reminders)
            logger.info("Reminder %d notified", reminder_id)
            return True

    def reconcile(self, arm_overdue: bool = False) -> ReconcileResult:
        """
        Re-derive every trigger from the persisted reminders.

        Applies the reschedule policy to each stored reminder, then cancels
        triggers the backend still holds for ids that no longer exist.
        Afterwards ``unsynced_ids`` only lists failures from this sweep.

        Args:
            arm_overdue: Arm scheduled reminders whose time has already
                passed instead of cancelling them. A backend that fires
                past triggers on its next check then delivers reminders
                that came due while no trigger was armed for them, such
                as ones added by another process.
        """
        result = ReconcileResult()
        with self.guard:
            reminders = self.store.load_all()
            self._unsynced.clear()
            now = self.clock()

            for reminder in reminders:
                if arm_overdue and reminder.status is Status.SCHEDULED:
                    armed = True
                    ok = self._arm(reminder)
                else:
                    armed = self._wants_trigger(reminder, now)
                    ok = self._reschedule(reminder, now)
                if not ok:
                    result.failed.append(reminder.id)
                elif armed:
                    result.armed.append(reminder.id)
                else:
                    result.cancelled.append(reminder.id)

            try:
                armed_ids = self.scheduler.armed_ids()
            except SchedulerUnavailableError as e:
                logger.warning("Skipping stray trigger cleanup: %s", e)
                armed_ids = None

            if armed_ids is not None:
                known = {r.id for r in reminders}
                for reminder_id in sorted(armed_ids - known):
                    if self._cancel(reminder_id):
                        result.cancelled.append(reminder_id)
                    else:
                        result.failed.append(reminder_id)

        logger.info(
            "Reconciled triggers: %d armed, %d cancelled, %d failed",
            len(result.armed), len(result.cancelled), len(result.failed)
        )
        return result

    @staticmethod
    def _wants_trigger(reminder: Reminder, now: datetime) -> bool:
        return reminder.status is Status.SCHEDULED and reminder.due_at > now

    def _reschedule(self, reminder: Reminder, now: datetime) -> bool:
        """Arm or cancel the reminder's trigger; exactly one of the two."""
        if self._wants_trigger(reminder, now):
            return self._arm(reminder)
        return self._cancel(reminder.id)

    def _arm(self, reminder: Reminder) -> bool:
        try:
            self.scheduler.arm(reminder.id, reminder.due_at)
        except SchedulerUnavailableError as e:
            logger.warning("Reminder %d saved but its alert may not fire: %s", reminder.id, e)
            self._unsynced.add(reminder.id)
            return False
        self._unsynced.discard(reminder.id)
        return True

    def _cancel(self, reminder_id: int) -> bool:
        try:
            self.scheduler.cancel(reminder_id)
        except SchedulerUnavailableError as e:
            logger.warning("Could not cancel trigger for reminder %d: %s", reminder_id, e)
            self._unsynced.add(reminder_id)
            return False
        self._unsynced.discard(reminder_id)
        return True


def _index_of(reminders: List[Reminder], reminder_id: int) -> int:
    for i, reminder in enumerate(reminders):
        if reminder.id == reminder_id:
            return i
    raise NotFoundError(reminder_id)
