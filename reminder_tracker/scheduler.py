"""Trigger scheduling for reminders."""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Set

from croniter import croniter

from .errors import SchedulerUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTrigger:
    """A one-shot trigger for a single reminder."""
    reminder_id: int
    at: datetime


@dataclass
class PeriodicJob:
    """A job that runs on a cron schedule."""
    name: str
    cron_expression: str
    callback: Callable[[], None]
    next_run: datetime

    def calculate_next_run(self, now: Optional[datetime] = None) -> datetime:
        """Calculate the next run time based on the cron expression."""
        cron = croniter(self.cron_expression, now or datetime.now())
        self.next_run = cron.get_next(datetime)
        return self.next_run


class TriggerScheduler:
    """
    In-process scheduler delivering due-callbacks for armed reminders.

    Uses a background thread to check for due triggers. A trigger fires
    once, at or after its time, and is then discarded. Arming a trigger
    whose time has already passed makes it fire on the next check.

    Periodic jobs (such as the reconciliation sweep) run on cron schedules
    from the same loop.
    """

    CHECK_INTERVAL = 1.0  # Check every second

    def __init__(self, on_due: Callable[[int], None], check_interval: Optional[float] = None):
        self.on_due = on_due
        self.check_interval = check_interval if check_interval is not None else self.CHECK_INTERVAL
        self.triggers: Dict[int, ScheduledTrigger] = {}
        self.jobs: Dict[str, PeriodicJob] = {}
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def arm(self, reminder_id: int, at: datetime) -> None:
        """Arm a trigger for the reminder, replacing any existing one."""
        # Trigger times are compared with naive local now
        if at.tzinfo is not None:
            at = at.astimezone().replace(tzinfo=None)
        with self._lock:
            self.triggers[reminder_id] = ScheduledTrigger(reminder_id=reminder_id, at=at)
        logger.info("Armed trigger for reminder %d at %s", reminder_id, at)

    def cancel(self, reminder_id: int) -> None:
        """Cancel the reminder's trigger. Does nothing if none is armed."""
        with self._lock:
            removed = self.triggers.pop(reminder_id, None)
        if removed is not None:
            logger.info("Cancelled trigger for reminder %d", reminder_id)

    def armed_ids(self) -> Set[int]:
        with self._lock:
            return set(self.triggers)

    def add_periodic(self, name: str, cron_expression: str, callback: Callable[[], None]) -> None:
        """
        Add a job that runs on a cron schedule.

        Args:
            name: Unique name for the job
            cron_expression: Cron expression for scheduling
            callback: Function to call when the job is due
        """
        if not croniter.is_valid(cron_expression):
            raise ValueError(f"Invalid cron expression: {cron_expression}")

        cron = croniter(cron_expression, datetime.now())
        next_run = cron.get_next(datetime)

        with self._lock:
            self.jobs[name] = PeriodicJob(
                name=name,
                cron_expression=cron_expression,
                callback=callback,
                next_run=next_run
            )

        logger.info("Scheduled job '%s' - next run: %s", name, next_run)

    def remove_periodic(self, name: str) -> None:
        with self._lock:
            self.jobs.pop(name, None)

    def start(self) -> None:
        """Start the scheduler background thread."""
        if self._running:
            return

        self._running = True
        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.start()
        logger.info("Scheduler started")

    def stop(self) -> None:
        """Stop the scheduler."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=2.0)
        logger.info("Scheduler stopped")

    def run_pending(self, now: Optional[datetime] = None) -> List[int]:
        """
        Fire every trigger and job that is due.

        Callbacks run in separate threads so a slow callback never blocks
        the loop.

        Returns:
            Ids of the reminders whose triggers fired
        """
        now = now or datetime.now()
        due_jobs = []

        with self._lock:
            fired = [rid for rid, trigger in self.triggers.items() if now >= trigger.at]
            for rid in fired:
                del self.triggers[rid]

            for job in self.jobs.values():
                if now >= job.next_run:
                    job.calculate_next_run(now)
                    due_jobs.append(job)

        for rid in sorted(fired):
            logger.info("Trigger fired for reminder %d", rid)
            self._dispatch(self.on_due, rid)
        for job in due_jobs:
            logger.debug("Running job '%s'", job.name)
            self._dispatch(job.callback)

        return sorted(fired)

    def _dispatch(self, callback: Callable, *args) -> None:
        def runner():
            try:
                callback(*args)
            except Exception:
                logger.exception("Scheduler callback failed")

        threading.Thread(target=runner, daemon=True).start()

    def _run_loop(self) -> None:
        """Main scheduler loop."""
        while self._running:
            try:
                self.run_pending()
            except Exception:
                logger.exception("Scheduler check failed")
            time.sleep(self.check_interval)

    def get_status(self) -> Dict[str, dict]:
        """Get the status of armed triggers and periodic jobs."""
        with self._lock:
            return {
                "triggers": {
                    rid: trigger.at.isoformat() for rid, trigger in self.triggers.items()
                },
                "jobs": {
                    name: job.next_run.isoformat() for name, job in self.jobs.items()
                },
            }


class SchedulerBackend(Protocol):
    def arm(self, reminder_id: int, at: datetime) -> None: ...

    def cancel(self, reminder_id: int) -> None: ...


class SchedulerAdapter:
    """
    Forwards arm/cancel decisions to a scheduler backend.

    Any failure of the backend is reported as SchedulerUnavailableError so
    callers only have one error type to contain.
    """

    def __init__(self, backend: SchedulerBackend):
        self.backend = backend

    def arm(self, reminder_id: int, at: datetime) -> None:
        try:
            self.backend.arm(reminder_id, at)
        except Exception as e:
            raise SchedulerUnavailableError(
                f"Could not arm trigger for reminder {reminder_id}: {e}"
            ) from e

    def cancel(self, reminder_id: int) -> None:
        try:
            self.backend.cancel(reminder_id)
        except Exception as e:
            raise SchedulerUnavailableError(
                f"Could not cancel trigger for reminder {reminder_id}: {e}"
            ) from e

    def armed_ids(self) -> Optional[Set[int]]:
        """Ids the backend has triggers for, or None if it cannot tell."""
        armed_ids = getattr(self.backend, "armed_ids", None)
        if armed_ids is None:
            return None
        try:
            return set(armed_ids())
        except Exception as e:
            raise SchedulerUnavailableError(f"Could not list armed triggers: {e}") from e
