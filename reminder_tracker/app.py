"""Command-line front end and daemon for the reminder tracker."""

import argparse
import logging
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from PyQt6.QtCore import QCoreApplication, QObject, QTimer, pyqtSignal

from .config import ConfigManager, StorageConfig
from .errors import ReminderError
from .guard import ExclusiveTransactionGuard
from .log import setup_logging
from .manager import ReminderManager
from .reminder import Reminder, Status
from .scheduler import TriggerScheduler
from .storage import JsonFileKeyValueStore, ReminderStore, SettingsKeyValueStore

logger = logging.getLogger(__name__)

AT_FORMAT = "%Y-%m-%d %H:%M"


def build_store(storage: StorageConfig) -> ReminderStore:
    """Create the reminder store for the configured backend."""
    if storage.backend == "json":
        return ReminderStore(JsonFileKeyValueStore(storage.path))
    return ReminderStore(SettingsKeyValueStore(storage.path))


def lock_path_for(storage: StorageConfig) -> Path:
    """Lock file shared by every process using the same state file."""
    return storage.path.with_name(storage.path.name + ".lock")


def format_reminder(reminder: Reminder) -> str:
    marker = {
        Status.SCHEDULED: " ",
        Status.NOTIFIED: "!",
        Status.DONE: "x",
    }[reminder.status]
    return f"[{marker}] {reminder.id:>4}  {reminder.due_at.strftime(AT_FORMAT)}  {reminder.text}"


class ReminderTrigger(QObject):
    """Bridge between scheduler threads and the Qt main thread."""
    due = pyqtSignal(int)


class ReminderApp(QObject):
    """
    Coordinates configuration, storage, the trigger scheduler and the manager.

    Due-callbacks arrive on scheduler threads and are handed to the main
    thread through a Qt signal before they touch the manager.
    """

    RECONCILE_JOB = "reconcile"

    def __init__(self, config_dir: Optional[Path] = None):
        super().__init__()

        self.config_manager = ConfigManager(config_dir)
        self.scheduler: Optional[TriggerScheduler] = None
        self.manager: Optional[ReminderManager] = None

        # Bridge for thread-safe Qt signal emission
        self.trigger = ReminderTrigger()
        self.trigger.due.connect(self._on_reminder_due)

    def initialize(self) -> None:
        """Load the configuration and wire up the manager."""
        general = self.config_manager.load_or_default()
        setup_logging(general.log_level)

        self.scheduler = TriggerScheduler(
            on_due=self._trigger_due_threadsafe,
            check_interval=general.check_interval
        )
        storage = self.config_manager.storage
        storage.path.parent.mkdir(parents=True, exist_ok=True)
        self.manager = ReminderManager(
            store=build_store(storage),
            scheduler=self.scheduler,
            guard=ExclusiveTransactionGuard(lock_path=lock_path_for(storage))
        )
        logger.debug("Using %s storage at %s", storage.backend, storage.path)

    def _trigger_due_threadsafe(self, reminder_id: int):
        """Thread-safe entry point for the scheduler's due-callback."""
        self.trigger.due.emit(reminder_id)

    def _on_reminder_due(self, reminder_id: int):
        """Handle a trigger firing (main thread)."""
        try:
            if not self.manager.mark_notified(reminder_id):
                return
            reminder = self.manager.get_by_id(reminder_id)
        except ReminderError as e:
            logger.error("Could not record notification for reminder %d: %s", reminder_id, e)
            return
        print(f"Reminder due: {reminder.text} ({reminder.due_at.strftime(AT_FORMAT)})")

    def start(self) -> None:
        """Sync triggers with the stored reminders and start the scheduler."""
        self.scheduler.add_periodic(
            name=self.RECONCILE_JOB,
            cron_expression=self.config_manager.general.reconcile_schedule,
            callback=self.sweep
        )
        self.sweep()
        self.scheduler.start()

    def sweep(self):
        """
        Re-derive triggers from storage, arming overdue scheduled reminders.

        Reminders added or changed by other processes, including ones that
        are already due, get a trigger here and are delivered on the next
        check.
        """
        return self.manager.reconcile(arm_overdue=True)

    def _quit(self):
        """Quit the application."""
        print("Shutting down...")
        self.scheduler.stop()
        QCoreApplication.quit()


def parse_at(value: str) -> datetime:
    try:
        return datetime.strptime(value, AT_FORMAT)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected 'YYYY-MM-DD HH:MM', got '{value}'")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reminder-tracker",
        description="Track reminders and deliver them when they are due"
    )
    parser.add_argument(
        "--config-dir", "-c",
        type=Path,
        default=None,
        help="Configuration directory (default: ~/.config/reminder-tracker)"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    add = commands.add_parser("add", help="Add a reminder")
    add.add_argument("text", help="What to be reminded of")
    add.add_argument("--at", required=True, type=parse_at, help="Due time as 'YYYY-MM-DD HH:MM'")

    commands.add_parser("list", help="List reminders by due time")

    done = commands.add_parser("done", help="Mark reminders as done")
    done.add_argument("ids", nargs="+", type=int)

    remove = commands.add_parser("remove", help="Remove reminders")
    remove.add_argument("ids", nargs="+", type=int)

    commands.add_parser("run", help="Run the daemon that delivers due reminders")
    return parser


def set_done(reminder: Reminder) -> None:
    reminder.status = Status.DONE


def run_command(app: ReminderApp, args: argparse.Namespace) -> int:
    manager = app.manager

    if args.command == "add":
        if args.at <= datetime.now():
            print("Error: due time must be in the future", file=sys.stderr)
            return 1
        reminder = manager.add(args.text, args.at)
        print(f"Added reminder {reminder.id} due {reminder.due_at.strftime(AT_FORMAT)}")
    elif args.command == "list":
        reminders = manager.get_sorted()
        if not reminders:
            print("No reminders.")
        for reminder in reminders:
            print(format_reminder(reminder))
    elif args.command == "done":
        manager.update_where(set_done, args.ids, reschedule=True)
        print(f"Marked {len(args.ids)} reminder(s) as done")
    elif args.command == "remove":
        manager.remove(args.ids)
        print(f"Removed {len(args.ids)} reminder(s)")

    if manager.unsynced_ids:
        print("Saved, but alerts for some reminders may not fire: "
              + ", ".join(str(i) for i in sorted(manager.unsynced_ids)))
    return 0


def run_daemon(app: ReminderApp) -> int:
    """Run the Qt event loop until interrupted."""
    qt_app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    qt_app.setApplicationName("Reminder Tracker")

    app.start()

    # Handle SIGINT (Ctrl+C)
    signal.signal(signal.SIGINT, lambda *args: app._quit())

    # Timer to allow signal handling
    timer = QTimer()
    timer.timeout.connect(lambda: None)
    timer.start(500)

    print("\nReminder tracker is running. Press Ctrl+C to quit.\n")
    return qt_app.exec()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    app = ReminderApp(config_dir=args.config_dir)
    if args.command == "run" and not app.config_manager.config_file.exists():
        app.config_manager.create_example_config()

    try:
        app.initialize()
        if args.command == "run":
            return run_daemon(app)
        return run_command(app, args)
    except (ReminderError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
