#!/usr/bin/env python3
"""
Run the reminder tracker daemon using test fixtures.

This allows running the complete daemon with:
- Config from tests/fixtures/ instead of ~/.config/reminder-tracker/
- State kept in tests/fixtures/state.json
- A demo reminder due in one minute, so a trigger fires shortly after start

Usage:
    python -m tests.run_with_fixtures

    # Or with uv:
    uv run python -m tests.run_with_fixtures
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from reminder_tracker.app import ReminderApp, run_daemon


# Directory containing test fixtures
FIXTURES_DIR = Path(__file__).parent / "fixtures"


def main():
    print("=" * 50)
    print("REMINDER TRACKER - TEST MODE")
    print("=" * 50)
    print(f"Using config from: {FIXTURES_DIR}")
    print("=" * 50)

    app = ReminderApp(config_dir=FIXTURES_DIR)
    app.initialize()

    due_at = datetime.now() + timedelta(minutes=1)
    reminder = app.manager.add("Fixture reminder", due_at)
    print(f"Added reminder {reminder.id} due {reminder.due_at}")

    sys.exit(run_daemon(app))


if __name__ == "__main__":
    main()
