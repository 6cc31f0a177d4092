"""Unit tests for the storage module."""

from datetime import datetime

import pytest

from reminder_tracker.errors import CorruptDataError
from reminder_tracker.reminder import Reminder, Status
from reminder_tracker.storage import (
    BufferedEditor,
    JsonFileKeyValueStore,
    MemoryKeyValueStore,
    ReminderStore,
    SettingsKeyValueStore,
)


def sample_reminders():
    return [
        Reminder(id=2, text="Water the plants, then \"relax\"", due_at=datetime(2026, 10, 20, 18, 0)),
        Reminder(id=0, text="Buy milk", due_at=datetime(2026, 10, 19, 9, 0), status=Status.DONE),
        Reminder(id=1, text="Call mum", due_at=datetime(2026, 10, 18, 8, 0), status=Status.NOTIFIED),
    ]


class TestBufferedEditor:
    """Tests for BufferedEditor."""

    def test_nothing_applied_before_commit(self):
        """Test that puts are only applied on commit."""
        store = MemoryKeyValueStore()
        editor = store.edit()
        editor.put("key", "value")

        assert store.get("key") is None
        editor.commit()
        assert store.get("key") == "value"

    def test_rejects_non_string_values(self):
        """Test that only strings can be stored."""
        editor = BufferedEditor(lambda values: None)
        with pytest.raises(TypeError):
            editor.put("next_id", 3)


class TestJsonFileKeyValueStore:
    """Tests for the JSON file transport."""

    def test_missing_file_reads_default(self, tmp_path):
        """Test reading from a file that does not exist yet."""
        store = JsonFileKeyValueStore(tmp_path / "state.json")
        assert store.get("reminders") is None
        assert store.get("reminders", "[]") == "[]"

    def test_commit_persists_across_instances(self, tmp_path):
        """Test that a committed value is visible to a fresh instance."""
        path = tmp_path / "nested" / "state.json"
        editor = JsonFileKeyValueStore(path).edit()
        editor.put("a", "1")
        editor.put("b", "two")
        editor.commit()

        other = JsonFileKeyValueStore(path)
        assert other.get("a") == "1"
        assert other.get("b") == "two"
        assert not path.with_name("state.json.tmp").exists()

    def test_commit_keeps_other_keys(self, tmp_path):
        """Test that committing one key leaves the others alone."""
        store = JsonFileKeyValueStore(tmp_path / "state.json")
        editor = store.edit()
        editor.put("a", "1")
        editor.commit()
        editor = store.edit()
        editor.put("b", "2")
        editor.commit()

        assert store.get("a") == "1"
        assert store.get("b") == "2"

    def test_corrupt_file(self, tmp_path):
        """Test that an unreadable file raises CorruptDataError."""
        path = tmp_path / "state.json"
        path.write_text("not json", encoding="utf-8")

        with pytest.raises(CorruptDataError):
            JsonFileKeyValueStore(path).get("reminders")


class TestSettingsKeyValueStore:
    """Tests for the QSettings transport."""

    def test_missing_key_reads_default(self, tmp_path):
        """Test reading a key that was never written."""
        store = SettingsKeyValueStore(tmp_path / "state.ini")
        assert store.get("reminders") is None

    def test_commit_persists_across_instances(self, tmp_path):
        """Test that committed values are visible through another QSettings."""
        path = tmp_path / "state.ini"
        editor = SettingsKeyValueStore(path).edit()
        editor.put("next_id", "7")
        editor.commit()

        assert path.exists()
        assert SettingsKeyValueStore(path).get("next_id") == "7"

    def test_reminder_collection_round_trip(self, tmp_path):
        """Test storing a serialized collection with quotes and commas."""
        path = tmp_path / "state.ini"
        ReminderStore(SettingsKeyValueStore(path)).replace_all(sample_reminders(), next_id=3)

        store = ReminderStore(SettingsKeyValueStore(path))
        assert store.load_all() == sample_reminders()
        assert store.next_id() == 3


class TestReminderStore:
    """Tests for ReminderStore."""

    def test_load_all_empty(self):
        """Test that an empty store has no reminders."""
        store = ReminderStore(MemoryKeyValueStore())
        assert store.load_all() == []
        assert store.next_id() == 0

    def test_round_trip_preserves_order(self):
        """Test that load_all returns what replace_all wrote, in order."""
        store = ReminderStore(MemoryKeyValueStore())
        store.replace_all(sample_reminders())
        assert store.load_all() == sample_reminders()

    def test_replace_all_replaces(self):
        """Test that replace_all drops records not in the new collection."""
        store = ReminderStore(MemoryKeyValueStore())
        store.replace_all(sample_reminders())
        store.replace_all(sample_reminders()[:1])
        assert [r.id for r in store.load_all()] == [2]

    def test_next_id_written_with_collection(self):
        """Test that the counter is committed together with the collection."""
        kv = MemoryKeyValueStore()
        store = ReminderStore(kv)
        store.replace_all(sample_reminders(), next_id=3)

        assert store.next_id() == 3
        assert kv.get(ReminderStore.KEY_NEXT_ID) == "3"

    def test_next_id_untouched_when_omitted(self):
        """Test that replace_all without next_id keeps the counter."""
        store = ReminderStore(MemoryKeyValueStore({ReminderStore.KEY_NEXT_ID: "9"}))
        store.replace_all([])
        assert store.next_id() == 9

    def test_corrupt_collection(self):
        """Test that a corrupt collection raises CorruptDataError."""
        store = ReminderStore(MemoryKeyValueStore({ReminderStore.KEY_REMINDERS: "[1, 2"}))
        with pytest.raises(CorruptDataError):
            store.load_all()

    def test_corrupt_next_id(self):
        """Test that a non-integer counter raises CorruptDataError."""
        store = ReminderStore(MemoryKeyValueStore({ReminderStore.KEY_NEXT_ID: "seven"}))
        with pytest.raises(CorruptDataError):
            store.next_id()
