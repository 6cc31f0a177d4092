"""Persistence of the reminder collection on top of a key-value transport."""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from PyQt6.QtCore import QSettings

from .errors import CorruptDataError, StorageError
from .reminder import Reminder, reminders_from_json, reminders_to_json

logger = logging.getLogger(__name__)


class Editor(Protocol):
    def put(self, key: str, value: str) -> None: ...

    def commit(self) -> None: ...


class KeyValueStore(Protocol):
    """String key-value transport with an explicit commit point."""

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]: ...

    def edit(self) -> Editor: ...


class BufferedEditor:
    """
    Collects ``put`` calls and hands them to the store on ``commit``.

    Nothing written through the editor is visible to readers until
    ``commit`` returns.
    """

    def __init__(self, apply: Callable[[Dict[str, str]], None]):
        self._apply = apply
        self._pending: Dict[str, str] = {}

    def put(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"Values must be strings, got {type(value).__name__} for '{key}'")
        self._pending[key] = value

    def commit(self) -> None:
        pending, self._pending = self._pending, {}
        if pending:
            self._apply(pending)


class MemoryKeyValueStore:
    """In-process store, mainly for tests and embedding."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            return self._data.get(key, default)

    def edit(self) -> BufferedEditor:
        return BufferedEditor(self._apply)

    def _apply(self, values: Dict[str, str]) -> None:
        with self._lock:
            self._data.update(values)


class SettingsKeyValueStore:
    """
    Store backed by a Qt ``QSettings`` INI file.

    Every read re-syncs with the file so commits made by another process
    are picked up. QSettings rewrites the whole file on sync, which gives
    the atomic replace the reminder store relies on.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._settings = QSettings(str(self.path), QSettings.Format.IniFormat)
        self._lock = threading.Lock()

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            self._settings.sync()
            self._check_status()
            if not self._settings.contains(key):
                return default
            return self._settings.value(key, type=str)

    def edit(self) -> BufferedEditor:
        return BufferedEditor(self._apply)

    def _apply(self, values: Dict[str, str]) -> None:
        with self._lock:
            for key, value in values.items():
                self._settings.setValue(key, value)
            self._settings.sync()
            self._check_status()

    def _check_status(self) -> None:
        status = self._settings.status()
        if status == QSettings.Status.FormatError:
            raise CorruptDataError(f"Settings file is malformed: {self.path}")
        if status == QSettings.Status.AccessError:
            raise StorageError(f"Cannot access settings file: {self.path}")


class JsonFileKeyValueStore:
    """Store backed by a JSON object file, replaced atomically on commit."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            return self._read().get(key, default)

    def edit(self) -> BufferedEditor:
        return BufferedEditor(self._apply)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise StorageError(f"Cannot read {self.path}: {e}") from e
        except ValueError as e:
            raise CorruptDataError(f"State file is not valid JSON: {self.path}") from e
        if not isinstance(data, dict):
            raise CorruptDataError(f"State file must contain a JSON object: {self.path}")
        return data

    def _apply(self, values: Dict[str, str]) -> None:
        with self._lock:
            data = self._read()
            data.update(values)
            tmp = self.path.with_name(self.path.name + ".tmp")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.replace(tmp, self.path)
            except OSError as e:
                raise StorageError(f"Cannot write {self.path}: {e}") from e


class ReminderStore:
    """
    Reads and writes the complete reminder collection.

    The collection lives under a single key, so every write replaces the
    whole thing. The next-id counter is kept under its own key and is
    committed in the same edit when given.
    """

    KEY_REMINDERS = "reminders"
    KEY_NEXT_ID = "next_id"

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def load_all(self) -> List[Reminder]:
        """
        Load the persisted reminders in stored order.

        Returns:
            The reminders, or an empty list if nothing was persisted

        Raises:
            CorruptDataError: If the stored value cannot be parsed
        """
        raw = self.kv.get(self.KEY_REMINDERS)
        if raw is None or raw == "":
            return []
        return reminders_from_json(raw)

    def next_id(self) -> int:
        """Return the id the next added reminder will receive."""
        raw = self.kv.get(self.KEY_NEXT_ID)
        if raw is None or raw == "":
            return 0
        try:
            return int(raw)
        except ValueError as e:
            raise CorruptDataError(f"Persisted next id is not an integer: {raw!r}") from e

    def replace_all(self, reminders: Iterable[Reminder], next_id: Optional[int] = None) -> None:
        """
        Replace the persisted collection in a single commit.

        Args:
            reminders: The complete new collection
            next_id: New value of the id counter, written in the same commit
        """
        reminders = list(reminders)
        editor = self.kv.edit()
        editor.put(self.KEY_REMINDERS, reminders_to_json(reminders))
        if next_id is not None:
            editor.put(self.KEY_NEXT_ID, str(next_id))
        editor.commit()
        logger.debug("Persisted %d reminders (next id %s)", len(reminders), next_id)
