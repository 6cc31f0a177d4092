"""Exclusive access to the persisted reminder collection."""

import threading
from pathlib import Path
from typing import Callable, Optional, TypeVar

from PyQt6.QtCore import QLockFile

from .errors import StorageError

T = TypeVar("T")


class ExclusiveTransactionGuard:
    """
    Re-entrant lock around read-modify-write cycles on the reminder store.

    A thread already holding the guard may enter it again, so helpers that
    take the guard themselves can be called from inside a transaction.

    With ``lock_path`` set, the outermost acquisition also takes a lock
    file next to the store. The CLI and the daemon run in separate
    processes against the same file, and the lock file serializes their
    transactions too.

    Usable either as ``guard.with_exclusive_access(fn)`` or as a context
    manager.
    """

    LOCK_TIMEOUT_MS = 10000

    def __init__(
        self,
        lock: Optional[threading.RLock] = None,
        lock_path: Optional[Path] = None,
        timeout_ms: int = LOCK_TIMEOUT_MS,
    ):
        self._lock = lock if lock is not None else threading.RLock()
        self.lock_path = Path(lock_path) if lock_path is not None else None
        self.timeout_ms = timeout_ms
        self._file_lock = QLockFile(str(self.lock_path)) if self.lock_path is not None else None
        self._depth = 0

    def acquire(self) -> None:
        """
        Take the guard.

        Raises:
            StorageError: If the lock file is held elsewhere past the timeout
        """
        self._lock.acquire()
        if self._depth == 0 and self._file_lock is not None:
            if not self._file_lock.tryLock(self.timeout_ms):
                self._lock.release()
                raise StorageError(
                    f"Could not lock {self.lock_path} within {self.timeout_ms} ms "
                    f"(error {self._file_lock.error()})"
                )
        self._depth += 1

    def release(self) -> None:
        self._depth -= 1
        if self._depth == 0 and self._file_lock is not None:
            self._file_lock.unlock()
        self._lock.release()

    def with_exclusive_access(self, fn: Callable[[], T]) -> T:
        """Run ``fn`` while holding the guard and return its result."""
        self.acquire()
        try:
            return fn()
        finally:
            self.release()

    def __enter__(self) -> "ExclusiveTransactionGuard":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
