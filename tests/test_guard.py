"""Unit tests for the transaction guard."""

import threading
import time

import pytest

from reminder_tracker.errors import StorageError
from reminder_tracker.guard import ExclusiveTransactionGuard


class TestExclusiveTransactionGuard:
    """Tests for ExclusiveTransactionGuard."""

    def test_returns_result(self):
        """Test that the wrapped function's result is returned."""
        guard = ExclusiveTransactionGuard()
        assert guard.with_exclusive_access(lambda: 42) == 42

    def test_reentrant(self):
        """Test that the holding thread can enter again."""
        guard = ExclusiveTransactionGuard()

        def outer():
            with guard:
                return guard.with_exclusive_access(lambda: "inner")

        assert guard.with_exclusive_access(outer) == "inner"

    def test_released_when_function_raises(self):
        """Test that an exception does not leave the guard held."""
        guard = ExclusiveTransactionGuard()

        def fail():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            guard.with_exclusive_access(fail)

        acquired = []
        thread = threading.Thread(target=lambda: acquired.append(guard.with_exclusive_access(lambda: True)))
        thread.start()
        thread.join(timeout=2.0)
        assert acquired == [True]

    def test_serializes_threads(self):
        """Test that read-modify-write cycles do not interleave."""
        guard = ExclusiveTransactionGuard()
        counter = {"value": 0}

        def increment():
            value = counter["value"]
            time.sleep(0.001)
            counter["value"] = value + 1

        threads = [
            threading.Thread(target=lambda: guard.with_exclusive_access(increment))
            for _ in range(20)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert counter["value"] == 20


class TestLockFile:
    """Tests for the guard's lock file."""

    def test_nested_entry_takes_lock_once(self, tmp_path):
        """Test that re-entering does not wait on the guard's own lock file."""
        lock_path = tmp_path / "state.json.lock"
        guard = ExclusiveTransactionGuard(lock_path=lock_path, timeout_ms=200)

        with guard:
            assert lock_path.exists()
            assert guard.with_exclusive_access(lambda: "inner") == "inner"
            assert lock_path.exists()

        assert not lock_path.exists()

    def test_second_guard_waits(self, tmp_path):
        """Test that another guard on the same file cannot enter while it is held."""
        lock_path = tmp_path / "state.json.lock"
        holder = ExclusiveTransactionGuard(lock_path=lock_path)
        other = ExclusiveTransactionGuard(lock_path=lock_path, timeout_ms=100)

        with holder:
            with pytest.raises(StorageError):
                other.with_exclusive_access(lambda: None)

        assert other.with_exclusive_access(lambda: "free") == "free"

    def test_failed_lock_releases_thread_lock(self, tmp_path):
        """Test that a lock file timeout leaves the in-process lock free."""
        lock_path = tmp_path / "state.json.lock"
        holder = ExclusiveTransactionGuard(lock_path=lock_path)
        other = ExclusiveTransactionGuard(lock_path=lock_path, timeout_ms=50)

        with holder:
            with pytest.raises(StorageError):
                other.with_exclusive_access(lambda: None)

        acquired = []
        thread = threading.Thread(target=lambda: acquired.append(other.with_exclusive_access(lambda: True)))
        thread.start()
        thread.join(timeout=2.0)
        assert acquired == [True]
