"""
KeyedLock - one mutex per key, created on demand

The orchestrator serializes every read-evaluate-commit cycle on the deal id
it touches. Different keys never contend with each other. A key's entry is
dropped once no thread holds or waits for it.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List, Optional


class LockTimeout(Exception):
    """Raised when a keyed lock could not be acquired in time"""

    def __init__(self, key: Hashable, timeout: float):
        super().__init__(f"Timed out after {timeout}s waiting for lock on {key!r}")
        self.key = key
        self.timeout = timeout


class KeyedLock:
    """Registry of per-key locks"""

    def __init__(self):
        # key -> [lock, number of threads holding or waiting]
        self._entries: Dict[Hashable, List] = {}
        self._registry_lock = threading.Lock()

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._registry_lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._entries[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: Hashable) -> None:
        with self._registry_lock:
            entry = self._entries[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, key: Hashable, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold the lock for key for the duration of the with-block.

        Args:
            key: Lock key (a deal id)
            timeout: Seconds to wait; None waits forever

        Raises:
            LockTimeout: If the lock is not acquired within timeout
        """
        lock = self._checkout(key)
        try:
            acquired = lock.acquire() if timeout is None else lock.acquire(timeout=timeout)
            if not acquired:
                raise LockTimeout(key, timeout)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def active_keys(self) -> int:
        """Number of keys currently held or waited on"""
        with self._registry_lock:
            return len(self._entries)
