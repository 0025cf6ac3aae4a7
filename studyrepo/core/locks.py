"""
Per-key write serialization for index files and other read-modify-write targets.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Optional

from .config import get_lock_timeout
from .errors import UnavailableError


class KeyedLocks:
    """Hands out one lock per key and bounds how long a caller waits for it."""

    def __init__(self, timeout: Optional[float] = None):
        self._timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    @property
    def timeout(self) -> float:
        return self._timeout if self._timeout is not None else get_lock_timeout()

    def lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str):
        """Hold the lock for key, raising UnavailableError on timeout."""
        lock = self.lock_for(key)
        if not lock.acquire(timeout=self.timeout):
            raise UnavailableError(f"Timed out waiting for write lock on {key}")
        try:
            yield
        finally:
            lock.release()
