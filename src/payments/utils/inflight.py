"""Process-local single-flight guard keyed by entity id.

Settlement handlers take the key for the payment or refund they work on;
a second handler for the same key finds it held and backs off instead of
racing the first one.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

logger = structlog.get_logger(__name__)


class SingleFlight:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._holders: dict[str, int] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._holders[key] = self._holders.get(key, 0) + 1
            return lock

    def _release_ref(self, key: str) -> None:
        with self._guard:
            remaining = self._holders.get(key, 1) - 1
            if remaining <= 0:
                self._holders.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._holders[key] = remaining

    @contextmanager
    def attempt(self, key: str) -> Iterator[bool]:
        """Try to take ``key`` without waiting; yields whether it was taken."""
        lock = self._lock_for(key)
        acquired = lock.acquire(blocking=False)
        if not acquired:
            logger.warning("Unit of work already in flight", key=key)
        try:
            yield acquired
        finally:
            if acquired:
                lock.release()
            self._release_ref(key)

    def in_flight(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()


settlements = SingleFlight()
