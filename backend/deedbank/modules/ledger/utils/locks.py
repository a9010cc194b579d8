from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable, Iterator

from deedbank.core.clock import NowUtc

LOCK_STRIPES = 256


class ChildLockTimeout(TimeoutError):
    pass


class ChildLockRegistry:
    """Striped in-process locks keyed by child id.

    Two ids may share a stripe, which only costs some parallelism; the same
    id always maps to the same stripe, so redemptions for one child are
    serialized within the process.
    """

    def __init__(self, stripes: int = LOCK_STRIPES):
        self._locks = [Lock() for _ in range(stripes)]

    def _LockFor(self, child_id: int) -> Lock:
        return self._locks[hash(child_id) % len(self._locks)]

    @contextmanager
    def Hold(self, child_id: int, timeout: float | None = None) -> Iterator[None]:
        lock = self._LockFor(child_id)
        acquired = lock.acquire(timeout=timeout) if timeout is not None and timeout >= 0 else lock.acquire()
        if not acquired:
            raise ChildLockTimeout(f"Timed out waiting for ledger lock on child {child_id}")
        try:
            yield
        finally:
            lock.release()


class LedgerClock:
    """Hands out strictly increasing UTC timestamps for ledger appends."""

    def __init__(self, now: Callable[[], datetime] = NowUtc):
        self._now = now
        self._last: datetime | None = None
        self._lock = Lock()

    def Next(self) -> datetime:
        with self._lock:
            current = self._now()
            if self._last is not None and current <= self._last:
                current = self._last + timedelta(microseconds=1)
            self._last = current
            return current


child_locks = ChildLockRegistry()
ledger_clock = LedgerClock()
