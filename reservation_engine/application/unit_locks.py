import threading
import weakref
from contextlib import contextmanager
from typing import Iterable, Iterator


class UnitLockRegistry:
    """
    In-process mutex per sellable unit.

    Hold creation for a unit runs entirely inside its lock, including the
    commit. Several units are always locked in sorted id order so two
    batch requests can never deadlock each other.

    Locks are only referenced weakly here; a unit's lock is dropped once
    no request holds or waits on it.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._locks)

    def lock_for(self, unit_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(unit_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[unit_id] = lock
            return lock

    @contextmanager
    def acquire(self, unit_ids: Iterable[str]) -> Iterator[None]:
        acquired: list[threading.Lock] = []
        try:
            for unit_id in sorted(set(unit_ids)):
                lock = self.lock_for(unit_id)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
