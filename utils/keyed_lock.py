import threading
from contextlib import contextmanager
from typing import Dict, Hashable, List


class KeyedLock:
    """
    One lock per key; unrelated keys never contend.

    A key's lock exists only while some thread holds or waits for it, so the
    registry stays as small as the set of keys currently in use.
    """

    def __init__(self):
        # key -> [lock, holders and waiters]
        self._locks: Dict[Hashable, List] = {}
        self._registry_lock = threading.Lock()

    @contextmanager
    def hold(self, key: Hashable):
        with self._registry_lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._registry_lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)
