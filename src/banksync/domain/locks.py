"""In-process locks keyed by an arbitrary hashable value."""

import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Hashable, Iterator


class KeyedLock:
    """One mutex per key, created on demand and dropped when unused.

    Example:
        locks = KeyedLock()
        with locks("txn-123"):
            ...
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._waiters: defaultdict[Hashable, int] = defaultdict(int)

    @contextmanager
    def __call__(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] += 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def lock_key(transaction) -> Hashable:
    """Key under which writers of a transaction's category and tags serialize.

    Bank transactions use their bank id, the key ingestion locks on.
    """
    if transaction.external_id is not None:
        return transaction.external_id
    return ("transaction", transaction.id)
