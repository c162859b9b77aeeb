"""
Per-seller serialization of settlement activation decisions.

A seller has at most one PENDING settlement.  Deciding whether a trigger
may fire reads the seller's settlements and then writes one of them, so the
read-decide-write sequence runs under the seller's lock.  Version checks
still guard every write; the lock only keeps two activations for one seller
from racing.

The registry holds its locks weakly: a seller's lock lives only while some
thread holds a reference to it, so the registry stays as large as the set
of sellers currently being worked on.
"""

from __future__ import annotations

import threading
import weakref
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID


class SellerLocks:
    """Registry of one re-entrant lock per seller."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[UUID, threading.RLock] = (
            weakref.WeakValueDictionary()
        )

    def lock_for(self, seller_id: UUID) -> threading.RLock:
        """The seller's lock; callers keep the returned reference while they use it."""
        with self._guard:
            lock = self._locks.get(seller_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[seller_id] = lock
            return lock

    @contextmanager
    def hold(self, seller_id: UUID) -> Iterator[None]:
        lock = self.lock_for(seller_id)
        with lock:
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Shared by every service that is not handed its own registry.
DEFAULT_SELLER_LOCKS = SellerLocks()
