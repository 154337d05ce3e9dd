"""
Kirana Core Locking — Keyed Critical Sections
===============================================
One exclusive lock per key (e.g. (organization_id, item_id)).

Doctrine:
- Different keys never block each other; there is no global write lock.
- Acquisition is bounded: waiting longer than the timeout raises Busy.
- Lock entries are reference-counted and dropped once idle, so the
  table does not grow with the size of the catalogue.
- The registry guard is held only to look up / release an entry,
  never while waiting for a key.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterator, Optional

from core.locking.errors import Busy

logger = logging.getLogger("kirana.locking")


@dataclass
class _KeyEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class KeyedLockRegistry:
    """
    Thread-safe registry of per-key locks.

    Usage:
        locks = KeyedLockRegistry(default_timeout=5.0)
        with locks.hold(("org-1", "ITEM-1")):
            ...  # read-modify-write for ITEM-1 only
    """

    def __init__(self, default_timeout: float = 5.0) -> None:
        if default_timeout < 0:
            raise ValueError("default_timeout cannot be negative.")
        self._default_timeout = default_timeout
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, _KeyEntry] = {}

    @property
    def default_timeout(self) -> float:
        return self._default_timeout

    def _checkout(self, key: Hashable) -> _KeyEntry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _KeyEntry()
                self._entries[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: Hashable, entry: _KeyEntry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    @contextmanager
    def hold(self, key: Hashable, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Enter the critical section for `key`.

        Raises Busy if the section cannot be entered within `timeout`
        seconds (defaults to the registry timeout).
        """
        wait = self._default_timeout if timeout is None else timeout
        entry = self._checkout(key)
        try:
            acquired = entry.lock.acquire(timeout=wait)
            if not acquired:
                logger.warning("Lock busy for %r after %.3fs.", key, wait)
                raise Busy(key, wait)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)

    def is_locked(self, key: Hashable) -> bool:
        """True if some thread currently holds the section for `key`."""
        with self._guard:
            entry = self._entries.get(key)
            return entry is not None and entry.lock.locked()

    @property
    def active_keys(self) -> int:
        """Number of keys currently held or waited on (test helper)."""
        with self._guard:
            return len(self._entries)
