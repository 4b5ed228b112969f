"""
Keyed re-entrant locks.

EntityStore serializes authorize+mutate per (realm_id, entity_type) and
the onboarding workflow holds a per-user and a per-realm lock across its
steps. Locks are re-entrant so a workflow holding a realm lock can call
EntityStore for the same realm on the same thread.

Invariants:
    - An entry lives only while some thread holds or waits for its key
    - Every holder and waiter of a key shares one RLock

How to change safely:
    - Take keyed realm and member locks only inside a LocalStore
      transaction, never before opening one
"""

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field


@dataclass
class _Entry:
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


class KeyedLocks:
    """Table of threading.RLock objects, reference-counted per key.

    Example:
        >>> locks = KeyedLocks()
        >>> with locks.hold("realm", "shop/acme", "product"):
        ...     ...
        >>> len(locks)
        0
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[Hashable, ...], _Entry] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, *key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
