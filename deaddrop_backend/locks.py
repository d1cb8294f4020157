from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class PathLocks:
    """Advisory locks keyed by directory path.

    Stores wrap their check-then-act sequences in ``hold(path)`` so two
    callers touching the same mailbox or table never interleave. Locks are
    never held across an ``await``; store calls are synchronous.

    An entry lives only while someone holds or waits for it, so the map
    stays bounded by the number of concurrent callers.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, _Entry] = {}

    @contextmanager
    def hold(self, path: Path) -> Iterator[None]:
        key = str(path)
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _Entry()
                self._locks[key] = entry
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
