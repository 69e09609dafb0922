"""A small most-recently-added cache of catalog records keyed by path."""

from __future__ import annotations

import threading
from collections import deque
from typing import Any, Deque, Optional, Tuple


class RecordCache:
    """Keeps the last ``length`` path lookups.

    New entries push out the oldest one. Lookups do not reorder entries;
    when a path was added more than once, the newest record wins. A cache
    of length 0 stores nothing. Records must not be ``None``.
    """

    def __init__(self, length: int) -> None:
        if length < 0:
            raise ValueError(f"cache length must not be negative: {length}")
        self.length = length
        self._entries: Deque[Tuple[str, Any]] = deque(maxlen=length)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def lookup(self, path: str) -> Optional[Any]:
        """The record cached for ``path``, or None."""
        with self._lock:
            for cached_path, record in self._entries:
                if cached_path == path:
                    return record
        return None

    def lookup_parents(self, path: str) -> Tuple[int, Optional[Any]]:
        """Find the deepest cached ancestor of an absolute ``path``.

        Returns the length of the ancestor's path within ``path`` and its
        record, or ``(0, None)`` if no ancestor is cached. The root
        (empty prefix) is never looked up.
        """
        end = len(path)
        while (cut := path.rfind("/", 0, end)) >= 0:
            end = cut
            if cut:
                record = self.lookup(path[:cut])
                if record is not None:
                    return cut, record
        return 0, None

    def add(self, path: str, record: Any) -> None:
        """Cache ``record`` for ``path``, dropping the oldest entry if full."""
        if record is None:
            raise ValueError("cannot cache a None record")
        with self._lock:
            self._entries.appendleft((path, record))

    def clear(self) -> None:
        """Forget every entry."""
        with self._lock:
            self._entries.clear()