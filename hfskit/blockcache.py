"""Fixed-size pool of block buffers, kept in two orders.

The entries are ordered by device offset, for finding the cached blocks
inside a range, and by last access time, for picking which block to
recycle next. A block that was used within the last ``grace`` ticks of
the clock is not recycled.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

from sortedcontainers import SortedList


@dataclass(eq=False)
class CacheEntry:
    """One cached block of ``blocksize`` bytes."""

    index: int
    offset: int
    buffer: bytearray
    atime: int = 0
    dirty: bool = False
    valid: bool = True

    def within(self, start: int, count: int) -> bool:
        """True if the block's offset lies in ``[start, start + count)``."""
        return start <= self.offset < start + count


@dataclass
class BlockCache:
    """Entries indexed by offset and by recycling age."""

    items: int
    blocksize: int
    grace: int
    time: int = field(init=False)
    entries: List[CacheEntry] = field(init=False, repr=False)

    def __init__(self, items: int, blocksize: int, grace: int) -> None:
        if items < 0:
            raise ValueError(f"number of cache items must not be negative: {items}")
        if blocksize <= 0:
            raise ValueError(f"block size must be positive: {blocksize}")
        self.items = items
        self.blocksize = blocksize
        self.grace = grace
        self.time = grace + 1
        self.entries = [
            CacheEntry(index=i, offset=-i - 1, buffer=bytearray(blocksize))
            for i in range(items)
        ]
        self._by_offset: SortedList = SortedList(
            self._offset_key(e) for e in self.entries
        )
        self._by_age: SortedList = SortedList(self._age_key(e) for e in self.entries)
        # insertion-ordered; the most recently dirtied entry comes first
        self._dirty: dict[int, CacheEntry] = {}

    @staticmethod
    def _offset_key(entry: CacheEntry) -> Tuple[int, int]:
        return (entry.offset, entry.index)

    @staticmethod
    def _age_key(entry: CacheEntry) -> Tuple[int, int, int]:
        return (entry.atime, entry.offset, entry.index)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[CacheEntry]:
        return (self.entries[idx] for _, idx in self._by_offset)

    def tick(self) -> int:
        """Advance the access clock and return its new value."""
        self.time += 1
        return self.time

    def first_at_or_after(self, offset: int) -> Optional[CacheEntry]:
        """The entry with the smallest offset not below ``offset``."""
        pos = self._by_offset.bisect_left((offset, -1))
        if pos == len(self._by_offset):
            return None
        return self.entries[self._by_offset[pos][1]]

    def next_by_offset(self, entry: CacheEntry) -> Optional[CacheEntry]:
        """The entry following ``entry`` in offset order."""
        pos = self._by_offset.bisect_right(self._offset_key(entry))
        if pos == len(self._by_offset):
            return None
        return self.entries[self._by_offset[pos][1]]

    def touch(self, entry: CacheEntry) -> None:
        """Mark ``entry`` as used at the current time."""
        if entry.atime == self.time:
            return
        self._by_age.remove(self._age_key(entry))
        entry.atime = self.time
        self._by_age.add(self._age_key(entry))

    def _next_by_age(self, entry: CacheEntry) -> Optional[CacheEntry]:
        pos = self._by_age.bisect_right(self._age_key(entry))
        if pos == len(self._by_age):
            return None
        return self.entries[self._by_age[pos][2]]

    def _first_by_age_at_or_after(
        self, key: Tuple[int, int, int]
    ) -> Optional[CacheEntry]:
        pos = self._by_age.bisect_left(key)
        if pos == len(self._by_age):
            return None
        return self.entries[self._by_age[pos][2]]

    def oldest_outside(self, start: int, count: int) -> Optional[CacheEntry]:
        """The least recently used entry, skipping those inside the range."""
        if not self._by_age:
            return None
        oldest = self.entries[self._by_age[0][2]]
        if oldest.within(start, count):
            return self.next_outside(oldest, start, count)
        return oldest

    def next_outside(
        self, entry: CacheEntry, start: int, count: int
    ) -> Optional[CacheEntry]:
        """The next entry by age after ``entry``.

        If that one lies inside the range, skip to the first entry of the
        same age whose offset is at or past the end of the range.
        """
        following = self._next_by_age(entry)
        if following is None or not following.within(start, count):
            return following
        return self._first_by_age_at_or_after((following.atime, start + count, -1))

    def relocate(self, entry: CacheEntry, offset: int) -> None:
        """Move ``entry`` to a new offset; its contents become invalid."""
        if offset == entry.offset:
            entry.valid = False
            return
        occupant = self.first_at_or_after(offset)
        if occupant is not None and occupant.offset == offset:
            raise ValueError(f"offset {offset} is already cached by another entry")
        self._by_offset.remove(self._offset_key(entry))
        self._by_age.remove(self._age_key(entry))
        entry.offset = offset
        entry.valid = False
        self._by_offset.add(self._offset_key(entry))
        self._by_age.add(self._age_key(entry))

    def set_dirty(self, entry: CacheEntry, dirty: bool) -> None:
        """Add ``entry`` to, or remove it from, the set of unwritten blocks."""
        if dirty and not entry.dirty:
            self._dirty[entry.index] = entry
        elif not dirty and entry.dirty:
            del self._dirty[entry.index]
        entry.dirty = dirty

    def dirty_entries(self) -> List[CacheEntry]:
        """Dirty entries, most recently dirtied first."""
        return list(reversed(self._dirty.values()))