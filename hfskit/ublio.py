"""Block-aligned, cached positional I/O on top of a raw device.

Every request is widened to whole blocks. Blocks that are already cached
are served from memory. Recently unused cache entries are recycled for
the blocks of the request. Whatever remains goes straight to the device,
with scratch buffers padding a partial first and last block. Writes are
held in the cache as dirty blocks until :meth:`Ublio.fsync`, unless
``sync_io`` is set.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence

from hfskit.blockcache import BlockCache, CacheEntry

_API_MAJOR = 0
_API_MINOR = 1


def api_version() -> int:
    """The interface version, encoded as ``100 * major + minor``."""
    return 100 * _API_MAJOR + _API_MINOR


@dataclass
class UblioParams:
    """Settings for a :class:`Ublio` session.

    Either ``fd`` or both ``pread`` and ``pwrite`` must be given.
    ``pread(count, offset)`` returns bytes and ``pwrite(data, offset)``
    returns the number of bytes written. ``items`` is the number of cached
    blocks (0 disables caching) and ``grace`` the number of requests for
    which a used block is kept before it may be recycled.
    """

    blocksize: int
    items: int = 0
    grace: int = 0
    sync_io: bool = False
    fd: Optional[int] = None
    pread: Optional[Callable[[int, int], bytes]] = None
    pwrite: Optional[Callable[[bytes, int], int]] = None


class _Kind(Enum):
    BUFFER = "buffer"
    FRAGMENT = "fragment"
    CACHED = "cached"


@dataclass(eq=False)
class _Segment:
    kind: _Kind
    view: memoryview
    entry: Optional[CacheEntry] = None
    bufpos: int = 0

    @property
    def length(self) -> int:
        return len(self.view)

    @property
    def needs_io(self) -> bool:
        return self.entry is None or not self.entry.valid


class Ublio:
    """A cached, block-aligned reader and writer."""

    def __init__(self, params: UblioParams) -> None:
        if params.fd is None and (params.pread is None or params.pwrite is None):
            raise ValueError("either fd or both pread and pwrite must be given")
        self.params = params
        self.blocksize = params.blocksize
        self.cache = BlockCache(params.items, params.blocksize, params.grace)
        self.closed = False

    # -- raw device access -------------------------------------------------

    def _raw_pread(self, count: int, offset: int) -> bytes:
        if self.params.pread is not None:
            return bytes(self.params.pread(count, offset))[:count]
        return os.pread(self.params.fd, count, offset)

    def _raw_pwrite(self, data: bytes, offset: int) -> int:
        if self.params.pwrite is not None:
            return self.params.pwrite(data, offset)
        return os.pwrite(self.params.fd, data, offset)

    def _readv(self, views: Sequence[memoryview], offset: int) -> int:
        done = 0
        for view in views:
            chunk = self._raw_pread(len(view), offset + done)
            view[: len(chunk)] = chunk
            done += len(chunk)
            if len(chunk) < len(view):
                break
        return done

    def _writev(self, views: Sequence[memoryview], offset: int) -> int:
        done = 0
        for view in views:
            written = self._raw_pwrite(bytes(view), offset + done)
            done += written
            if written < len(view):
                break
        return done

    def _sync_entry(self, entry: CacheEntry) -> None:
        if not entry.dirty:
            return
        self._raw_pwrite(bytes(entry.buffer), entry.offset)
        self.cache.set_dirty(entry, False)

    # -- helpers -------------------------------------------------------------

    def _floor(self, value: int) -> int:
        return value - value % self.blocksize

    def _negmod(self, value: int) -> int:
        return (self.blocksize - value % self.blocksize) % self.blocksize

    def _check_open(self) -> None:
        if self.closed:
            raise ValueError("I/O operation on a closed ublio session")

    def _plan(self, buf: memoryview, offset: int) -> List[_Segment]:
        """Split the block range enclosing the request into segments."""
        bs = self.blocksize
        cache = self.cache
        count = len(buf)
        frag = offset % bs
        base = offset - frag
        total = count + frag
        end = base + total
        last_off = base

        cache.tick()

        current = cache.first_at_or_after(base)
        if current is not None and current.offset >= end:
            current = None
        if current is not None:
            cache.touch(current)

        oldest = cache.oldest_outside(base, total)
        segments: List[_Segment] = []

        while True:
            curr_off = current.offset if current is not None else end

            xoff = last_off
            while xoff < curr_off:
                if oldest is None or oldest.atime + cache.grace >= cache.time:
                    break
                recycled = oldest
                oldest = cache.next_outside(oldest, base, total)
                self._sync_entry(recycled)
                cache.relocate(recycled, xoff)
                cache.touch(recycled)
                segments.append(
                    _Segment(_Kind.CACHED, memoryview(recycled.buffer), recycled)
                )
                xoff += bs

            if xoff < curr_off:
                bot, top = xoff, curr_off
                if xoff == base and frag:
                    segments.append(
                        _Segment(_Kind.FRAGMENT, memoryview(bytearray(bs)))
                    )
                    bot += bs
                if curr_off == end:
                    top = self._floor(top)
                if top > bot:
                    pos = bot - offset
                    segments.append(
                        _Segment(_Kind.BUFFER, buf[pos : pos + top - bot], bufpos=pos)
                    )
                if top >= bot and curr_off == end and curr_off % bs:
                    segments.append(
                        _Segment(_Kind.FRAGMENT, memoryview(bytearray(bs)))
                    )

            if current is None:
                break
            segments.append(
                _Segment(_Kind.CACHED, memoryview(current.buffer), current)
            )
            last_off = current.offset + bs
            current = cache.next_by_offset(current)
            if current is not None and current.offset >= end:
                current = None
            if current is not None:
                cache.touch(current)

        return segments

    def _result(self, res: int, count: int, offset: int) -> int:
        frag = offset % self.blocksize
        return max(min(res, count + frag) - frag, 0)

    # -- reading ---------------------------------------------------------------

    def _transfer(self, out: bytearray, entry: CacheEntry, offset: int) -> None:
        dst = max(0, entry.offset - offset)
        src = max(0, offset - entry.offset)
        size = min(self.blocksize - src, len(out) - dst)
        out[dst : dst + size] = entry.buffer[src : src + size]

    def _block_read(self, segments: List[_Segment], out: bytearray, offset: int) -> int:
        bs = self.blocksize
        count = len(out)
        res = 0
        pres, xpres = -1, 0
        i0 = 0
        n = len(segments)

        while True:
            while i0 < n and not segments[i0].needs_io:
                self._transfer(out, segments[i0].entry, offset)
                res += bs
                i0 += 1
            if i0 == n:
                break

            i1 = i0
            xpres = 0
            while i1 < n and segments[i1].needs_io:
                xpres += segments[i1].length
                i1 += 1

            first = segments[i0]
            if first.kind is _Kind.FRAGMENT:
                xoff = self._floor(offset + (count if i0 else 0))
            elif first.kind is _Kind.BUFFER:
                xoff = offset + first.bufpos
            else:
                xoff = first.entry.offset

            run = segments[i0:i1]
            pres = self._readv([seg.view for seg in run], xoff)
            res += pres
            if pres < xpres:
                remaining = pres
                for seg in run:
                    if remaining < seg.length:
                        break
                    remaining -= seg.length
                    if seg.entry is not None:
                        seg.entry.valid = True
                        self._transfer(out, seg.entry, offset)
                res = self._floor(res)
                break

            for seg in run:
                if seg.entry is not None:
                    seg.entry.valid = True
                    self._transfer(out, seg.entry, offset)
            i0 = i1

        lead = offset % bs
        if segments[0].kind is _Kind.FRAGMENT and res > 0:
            size = min(bs - lead, count)
            out[:size] = segments[0].view[lead : lead + size]
        tail = (offset + count) % bs
        if n > 1 and segments[-1].kind is _Kind.FRAGMENT and pres == xpres:
            out[count - tail : count] = segments[-1].view[:tail]
        return res

    def pread(self, count: int, offset: int) -> bytes:
        """Read up to ``count`` bytes at ``offset``; shorter at end of device."""
        self._check_open()
        if count < 0 or offset < 0:
            raise ValueError("count and offset must not be negative")
        if count == 0:
            return b""
        out = bytearray(count)
        segments = self._plan(memoryview(out), offset)
        res = self._block_read(segments, out, offset)
        segments.clear()
        return bytes(out[: self._result(res, count, offset)])

    # -- writing -----------------------------------------------------------------

    def _block_write(self, segments: List[_Segment], data: bytes, offset: int) -> int:
        bs = self.blocksize
        count = len(data)
        n = len(segments)
        lead = offset % bs
        tail = (offset + count) % bs
        low, hi = 0, n
        res = 0

        first = segments[0]
        if first.kind is _Kind.FRAGMENT:
            if self._readv([first.view], self._floor(offset)) < bs:
                return 0
            size = min(bs - lead, count)
            first.view[lead : lead + size] = data[:size]
        if (
            first.entry is not None
            and not first.entry.valid
            and (first.entry.offset < offset or offset + count < first.entry.offset + bs)
        ):
            if self._readv([first.view], first.entry.offset) < bs:
                return 0

        if lead + count > bs:
            last = segments[-1]
            if last.kind is _Kind.FRAGMENT:
                if self._readv([last.view], self._floor(offset + count)) < bs:
                    return 0
                last.view[:tail] = data[count - tail : count]
            if (
                last.entry is not None
                and not last.entry.valid
                and last.entry.offset + bs > offset + count
            ):
                if self._readv([last.view], last.entry.offset) < bs:
                    return 0

        sync = self.params.sync_io
        if sync:
            views: List[memoryview] = []
            xpres = 0
            if lead:
                views.append(first.view)
                xpres += first.length
                if first.entry is not None:
                    size = min(bs - lead, count)
                    first.entry.buffer[lead : lead + size] = data[:size]
                    low += 1
            head = self._negmod(offset)
            middle = count - head - tail
            if middle > 0:
                views.append(memoryview(data)[head : head + middle])
                xpres += middle
            if tail and (n > 1 or not lead):
                last = segments[-1]
                views.append(last.view)
                xpres += last.length
                if last.entry is not None:
                    last.entry.buffer[:tail] = data[count - tail : count]
                    hi -= 1
            res = self._writev(views, self._floor(offset))
            if res < xpres:
                return self._floor(res)
            if low > 0:
                first.entry.valid = True
            if hi < n:
                segments[-1].entry.valid = True

        i = low
        while i < hi:
            seg = segments[i]
            if seg.entry is None and not sync:
                if seg.kind is _Kind.FRAGMENT:
                    xoff = self._floor(offset + (count if i else 0))
                else:
                    xoff = offset + seg.bufpos
                start = i
                while i < n and segments[i].entry is None:
                    i += 1
                res += self._writev([s.view for s in segments[start:i]], xoff)
                i -= 1
            entry = segments[i].entry
            if entry is not None:
                if not sync:
                    self.cache.set_dirty(entry, True)
                    res += bs
                fbot = lead if i == 0 else 0
                ftop = self._negmod(offset + count) if i == n - 1 else 0
                src = entry.offset - offset
                entry.buffer[fbot : bs - ftop] = data[src + fbot : src + bs - ftop]
                entry.valid = True
            i += 1

        return res

    def pwrite(self, data: bytes, offset: int) -> int:
        """Write ``data`` at ``offset``; return the number of bytes taken."""
        self._check_open()
        if offset < 0:
            raise ValueError("offset must not be negative")
        data = bytes(data)
        if not data:
            return 0
        segments = self._plan(memoryview(data), offset)
        res = self._block_write(segments, data, offset)
        segments.clear()
        return self._result(res, len(data), offset)

    # -- session -------------------------------------------------------------------

    def fsync(self) -> None:
        """Write every dirty cached block to the device."""
        self._check_open()
        for entry in self.cache.dirty_entries():
            self._sync_entry(entry)

    def close(self) -> None:
        """Flush dirty blocks and end the session."""
        if self.closed:
            return
        try:
            self.fsync()
        finally:
            self.closed = True

    def __enter__(self) -> "Ublio":
        return self

    def __exit__(self, *args) -> None:
        self.close()