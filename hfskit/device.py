"""An HFS+ volume opened read-only from a file or device.

A :class:`Device` holds the settings that apply to a mounted volume
(default fork, default permissions and owners, the path record cache)
and serves reads from the underlying file. Reads go through the
block cache unless it is disabled. Otherwise they go straight to the
file, widened to whole device blocks when the device has a block size.
"""

from __future__ import annotations

import errno
import logging
import os
import stat
import struct
import sys
import threading
from dataclasses import dataclass
from typing import Optional

from hfskit.cache import RecordCache
from hfskit.ublio import Ublio, UblioParams

log = logging.getLogger(__name__)

DATA_FORK = 0x00
"""Fork selector for a file's data fork."""

RSRC_FORK = 0xFF
"""Fork selector for a file's resource fork."""

_ID_MAX = 0xFFFFFFFF

# Linux block-size queries: BLKIOOPT and BLKBSZGET
_LINUX_BLKIOOPT = 0x1279
_LINUX_BLKBSZGET = 0x80081270


@dataclass
class VolumeConfig:
    """Options for opening a volume."""

    cache_size: int = 1024
    blksize: int = 0
    rsrc_suff: Optional[str] = None
    rsrc_only: bool = False
    noublio: bool = False
    ublio_items: int = 64
    ublio_grace: int = 32
    default_file_mode: int = 0o755
    default_dir_mode: int = 0o777
    default_uid: int = 0
    default_gid: int = 0
    disable_symlinks: bool = False


def _query_block_size(fd: int) -> int:
    """Ask a character device for its preferred I/O size."""
    if not sys.platform.startswith("linux"):
        return 0
    import fcntl

    size = 0
    for request in (_LINUX_BLKIOOPT, _LINUX_BLKBSZGET):
        buf = bytearray(8)
        fcntl.ioctl(fd, request, buf)
        (size,) = struct.unpack_from("=I", buf)
        if size:
            break
    return size


class Device:
    """A read-only handle on the file or device holding a volume.

    ``offset`` is the position of the volume within the file; every read
    is relative to it.
    """

    def __init__(
        self,
        path: str,
        config: Optional[VolumeConfig] = None,
        offset: int = 0,
    ) -> None:
        cfg = config if config is not None else VolumeConfig()
        if offset < 0:
            raise ValueError(f"volume offset must not be negative: {offset}")
        for name, value in (("uid", cfg.default_uid), ("gid", cfg.default_gid)):
            if not 0 <= value <= _ID_MAX:
                raise OSError(errno.ERANGE, f"default {name} out of range: {value}")

        self.path = path
        self.offset = offset
        self.closed = False
        self.default_fork = RSRC_FORK if cfg.rsrc_only else DATA_FORK
        self.rsrc_suffix = cfg.rsrc_suff
        self.default_file_mode = cfg.default_file_mode & 0o777
        self.default_dir_mode = cfg.default_dir_mode & 0o777
        self.default_uid = cfg.default_uid
        self.default_gid = cfg.default_gid
        self.disable_symlinks = bool(cfg.disable_symlinks)
        self.cache: Optional[RecordCache] = (
            RecordCache(cfg.cache_size) if cfg.cache_size else None
        )
        self._lock = threading.Lock()
        self._ublio: Optional[Ublio] = None

        self._fd = os.open(path, os.O_RDONLY)
        try:
            if cfg.blksize:
                self.block_size = cfg.blksize
            else:
                self.block_size = 0
                if stat.S_ISCHR(os.fstat(self._fd).st_mode):
                    self.block_size = _query_block_size(self._fd) or 512
            if not cfg.noublio:
                self._ublio = Ublio(
                    UblioParams(
                        blocksize=self.block_size or 512,
                        items=cfg.ublio_items,
                        grace=cfg.ublio_grace,
                        fd=self._fd,
                    )
                )
        except BaseException:
            os.close(self._fd)
            self.closed = True
            raise

    @property
    def uses_block_cache(self) -> bool:
        """True if reads go through the block cache."""
        return self._ublio is not None

    def _preadall(self, length: int, offset: int) -> bytes:
        chunks = []
        while length:
            chunk = os.pread(self._fd, length, offset)
            if not chunk:
                raise OSError(errno.EINVAL, "read beyond end of file")
            chunks.append(chunk)
            offset += len(chunk)
            length -= len(chunk)
        return b"".join(chunks)

    def _read_aligned(self, length: int, offset: int) -> bytes:
        bs = self.block_size
        if not bs:
            return self._preadall(length, offset)

        out = bytearray()
        lead = offset % bs
        if lead:
            with self._lock:
                block = self._preadall(bs, offset - lead)
            leading = bs - lead
            out += block[lead : lead + min(leading, length)]
            if leading >= length:
                return bytes(out)
            offset += leading
            length -= leading
        trailing = length % bs
        length -= trailing
        if length:
            out += self._preadall(length, offset)
        if trailing:
            with self._lock:
                block = self._preadall(bs, offset + length)
            out += block[:trailing]
        return bytes(out)

    def _read_cached(self, length: int, offset: int) -> bytes:
        with self._lock:
            data = self._ublio.pread(length, offset)
        if len(data) < length:
            raise OSError(errno.EINVAL, "read beyond end of file")
        return data

    def read(self, length: int, offset: int) -> bytes:
        """Read exactly ``length`` bytes at ``offset`` within the volume."""
        if self.closed:
            raise ValueError("read from a closed device")
        if length < 0 or offset < 0:
            raise ValueError("length and offset must not be negative")
        if length == 0:
            return b""
        position = offset + self.offset
        try:
            if self._ublio is not None:
                return self._read_cached(length, position)
            return self._read_aligned(length, position)
        except OSError as exc:
            log.error(
                "read of %d bytes at offset %d failed (block size %d): %s",
                length,
                position,
                self.block_size,
                exc.strerror or exc,
            )
            raise

    def close(self) -> None:
        """Release the cache and the file."""
        if self.closed:
            return
        self.closed = True
        try:
            if self.cache is not None:
                self.cache.clear()
            if self._ublio is not None:
                self._ublio.close()
        finally:
            os.close(self._fd)

    def __enter__(self) -> "Device":
        return self

    def __exit__(self, *args) -> None:
        self.close()