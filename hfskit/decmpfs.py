"""Transparent HFS+ file compression (the ``com.apple.decmpfs`` attribute).

A compressed file keeps a 16-byte header in its ``com.apple.decmpfs``
extended attribute. The data follows the header inline, or sits in the
resource fork as a table of independently compressed 64 KiB chunks.
Sparse files have no data at all and read as zeros.
"""

from __future__ import annotations

import errno
import struct
import threading
import zlib
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, List, Optional, Tuple

from hfskit.features import LibFeatures, get_lib_features

CHUNK_SIZE = 65536
"""Uncompressed size of one resource-fork chunk."""

DECMPFS_MAGIC = b"fpmc"
HEADER_SIZE = 16

_RAW_ZLIB_MARKER = 0xFF
_RAW_LZX_MARKER = 0x06


class Compression(IntEnum):
    """Compression method, with the inline and resource-fork variants merged.

    A value here covers two on-disk types: ``2 * value - 1`` keeps its data
    inline and ``2 * value`` keeps it in the resource fork.
    """

    ZLIB = 2
    SPARSE = 3
    LZVN = 4
    LZFSE = 6


class DecmpfsError(OSError):
    """A compressed file could not be parsed or decompressed."""


@dataclass(frozen=True)
class DecmpfsHeader:
    """The parsed decmpfs attribute header."""

    type: int
    logical_size: int


def compression_of(decmpfs_type: int) -> Optional[Compression]:
    """The compression method of an on-disk type, or None if unknown."""
    try:
        return Compression((decmpfs_type + 1) // 2)
    except ValueError:
        return None


def is_inline(decmpfs_type: int) -> bool:
    """True if data of this type follows the header in the attribute."""
    return decmpfs_type % 2 == 1


def _is_lzx(decmpfs_type: int) -> bool:
    return compression_of(decmpfs_type) in (Compression.LZVN, Compression.LZFSE)


def compression_supported(decmpfs_type: int) -> bool:
    """True if files of this type can be read."""
    method = compression_of(decmpfs_type)
    features = get_lib_features()
    if method is Compression.ZLIB:
        return bool(features & LibFeatures.ZLIB)
    if method is Compression.SPARSE:
        return is_inline(decmpfs_type)
    if method in (Compression.LZVN, Compression.LZFSE):
        return bool(features & LibFeatures.LZFSE)
    return False


def parse_record(data: bytes) -> DecmpfsHeader:
    """Parse the header at the start of a decmpfs attribute."""
    if data is None or len(data) < HEADER_SIZE or data[:4] != DECMPFS_MAGIC:
        raise DecmpfsError(errno.EINVAL, "not a decmpfs record")
    (logical_size,) = struct.unpack_from("<Q", data, 8)
    return DecmpfsHeader(type=data[4], logical_size=logical_size)


def _inflate(data: bytes, size: int) -> bytes:
    inflater = zlib.decompressobj()
    try:
        out = inflater.decompress(data, size + 1)
    except zlib.error as exc:
        raise DecmpfsError(errno.EIO, f"zlib data error: {exc}") from exc
    if len(out) > size:
        raise DecmpfsError(errno.EIO, f"decompressed data exceeds {size} bytes")
    if not inflater.eof:
        raise DecmpfsError(errno.EIO, "truncated zlib stream")
    return out


def decompress(decmpfs_type: int, data: bytes, size: int) -> bytes:
    """Decompress one block of ``data`` into at most ``size`` bytes.

    A leading marker byte flags data stored uncompressed.
    """
    if not data:
        raise DecmpfsError(errno.EINVAL, "no compressed data")
    method = compression_of(decmpfs_type)
    if (method is Compression.ZLIB and data[0] == _RAW_ZLIB_MARKER) or (
        _is_lzx(decmpfs_type) and data[0] == _RAW_LZX_MARKER
    ):
        return bytes(data[1 : 1 + size])
    if method is Compression.ZLIB:
        return _inflate(bytes(data), size)
    if _is_lzx(decmpfs_type):
        raise DecmpfsError(
            errno.ENOTSUP, f"decmpfs type {decmpfs_type} needs LZFSE support"
        )
    raise DecmpfsError(errno.EINVAL, f"invalid decmpfs type {decmpfs_type}")


def buffer_size(header: Optional[DecmpfsHeader]) -> int:
    """A good size for reads: the whole file if inline, else one chunk."""
    if header is None:
        return 0
    if is_inline(header.type):
        return header.logical_size
    return min(header.logical_size, CHUNK_SIZE)


RsrcReader = Callable[[int, int], bytes]


class DecmpfsContext:
    """Random access to the uncompressed contents of one file.

    ``data`` is the whole decmpfs attribute. ``rsrc_reader(count, offset)``
    reads from the file's resource fork and is needed only for types that
    keep their data there.
    """

    def __init__(self, data: bytes, rsrc_reader: Optional[RsrcReader] = None) -> None:
        self.header = parse_record(data)
        method = compression_of(self.header.type)
        # unsupported but known types are let through: they may hold raw data
        if method is None:
            raise DecmpfsError(
                errno.EINVAL, f"unknown decmpfs type {self.header.type}"
            )
        self._method = method
        self._rsrc_reader = rsrc_reader
        self._buf: Optional[bytes] = None
        self._chunks: List[Tuple[int, int]] = []
        self._current_chunk = -1
        self._lock = threading.Lock()

        if method is Compression.SPARSE:
            if not is_inline(self.header.type):
                raise DecmpfsError(errno.EINVAL, "sparse data must be inline")
        elif is_inline(self.header.type):
            self._buf = decompress(
                self.header.type, data[HEADER_SIZE:], self.header.logical_size
            )
        else:
            self._load_chunk_map()

    def _read_rsrc(self, count: int, offset: int) -> bytes:
        chunk = bytes(self._rsrc_reader(count, offset))
        if len(chunk) < count:
            raise DecmpfsError(errno.EIO, "short read from resource fork")
        return chunk[:count]

    def _load_chunk_map(self) -> None:
        if self._rsrc_reader is None:
            raise DecmpfsError(errno.EINVAL, "resource fork reader required")
        (rsrc_start,) = struct.unpack(">I", self._read_rsrc(4, 0))
        (nchunks,) = struct.unpack("<I", self._read_rsrc(4, rsrc_start + 4))
        table = self._read_rsrc(8 * nchunks, rsrc_start + 8)
        base = rsrc_start + 4
        self._chunks = [
            (offset + base, length) for offset, length in struct.iter_unpack("<II", table)
        ]

    @property
    def nchunks(self) -> int:
        """Number of chunks in the resource fork; 0 for inline data."""
        return len(self._chunks)

    def _chunk(self, index: int, bufsize: int) -> bytes:
        with self._lock:
            if self._buf is None or self._current_chunk != index:
                offset, length = self._chunks[index]
                compressed = bytes(self._rsrc_reader(length, offset))[:length]
                self._buf = decompress(self.header.type, compressed, bufsize)
                self._current_chunk = index
            return self._buf

    def _read_chunked(self, size: int, offset: int) -> bytes:
        logical = self.header.logical_size
        if offset > logical:
            return b""
        size = min(size, logical - offset)
        nchunks = len(self._chunks)
        start = min(offset // CHUNK_SIZE, nchunks)
        end = min(-(-(offset + size) // CHUNK_SIZE), nchunks)
        bufsize = min(logical, CHUNK_SIZE)

        out = bytearray()
        for index in range(start, end):
            if len(out) >= size:
                break
            chunk = self._chunk(index, bufsize)
            decode_offset = offset % CHUNK_SIZE if index == start else 0
            if decode_offset < len(chunk):
                out += chunk[decode_offset : decode_offset + size - len(out)]
        return bytes(out)

    def read(self, size: int, offset: int) -> bytes:
        """Read up to ``size`` uncompressed bytes at ``offset``."""
        if offset < 0 or size < 0:
            raise DecmpfsError(errno.EINVAL, "size and offset must not be negative")
        if self._method is Compression.SPARSE:
            if offset >= self.header.logical_size:
                return b""
            return bytes(min(size, self.header.logical_size - offset))
        if not is_inline(self.header.type):
            return self._read_chunked(size, offset)
        if self._buf is not None and offset < len(self._buf):
            return self._buf[offset : offset + size]
        return b""