"""Conversions between HFS+ on-disk values and their POSIX counterparts.

Covers catalog timestamps, UTF-16 file names, the decomposed Unicode
form that HFS+ stores names in, BSD file modes and the 32-byte Finder
info blob.
"""

from __future__ import annotations

import stat
import struct
import unicodedata
from enum import Enum
from typing import Iterable, List, Mapping, Tuple, Union

HFS_EPOCH_OFFSET = 2082844800
"""Seconds between the HFS epoch (1904-01-01) and the Unix epoch."""

HFS_NAME_MAX = 765
"""Maximum number of UTF-8 bytes one HFS+ path element can occupy."""

HFS_UNISTR_MAX = 255
"""Maximum number of UTF-16 code units in an HFS+ name."""

# file modes specified by TN1150
HFS_S_IFIFO = 0o010000
HFS_S_IFCHR = 0o020000
HFS_S_IFDIR = 0o040000
HFS_S_IFBLK = 0o060000
HFS_S_IFREG = 0o100000
HFS_S_IFLNK = 0o120000
HFS_S_IFSOCK = 0o140000
HFS_S_IFWHT = 0o160000
HFS_S_IFMT = 0o170000

_MODE_MAP = (
    (stat.S_IFIFO, HFS_S_IFIFO),
    (stat.S_IFCHR, HFS_S_IFCHR),
    (stat.S_IFDIR, HFS_S_IFDIR),
    (stat.S_IFBLK, HFS_S_IFBLK),
    (stat.S_IFREG, HFS_S_IFREG),
    (stat.S_IFLNK, HFS_S_IFLNK),
    (stat.S_IFSOCK, HFS_S_IFSOCK),
    (getattr(stat, "S_IFWHT", 0), HFS_S_IFWHT),
)


class FileKind(Enum):
    """The kind of a catalog record."""

    FOLDER = 1
    FILE = 2


def hfs_time_to_epoch(hfs_time: int) -> int:
    """Convert an HFS timestamp to Unix time; earlier dates become 0."""
    return hfs_time - HFS_EPOCH_OFFSET if hfs_time > HFS_EPOCH_OFFSET else 0


def _hfs_in_range(codepoint: int) -> bool:
    # HFS+ leaves U+2000..U+2FFF, U+F900..U+FAFF and everything above
    # U+FFFF undecomposed and unordered.
    return codepoint <= 0xFFFF and not (
        0x2000 <= codepoint <= 0x2FFF or 0xF900 <= codepoint <= 0xFAFF
    )


def _in_range(ch: str) -> bool:
    return _hfs_in_range(ord(ch))


def _sort_combining(chars: List[str]) -> None:
    """Order adjacent combining marks by class, as HFS+ does."""
    n = len(chars)
    if n <= 1:
        return
    cls = unicodedata.combining
    rclass = cls(chars[1])
    if (
        _in_range(chars[0])
        and _in_range(chars[1])
        and rclass
        and cls(chars[0]) > rclass
    ):
        chars[0], chars[1] = chars[1], chars[0]

    i = 1
    while 0 <= i < n - 1:
        rclass = cls(chars[i + 1])
        if not (rclass and _in_range(chars[i + 1])):
            i += 2
        elif _in_range(chars[i]) and cls(chars[i]) > rclass:
            chars[i], chars[i + 1] = chars[i + 1], chars[i]
            i -= 1
        else:
            i += 1


def hfs_nfd(name: str) -> str:
    """Decompose ``name`` into the variant of NFD used by HFS+."""
    chars: List[str] = []
    for ch in name:
        if _in_range(ch):
            chars.extend(unicodedata.normalize("NFD", ch))
        else:
            chars.append(ch)
    _sort_combining(chars)
    return "".join(chars)


def unistr_to_utf8(units: Iterable[int]) -> str:
    """Decode a sequence of UTF-16 code units into a string."""
    units = list(units)
    if any(not 0 <= u <= 0xFFFF for u in units):
        raise ValueError("UTF-16 code units must lie in 0..0xFFFF")
    raw = b"".join(u.to_bytes(2, "big") for u in units)
    try:
        text = raw.decode("utf-16-be")
    except UnicodeDecodeError as exc:
        raise ValueError(f"invalid UTF-16 name: {exc}") from exc
    if len(text.encode("utf-8")) > HFS_NAME_MAX:
        raise ValueError(f"name longer than {HFS_NAME_MAX} UTF-8 bytes")
    return text


def utf8_to_unistr(name: str) -> Tuple[int, ...]:
    """Encode ``name`` as UTF-16 code units, at most 255 of them."""
    try:
        raw = name.encode("utf-16-be")
    except UnicodeEncodeError as exc:
        raise ValueError(f"name cannot be encoded as UTF-16: {exc}") from exc
    units = tuple(int.from_bytes(raw[i : i + 2], "big") for i in range(0, len(raw), 2))
    if len(units) > HFS_UNISTR_MAX:
        raise ValueError(f"name longer than {HFS_UNISTR_MAX} UTF-16 code units")
    return units


def pathname_to_unix(units: Iterable[int]) -> str:
    """Decode an HFS+ name for use in a POSIX path; '/' becomes ':'."""
    return unistr_to_utf8(units).replace("/", ":")


def pathname_from_unix(name: str) -> Tuple[int, ...]:
    """Encode a POSIX path element as an HFS+ name; ':' becomes '/'."""
    return utf8_to_unistr(hfs_nfd(name).replace(":", "/"))


def posix_mode(
    hfs_mode: int,
    kind: FileKind,
    default_file_mode: int = 0o755,
    default_dir_mode: int = 0o777,
    disable_symlinks: bool = False,
) -> int:
    """Translate a BSD mode stored on disk into this system's st_mode.

    A mode without a file type is uninitialised and the defaults apply.
    """
    if not hfs_mode & HFS_S_IFMT:
        if kind is FileKind.FILE:
            return (default_file_mode & 0o777) | stat.S_IFREG
        return (default_dir_mode & 0o777) | stat.S_IFDIR

    mode = hfs_mode & 0xFFF
    for sys_mode, mask in _MODE_MAP:
        if hfs_mode & mask == mask:
            mode |= sys_mode
    if disable_symlinks and stat.S_ISLNK(mode):
        mode = (mode & ~stat.S_IFLNK) | stat.S_IFREG
    return mode


_FILE_FIELDS = (
    "file_type",
    "file_creator",
    "finder_flags",
    "location_v",
    "location_h",
    "extended_finder_flags",
)
_FILE_FORMAT = ">IIHHH10xH6x"

_FOLDER_FIELDS = (
    "window_top",
    "window_left",
    "window_bottom",
    "window_right",
    "finder_flags",
    "location_v",
    "location_h",
    "extended_finder_flags",
)
_FOLDER_FORMAT = ">HHHHHHH10xH6x"

_WIDE_FIELDS = {"file_type", "file_creator"}


def _field_value(name: str, value: Union[int, bytes, str]) -> int:
    if isinstance(value, str):
        value = value.encode("latin-1")
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 4 or name not in _WIDE_FIELDS:
            raise ValueError(f"field {name} cannot hold {value!r}")
        return int.from_bytes(value, "big")
    width = 0xFFFFFFFF if name in _WIDE_FIELDS else 0xFFFF
    return int(value) & width


def serialize_finderinfo(
    kind: FileKind, fields: Mapping[str, Union[int, bytes, str]]
) -> bytes:
    """Build the 32-byte, big-endian Finder info of a catalog record.

    Missing fields are zero. Type and creator codes may be given as
    4-byte strings. Kinds other than files and folders give zeros.
    """
    if kind is FileKind.FILE:
        names, fmt = _FILE_FIELDS, _FILE_FORMAT
    elif kind is FileKind.FOLDER:
        names, fmt = _FOLDER_FIELDS, _FOLDER_FORMAT
    else:
        return bytes(32)
    unknown = set(fields) - set(names)
    if unknown:
        raise ValueError(f"unknown Finder info fields: {', '.join(sorted(unknown))}")
    values = [_field_value(name, fields.get(name, 0)) for name in names]
    return struct.pack(fmt, *values)