"""Which optional capabilities are available, and their versions."""

from __future__ import annotations

import unicodedata
from enum import IntFlag
from typing import Optional

from hfskit.ublio import api_version

try:
    import zlib as _zlib
except ImportError:  # pragma: no cover - zlib is missing only on unusual builds
    _zlib = None


class LibFeatures(IntFlag):
    """Optional capabilities of the package."""

    NONE = 0
    UBLIO = 1 << 0
    UTF8PROC = 1 << 1
    ZLIB = 1 << 2
    LZFSE = 1 << 3


def get_lib_features() -> LibFeatures:
    """The set of optional capabilities that are available."""
    features = LibFeatures.UBLIO | LibFeatures.UTF8PROC
    if _zlib is not None:
        features |= LibFeatures.ZLIB
    return features


def ublio_version() -> str:
    """The block cache interface version as ``major.minor``."""
    major, minor = divmod(api_version(), 100)
    return f"{major}.{minor}"


def unicode_version() -> str:
    """The Unicode database version used for name normalisation."""
    return unicodedata.unidata_version


def zlib_version() -> Optional[str]:
    """The zlib version, or None if zlib is unavailable."""
    return _zlib.ZLIB_VERSION if _zlib is not None else None