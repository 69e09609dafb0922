"""Userspace building blocks for reading HFS+ volumes: cached block I/O, a
path record cache, name and mode conversion, and decmpfs decompression."""

__version__ = "0.1.0"

__all__ = [
    "blockcache",
    "cache",
    "convert",
    "decmpfs",
    "device",
    "features",
    "ublio",
]