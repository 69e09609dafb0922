import stat
import unicodedata

import pytest

from hfskit.convert import (
    HFS_EPOCH_OFFSET,
    FileKind,
    hfs_nfd,
    hfs_time_to_epoch,
    pathname_from_unix,
    pathname_to_unix,
    posix_mode,
    serialize_finderinfo,
    unistr_to_utf8,
    utf8_to_unistr,
)


def test_time_before_unix_epoch_is_zero():
    assert hfs_time_to_epoch(0) == 0
    assert hfs_time_to_epoch(2082844800) == 0


def test_time_after_unix_epoch_is_shifted():
    assert hfs_time_to_epoch(HFS_EPOCH_OFFSET + 86400) == 86400


@pytest.mark.parametrize("name", ["caf\u00e9", "A\u0301\u0323", "a\u0301\u0323b", "\u00c5ngstr\u00f6m"])
def test_nfd_matches_standard_decomposition_in_range(name):
    assert hfs_nfd(name) == unicodedata.normalize("NFD", name)


def test_nfd_reorders_combining_marks():
    result = hfs_nfd("a\u0301\u0323")
    assert result[0] == "a"
    assert sorted(result[1:], key=unicodedata.combining) == list(result[1:])


@pytest.mark.parametrize("name", ["\u2126", "\uf900", "\U0001d15e"])
def test_nfd_leaves_excluded_ranges_alone(name):
    assert unicodedata.normalize("NFD", name) != name
    assert hfs_nfd(name) == name


def test_nfd_is_idempotent():
    name = "\u00e9l\u00e8ve \u1e69"
    once = hfs_nfd(name)
    assert hfs_nfd(once) == once


def test_unistr_round_trip():
    name = "R\u00e9sum\u00e9 \U0001f600"
    units = utf8_to_unistr(name)
    assert len(units) == len(name.encode("utf-16-be")) // 2
    assert unistr_to_utf8(units) == name


def test_unistr_too_long():
    with pytest.raises(ValueError):
        utf8_to_unistr("x" * 256)
    assert len(utf8_to_unistr("x" * 255)) == 255


def test_unistr_invalid_surrogate():
    with pytest.raises(ValueError):
        unistr_to_utf8([0xD800])


def test_unistr_out_of_range_unit():
    with pytest.raises(ValueError):
        unistr_to_utf8([0x10000])


def test_pathname_separators_swapped():
    units = pathname_from_unix("a:b")
    assert unistr_to_utf8(units) == "a/b"
    assert pathname_to_unix(units) == "a:b"


def test_pathname_from_unix_decomposes():
    units = pathname_from_unix("\u00e9")
    assert unistr_to_utf8(units) == unicodedata.normalize("NFD", "\u00e9")


def test_mode_defaults_for_uninitialised_file():
    assert posix_mode(0, FileKind.FILE) == stat.S_IFREG | 0o755


def test_mode_defaults_for_uninitialised_folder():
    assert posix_mode(0o644, FileKind.FOLDER, 0o600, 0o700) == stat.S_IFDIR | 0o700


def test_mode_regular_file():
    mode = posix_mode(0o100644, FileKind.FILE)
    assert stat.S_ISREG(mode)
    assert stat.S_IMODE(mode) == 0o644


def test_mode_directory():
    mode = posix_mode(0o040755, FileKind.FOLDER)
    assert stat.S_ISDIR(mode)
    assert stat.S_IMODE(mode) == 0o755


def test_mode_symlink():
    mode = posix_mode(0o120777, FileKind.FILE)
    assert mode == stat.S_IFLNK | 0o777


def test_mode_symlink_disabled():
    mode = posix_mode(0o120777, FileKind.FILE, disable_symlinks=True)
    assert stat.S_ISREG(mode)
    assert not stat.S_ISLNK(mode)
    assert stat.S_IMODE(mode) == 0o777


def test_finderinfo_file_layout():
    blob = serialize_finderinfo(
        FileKind.FILE,
        {
            "file_type": b"TEXT",
            "file_creator": b"ttxt",
            "finder_flags": 0x4000,
            "location_v": -1,
            "extended_finder_flags": 0x0100,
        },
    )
    assert len(blob) == 32
    assert blob[:8] == b"TEXTttxt"
    assert blob[8:10] == b"\x40\x00"
    assert blob[10:12] == b"\xff\xff"
    assert blob[24:26] == b"\x01\x00"
    assert blob[26:] == bytes(6)


def test_finderinfo_folder_layout():
    blob = serialize_finderinfo(
        FileKind.FOLDER,
        {"window_top": 1, "window_right": 2, "finder_flags": 0x4000},
    )
    assert len(blob) == 32
    assert blob[0:2] == b"\x00\x01"
    assert blob[6:8] == b"\x00\x02"
    assert blob[8:10] == b"\x40\x00"


def test_finderinfo_empty_is_zeroes():
    assert serialize_finderinfo(FileKind.FILE, {}) == bytes(32)


def test_finderinfo_unknown_field():
    with pytest.raises(ValueError):
        serialize_finderinfo(FileKind.FOLDER, {"file_type": b"TEXT"})


def test_finderinfo_bad_type_code():
    with pytest.raises(ValueError):
        serialize_finderinfo(FileKind.FILE, {"file_type": b"TOOLONG"})