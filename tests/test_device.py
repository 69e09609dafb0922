import errno

import pytest

from hfskit.device import DATA_FORK, RSRC_FORK, Device, VolumeConfig

PATTERN = bytes(range(256)) * 16  # 4096 bytes


@pytest.fixture
def image(tmp_path):
    path = tmp_path / "volume.img"
    path.write_bytes(PATTERN)
    return str(path)


def test_config_defaults():
    cfg = VolumeConfig()
    assert cfg.cache_size == 1024
    assert cfg.ublio_items == 64
    assert cfg.ublio_grace == 32
    assert cfg.default_file_mode == 0o755
    assert cfg.default_dir_mode == 0o777


def test_regular_file_has_no_block_size(image):
    with Device(image) as dev:
        assert dev.block_size == 0
        assert dev.default_fork == DATA_FORK


@pytest.mark.parametrize("noublio", [False, True])
@pytest.mark.parametrize("length,offset", [(1, 0), (100, 3), (512, 512), (1000, 700), (4096, 0)])
def test_read_matches_file(image, noublio, length, offset):
    with Device(image, VolumeConfig(noublio=noublio)) as dev:
        assert dev.read(length, offset) == PATTERN[offset : offset + length]


@pytest.mark.parametrize("blksize", [512, 1024])
@pytest.mark.parametrize("length,offset", [(10, 5), (600, 100), (2048, 1024), (1500, 1)])
def test_aligned_reads_without_cache(image, blksize, length, offset):
    cfg = VolumeConfig(noublio=True, blksize=blksize)
    with Device(image, cfg) as dev:
        assert dev.block_size == blksize
        assert dev.read(length, offset) == PATTERN[offset : offset + length]


def test_volume_offset_is_applied(image):
    with Device(image, offset=1024) as dev:
        assert dev.read(50, 10) == PATTERN[1034:1084]


def test_repeated_cached_reads_are_consistent(image):
    with Device(image, VolumeConfig(ublio_items=2, ublio_grace=0)) as dev:
        assert dev.uses_block_cache
        reads = [dev.read(300, off) for off in (0, 200, 3000, 0, 200)]
    assert reads[0] == reads[3] == PATTERN[0:300]
    assert reads[1] == reads[4] == PATTERN[200:500]
    assert reads[2] == PATTERN[3000:3300]


@pytest.mark.parametrize("noublio", [False, True])
def test_read_beyond_end_raises(image, noublio):
    with Device(image, VolumeConfig(noublio=noublio)) as dev:
        with pytest.raises(OSError) as info:
            dev.read(100, len(PATTERN) - 10)
    assert info.value.errno == errno.EINVAL


def test_zero_length_read(image):
    with Device(image) as dev:
        assert dev.read(0, 123) == b""


def test_negative_arguments_rejected(image):
    with Device(image) as dev:
        with pytest.raises(ValueError):
            dev.read(-1, 0)
        with pytest.raises(ValueError):
            dev.read(1, -1)


def test_modes_are_masked(image):
    cfg = VolumeConfig(default_file_mode=0o104644, default_dir_mode=0o40755)
    with Device(image, cfg) as dev:
        assert dev.default_file_mode == 0o644
        assert dev.default_dir_mode == 0o755


def test_rsrc_only_selects_resource_fork(image):
    with Device(image, VolumeConfig(rsrc_only=True, rsrc_suff="/rsrc")) as dev:
        assert dev.default_fork == RSRC_FORK
        assert dev.rsrc_suffix == "/rsrc"


def test_uid_out_of_range(image):
    with pytest.raises(OSError) as info:
        Device(image, VolumeConfig(default_uid=1 << 40))
    assert info.value.errno == errno.ERANGE


def test_gid_out_of_range(image):
    with pytest.raises(OSError) as info:
        Device(image, VolumeConfig(default_gid=-1))
    assert info.value.errno == errno.ERANGE


def test_cache_disabled_with_zero_size(image):
    with Device(image, VolumeConfig(cache_size=0)) as dev:
        assert dev.cache is None


def test_cache_has_configured_length(image):
    with Device(image, VolumeConfig(cache_size=8)) as dev:
        assert dev.cache.length == 8
        dev.cache.add("/a", "record")
        assert dev.cache.lookup("/a") == "record"


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        Device(str(tmp_path / "absent.img"))


def test_close_is_idempotent_and_blocks_reads(image):
    dev = Device(image)
    dev.close()
    dev.close()
    assert dev.closed
    with pytest.raises(ValueError):
        dev.read(1, 0)


def test_context_manager_closes(image):
    with Device(image) as dev:
        assert dev.read(4, 0) == PATTERN[:4]
    assert dev.closed


def test_negative_volume_offset_rejected(image):
    with pytest.raises(ValueError):
        Device(image, offset=-1)