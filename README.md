# hfskit

Building blocks for reading HFS+ (Mac OS Extended) volumes from userspace.

## Modules

- `hfskit.blockcache`: `BlockCache` and `CacheEntry`. This is the bookkeeping for
  a fixed pool of block-sized buffers. The pool is kept ordered by device offset
  and by last access time. An entry used within the last `grace` ticks is not
  picked for recycling.
- `hfskit.ublio`: `Ublio`, configured with `UblioParams`. It does block-aligned,
  cached `pread(count, offset)` and `pwrite(data, offset)` over either a file
  descriptor (`fd`) or a pair of `pread`/`pwrite` callables. Unless `sync_io` is
  set, writes stay in the cache as dirty blocks until `fsync()` or `close()`.
  `Ublio` is also a context manager. `api_version()` returns the interface
  version encoded as `100 * major + minor`.
- `hfskit.cache`: `RecordCache`, which holds the last `length` path lookups and
  their records. It offers `lookup`, `lookup_parents`, `add`, `clear` and
  `len()`. `lookup_parents` returns `(prefix_length, record)` for the deepest
  cached ancestor, or `(0, None)`. Records must not be `None`.
- `hfskit.convert`: conversions between HFS+ and POSIX values.
  - `hfs_time_to_epoch` converts timestamps.
  - `unistr_to_utf8` and `utf8_to_unistr` convert between strings and UTF-16
    code units.
  - `pathname_to_unix` and `pathname_from_unix` swap `/` and `:`. The second
    also applies the HFS+ variant of NFD through `hfs_nfd`.
  - `posix_mode` maps a BSD mode to `st_mode` for a `FileKind`, using the
    defaults when the type bits are unset.
  - `serialize_finderinfo` builds the 32-byte big-endian Finder info.
- `hfskit.features`: `get_lib_features()` returns a `LibFeatures` flag set.
  `ublio_version()`, `unicode_version()` and `zlib_version()` report versions.
- `hfskit.device`: `Device(path, config=None, offset=0)` opens a file or device
  read-only using the settings in `VolumeConfig`.
  - `read(length, offset)` returns exactly `length` bytes. It reads through the
    block cache unless `noublio` is set. Otherwise it reads directly, widened to
    whole blocks when the device has a block size.
  - It raises `OSError` on a read past the end.
  - `Device` is a context manager.
- `hfskit.decmpfs`: HFS+ transparent compression.
  - `parse_record` reads the 16-byte `fpmc` header into a `DecmpfsHeader`.
  - `compression_of`, `is_inline`, `compression_supported`, `decompress` and
    `buffer_size` cover the individual steps.
  - `DecmpfsContext(data, rsrc_reader=None).read(size, offset)` returns
    uncompressed contents of inline, sparse or resource-fork (chunked) data.
  - Errors are raised as `DecmpfsError`, a subclass of `OSError`.

## Installing

```
pip install .
```

Run the tests with:

```
pip install .[test]
pytest
```

## Example

```python
import zlib

from hfskit.decmpfs import DecmpfsContext
from hfskit.device import Device, VolumeConfig

with Device("volume.img", VolumeConfig(), 0) as dev:
    volume_header = dev.read(512, 1024)

# inline zlib-compressed file (type 3) holding b"hello"
attr = b"fpmc" + bytes([3, 0, 0, 0]) + (5).to_bytes(8, "little") + zlib.compress(b"hello")
print(DecmpfsContext(attr).read(5, 0))  # b'hello'
```

## What it does not do

- The package does not parse the HFS+ volume header, catalog or attribute B-trees.
  It cannot find files or extended attributes by itself. The decmpfs attribute
  bytes and a resource-fork reader must come from the caller.
- It provides no command-line tool and no mount support.
- It does not decompress LZVN or LZFSE data. `compression_supported` reports
  those types as unsupported, and `decompress` raises `DecmpfsError` for them
  unless the data is stored uncompressed.