[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "hfskit"
version = "0.1.0"
description = "Userspace building blocks for reading HFS+ volumes: block-caching I/O, path record cache, name conversion and decmpfs decompression"
requires-python = ">=3.10"
dependencies = [
    "sortedcontainers",
]
keywords = ["hfs", "hfsplus", "filesystem", "decmpfs", "block cache"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.setuptools.packages.find]
include = ["hfskit*"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
