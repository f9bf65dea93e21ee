"""Pytest configuration and fixtures."""

import os
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from upload_retention.core.filesystem import InMemoryFilesystem

DAY_MS = 24 * 60 * 60 * 1000

# Keep developer UR_* settings out of the tests
for _key in [k for k in os.environ if k.startswith("UR_")]:
    del os.environ[_key]


class FakeClock:
    """Manually advanced clock returning epoch milliseconds."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable clock."""
    return FakeClock()


@pytest.fixture
def memory_fs(clock: FakeClock) -> InMemoryFilesystem:
    """Provide an in-memory filesystem with an /uploads directory."""
    fs = InMemoryFilesystem(clock=clock)
    fs.make_dirs(Path("/uploads"))
    return fs


@pytest.fixture
def uploads_dir(temp_dir: Path) -> Path:
    """Provide a real upload directory with three versions of one workbook."""
    uploads = temp_dir / "uploads"
    uploads.mkdir()

    base = 1_700_000_000_000
    versions = [
        (f"{base}_doc.xlsx", b"a" * 1000, 300),
        (f"{base + 10_000}_doc.xlsx", b"b" * 1000, 200),
        (f"{base + 20_000}_doc.xlsx", b"c" * 2000, 100),
    ]
    for name, data, seconds_ago in versions:
        path = uploads / name
        path.write_bytes(data)
        mtime = path.stat().st_mtime - seconds_ago
        os.utime(path, (mtime, mtime))

    return uploads
