"""
Shared fixtures: isolated settings, open storage and a registered user per test.
"""

from pathlib import Path

import pytest

from csvhub.config import Settings
from csvhub.storage.context import open_storage


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        data_dir=tmp_path / "data",
        upload_dir=tmp_path / "uploads",
        flush_delay_seconds=0.05,
        load_wait_seconds=0.05,
        record_batch_size=2,
        streamed_batch_size=2,
        filter_scan_batch_size=4,
        secret_key="test-secret",
    )


@pytest.fixture
async def storage(settings: Settings):
    async with open_storage(settings) as ctx:
        yield ctx


@pytest.fixture
async def user(storage):
    return await storage.record_store.create_user("alice", "not-a-real-hash")


@pytest.fixture
def write_csv(tmp_path: Path):
    """Write CSV text (or bytes) to a file and return its path."""

    def _write(content, name: str = "data.csv") -> Path:
        path = tmp_path / name
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8", newline="")
        return path

    return _write


class FakeUpload:
    """Minimal stand-in for FastAPI's UploadFile."""

    def __init__(self, filename, data: bytes):
        self.filename = filename
        self._data = data
        self._pos = 0

    async def read(self, size: int = -1) -> bytes:
        if size < 0:
            size = len(self._data) - self._pos
        chunk = self._data[self._pos:self._pos + size]
        self._pos += len(chunk)
        return chunk


@pytest.fixture
def make_upload():
    return FakeUpload
