import os
import logging
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from s3backup.config import BackupConfig
from s3backup.errors import TransferError
from s3backup.storage import ObjectStore


FIXED_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeObjectStore(ObjectStore):
    """In-memory object store that records every call made to it."""

    def __init__(self, objects=None, fail_list=False, fail_put=False):
        self.objects = dict(objects or {})
        self.fail_list = fail_list
        self.fail_put = fail_put
        self.calls = []
        self.puts = []
        self.closed = False

    def list(self, prefix):
        self.calls.append(("list", prefix))
        if self.fail_list:
            raise TransferError(f"Simulated listing failure for {prefix}")
        return sorted(key for key in self.objects if key.startswith(prefix))

    def put(self, local_path, key):
        self.calls.append(("put", key))
        if self.fail_put:
            raise TransferError(f"Simulated upload failure for {key}")
        self.objects[key] = Path(local_path).read_bytes()
        self.puts.append(key)

    def get(self, key, local_path):
        self.calls.append(("get", key))
        if key not in self.objects:
            raise TransferError(f"No such object: {key}")
        Path(local_path).write_bytes(self.objects[key])

    def close(self):
        self.closed = True


def create_tree(directory, files):
    """Create ``files`` (relative path -> str or bytes) under ``directory``."""
    for relative_path, content in files.items():
        path = Path(directory) / relative_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            content = content.encode("utf-8")
        path.write_bytes(content)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def source_dir(temp_dir):
    """Create a source directory with test files."""
    source_dir = temp_dir / "source"
    create_tree(source_dir, {
        "a.txt": "x",
        "b.txt": "y",
        "nested/deeper/c.bin": os.urandom(1024),
    })
    return source_dir


@pytest.fixture
def work_root(temp_dir, monkeypatch):
    """Point the temporary-file machinery at a directory the test can inspect."""
    work_root = temp_dir / "tmp"
    work_root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(work_root))
    return work_root


@pytest.fixture
def fake_store():
    return FakeObjectStore()


@pytest.fixture
def config(source_dir):
    return BackupConfig(
        bucket="test-bucket",
        source_dir=str(source_dir),
        subpath="backups/worlds",
        archive_prefix="worlds-",
    )


@pytest.fixture
def restore_logging():
    """Undo any handlers the command line installs on the root logger."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
