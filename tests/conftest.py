"""Shared fixtures for artifact-cache tests."""

import io
import os
from datetime import datetime, timezone
from typing import BinaryIO, Dict, List, Optional

import pytest

from artifact_cache.storage import FileEntry, Storage, split_key


class MemoryStorage(Storage):
    """In-memory Storage used to exercise cache workflows."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.modified: Dict[str, datetime] = {}
        self.fail_delete: Dict[str, Exception] = {}
        self.fail_exists: Optional[Exception] = None
        self.fail_get: Optional[Exception] = None
        self.deleted: List[str] = []
        self.put_calls = 0

    def _normalize(self, path: str) -> str:
        namespace, key = split_key(path)
        return f"{namespace}/{key}"

    def add(self, path: str, data: bytes, last_modified: Optional[datetime] = None) -> None:
        path = self._normalize(path)
        self.objects[path] = data
        self.modified[path] = last_modified or datetime.now(timezone.utc)

    def get(self, path: str, dst: BinaryIO) -> None:
        if self.fail_get is not None:
            raise self.fail_get
        path = self._normalize(path)
        if path not in self.objects:
            raise FileNotFoundError(path)
        dst.write(self.objects[path])

    def put(self, path: str, src: BinaryIO) -> None:
        self.put_calls += 1
        data = src.read()
        self.add(path, data)

    def list(self, path: str) -> List[FileEntry]:
        prefix = self._normalize(path)
        return [
            FileEntry(path=name, size=len(data), last_modified=self.modified[name])
            for name, data in self.objects.items()
            if name.startswith(prefix)
        ]

    def exists(self, path: str) -> bool:
        if self.fail_exists is not None:
            raise self.fail_exists
        return self._normalize(path) in self.objects

    def delete(self, path: str) -> None:
        if path in self.fail_delete:
            raise self.fail_delete[path]
        path = self._normalize(path)
        del self.objects[path]
        del self.modified[path]
        self.deleted.append(path)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep the host's artifact-cache settings out of tests."""
    for name in list(os.environ):
        if name.startswith("ARTIFACT_CACHE_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))


@pytest.fixture
def memory_storage():
    """Empty in-memory storage."""
    return MemoryStorage()


@pytest.fixture
def mount_tree(tmp_path):
    """Working directory with a small tree to cache.

    Layout::

        work/
            deps/
                a.txt
                nested/b.bin
                link -> a.txt
            lockfile
    """
    work = tmp_path / "work"
    deps = work / "deps"
    (deps / "nested").mkdir(parents=True)
    (deps / "a.txt").write_text("hello from a\n")
    (deps / "nested" / "b.bin").write_bytes(bytes(range(256)) * 40)
    os.symlink("a.txt", deps / "link")
    (work / "lockfile").write_text("requests==2.31.0\n")
    return work


@pytest.fixture
def tar_bytes(mount_tree):
    """Uncompressed archive of ``deps`` packed from the mount tree."""
    from artifact_cache.archive import TarArchive

    out = io.BytesIO()
    TarArchive(root=mount_tree).pack(["deps"], out)
    return out.getvalue()
