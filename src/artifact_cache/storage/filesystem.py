"""Local-directory storage backend.

Objects live at ``<root>/<namespace>/<key>``. Useful for runners with a
shared or persistent volume, and for tests.
"""

import logging
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from rich.filesize import decimal

from artifact_cache.logging_config import get_logger

from .base import FileEntry, Storage, split_key

TEMP_PREFIX = ".artifact-cache-tmp-"


class FilesystemStorage(Storage):
    """Storage backed by a local directory tree.

    Attributes:
        root: Directory holding one sub-directory per namespace
    """

    def __init__(self, root: Union[str, Path], logger: Optional[logging.Logger] = None):
        self.root = Path(root)
        self.logger = logger or get_logger(__name__)

    def _object_path(self, path: str) -> Path:
        namespace, key = split_key(path)
        return self.root / namespace / key

    def get(self, path: str, dst: BinaryIO) -> None:
        object_path = self._object_path(path)
        self.logger.info("Retrieving file at %s", object_path)

        with open(object_path, "rb") as f:
            shutil.copyfileobj(f, dst)

        self.logger.info("Read %s from %s", decimal(object_path.stat().st_size), object_path)

    def put(self, path: str, src: BinaryIO) -> None:
        """Store ``src`` at ``path``.

        Data goes to a temporary file that is renamed into place only after
        ``src`` is fully read, so a failed stream leaves no partial object.
        """
        object_path = self._object_path(path)
        object_path.parent.mkdir(parents=True, exist_ok=True)
        self.logger.info("Putting file at %s", object_path)

        fd, tmp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, dir=object_path.parent)
        try:
            with os.fdopen(fd, "wb") as f:
                shutil.copyfileobj(src, f)
            os.replace(tmp_name, object_path)
        except BaseException:
            os.unlink(tmp_name)
            raise

        self.logger.info("Wrote %s to %s", decimal(object_path.stat().st_size), object_path)

    def list(self, path: str) -> List[FileEntry]:
        namespace, prefix = split_key(path)
        base = self.root / namespace
        self.logger.info("Retrieving objects in %s at %s", base, prefix)

        entries = []
        if not base.is_dir():
            return entries

        for dirpath, _dirnames, filenames in os.walk(base):
            for filename in filenames:
                if filename.startswith(TEMP_PREFIX):
                    continue
                file_path = Path(dirpath) / filename
                key = file_path.relative_to(base).as_posix()
                if not key.startswith(prefix):
                    continue
                stat = file_path.stat()
                entry = FileEntry(
                    path=f"{namespace}/{key}",
                    size=stat.st_size,
                    last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
                self.logger.debug("Found object %s: Size=%d LastModified=%s", entry.path, entry.size, entry.last_modified)
                entries.append(entry)

        self.logger.info("Found %d objects in %s at %s", len(entries), base, prefix)
        return entries

    def exists(self, path: str) -> bool:
        return self._object_path(path).is_file()

    def delete(self, path: str) -> None:
        object_path = self._object_path(path)
        self.logger.info("Deleting file at %s", object_path)
        object_path.unlink()
