"""Cache workflows: rebuild, restore and flush.

Rebuild packs the mounts straight into an upload and restore extracts
straight from a download; in both cases the archive side and the storage
side run concurrently across a bounded pipe, and the operation only
succeeds when both sides do.
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

from artifact_cache.archive import Archive
from artifact_cache.errors import CacheMissError, FlushError
from artifact_cache.logging_config import get_logger
from artifact_cache.pipe import DEFAULT_PIPE_CAPACITY, run_pipeline
from artifact_cache.storage import FileEntry, Storage

DirtyFunc = Callable[[FileEntry], bool]


class Cache:
    """Moves archives of local paths in and out of storage.

    Attributes:
        storage: Backend archives are stored in
        archive: Archive format used for packing and unpacking
        root: Directory archives are restored into (the process working
            directory when None)
    """

    def __init__(
        self,
        storage: Storage,
        archive: Archive,
        root: Optional[Union[str, Path]] = None,
        logger: Optional[logging.Logger] = None,
        pipe_capacity: int = DEFAULT_PIPE_CAPACITY,
    ):
        self.storage = storage
        self.archive = archive
        self.root = Path(root) if root is not None else Path.cwd()
        self.logger = logger or get_logger(__name__)
        self.pipe_capacity = pipe_capacity

    def rebuild(self, mounts: Sequence[str], key: str, use_checksum: bool = False) -> bool:
        """Pack ``mounts`` and store the archive at ``key``.

        Args:
            mounts: Paths to archive, in order
            key: Storage path of the archive
            use_checksum: Skip the rebuild when ``key`` already exists. Only
                meaningful when the key embeds a content checksum.

        Returns:
            True if an archive was uploaded, False if the rebuild was skipped
        """
        if use_checksum and self._already_cached(key):
            self.logger.info("Cache skip, object exists at %s", key)
            return False

        mounts = list(mounts)
        self.logger.info("Packing %d mount(s) into %s", len(mounts), key)
        run_pipeline(
            lambda writer: self.archive.pack(mounts, writer),
            lambda reader: self.storage.put(key, reader),
            capacity=self.pipe_capacity,
            logger=self.logger,
        )
        return True

    def restore(self, key: str, fallback_key: str = "") -> str:
        """Fetch an archive and extract it into ``root``.

        ``key`` is tried first; ``fallback_key`` only when ``key`` does not
        exist. Errors while downloading or extracting are not retried with
        the fallback.

        Args:
            key: Storage path of the archive
            fallback_key: Storage path used when ``key`` is missing

        Returns:
            The key that was restored

        Raises:
            CacheMissError: If none of the keys exist
        """
        candidates = [key]
        if fallback_key and fallback_key != key:
            candidates.append(fallback_key)

        for candidate in candidates:
            if not self.storage.exists(candidate):
                self.logger.info("No cache found at %s", candidate)
                continue

            self.logger.info("Extracting %s into %s", candidate, self.root)
            run_pipeline(
                lambda writer: self.storage.get(candidate, writer),
                lambda reader: self.archive.unpack(self.root, reader),
                capacity=self.pipe_capacity,
                logger=self.logger,
            )
            return candidate

        raise CacheMissError(candidates)

    def _already_cached(self, key: str) -> bool:
        try:
            return self.storage.exists(key)
        except Exception as e:
            self.logger.warning("Could not check for existing cache at %s, rebuilding: %s", key, e)
            return False


class Flusher:
    """Deletes cache items selected by a predicate.

    Attributes:
        storage: Backend to flush
        is_expired: Predicate deciding which entries to delete
    """

    def __init__(
        self,
        storage: Storage,
        is_expired: DirtyFunc,
        logger: Optional[logging.Logger] = None,
    ):
        self.storage = storage
        self.is_expired = is_expired
        self.logger = logger or get_logger(__name__)

    def flush(self, path: str) -> List[FileEntry]:
        """Delete every expired entry under ``path``.

        A failed delete does not stop the flush; all failures are reported
        together once every entry has been visited.

        Args:
            path: Storage prefix to flush

        Returns:
            Entries that were deleted

        Raises:
            FlushError: If any delete failed
        """
        self.logger.info("Cleaning files from %s", path)

        entries = self.storage.list(path)
        deleted: List[FileEntry] = []
        errors: Dict[str, Exception] = {}

        for entry in entries:
            if not self.is_expired(entry):
                continue

            self.logger.debug("Deleting file %s", entry.path)
            try:
                self.storage.delete(entry.path)
            except Exception as e:
                self.logger.warning("Failed to delete %s: %s", entry.path, e)
                errors[entry.path] = e
                continue
            deleted.append(entry)

        self.logger.info("Deleted %d of %d cache item(s) under %s", len(deleted), len(entries), path)

        if errors:
            raise FlushError(errors, deleted)
        return deleted


def expired_before(
    age_days: int,
    clock: Optional[Callable[[], datetime]] = None,
) -> DirtyFunc:
    """Predicate matching entries last modified more than ``age_days`` ago.

    Args:
        age_days: Age threshold in days
        clock: Returns the current time (defaults to UTC now)

    Returns:
        Function returning True for expired entries
    """
    now = clock or (lambda: datetime.now(timezone.utc))

    def is_expired(entry: FileEntry) -> bool:
        return entry.last_modified < now() - timedelta(days=age_days)

    return is_expired
