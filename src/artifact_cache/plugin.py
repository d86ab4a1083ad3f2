"""One cache operation as a CI step runs it.

The plugin renders the configured key templates, picks the archive format
from the file name and runs the selected mode.
"""

import logging
import posixpath
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from artifact_cache.archive import from_filename
from artifact_cache.cache import Cache, Flusher, expired_before
from artifact_cache.cachekey import CacheKeyResolver
from artifact_cache.config import DEFAULT_FILENAME, DEFAULT_FLUSH_AGE, CacheConfig
from artifact_cache.errors import ConfigError
from artifact_cache.logging_config import get_logger
from artifact_cache.storage import FileEntry, Storage


class CacheMode(str, Enum):
    """Operation performed by a plugin run."""

    REBUILD = "rebuild"
    RESTORE = "restore"
    FLUSH = "flush"


@dataclass
class PluginResult:
    """Outcome of a plugin run.

    Attributes:
        mode: Mode that ran
        key: Rendered storage path of the archive
        skipped: Rebuild was skipped because the archive already exists
        restored_from: Key the archive was restored from
        flushed: Entries deleted by a flush
    """

    mode: CacheMode
    key: str
    skipped: bool = False
    restored_from: Optional[str] = None
    flushed: List[FileEntry] = field(default_factory=list)


@dataclass
class CachePlugin:
    """Cache settings for one run plus the storage they apply to.

    ``path``, ``filename``, ``fallback_path`` and ``flush_path`` are cache
    key templates (see :mod:`artifact_cache.cachekey`).
    """

    storage: Storage
    filename: str = DEFAULT_FILENAME
    path: str = ""
    fallback_path: str = ""
    flush_path: str = ""
    flush_age: int = DEFAULT_FLUSH_AGE
    mount: List[str] = field(default_factory=list)
    root: Optional[Path] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    logger: Optional[logging.Logger] = None

    @classmethod
    def from_config(
        cls,
        config: CacheConfig,
        storage: Storage,
        root: Optional[Path] = None,
        metadata: Optional[Dict[str, Any]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "CachePlugin":
        """Create a plugin from the cache section of a configuration."""
        return cls(
            storage=storage,
            filename=config.filename,
            path=config.path,
            fallback_path=config.fallback_path,
            flush_path=config.flush_path,
            flush_age=config.flush_age,
            mount=list(config.mount),
            root=root,
            metadata=dict(metadata or {}),
            logger=logger,
        )

    def exec(self, mode: CacheMode) -> PluginResult:
        """Run the plugin in the given mode.

        Args:
            mode: Operation to perform

        Returns:
            PluginResult describing what happened

        Raises:
            CacheKeyError: If a template cannot be rendered (before any I/O)
            ArchiveFormatError: If the file name has no known archive suffix
            ConfigError: If required settings are missing
            CacheMissError: On restore when no archive exists
            FlushError: If some expired entries could not be deleted
        """
        mode = CacheMode(mode)
        logger = self.logger or get_logger(__name__)
        resolver = CacheKeyResolver(root=self.root, logger=logger)

        if mode is CacheMode.FLUSH:
            if not (self.flush_path or self.path):
                raise ConfigError("No flush path configured")
        elif not self.path:
            raise ConfigError("No cache path configured")

        use_checksum = resolver.uses_checksum(self.path) or resolver.uses_checksum(self.filename)

        path = resolver.render(self.path, self.metadata)
        filename = resolver.render(self.filename, self.metadata)
        fallback_path = resolver.render(self.fallback_path, self.metadata)
        flush_path = resolver.render(self.flush_path, self.metadata) or path

        archive = from_filename(filename, root=self.root, logger=logger)
        cache = Cache(self.storage, archive, root=self.root, logger=logger)

        key = posixpath.join(path, filename)
        fallback_key = posixpath.join(fallback_path, filename) if fallback_path else ""

        if mode is CacheMode.REBUILD:
            if not self.mount:
                raise ConfigError("No mounts configured for rebuild")
            logger.info("Rebuilding cache at %s", key)
            rebuilt = cache.rebuild(self.mount, key, use_checksum=use_checksum)
            if rebuilt:
                logger.info("Cache rebuilt")
            return PluginResult(mode=mode, key=key, skipped=not rebuilt)

        if mode is CacheMode.RESTORE:
            logger.info("Restoring cache at %s", key)
            restored_from = cache.restore(key, fallback_key)
            logger.info("Cache restored")
            return PluginResult(mode=mode, key=key, restored_from=restored_from)

        logger.info("Flushing cache items older than %d days at %s", self.flush_age, flush_path)
        flusher = Flusher(self.storage, expired_before(self.flush_age), logger=logger)
        flushed = flusher.flush(flush_path)
        logger.info("Cache flushed")
        return PluginResult(mode=mode, key=key, flushed=flushed)
