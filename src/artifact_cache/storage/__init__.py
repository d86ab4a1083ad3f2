"""Storage backends for cache archives."""

import logging
from typing import Optional

from artifact_cache.config import CacheConfig
from artifact_cache.errors import ConfigError

from .base import FileEntry, Storage, split_key
from .filesystem import FilesystemStorage
from .s3 import S3Storage

BACKENDS = ("s3", "filesystem")


def create_storage(config: CacheConfig, logger: Optional[logging.Logger] = None) -> Storage:
    """Build the storage backend selected in the configuration.

    Args:
        config: Cache configuration
        logger: Logger handed to the backend

    Returns:
        Storage instance

    Raises:
        ConfigError: If the backend name is unknown
    """
    if config.storage_backend == "s3":
        return S3Storage(
            endpoint_url=config.s3_endpoint_url,
            region=config.s3_region,
            ca_bundle=config.s3_ca_bundle,
            path_style=config.s3_path_style,
            accelerate=config.s3_accelerate,
            logger=logger,
        )

    if config.storage_backend == "filesystem":
        return FilesystemStorage(config.storage_root, logger=logger)

    raise ConfigError(
        f"Unknown storage backend {config.storage_backend!r}, expected one of {', '.join(BACKENDS)}"
    )


__all__ = [
    "FileEntry",
    "Storage",
    "split_key",
    "FilesystemStorage",
    "S3Storage",
    "create_storage",
]
