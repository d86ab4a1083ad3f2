"""Streaming archive formats for cached build artifacts."""

import logging
from pathlib import Path
from typing import Optional, Union

from artifact_cache.errors import ArchiveFormatError

from .base import Archive
from .tar import TarArchive
from .tgz import TgzArchive

TAR_SUFFIXES = (".tar",)
TGZ_SUFFIXES = (".tgz", ".tar.gz")


def from_filename(
    name: str,
    root: Optional[Union[str, Path]] = None,
    logger: Optional[logging.Logger] = None,
) -> Archive:
    """Pick the archive format for a cache file name.

    Args:
        name: Cache file name or key, e.g. ``deps.tar.gz``
        root: Directory that mounts are relative to
        logger: Logger handed to the archive

    Returns:
        TarArchive for ``.tar``, TgzArchive for ``.tgz`` and ``.tar.gz``

    Raises:
        ArchiveFormatError: If the suffix is not recognized
    """
    if name.endswith(TAR_SUFFIXES):
        return TarArchive(root=root, logger=logger)

    if name.endswith(TGZ_SUFFIXES):
        return TgzArchive(root=root, logger=logger)

    raise ArchiveFormatError(f"unknown file format for archive {name}")


__all__ = ["Archive", "TarArchive", "TgzArchive", "from_filename"]
