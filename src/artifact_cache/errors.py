"""Exception hierarchy for artifact-cache.

Storage backends do not wrap their own failures: botocore ``ClientError``
and ``OSError`` reach the caller unchanged.
"""

from typing import Dict, List, Optional


class CacheError(Exception):
    """Base class for all artifact-cache errors."""

    pass


class ConfigError(CacheError):
    """Invalid or incomplete configuration."""

    pass


class CacheKeyError(CacheError):
    """A cache key template could not be parsed or rendered."""

    pass


class ArchiveError(CacheError):
    """An archive could not be packed or unpacked."""

    pass


class ArchiveFormatError(ArchiveError):
    """No archive format matches the requested file name."""

    pass


class ArchiveDecodeError(ArchiveError):
    """The archive stream is truncated or corrupted."""

    pass


class InvalidKeyError(CacheError):
    """A storage path does not split into a namespace and an object key."""

    def __init__(self, path: str):
        super().__init__(f"Invalid path {path}")
        self.path = path


class CacheMissError(CacheError):
    """None of the requested cache keys exist in storage."""

    def __init__(self, keys: List[str]):
        super().__init__(f"No cache found at {', '.join(keys)}")
        self.keys = keys


class FlushError(CacheError):
    """One or more expired entries could not be deleted.

    Attributes:
        errors: Mapping of storage path to the exception raised deleting it
        deleted: Entries that were deleted successfully
    """

    def __init__(self, errors: Dict[str, Exception], deleted: Optional[list] = None):
        details = "; ".join(f"{path}: {exc}" for path, exc in errors.items())
        super().__init__(f"Failed to delete {len(errors)} cache item(s): {details}")
        self.errors = errors
        self.deleted = deleted or []
