"""Storage contract shared by all cache backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import BinaryIO, List, Tuple

from artifact_cache.errors import InvalidKeyError


@dataclass(frozen=True)
class FileEntry:
    """A single cached object as reported by a storage listing.

    Attributes:
        path: Full storage path, ``<namespace>/<key>``
        size: Object size in bytes
        last_modified: Time the object was last written (timezone-aware)
    """

    path: str
    size: int
    last_modified: datetime


class Storage(ABC):
    """A place that cache archives can be written to and read from.

    Paths are ``<namespace>/<key>``; see :func:`split_key`.
    """

    @abstractmethod
    def get(self, path: str, dst: BinaryIO) -> None:
        """Stream the object at ``path`` into ``dst``."""

    @abstractmethod
    def put(self, path: str, src: BinaryIO) -> None:
        """Store everything read from ``src`` at ``path``.

        The namespace is created if it does not exist yet.
        """

    @abstractmethod
    def list(self, path: str) -> List[FileEntry]:
        """List objects whose path starts with ``path``. Order is unspecified."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check whether an object exists at ``path``."""

    @abstractmethod
    def delete(self, path: str) -> None:
        """Delete the object at ``path``."""


def split_key(path: str) -> Tuple[str, str]:
    """Split a storage path into (namespace, key).

    One leading slash is ignored and the namespace is lower-cased, since
    bucket names are case-insensitive while keys are not.

    Args:
        path: Storage path like ``my-bucket/cache/deps.tar``

    Returns:
        Tuple of (namespace, key)

    Raises:
        InvalidKeyError: If either part would be empty
    """
    full = path[1:] if path.startswith("/") else path
    namespace, sep, key = full.partition("/")
    if not sep or not namespace or not key:
        raise InvalidKeyError(path)
    return namespace.lower(), key
