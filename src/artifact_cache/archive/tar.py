"""Uncompressed tar archives.

Both directions use tarfile's stream modes (``w|`` and ``r|``), which never
seek and buffer at most one tar record, so archives can be produced straight
into an upload and extracted straight from a download.
"""

import logging
import os
import shutil
import tarfile
from pathlib import Path
from typing import BinaryIO, List, Optional, Sequence, Tuple, Union

from artifact_cache.errors import ArchiveDecodeError, ArchiveError
from artifact_cache.logging_config import get_logger

UNEXPECTED_EOF = "unexpected EOF"

# tarfile messages that all mean the stream stopped early
_TRUNCATION_MESSAGES = {"unexpected end of data", "truncated header", "empty header", "empty file"}

_MODE_MASK = 0o7777


class _StrictTarInfo(tarfile.TarInfo):
    """TarInfo that reports a stream ending inside a header as truncation.

    Stock tarfile stops iterating quietly when it hits a short, missing or
    corrupted header after the first member, which would make a cut-off or
    damaged archive look complete. A well-formed archive always ends with
    zero blocks instead, which still ends iteration normally.
    """

    @classmethod
    def fromtarfile(cls, tarfile_):
        try:
            return super().fromtarfile(tarfile_)
        except (tarfile.EmptyHeaderError, tarfile.TruncatedHeaderError):
            raise tarfile.ReadError(UNEXPECTED_EOF) from None
        except (tarfile.InvalidHeaderError, tarfile.SubsequentHeaderError) as e:
            raise tarfile.ReadError(str(e)) from None


class TarArchive:
    """Packs and unpacks plain ``.tar`` streams.

    Attributes:
        root: Directory that source paths are relative to (the process
            working directory when None)
    """

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.root = Path(root) if root is not None else None
        self.logger = logger or get_logger(__name__)

    def pack(self, srcs: Sequence[str], out: BinaryIO) -> None:
        """Write a tar archive of ``srcs`` to ``out``.

        Sources are added in the given order; directories are walked
        depth-first with each directory entry ahead of its children, and
        symlinks are stored as links rather than followed.

        Args:
            srcs: Files or directories, relative to ``root``
            out: Writable binary stream

        Raises:
            ArchiveError: If a source path cannot be stat'ed. Entries for
                earlier sources may already have been written.
        """
        with tarfile.open(fileobj=out, mode="w|", format=tarfile.PAX_FORMAT) as tar:
            for src in srcs:
                full_path = self._source_path(src)
                try:
                    os.lstat(full_path)
                except OSError as e:
                    raise ArchiveError(f"stat {src}: {_describe_os_error(e)}") from e

                arcname = os.path.normpath(src)
                self.logger.debug("Adding %s to archive as %s", full_path, arcname)
                tar.add(full_path, arcname=arcname, recursive=True)

    def unpack(self, dst: Union[str, Path], src: BinaryIO) -> None:
        """Extract a tar stream into ``dst``.

        Args:
            dst: Destination directory (created if missing)
            src: Readable binary stream

        Raises:
            ArchiveDecodeError: If the stream is truncated or corrupted
            ArchiveError: If an entry has an unsupported type or a path
                outside ``dst``
        """
        dst = os.path.abspath(dst)
        os.makedirs(dst, exist_ok=True)

        directories: List[Tuple[str, tarfile.TarInfo]] = []
        count = 0
        try:
            with tarfile.open(fileobj=src, mode="r|", tarinfo=_StrictTarInfo) as tar:
                for member in tar:
                    self._extract_member(tar, member, dst, directories)
                    count += 1
        except tarfile.TarError as e:
            message = str(e)
            if message in _TRUNCATION_MESSAGES:
                message = UNEXPECTED_EOF
            raise ArchiveDecodeError(message) from e

        # Directory modes last so read-only directories could still be filled
        for path, member in reversed(directories):
            os.chmod(path, member.mode & _MODE_MASK)
            os.utime(path, (member.mtime, member.mtime))

        self.logger.debug("Extracted %d entries into %s", count, dst)

    def _source_path(self, src: str) -> str:
        if self.root is None:
            return src
        return os.path.join(self.root, src)

    def _extract_member(
        self,
        tar: tarfile.TarFile,
        member: tarfile.TarInfo,
        dst: str,
        directories: List[Tuple[str, tarfile.TarInfo]],
    ) -> None:
        target = _safe_target(dst, member.name)

        if member.isdir():
            if os.path.islink(target) or (os.path.lexists(target) and not os.path.isdir(target)):
                os.unlink(target)
            os.makedirs(target, exist_ok=True)
            directories.append((target, member))

        elif member.issym():
            _replace(target)
            os.symlink(member.linkname, target)

        elif member.islnk():
            # Hard links become independent copies of the earlier entry
            source = _safe_target(dst, member.linkname)
            if not _is_within(os.path.realpath(dst), os.path.realpath(source)):
                raise ArchiveError(f"illegal link in archive: {member.name} -> {member.linkname}")
            _replace(target)
            shutil.copyfile(source, target)
            _apply_attributes(target, member)

        elif member.isreg():
            _replace(target)
            data = tar.extractfile(member)
            with data, open(target, "wb") as f:
                shutil.copyfileobj(data, f)
            _apply_attributes(target, member)

        else:
            raise ArchiveError(f"unsupported entry type {member.type!r} for {member.name}")


def _safe_target(dst: str, name: str) -> str:
    """Resolve an entry name under ``dst``, refusing paths that escape it.

    Symlinks already extracted are followed when checking the parent, so an
    entry cannot be written through a link that points outside ``dst``.
    """
    target = os.path.normpath(os.path.join(dst, name))
    if os.path.isabs(name) or not _is_within(dst, target):
        raise ArchiveError(f"illegal path in archive: {name}")
    if target != dst and not _is_within(os.path.realpath(dst), os.path.realpath(os.path.dirname(target))):
        raise ArchiveError(f"illegal path in archive: {name}")
    return target


def _is_within(root: str, path: str) -> bool:
    return path == root or path.startswith(root + os.sep)


def _replace(target: str) -> None:
    """Make room for a file or symlink at ``target``."""
    os.makedirs(os.path.dirname(target), exist_ok=True)
    if os.path.islink(target) or os.path.isfile(target):
        os.unlink(target)


def _apply_attributes(target: str, member: tarfile.TarInfo) -> None:
    os.chmod(target, member.mode & _MODE_MASK)
    os.utime(target, (member.mtime, member.mtime))


def _describe_os_error(e: OSError) -> str:
    if e.errno is not None:
        return os.strerror(e.errno).lower()
    return str(e)
