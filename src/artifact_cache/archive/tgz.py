"""Gzip-compressed tar archives (``.tgz`` / ``.tar.gz``).

Compression wraps the stream around :class:`TarArchive`; everything else
is delegated to it.
"""

import gzip
import logging
import zlib
from pathlib import Path
from typing import BinaryIO, Optional, Sequence, Union

from artifact_cache.errors import ArchiveDecodeError

from .tar import UNEXPECTED_EOF, TarArchive

_DRAIN_CHUNK = 64 * 1024


class TgzArchive:
    """Packs and unpacks gzip-compressed tar streams."""

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        logger: Optional[logging.Logger] = None,
        compresslevel: int = 6,
    ):
        self.tar = TarArchive(root=root, logger=logger)
        self.compresslevel = compresslevel

    @property
    def root(self) -> Optional[Path]:
        return self.tar.root

    def pack(self, srcs: Sequence[str], out: BinaryIO) -> None:
        with gzip.GzipFile(fileobj=out, mode="wb", compresslevel=self.compresslevel) as gz:
            self.tar.pack(srcs, gz)

    def unpack(self, dst: Union[str, Path], src: BinaryIO) -> None:
        try:
            with gzip.GzipFile(fileobj=src, mode="rb") as gz:
                self.tar.unpack(dst, gz)
                # gzip only checks the trailer CRC once the member is read to its end
                while gz.read(_DRAIN_CHUNK):
                    pass
        except EOFError as e:
            raise ArchiveDecodeError(UNEXPECTED_EOF) from e
        except (gzip.BadGzipFile, zlib.error) as e:
            raise ArchiveDecodeError(str(e)) from e
