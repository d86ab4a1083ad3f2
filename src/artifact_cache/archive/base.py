"""Archive codec interface."""

from pathlib import Path
from typing import BinaryIO, Protocol, Sequence, Union


class Archive(Protocol):
    """Packs a set of paths into a byte stream and unpacks it again.

    Implementations only ever call ``write`` on the output and ``read`` on
    the input, so both ends may be pipes or network streams.
    """

    def pack(self, srcs: Sequence[str], out: BinaryIO) -> None:
        """Write an archive of ``srcs`` (in order) to ``out``."""
        ...

    def unpack(self, dst: Union[str, Path], src: BinaryIO) -> None:
        """Extract the archive read from ``src`` into directory ``dst``."""
        ...
