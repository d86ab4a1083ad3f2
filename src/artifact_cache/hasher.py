"""Content hashing for cache-key checksums.

Digests only need to change when file content changes, so MD5 is used for
speed; it is not relied on for security.
"""

import hashlib
from pathlib import Path
from typing import Union

CHUNK_SIZE = 8192


def compute_file_checksum(file_path: Union[str, Path]) -> str:
    """Compute the MD5 hex digest of a file.

    Reads in 8 KiB chunks so arbitrarily large files are handled without
    loading the entire file into memory.

    Args:
        file_path: Path to the file to hash

    Returns:
        MD5 hex digest (32 characters)

    Raises:
        FileNotFoundError: If the file does not exist
        IsADirectoryError: If the path is a directory
    """
    md5 = hashlib.md5(usedforsecurity=False)
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            md5.update(chunk)
    return md5.hexdigest()
