"""Artifact Cache - streamed build-artifact caching on object storage.

This package provides tools for:
- Deriving deterministic cache keys from templates
- Packing build directories into streamed tar/tgz archives
- Storing, restoring and expiring archives in S3-compatible or local storage
"""

__version__ = "0.1.0"
