"""Cache key templates.

Cache paths are Jinja2 templates rendered once per operation, for example::

    build-cache/{{ branch }}/{{ os() }}-{{ arch() }}/{{ checksum('go.sum') }}

Besides metadata variables, templates can call a fixed set of functions:

- ``checksum(path)``: MD5 of the file's bytes. Reads the file. Renders to an
  empty string (and logs a warning) when the file cannot be read, so a
  missing lockfile never aborts an otherwise valid key.
- ``epoch()``: current Unix time in seconds. Reads the clock.
- ``arch()``: machine architecture, e.g. ``x86_64``.
- ``os()``: operating system name, e.g. ``linux``.
"""

import logging
import os
import platform
import time
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Union

from jinja2 import Environment, StrictUndefined, TemplateError, meta

from artifact_cache.errors import CacheKeyError
from artifact_cache.hasher import compute_file_checksum
from artifact_cache.logging_config import get_logger


class TemplateFunction(str, Enum):
    """Functions callable from a cache key template."""

    CHECKSUM = "checksum"
    EPOCH = "epoch"
    ARCH = "arch"
    OS = "os"


class CacheKeyResolver:
    """Renders cache key templates into storage paths.

    Attributes:
        root: Directory relative ``checksum`` paths are resolved against
            (the process working directory when None)
    """

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the resolver.

        Args:
            root: Base directory for relative ``checksum`` paths
            logger: Logger for degraded checksum warnings
            clock: Source of the current Unix time for ``epoch``
        """
        self.root = Path(root) if root is not None else None
        self.logger = logger or get_logger(__name__)
        self._clock = clock

        self.env = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        self.env.globals.update(self.functions())

    def functions(self) -> Dict[str, Callable[..., str]]:
        """Lookup table of template function name to implementation."""
        return {
            TemplateFunction.CHECKSUM.value: self.checksum,
            TemplateFunction.EPOCH.value: self.epoch,
            TemplateFunction.ARCH.value: self.current_arch,
            TemplateFunction.OS.value: self.current_os,
        }

    def render(self, template: str, metadata: Optional[Mapping[str, Any]] = None) -> str:
        """Render a cache key template.

        Args:
            template: Template string
            metadata: Variables available to the template

        Returns:
            Rendered storage path

        Raises:
            CacheKeyError: If the template is malformed or references an
                undefined variable
        """
        try:
            return self.env.from_string(template).render(dict(metadata or {}))
        except (TemplateError, TypeError) as e:
            raise CacheKeyError(f"Invalid cache key template {template!r}: {e}") from e

    def uses_checksum(self, template: str) -> bool:
        """Check whether a template calls ``checksum``.

        Raises:
            CacheKeyError: If the template is malformed
        """
        try:
            names = meta.find_undeclared_variables(self.env.parse(template))
        except TemplateError as e:
            raise CacheKeyError(f"Invalid cache key template {template!r}: {e}") from e
        return TemplateFunction.CHECKSUM.value in names

    def checksum(self, path: str) -> str:
        """Hex digest of a file's content, or "" if it cannot be read."""
        try:
            base = self.root if self.root is not None else Path.cwd()
            target = os.path.abspath(os.path.normpath(os.path.join(base, path)))
            return compute_file_checksum(target)
        except (OSError, ValueError) as e:
            self.logger.warning("cache key template/checksum could not read %s: %s", path, e)
            return ""

    def epoch(self) -> str:
        return str(int(self._clock()))

    def current_arch(self) -> str:
        return platform.machine().lower()

    def current_os(self) -> str:
        return platform.system().lower()
