"""Configuration management for artifact-cache.

Handles loading, saving, and validating TOML configuration stored in:
- macOS: ~/.config/artifact-cache/config.toml
- Linux: ~/.config/artifact-cache/config.toml (XDG_CONFIG_HOME)
- Windows: %APPDATA%\\artifact-cache\\config.toml

Every value can be overridden with an ``ARTIFACT_CACHE_<ATTRIBUTE>``
environment variable (e.g. ``ARTIFACT_CACHE_S3_REGION``), which is how CI
plugins usually receive settings. Lists such as ``ARTIFACT_CACHE_MOUNT``
are comma-separated.
"""

import os
import sys
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import tomli_w

ENV_PREFIX = "ARTIFACT_CACHE"

DEFAULT_FILENAME = "archive.tar"
DEFAULT_FLUSH_AGE = 30

# (section, key) in the TOML file for every config attribute
FIELD_SECTIONS = {
    "path": ("cache", "path"),
    "filename": ("cache", "filename"),
    "fallback_path": ("cache", "fallback_path"),
    "flush_path": ("cache", "flush_path"),
    "flush_age": ("cache", "flush_age"),
    "mount": ("cache", "mount"),
    "storage_backend": ("storage", "backend"),
    "storage_root": ("storage", "root"),
    "s3_endpoint_url": ("s3", "endpoint_url"),
    "s3_region": ("s3", "region"),
    "s3_ca_bundle": ("s3", "ca_bundle"),
    "s3_path_style": ("s3", "path_style"),
    "s3_accelerate": ("s3", "accelerate"),
}


@dataclass
class CacheConfig:
    """Configuration for artifact-cache.

    Attributes:
        path: Cache directory template, ``<bucket>/<prefix>``
        filename: Archive file name template; its suffix picks the format
        fallback_path: Directory template tried on restore when ``path`` misses
        flush_path: Prefix template flushed by ``flush`` (defaults to ``path``)
        flush_age: Age in days after which flushed items are deleted
        mount: Paths to cache, relative to the working directory
        storage_backend: ``s3`` or ``filesystem``
        storage_root: Root directory for the filesystem backend
        s3_endpoint_url: Endpoint for S3-compatible services (empty for AWS)
        s3_region: S3 region
        s3_ca_bundle: CA bundle used to verify the endpoint's certificate
        s3_path_style: Use path-style bucket addressing
        s3_accelerate: Use S3 transfer acceleration
    """

    # Cache layout
    path: str = ""
    filename: str = DEFAULT_FILENAME
    fallback_path: str = ""
    flush_path: str = ""
    flush_age: int = DEFAULT_FLUSH_AGE
    mount: List[str] = field(default_factory=list)

    # Storage backend
    storage_backend: str = "s3"
    storage_root: Path = field(default_factory=lambda: get_default_storage_root())

    # S3
    s3_endpoint_url: str = ""
    s3_region: str = "us-east-1"
    s3_ca_bundle: str = ""
    s3_path_style: bool = False
    s3_accelerate: bool = False

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "CacheConfig":
        """Load configuration from TOML file.

        Args:
            path: Path to config file (defaults to standard location)

        Returns:
            CacheConfig instance with loaded values

        Raises:
            FileNotFoundError: If config file doesn't exist
        """
        if path is None:
            path = get_config_path()

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "rb") as f:
            data = tomllib.load(f)

        config = cls()

        for name, (section, key) in FIELD_SECTIONS.items():
            if key in data.get(section, {}):
                config._assign(name, data[section][key])

        config.apply_env()
        return config

    def apply_env(self) -> None:
        """Override values from ``ARTIFACT_CACHE_*`` environment variables.

        Environment variables take precedence over the config file.
        """
        for name in FIELD_SECTIONS:
            value = os.environ.get(get_env_var_name(name))
            if value:
                self._assign(name, value)

    def save(self, path: Optional[Path] = None) -> None:
        """Save configuration to TOML file.

        Args:
            path: Path to save config (defaults to standard location)
        """
        if path is None:
            path = get_config_path()

        # Ensure directory exists
        path.parent.mkdir(parents=True, exist_ok=True)

        data: Dict[str, Dict[str, Any]] = {}
        for name, (section, key) in FIELD_SECTIONS.items():
            value = getattr(self, name)
            if isinstance(value, Path):
                value = str(value)
            data.setdefault(section, {})[key] = value

        with open(path, "wb") as f:
            tomli_w.dump(data, f)

    def get(self, key: str, default: Optional[str] = None) -> Any:
        """Get a configuration value by key.

        Supports dot notation for sectioned values (e.g., "s3.region").

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        name = _attribute_name(key)
        if name is None:
            return default

        value = getattr(self, name)
        if isinstance(value, Path):
            return str(value)
        return value

    def set(self, key: str, value: str) -> None:
        """Set a configuration value by key.

        Supports dot notation for sectioned values (e.g., "s3.region").

        Args:
            key: Configuration key
            value: Configuration value

        Raises:
            ValueError: If the key is unknown or the value has the wrong type
        """
        name = _attribute_name(key)
        if name is None:
            raise ValueError(f"Invalid config key: {key}")
        self._assign(name, value)

    def _assign(self, name: str, value: Any) -> None:
        """Set an attribute, converting strings to the field's type."""
        current = getattr(self, name)

        if isinstance(value, str):
            if isinstance(current, bool):
                value = value.lower() in ("true", "1", "yes")
            elif isinstance(current, int):
                value = int(value)
            elif isinstance(current, list):
                value = [item.strip() for item in value.split(",") if item.strip()]

        if isinstance(current, Path):
            value = Path(value)

        setattr(self, name, value)


def _attribute_name(key: str) -> Optional[str]:
    """Map a dotted key ("s3.region") or attribute name to an attribute."""
    for name, (section, field_key) in FIELD_SECTIONS.items():
        if key in (name, f"{section}.{field_key}"):
            return name
    return None


def config_keys() -> List[str]:
    """Dotted keys accepted by get/set, in declaration order."""
    names = [f.name for f in fields(CacheConfig)]
    return [".".join(FIELD_SECTIONS[name]) for name in names]


def get_config_dir() -> Path:
    """Get the platform-specific config directory.

    Returns:
        Path to the config directory for artifact-cache.
    """
    if sys.platform == "darwin" or sys.platform == "linux":
        xdg_config = os.environ.get("XDG_CONFIG_HOME")
        if xdg_config:
            return Path(xdg_config) / "artifact-cache"
        return Path.home() / ".config" / "artifact-cache"
    elif sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "artifact-cache"
        return Path.home() / "AppData" / "Roaming" / "artifact-cache"
    else:
        return Path.home() / ".config" / "artifact-cache"


def get_config_path() -> Path:
    """Get the path to the config.toml file.

    Returns:
        Path to config.toml
    """
    return get_config_dir() / "config.toml"


def get_default_storage_root() -> Path:
    """Get the default root directory for the filesystem backend.

    Returns:
        Path to default storage location
    """
    return get_config_dir() / "storage"


def ensure_config_exists() -> CacheConfig:
    """Ensure config file exists, creating default if needed.

    Returns:
        CacheConfig instance
    """
    config_path = get_config_path()

    if config_path.exists():
        try:
            return CacheConfig.load(config_path)
        except ValueError:
            # If config is corrupted, create a new one
            pass

    # Create default config
    config = CacheConfig()
    config.save(config_path)
    config.apply_env()
    return config


def get_env_var_name(key: str) -> str:
    """Get the environment variable name for a config key.

    Args:
        key: Attribute name or secret key (e.g., "s3_endpoint_url",
            "s3.access_key_id")

    Returns:
        Environment variable name
    """
    return f"{ENV_PREFIX}_{key.upper().replace('.', '_')}"


def get_secret(key: str) -> Optional[str]:
    """Get a secret value from environment variable.

    Args:
        key: Secret key (e.g., "s3.access_key_id")

    Returns:
        Secret value or None
    """
    env_var = get_env_var_name(key)
    return os.environ.get(env_var)
