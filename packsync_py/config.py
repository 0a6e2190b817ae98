"""
Configuration file support for Global Pack Sync.

Loads settings from ``~/.config/global-pack-sync/config.yaml`` (or
``$XDG_CONFIG_HOME/global-pack-sync/config.yaml``) and exposes them as a typed
dataclass that the CLI merges with environment variables and command-line
flags.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger("packsync.config")

DEFAULT_CONCURRENCY = 3
STORE_DIR_NAME = ".global-pack-sync"


def default_config_path() -> Path:
    """Return the default configuration file path.

    Uses ``$XDG_CONFIG_HOME/global-pack-sync/config.yaml`` when set, otherwise
    falls back to ``~/.config/global-pack-sync/config.yaml``.
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "global-pack-sync" / "config.yaml"
    return Path.home() / ".config" / "global-pack-sync" / "config.yaml"


def default_store_dir() -> Path:
    """Return the directory holding the profile document and its lock."""
    return Path.home() / STORE_DIR_NAME


@dataclass
class PackSyncConfig:
    """Top-level configuration loaded from the YAML file.

    ``None`` means "not set", so the CLI can tell a configured value from a
    built-in default.
    """

    store_dir: Optional[Path] = None
    manager: Optional[str] = None
    concurrency: Optional[int] = None
    use_latest: Optional[bool] = None
    extra_skip_packages: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackSyncConfig":
        """Construct a ``PackSyncConfig`` from a parsed YAML dictionary."""
        if not isinstance(data, dict):
            return cls()

        store_dir = data.get("store_dir")
        concurrency = data.get("concurrency")
        if concurrency is not None and (
            not isinstance(concurrency, int) or concurrency < 1
        ):
            logger.warning("Ignoring invalid concurrency value: %s", concurrency)
            concurrency = None

        use_latest = data.get("use_latest")
        if use_latest is not None and not isinstance(use_latest, bool):
            logger.warning("Ignoring invalid use_latest value: %s", use_latest)
            use_latest = None

        extra_skip: List[str] = []
        for entry in data.get("extra_skip_packages") or []:
            if not isinstance(entry, str) or not entry.strip():
                logger.warning("Skipping invalid extra_skip_packages entry: %s", entry)
                continue
            extra_skip.append(entry.strip())

        return cls(
            store_dir=Path(store_dir).expanduser() if store_dir else None,
            manager=data.get("manager"),
            concurrency=concurrency,
            use_latest=use_latest,
            extra_skip_packages=extra_skip,
        )

    @classmethod
    def from_file(cls, path: Path) -> "PackSyncConfig":
        """Read a YAML file and return a ``PackSyncConfig``.

        Returns an empty default config on any error.
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f.read())
            if data is None:
                return cls()
            return cls.from_dict(data)
        except (IOError, yaml.YAMLError) as e:
            logger.error("Failed to load config from %s: %s", path, e)
            return cls()

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "PackSyncConfig":
        """Load config from *config_path* or the default location.

        Returns an empty config if the file does not exist.
        """
        path = config_path or default_config_path()
        if not path.exists():
            return cls()
        return cls.from_file(path)

    def resolve_store_dir(self, override: Optional[str] = None) -> Path:
        """Pick the store directory: flag, then ``$PACKSYNC_HOME``, then file."""
        value = override or os.environ.get("PACKSYNC_HOME")
        if value:
            return Path(value).expanduser()
        return self.store_dir or default_store_dir()

    def resolve_manager(self, override: Optional[str] = None) -> Optional[str]:
        """Pick the package manager name, or None to auto-detect."""
        return override or os.environ.get("PACKSYNC_PM") or self.manager

    def resolve_concurrency(self, override: Optional[int] = None) -> int:
        """Pick the install window size."""
        if override is not None:
            return override
        env_value = os.environ.get("PACKSYNC_CONCURRENCY")
        if env_value:
            try:
                parsed = int(env_value)
                if parsed >= 1:
                    return parsed
            except ValueError:
                pass
            logger.warning("Ignoring invalid PACKSYNC_CONCURRENCY: %s", env_value)
        return self.concurrency or DEFAULT_CONCURRENCY
