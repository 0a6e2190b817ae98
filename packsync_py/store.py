"""
Profile store for Global Pack Sync.

All profiles live in a single JSON document. Every mutation rewrites the whole
document: the previous version is copied to ``<document>.backup`` first, and
the new content is written to a temporary file that is renamed into place, so
the document on disk is always either the old or the new valid state.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

import orjson

from packsync_py.errors import CorruptStore, ProfileNotFound
from packsync_py.managers import Manager, normalize_manager

logger = logging.getLogger("packsync.store")

PROFILE_FILE_NAME = "packages.json"
BACKUP_SUFFIX = ".backup"


def utc_timestamp() -> str:
    """Return the current time as an ISO-8601 string with a ``Z`` suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse a saved-at timestamp; unparsable values sort as the oldest."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Profile:
    """A snapshot of globally installed packages plus environment metadata."""

    node_version: str
    manager_version: str
    manager: Manager
    packages: Dict[str, str] = field(default_factory=dict)
    saved_at: str = field(default_factory=utc_timestamp)
    platform: str = "unknown"
    arch: str = "unknown"

    @property
    def package_count(self) -> int:
        return len(self.packages)

    @property
    def saved_datetime(self) -> datetime:
        return parse_timestamp(self.saved_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodeVersion": self.node_version,
            "managerVersion": self.manager_version,
            "manager": self.manager.value,
            "packages": dict(self.packages),
            "savedAt": self.saved_at,
            "packageCount": self.package_count,
            "platform": self.platform,
            "arch": self.arch,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        """
        Build a Profile from its stored form.

        Documents written by the npm-migrate tool use ``npmVersion`` and
        ``packageManager``; both spellings are accepted.

        Raises:
            ValueError: If the entry is not a well-formed profile
        """
        if not isinstance(data, dict):
            raise ValueError("profile entry is not an object")

        packages = data.get("packages")
        if not isinstance(packages, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in packages.items()
        ):
            raise ValueError("'packages' must map package names to version strings")

        return cls(
            node_version=str(data.get("nodeVersion", "unknown")),
            manager_version=str(
                data.get("managerVersion", data.get("npmVersion", "unknown"))
            ),
            manager=normalize_manager(
                data.get("manager", data.get("packageManager"))
            ),
            packages=dict(packages),
            saved_at=str(data.get("savedAt", "")),
            platform=str(data.get("platform", "unknown")),
            arch=str(data.get("arch", "unknown")),
        )


class ProfileStore:
    """Durable mapping from profile name to ``Profile``."""

    def __init__(self, store_dir: Path):
        self.store_dir = store_dir
        self.path = store_dir / PROFILE_FILE_NAME
        self.backup_path = store_dir / (PROFILE_FILE_NAME + BACKUP_SUFFIX)

    def load(self) -> Dict[str, Profile]:
        """
        Load every profile, in document order.

        Returns:
            An empty mapping when no document exists yet

        Raises:
            CorruptStore: If the document exists but is not well-formed
        """
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return {}

        if not raw.strip():
            return {}

        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise CorruptStore(self.path, str(e)) from e

        if not isinstance(data, dict):
            raise CorruptStore(self.path, "top-level value is not an object")

        profiles: Dict[str, Profile] = {}
        for name, entry in data.items():
            try:
                profiles[name] = Profile.from_dict(entry)
            except ValueError as e:
                raise CorruptStore(self.path, f"profile '{name}': {e}") from e
        return profiles

    def save(self, profiles: Dict[str, Profile]) -> None:
        """Back up the current document, then replace it with *profiles*."""
        self.store_dir.mkdir(parents=True, exist_ok=True)

        if self.path.exists():
            shutil.copyfile(self.path, self.backup_path)
            logger.debug(f"Backed up {self.path} to {self.backup_path}")

        document = {name: profile.to_dict() for name, profile in profiles.items()}
        temp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            temp_path.write_bytes(orjson.dumps(document, option=orjson.OPT_INDENT_2))
            os.replace(temp_path, self.path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise
        logger.debug(f"Wrote {len(profiles)} profiles to {self.path}")

    def get(self, name: str) -> Profile:
        profiles = self.load()
        if name not in profiles:
            raise ProfileNotFound(name)
        return profiles[name]

    def upsert(self, name: str, profile: Profile) -> None:
        profiles = self.load()
        profiles[name] = profile
        self.save(profiles)

    def delete(self, name: str) -> Profile:
        """
        Remove a profile.

        Raises:
            ProfileNotFound: If *name* is not in the store; nothing is written
        """
        profiles = self.load()
        if name not in profiles:
            raise ProfileNotFound(name)
        removed = profiles.pop(name)
        self.save(profiles)
        return removed
