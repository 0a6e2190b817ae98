"""
Error taxonomy for Global Pack Sync.

Store-level errors (``LockHeld``, ``CorruptStore``, ``ProfileNotFound``) abort
the running operation and surface to the CLI. Per-package errors
(``InstallFailed``, ``VersionResolutionFailed``) and ``CollectionFailed`` are
carried inside result objects and never escape the batch or collection step.
"""

from pathlib import Path
from typing import List, Optional


class PackSyncError(Exception):
    """Base class for every error raised by Global Pack Sync."""


class LockHeld(PackSyncError):
    """Another invocation holds a non-stale lock on the profile store."""

    def __init__(self, pid: Optional[int], lock_path: Path):
        owner = f" (pid {pid})" if pid is not None else ""
        super().__init__(
            f"Another global-pack-sync run{owner} is active. "
            f"If that is not the case, remove {lock_path}."
        )
        self.pid = pid
        self.lock_path = lock_path


class CorruptStore(PackSyncError):
    """The profile document exists but could not be parsed."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Profile store {path} is corrupt: {reason}")
        self.path = path
        self.reason = reason


class ProfileNotFound(PackSyncError):
    """A named profile is absent from the store."""

    def __init__(self, name: str):
        super().__init__(f"Profile '{name}' does not exist")
        self.name = name


class CommandFailed(PackSyncError):
    """A package-manager command exited non-zero, timed out or could not run."""

    def __init__(
        self,
        command: List[str],
        reason: str,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(f"`{' '.join(command)}` failed: {reason}")
        self.command = command
        self.reason = reason
        self.returncode = returncode
        self.stderr = stderr


class CollectionFailed(PackSyncError):
    """Listing the globally installed packages failed."""


class InstallFailed(PackSyncError):
    """Installing a single package failed."""

    def __init__(self, name: str, version: str, reason: str):
        super().__init__(f"Failed to install {name}@{version}: {reason}")
        self.name = name
        self.version = version
        self.reason = reason


class VersionResolutionFailed(PackSyncError):
    """The latest published version of a package could not be determined."""

    def __init__(self, name: str, reason: str):
        super().__init__(f"Could not resolve latest version of {name}: {reason}")
        self.name = name
        self.reason = reason
