"""
Platform detection helpers for Global Pack Sync.

Profiles record the platform and architecture in Node's vocabulary
(``process.platform`` / ``process.arch``) so snapshots taken by other tools
compare cleanly.
"""

import platform
import sys

_ARCH_ALIASES = {
    "x86_64": "x64",
    "amd64": "x64",
    "i386": "ia32",
    "i686": "ia32",
    "x86": "ia32",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "armv6l": "arm",
    "ppc64le": "ppc64",
    "s390x": "s390x",
}


def is_macos() -> bool:
    """Return True when running on macOS."""
    return sys.platform == "darwin"


def is_linux() -> bool:
    """Return True when running on Linux."""
    return sys.platform.startswith("linux")


def is_windows() -> bool:
    """Return True when running on Windows."""
    return sys.platform == "win32"


def node_platform() -> str:
    """Return the current platform name as Node reports it."""
    if is_macos():
        return "darwin"
    if is_linux():
        return "linux"
    if is_windows():
        return "win32"
    return sys.platform


def node_arch() -> str:
    """Return the current CPU architecture as Node reports it."""
    machine = platform.machine().lower()
    return _ARCH_ALIASES.get(machine, machine or "unknown")
