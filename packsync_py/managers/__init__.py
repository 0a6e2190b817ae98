"""
Package-manager variants for Global Pack Sync.

Each supported manager (npm, yarn, pnpm) is described by a ``ManagerCommands``
entry in a single table, so the collector and the installer never branch on
the manager name themselves.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import AbstractSet, Dict, FrozenSet, Iterable, List, Optional, Tuple

logger = logging.getLogger("packsync.managers")

# Never snapshotted or reinstalled: npm tooling and this tool. The active
# manager's own CLI package is added per run by ``skip_set_for``.
DEFAULT_SKIP_PACKAGES: FrozenSet[str] = frozenset(
    {"npm", "npx", "node-gyp", "corepack", "global-pack-sync"}
)


class Manager(str, Enum):
    """Supported package managers."""

    NPM = "npm"
    YARN = "yarn"
    PNPM = "pnpm"


class ListingFormat(Enum):
    """Shape of a manager's global listing output."""

    JSON_DEPENDENCIES = "json"
    QUOTED_LINES = "lines"


@dataclass(frozen=True)
class ManagerCommands:
    """Command templates for one package manager.

    Templates are argument tuples; ``{name}`` and ``{spec}`` placeholders are
    substituted per package.
    """

    binary: str
    list_global: Tuple[str, ...]
    listing_format: ListingFormat
    probe: Tuple[str, ...]
    install: Tuple[str, ...]
    latest: Tuple[str, ...]

    @staticmethod
    def _fill(template: Iterable[str], **values: str) -> List[str]:
        return [part.format(**values) for part in template]

    def list_command(self) -> List[str]:
        return [self.binary, *self.list_global]

    def probe_command(self, name: str) -> List[str]:
        return [self.binary, *self._fill(self.probe, name=name)]

    def install_command(self, name: str, version: str) -> List[str]:
        return [self.binary, *self._fill(self.install, spec=f"{name}@{version}")]

    def latest_command(self, name: str) -> List[str]:
        return [self.binary, *self._fill(self.latest, name=name)]

    def version_command(self) -> List[str]:
        return [self.binary, "--version"]


COMMANDS: Dict[Manager, ManagerCommands] = {
    Manager.NPM: ManagerCommands(
        binary="npm",
        list_global=("list", "-g", "--depth=0", "--json"),
        listing_format=ListingFormat.JSON_DEPENDENCIES,
        probe=("list", "-g", "{name}", "--depth=0"),
        install=("install", "-g", "{spec}"),
        latest=("view", "{name}", "version", "--json"),
    ),
    Manager.YARN: ManagerCommands(
        binary="yarn",
        list_global=("global", "list", "--json"),
        listing_format=ListingFormat.QUOTED_LINES,
        probe=("list", "-g", "{name}", "--depth=0"),
        install=("global", "add", "{spec}"),
        latest=("info", "{name}", "version", "--json"),
    ),
    Manager.PNPM: ManagerCommands(
        binary="pnpm",
        list_global=("list", "-g", "--depth=0", "--json"),
        listing_format=ListingFormat.JSON_DEPENDENCIES,
        probe=("list", "-g", "{name}", "--depth=0"),
        install=("add", "-g", "{spec}"),
        latest=("view", "{name}", "version", "--json"),
    ),
}


def commands_for(manager: Manager) -> ManagerCommands:
    """Return the command table entry for *manager*."""
    return COMMANDS[manager]


def skip_set_for(
    manager: Manager, skip_packages: AbstractSet[str] = DEFAULT_SKIP_PACKAGES
) -> FrozenSet[str]:
    """Return *skip_packages* plus the CLI package of *manager* itself."""
    return frozenset(skip_packages) | {commands_for(manager).binary}


def normalize_manager(value: Optional[str]) -> Manager:
    """Map a user-supplied manager name onto a ``Manager``, defaulting to npm."""
    if value is None:
        return Manager.NPM
    try:
        return Manager(value.strip().lower())
    except ValueError:
        logger.warning(f"Unknown package manager '{value}', falling back to npm.")
        return Manager.NPM


def split_entry(entry: str) -> Tuple[str, str]:
    """Split a ``name@version`` entry, keeping the scope of ``@scope/name``."""
    name, sep, version = entry.rpartition("@")
    if not sep or not name:
        return entry, ""
    return name, version
