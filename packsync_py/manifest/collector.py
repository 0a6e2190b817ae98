"""
Snapshot collection for Global Pack Sync.

Lists the globally installed packages of a manager and gathers the environment
metadata stored alongside them in a profile.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import AbstractSet, Any, Dict, Optional, Tuple

import orjson

from packsync_py.errors import CollectionFailed, CommandFailed
from packsync_py.managers import (
    DEFAULT_SKIP_PACKAGES,
    ListingFormat,
    Manager,
    commands_for,
    skip_set_for,
)
from packsync_py.managers.executor import CommandExecutor

logger = logging.getLogger("packsync.manifest.collector")

# "typescript@5.4.0" or "@scope/pkg@1.2.3" inside quotes
_QUOTED_ENTRY = re.compile(r'"((?:@[^@"/\s]+/)?[^@"\s]+)@([^"\s]+)"')

PROBE_TIMEOUT = 10
UNKNOWN = "unknown"


@dataclass
class CollectionResult:
    """Outcome of a snapshot: the packages found, or why none were."""

    packages: Dict[str, str] = field(default_factory=dict)
    error: Optional[CollectionFailed] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_quoted_lines(output: str, skip: AbstractSet[str]) -> Dict[str, str]:
    """Parse yarn's line-oriented ``global list --json`` output."""
    packages: Dict[str, str] = {}
    for line in output.splitlines():
        if '"' not in line:
            continue
        text = line
        try:
            event = orjson.loads(line)
            if isinstance(event, dict) and isinstance(event.get("data"), str):
                text = event["data"]
        except orjson.JSONDecodeError:
            pass
        for name, version in _QUOTED_ENTRY.findall(text):
            if name not in skip:
                packages[name] = version
    return packages


def _collect_dependencies(
    data: Any, skip: AbstractSet[str], packages: Dict[str, str]
) -> None:
    dependencies = data.get("dependencies") if isinstance(data, dict) else None
    if not isinstance(dependencies, dict):
        return
    for name, info in dependencies.items():
        version = info.get("version") if isinstance(info, dict) else None
        if name not in skip and isinstance(version, str) and version:
            packages[name] = version


def parse_dependency_json(output: str, skip: AbstractSet[str]) -> Dict[str, str]:
    """
    Parse npm/pnpm ``list -g --json`` output.

    npm prints a single object; pnpm prints a list with one object per global
    directory.

    Raises:
        ValueError: If the output is not JSON
    """
    try:
        data = orjson.loads(output)
    except orjson.JSONDecodeError as e:
        raise ValueError(f"listing is not valid JSON: {e}") from e

    packages: Dict[str, str] = {}
    if isinstance(data, list):
        for item in data:
            _collect_dependencies(item, skip, packages)
    else:
        _collect_dependencies(data, skip, packages)
    return packages


def collect(
    manager: Manager,
    executor: CommandExecutor,
    skip_packages: AbstractSet[str] = DEFAULT_SKIP_PACKAGES,
) -> CollectionResult:
    """
    Snapshot the globally installed packages of *manager*.

    Never raises: failures are logged and returned as an empty result
    carrying the error, and the caller decides whether that is acceptable.
    """
    commands = commands_for(manager)
    command = commands.list_command()
    skip = skip_set_for(manager, skip_packages)
    logger.info(f"Collecting global {manager.value} packages...")

    try:
        result = executor.run(command)
    except CommandFailed as e:
        return _failed(manager, str(e))

    try:
        if commands.listing_format is ListingFormat.QUOTED_LINES:
            packages = parse_quoted_lines(result.stdout, skip)
        else:
            packages = parse_dependency_json(result.stdout, skip)
    except ValueError as e:
        return _failed(manager, str(e))

    logger.info(f"Found {len(packages)} global {manager.value} packages")
    return CollectionResult(packages=packages)


def _failed(manager: Manager, reason: str) -> CollectionResult:
    error = CollectionFailed(f"Could not list global {manager.value} packages: {reason}")
    logger.warning(str(error))
    return CollectionResult(error=error)


def detect_manager(executor: CommandExecutor) -> Manager:
    """Return the first available manager, probing npm, yarn, then pnpm."""
    for manager in Manager:
        try:
            executor.run(commands_for(manager).version_command(), timeout=PROBE_TIMEOUT)
        except CommandFailed:
            logger.debug(f"{manager.value} is not available")
            continue
        logger.debug(f"Detected package manager: {manager.value}")
        return manager
    logger.warning("No package manager detected, defaulting to npm.")
    return Manager.NPM


def _probe_version(executor: CommandExecutor, command: list) -> str:
    try:
        return executor.run(command, timeout=PROBE_TIMEOUT).stdout.strip() or UNKNOWN
    except CommandFailed as e:
        logger.debug(f"Version probe failed: {e}")
        return UNKNOWN


def current_versions(manager: Manager, executor: CommandExecutor) -> Tuple[str, str]:
    """Return the running (node version, manager version), best effort."""
    node_version = _probe_version(executor, ["node", "--version"])
    manager_version = _probe_version(executor, commands_for(manager).version_command())
    return node_version, manager_version
