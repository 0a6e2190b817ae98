"""
Profile operations for Global Pack Sync.

Save, restore, selective restore, diff, delete and list, orchestrated over the
profile store, the process lock, the snapshot collector and the batch
installer. Every mutating operation runs inside the lock.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import AbstractSet, Callable, Dict, List, Optional, Set, Tuple

from packsync_py.errors import ProfileNotFound
from packsync_py.lock import ProcessLock
from packsync_py.managers import DEFAULT_SKIP_PACKAGES, Manager, normalize_manager
from packsync_py.managers.executor import CommandExecutor
from packsync_py.manifest.collector import collect, current_versions, detect_manager
from packsync_py.manifest.installer import BatchInstaller, InstallResults
from packsync_py.manifest.retry import write_retry_script
from packsync_py.platform import node_arch, node_platform
from packsync_py.store import Profile, ProfileStore, utc_timestamp

logger = logging.getLogger("packsync.operations")

# Receives (index, name, version) rows with 1-based indices and returns the
# user's raw answer listing the indices to exclude.
SelectionPrompt = Callable[[List[Tuple[int, str, str]]], str]


@dataclass
class RestoreReport:
    """What a restore did."""

    profile_name: str
    profile: Profile
    manager: Manager
    results: InstallResults
    current_node_version: str = "unknown"
    current_manager_version: str = "unknown"
    excluded: List[str] = field(default_factory=list)
    retry_script: Optional[Path] = None


@dataclass
class ProfileDiff:
    """Package differences going from profile A to profile B."""

    added: Dict[str, str] = field(default_factory=dict)
    removed: Dict[str, str] = field(default_factory=dict)
    changed: Dict[str, Tuple[str, str]] = field(default_factory=dict)
    unchanged: Dict[str, str] = field(default_factory=dict)

    @property
    def counts(self) -> Dict[str, int]:
        return {
            "added": len(self.added),
            "removed": len(self.removed),
            "changed": len(self.changed),
            "unchanged": len(self.unchanged),
        }


def diff_packages(a: Dict[str, str], b: Dict[str, str]) -> ProfileDiff:
    """Classify every package name in either mapping.

    Versions are compared as plain strings.
    """
    result = ProfileDiff()
    names = list(a) + [name for name in b if name not in a]
    for name in names:
        if name not in a:
            result.added[name] = b[name]
        elif name not in b:
            result.removed[name] = a[name]
        elif a[name] != b[name]:
            result.changed[name] = (a[name], b[name])
        else:
            result.unchanged[name] = a[name]
    return result


def parse_exclusions(answer: str, count: int) -> Set[int]:
    """Turn a space-separated list of 1-based indices into 0-based ones.

    Tokens that are not numbers or fall outside ``1..count`` are ignored.
    """
    excluded: Set[int] = set()
    for token in answer.split():
        try:
            index = int(token)
        except ValueError:
            logger.debug(f"Ignoring non-numeric selection '{token}'")
            continue
        if 1 <= index <= count:
            excluded.add(index - 1)
        else:
            logger.debug(f"Ignoring out-of-range selection {index}")
    return excluded


def most_recent(profiles: Dict[str, Profile]) -> Optional[str]:
    """Return the name of the most recently saved profile.

    Ties go to the profile stored first.
    """
    latest: Optional[Tuple[str, datetime]] = None
    for name, profile in profiles.items():
        saved = profile.saved_datetime
        if latest is None or saved > latest[1]:
            latest = (name, saved)
    return latest[0] if latest else None


def default_profile_name(manager: Manager, manager_version: str) -> str:
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    return f"{manager.value}-{manager_version}-{stamp}"


class ProfileOperations:
    """Entry point for every profile operation."""

    def __init__(
        self,
        store_dir: Path,
        executor: Optional[CommandExecutor] = None,
        skip_packages: AbstractSet[str] = DEFAULT_SKIP_PACKAGES,
    ):
        self.store_dir = store_dir
        self.store = ProfileStore(store_dir)
        self.lock = ProcessLock(store_dir)
        self.executor = executor or CommandExecutor()
        self.skip_packages = skip_packages

    def resolve_manager(self, manager: Optional[str]) -> Manager:
        """Use the explicit manager when given, otherwise detect one."""
        if manager:
            return normalize_manager(manager)
        return detect_manager(self.executor)

    def save(
        self, name: Optional[str] = None, manager: Optional[str] = None
    ) -> Tuple[str, Profile]:
        """
        Snapshot the global packages into a profile.

        A profile with the same name is replaced.

        Raises:
            CollectionFailed: If the packages could not be listed; the store
                is left untouched rather than saving an empty snapshot
        """
        with self.lock:
            pm = self.resolve_manager(manager)
            snapshot = collect(pm, self.executor, self.skip_packages)
            if snapshot.error is not None:
                raise snapshot.error
            if not snapshot.packages:
                logger.warning(f"No global {pm.value} packages found")

            node_version, manager_version = current_versions(pm, self.executor)
            profile_name = name or default_profile_name(pm, manager_version)
            profile = Profile(
                node_version=node_version,
                manager_version=manager_version,
                manager=pm,
                packages=snapshot.packages,
                saved_at=utc_timestamp(),
                platform=node_platform(),
                arch=node_arch(),
            )
            self.store.upsert(profile_name, profile)

        logger.info(
            f"Saved profile '{profile_name}' with {profile.package_count} packages"
        )
        return profile_name, profile

    def _select_profile(self, name: Optional[str]) -> Tuple[str, Profile]:
        profiles = self.store.load()
        if name is None:
            name = most_recent(profiles)
            if name is None:
                raise ProfileNotFound("<latest>")
            logger.info(f"Using most recent profile '{name}'")
        if name not in profiles:
            raise ProfileNotFound(name)
        return name, profiles[name]

    def _install(
        self,
        profile_name: str,
        profile: Profile,
        packages: Dict[str, str],
        manager: Optional[str],
        concurrency: int,
        use_latest: bool,
    ) -> RestoreReport:
        pm = normalize_manager(manager) if manager else profile.manager
        node_version, manager_version = current_versions(pm, self.executor)
        logger.info(
            f"Restoring '{profile_name}': node {profile.node_version} -> "
            f"{node_version}, {profile.manager.value} {profile.manager_version} -> "
            f"{pm.value} {manager_version}"
        )

        installer = BatchInstaller(
            pm,
            self.executor,
            concurrency=concurrency,
            use_latest=use_latest,
            skip_packages=self.skip_packages,
            on_window_done=lambda _: self.lock.refresh(),
        )
        results = installer.install_all(packages)

        report = RestoreReport(
            profile_name=profile_name,
            profile=profile,
            manager=pm,
            results=results,
            current_node_version=node_version,
            current_manager_version=manager_version,
        )
        if results.failed:
            report.retry_script = write_retry_script(
                results.failed, pm, self.store_dir
            )
        return report

    def restore(
        self,
        name: Optional[str] = None,
        manager: Optional[str] = None,
        concurrency: int = 3,
        use_latest: bool = True,
    ) -> RestoreReport:
        """
        Reinstall every package of a profile.

        Without a name, the most recently saved profile is restored. The
        profile's own manager is used unless *manager* is given.

        Raises:
            ProfileNotFound: If the profile does not exist
        """
        with self.lock:
            profile_name, profile = self._select_profile(name)
            return self._install(
                profile_name,
                profile,
                profile.packages,
                manager,
                concurrency,
                use_latest,
            )

    def selective_restore(
        self,
        prompt: SelectionPrompt,
        name: Optional[str] = None,
        manager: Optional[str] = None,
        concurrency: int = 3,
        use_latest: bool = True,
    ) -> RestoreReport:
        """
        Like ``restore``, but let *prompt* exclude packages first.

        An empty answer installs everything.
        """
        with self.lock:
            profile_name, profile = self._select_profile(name)
            rows = [
                (index, pkg, version)
                for index, (pkg, version) in enumerate(profile.packages.items(), 1)
            ]
            excluded = parse_exclusions(prompt(rows), len(rows))

            selected: Dict[str, str] = {}
            skipped_names: List[str] = []
            for position, (pkg, version) in enumerate(profile.packages.items()):
                if position in excluded:
                    skipped_names.append(pkg)
                else:
                    selected[pkg] = version
            if skipped_names:
                logger.info(f"Excluding {len(skipped_names)} packages")

            report = self._install(
                profile_name, profile, selected, manager, concurrency, use_latest
            )
            report.excluded = skipped_names
            return report

    def diff(self, name_a: str, name_b: str) -> ProfileDiff:
        """
        Compare the packages of two profiles.

        Raises:
            ProfileNotFound: If either profile does not exist
        """
        profiles = self.store.load()
        for name in (name_a, name_b):
            if name not in profiles:
                raise ProfileNotFound(name)
        return diff_packages(profiles[name_a].packages, profiles[name_b].packages)

    def delete(self, name: str) -> Profile:
        """
        Remove a profile.

        Raises:
            ProfileNotFound: If the profile does not exist
        """
        with self.lock:
            removed = self.store.delete(name)
        logger.info(f"Deleted profile '{name}'")
        return removed

    def list(self) -> List[Tuple[str, Profile]]:
        """Return every profile, most recently saved first."""
        profiles = self.store.load()
        return sorted(
            profiles.items(), key=lambda item: item[1].saved_datetime, reverse=True
        )
