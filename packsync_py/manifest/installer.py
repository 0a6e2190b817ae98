"""
Batch installation for Global Pack Sync.

Replays a package set in consecutive windows of ``concurrency`` packages.
Packages within a window install concurrently; the next window starts only
after every package in the current one has settled. Each package ends up in
exactly one of succeeded, failed or skipped, and no per-package error ever
aborts the batch.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    AbstractSet,
    Callable,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

import orjson

from packsync_py.errors import (
    CommandFailed,
    InstallFailed,
    PackSyncError,
    VersionResolutionFailed,
)
from packsync_py.managers import (
    DEFAULT_SKIP_PACKAGES,
    Manager,
    commands_for,
    skip_set_for,
)
from packsync_py.managers.executor import CommandExecutor

logger = logging.getLogger("packsync.manifest.installer")

INSTALL_TIMEOUT = 60
INSTALL_MAX_OUTPUT_BYTES = 10 * 1024 * 1024
LATEST_VERSION_TIMEOUT = 10

T = TypeVar("T")


class InstallStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class PackageOutcome:
    """Result of one package: its status, the version recorded, any error."""

    name: str
    status: InstallStatus
    version: str
    error: Optional[PackSyncError] = None

    @property
    def entry(self) -> str:
        return f"{self.name}@{self.version}"


@dataclass
class InstallResults:
    """Succeeded, failed and skipped ``name@version`` entries of one run."""

    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def record(self, outcome: PackageOutcome) -> None:
        getattr(self, outcome.status.value).append(outcome.entry)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.skipped)


def windows(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of *items* of at most *size* elements."""
    if size < 1:
        raise ValueError("window size must be at least 1")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def _parse_version_output(output: str) -> str:
    text = output.strip()
    try:
        data = orjson.loads(text)
    except orjson.JSONDecodeError:
        return text.replace('"', "").strip()
    # yarn wraps the answer as {"type": "inspect", "data": "1.2.3"}
    if isinstance(data, dict):
        data = data.get("data")
    if isinstance(data, list):
        data = data[-1] if data else None
    return data.strip() if isinstance(data, str) else ""


def resolve_latest_version(
    name: str, manager: Manager, executor: CommandExecutor
) -> str:
    """
    Ask the registry for the latest published version of *name*.

    Raises:
        VersionResolutionFailed: If the query fails or returns nothing
    """
    command = commands_for(manager).latest_command(name)
    try:
        result = executor.run(command, timeout=LATEST_VERSION_TIMEOUT)
    except CommandFailed as e:
        raise VersionResolutionFailed(name, e.reason) from e
    version = _parse_version_output(result.stdout)
    if not version:
        raise VersionResolutionFailed(name, "empty response")
    return version


def get_latest_version(
    name: str, manager: Manager, executor: CommandExecutor
) -> Optional[str]:
    """Return the latest published version of *name*, or None on any error."""
    try:
        return resolve_latest_version(name, manager, executor)
    except VersionResolutionFailed as e:
        logger.debug(str(e))
        return None


class BatchInstaller:
    """Installs a package set in concurrency-bounded windows."""

    def __init__(
        self,
        manager: Manager,
        executor: CommandExecutor,
        concurrency: int = 3,
        use_latest: bool = True,
        skip_packages: AbstractSet[str] = DEFAULT_SKIP_PACKAGES,
        on_window_done: Optional[Callable[[int], None]] = None,
    ):
        """
        Initialize the installer.

        Args:
            manager: Package manager to install with
            executor: Runs the manager commands
            concurrency: Window size, the ceiling on concurrent installs
            use_latest: Install the latest published version instead of the
                saved one when it can be resolved
            skip_packages: Names never installed; the manager's own CLI
                package is always added
            on_window_done: Called with the window index after each window
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.manager = manager
        self.commands = commands_for(manager)
        self.executor = executor
        self.concurrency = concurrency
        self.use_latest = use_latest
        self.skip_packages = skip_set_for(manager, skip_packages)
        self.on_window_done = on_window_done

    def is_installed(self, name: str) -> bool:
        try:
            self.executor.run(self.commands.probe_command(name))
        except CommandFailed:
            return False
        return True

    def install_one(self, name: str, saved_version: str) -> PackageOutcome:
        """Install a single package and classify the result."""
        if self.is_installed(name):
            logger.warning(f"{name} is already installed, skipping")
            return PackageOutcome(name, InstallStatus.SKIPPED, saved_version)

        target_version = saved_version
        if self.use_latest:
            latest = get_latest_version(name, self.manager, self.executor)
            if latest:
                target_version = latest
            else:
                logger.warning(
                    f"Could not resolve latest version of {name}, "
                    f"using saved version {saved_version}"
                )

        if target_version != saved_version:
            logger.info(f"Installing {name}@{saved_version} -> {target_version}...")
        else:
            logger.info(f"Installing {name}@{target_version}...")

        try:
            self.executor.run(
                self.commands.install_command(name, target_version),
                timeout=INSTALL_TIMEOUT,
                max_output_bytes=INSTALL_MAX_OUTPUT_BYTES,
            )
        except CommandFailed as e:
            error = InstallFailed(name, target_version, e.reason)
            logger.error(str(error))
            return PackageOutcome(name, InstallStatus.FAILED, saved_version, error)

        logger.info(f"Installed {name}@{target_version}")
        return PackageOutcome(name, InstallStatus.SUCCEEDED, target_version)

    def install_all(self, packages: Dict[str, str]) -> InstallResults:
        """
        Install every package in *packages*, window by window.

        Returns:
            The classified results; entries within a window are recorded in
            insertion order
        """
        entries: List[Tuple[str, str]] = []
        for name, version in packages.items():
            if name in self.skip_packages:
                logger.debug(f"Not installing {name}: in skip set")
                continue
            entries.append((name, version))

        results = InstallResults()
        if not entries:
            return results

        with ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix="packsync-install"
        ) as pool:
            for index, window in enumerate(windows(entries, self.concurrency)):
                logger.debug(f"Window {index + 1}: {[name for name, _ in window]}")
                futures: List[Tuple[str, str, Future]] = [
                    (name, version, pool.submit(self.install_one, name, version))
                    for name, version in window
                ]
                wait([future for _, _, future in futures])

                for name, version, future in futures:
                    try:
                        outcome = future.result()
                    except Exception as e:
                        logger.error(f"Unexpected error installing {name}: {e}")
                        outcome = PackageOutcome(
                            name,
                            InstallStatus.FAILED,
                            version,
                            InstallFailed(name, version, str(e)),
                        )
                    results.record(outcome)

                if self.on_window_done is not None:
                    self.on_window_done(index)

        return results
