"""
Shared fixtures for the unit tests.
"""

import threading
import time
from typing import Dict, Iterable, List, Optional

import pytest

from packsync_py.errors import CommandFailed
from packsync_py.managers import split_entry
from packsync_py.managers.executor import CommandResult


class FakeExecutor:
    """Stands in for CommandExecutor, answering like npm, yarn and pnpm."""

    def __init__(
        self,
        installed: Iterable[str] = (),
        latest: Optional[Dict[str, str]] = None,
        failing: Iterable[str] = (),
        listing: str = '{"dependencies": {}}',
        listing_fails: bool = False,
        missing_binaries: Iterable[str] = (),
        delay: float = 0.0,
    ):
        self.installed = set(installed)
        self.latest = latest or {}
        self.failing = set(failing)
        self.listing = listing
        self.listing_fails = listing_fails
        self.missing_binaries = set(missing_binaries)
        self.delay = delay
        self.calls: List[List[str]] = []
        self.installs: List[List[str]] = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def _ok(self, stdout: str = "") -> CommandResult:
        return CommandResult(0, stdout, "")

    def run(
        self,
        command: List[str],
        timeout: Optional[float] = None,
        max_output_bytes: Optional[int] = None,
    ) -> CommandResult:
        with self._lock:
            self.calls.append(list(command))
        binary, *args = command

        if binary in self.missing_binaries:
            raise CommandFailed(command, f"`{binary}` command not found")

        if args == ["--version"]:
            return self._ok("v20.11.0\n" if binary == "node" else "10.2.4\n")

        if args[-1:] == ["--json"] and "list" in args:
            if self.listing_fails:
                raise CommandFailed(command, "listing crashed", returncode=1)
            return self._ok(self.listing)

        if args[:2] == ["list", "-g"]:
            if args[2] in self.installed:
                return self._ok(f"└── {args[2]}@1.0.0\n")
            raise CommandFailed(command, "exit code 1", returncode=1)

        if args[0] in ("view", "info"):
            name = args[1]
            if name in self.latest:
                return self._ok(f'"{self.latest[name]}"\n')
            raise CommandFailed(command, "E404 Not Found", returncode=1)

        return self._install(command)

    def _install(self, command: List[str]) -> CommandResult:
        name, _ = split_entry(command[-1])
        with self._lock:
            self.installs.append(list(command))
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if name in self.failing:
                raise CommandFailed(command, "ERESOLVE could not resolve", returncode=1)
            return self._ok("added 1 package\n")
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def fake_executor() -> FakeExecutor:
    """Fixture providing an executor where nothing is installed yet."""
    return FakeExecutor()
