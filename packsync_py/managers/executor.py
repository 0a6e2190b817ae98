"""
Command execution for Global Pack Sync.

This module wraps ``subprocess`` for every package-manager invocation,
enforcing timeouts and an output-size ceiling and turning every kind of
failure into ``CommandFailed``. Standard output goes to a temporary file, so
output past the ceiling is never held in memory.
"""

import logging
import os
import shlex
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from typing import Dict, List, Optional

from packsync_py.errors import CommandFailed
from packsync_py.platform import is_windows

logger = logging.getLogger("packsync.managers.executor")

DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024


@dataclass
class CommandResult:
    """Captured output of a successful command."""

    returncode: int
    stdout: str
    stderr: str


class CommandExecutor:
    """Runs package-manager commands and captures their output."""

    def __init__(self, env: Optional[Dict[str, str]] = None):
        """
        Initialize the executor.

        Args:
            env: Environment for child processes; inherits ours when None
        """
        self.env = env

    def _resolve(self, command: List[str]) -> List[str]:
        # npm, yarn and pnpm are .cmd shims on Windows
        if is_windows():
            found = shutil.which(command[0])
            if found:
                return [found] + command[1:]
        return command

    def run(
        self,
        command: List[str],
        timeout: Optional[float] = None,
        max_output_bytes: Optional[int] = DEFAULT_MAX_OUTPUT_BYTES,
    ) -> CommandResult:
        """
        Run a command to completion.

        Args:
            command: Command and arguments
            timeout: Seconds before the command is killed
            max_output_bytes: Ceiling on captured stdout size, in bytes

        Returns:
            The captured result of a zero-exit command

        Raises:
            CommandFailed: On non-zero exit, timeout, missing binary or
                oversized output
        """
        cmd_str = " ".join(shlex.quote(str(arg)) for arg in command)
        logger.debug(f"Running command: {cmd_str}")

        with tempfile.TemporaryFile() as spool:
            try:
                result = subprocess.run(
                    self._resolve(command),
                    stdout=spool,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    timeout=timeout,
                    env=self.env,
                    check=False,
                )
            except FileNotFoundError as e:
                raise CommandFailed(command, f"`{command[0]}` command not found") from e
            except subprocess.TimeoutExpired as e:
                raise CommandFailed(command, f"timed out after {timeout}s") from e

            size = os.fstat(spool.fileno()).st_size
            if max_output_bytes is not None and size > max_output_bytes:
                raise CommandFailed(
                    command,
                    f"output exceeded {max_output_bytes} bytes",
                    returncode=result.returncode,
                )
            spool.seek(0)
            stdout = spool.read().decode("utf-8", errors="replace")

        stderr = result.stderr or ""

        if result.returncode != 0:
            logger.debug(f"Command failed with return code {result.returncode}")
            logger.debug(f"Stderr: {stderr}")
            if stderr.strip():
                reason = stderr.strip().splitlines()[-1]
            else:
                reason = f"exit code {result.returncode}"
            raise CommandFailed(
                command, reason, returncode=result.returncode, stderr=stderr
            )

        return CommandResult(result.returncode, stdout, stderr)
