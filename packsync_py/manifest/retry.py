"""
Retry scripts for failed installs.

Writes one ``install`` command per failed package so the user can rerun them
by hand once the cause is fixed.
"""

import logging
import shlex
import stat
from pathlib import Path
from typing import List

from packsync_py.managers import Manager, commands_for, split_entry

logger = logging.getLogger("packsync.manifest.retry")

RETRY_SCRIPT_NAME = "retry-failed.sh"


def render_retry_script(failed: List[str], manager: Manager) -> str:
    """Render one install command per failed ``name@version`` entry."""
    commands = commands_for(manager)
    lines = [
        "#!/bin/sh",
        f"# Retry failed global installs ({manager.value})",
    ]
    for entry in failed:
        name, version = split_entry(entry)
        lines.append(shlex.join(commands.install_command(name, version)))
    return "\n".join(lines) + "\n"


def write_retry_script(failed: List[str], manager: Manager, store_dir: Path) -> Path:
    """
    Write an executable shell script that reinstalls the failed packages.

    Args:
        failed: ``name@version`` entries that failed to install
        manager: Manager used for this run
        store_dir: Directory of the profile document

    Returns:
        The path to the script
    """
    script_path = store_dir / RETRY_SCRIPT_NAME
    store_dir.mkdir(parents=True, exist_ok=True)
    script_path.write_text(render_retry_script(failed, manager))
    mode = script_path.stat().st_mode
    script_path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    logger.info(f"Wrote retry script for {len(failed)} packages to {script_path}")
    return script_path
