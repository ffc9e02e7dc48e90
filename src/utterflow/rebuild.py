"""Rebuild-and-relaunch for tasks that modify Utterflow's own source tree.

The running process cannot replace itself mid-update, so a detached shell
reinstalls the project, waits for this process to exit, and starts it again.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Callable, Sequence

logger = logging.getLogger(__name__)

MARKER_FILES = ("pyproject.toml", "src/utterflow/__init__.py")


def is_self_project(path: Path | str) -> bool:
    """Return True when ``path`` is a checkout of this application."""

    root = Path(path)
    if not all((root / marker).is_file() for marker in MARKER_FILES):
        return False
    try:
        pyproject = (root / "pyproject.toml").read_text(encoding="utf-8")
    except OSError:
        return False
    return 'name = "utterflow"' in pyproject


def build_rebuild_script(
    project_dir: Path,
    *,
    pid: int,
    relaunch: Sequence[str],
    rebuild_command: str | None = None,
) -> str:
    rebuild = rebuild_command or f"{shlex.quote(sys.executable)} -m pip install -e ."
    relaunch_cmd = " ".join(shlex.quote(part) for part in relaunch)
    return "\n".join(
        [
            "set -e",
            f"cd {shlex.quote(str(project_dir))}",
            rebuild,
            f"kill {pid} 2>/dev/null || true",
            f"while kill -0 {pid} 2>/dev/null; do sleep 0.5; done",
            f"nohup {relaunch_cmd} >/dev/null 2>&1 &",
        ]
    )


def spawn_self_rebuild(
    project_dir: Path | str,
    *,
    pid: int | None = None,
    relaunch: Sequence[str] | None = None,
    rebuild_command: str | None = None,
    popen: Callable[..., subprocess.Popen] = subprocess.Popen,
) -> subprocess.Popen:
    """Start the detached rebuild process and return its handle."""

    project_dir = Path(project_dir)
    pid = pid if pid is not None else os.getpid()
    relaunch = list(relaunch) if relaunch is not None else [sys.executable, *sys.argv]
    script = build_rebuild_script(project_dir, pid=pid, relaunch=relaunch, rebuild_command=rebuild_command)
    logger.warning(
        "Spawning self-rebuild",
        extra={"project_dir": str(project_dir), "pid": pid},
    )
    return popen(
        ["/bin/sh", "-c", script],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )


__all__ = ["MARKER_FILES", "build_rebuild_script", "is_self_project", "spawn_self_rebuild"]
