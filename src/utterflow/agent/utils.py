"""Utility helpers for the agent runner."""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
    # A nested CLI refuses to start when it believes it is already inside a session.
    "CLAUDECODE",
}

_CANDIDATE_PATHS = (
    Path("/usr/local/bin/claude"),
    Path("/opt/homebrew/bin/claude"),
    Path("/usr/bin/claude"),
)


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def find_agent_cli(name: str = "claude") -> Path | None:
    """Locate the agent CLI on PATH or in the usual install locations."""

    binary = shutil.which(name)
    if binary is not None:
        return Path(binary)
    for candidate in _CANDIDATE_PATHS:
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return candidate
    return None
