"""Orchestration run identifiers."""

from __future__ import annotations

import logging
import re
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from .errors import TaskTrackerError

logger = logging.getLogger(__name__)

_RUN_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def validate_run_id(run_id: str) -> str:
    if not isinstance(run_id, str) or not _RUN_ID_PATTERN.match(run_id):
        raise TaskTrackerError(f"Invalid run id: {run_id!r}", run_id=str(run_id))
    return run_id


def resolve_run_id(
    cwd: Path | None = None,
    *,
    clock: Callable[[], datetime] | None = None,
) -> str:
    """Return the current git commit hash, or ``no-commit-<millis>`` outside a repository."""

    try:
        completed = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=str(cwd) if cwd else None,
            capture_output=True,
            text=True,
            timeout=10,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("git unavailable for run id", extra={"error": str(exc)})
    else:
        commit = completed.stdout.strip()
        if completed.returncode == 0 and commit:
            return commit

    now = (clock or (lambda: datetime.now(timezone.utc)))()
    return f"no-commit-{int(now.timestamp() * 1000)}"


__all__ = ["resolve_run_id", "validate_run_id"]
