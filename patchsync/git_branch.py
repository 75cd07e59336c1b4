"""Creation of review branches for generated data changes."""
from __future__ import annotations

import logging
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from patchsync.errors import BranchError

logger = logging.getLogger(__name__)

DEFAULT_BRANCH_PREFIX = "data/sheets"

Runner = Callable[..., subprocess.CompletedProcess]


def branch_name(prefix: str, now: Optional[datetime] = None) -> str:
    """``data/sheets`` at 2026-01-02 03:04:05 becomes ``data/sheets-20260102-030405``."""

    prefix = (prefix or "").strip() or DEFAULT_BRANCH_PREFIX
    moment = now or datetime.now()
    return f"{prefix}-{moment.strftime('%Y%m%d-%H%M%S')}"


def create_branch(
    prefix: str,
    *,
    cwd: Optional[Path] = None,
    runner: Runner = subprocess.run,
    now: Optional[datetime] = None,
) -> str:
    """Run ``git checkout -b`` for a timestamped branch and return its name."""

    name = branch_name(prefix, now)
    try:
        result = runner(
            ["git", "checkout", "-b", name],
            cwd=str(cwd) if cwd else None,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        raise BranchError(f"git checkout -b {name}: {exc}") from exc
    if result.returncode != 0:
        output = ((result.stderr or "") + (result.stdout or "")).strip()
        raise BranchError(f"git checkout -b {name}: {output or f'exit status {result.returncode}'}")
    logger.info("Created branch %s", name)
    return name


__all__ = ["DEFAULT_BRANCH_PREFIX", "branch_name", "create_branch"]
