"""Centralised helpers for resolving paths inside the front-end project."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional, Union

logger = logging.getLogger(__name__)

PROJECT_ROOT_ENV = "PATCHSYNC_PROJECT_ROOT"
_ROOT_MARKERS: Iterable[str] = ("package.json", ".git")

DEFAULT_BASE_PATCHES_PATH = "src/data/patches.js"
DEFAULT_CHANGE_LOG_PATH = "tools/patchsync/logs/table-changes.jsonl"
DEFAULT_LOG_PATH = "logs/patchsync.log"

PathLike = Union[str, os.PathLike]


def _detect_project_root(start: Path) -> Path:
    for candidate in (start, *start.parents):
        if any((candidate / marker).exists() for marker in _ROOT_MARKERS):
            return candidate
    return start


def project_root(override: Optional[PathLike] = None) -> Path:
    """Return the project directory that relative output paths are resolved against.

    An explicit ``override`` wins, then ``PATCHSYNC_PROJECT_ROOT``, then the
    nearest ancestor of the working directory holding ``package.json`` or
    ``.git``, then the working directory itself.
    """

    if override:
        return Path(override).expanduser().resolve()
    value = os.environ.get(PROJECT_ROOT_ENV, "").strip()
    if value:
        return Path(value).expanduser().resolve()
    return _detect_project_root(Path.cwd().resolve())


def resolve_path(path: PathLike, root: Optional[PathLike] = None) -> Path:
    """Return ``path`` unchanged when absolute, otherwise rooted at :func:`project_root`."""

    candidate = Path(path).expanduser()
    if candidate.is_absolute():
        return candidate
    return project_root(root) / candidate


__all__ = [
    "PROJECT_ROOT_ENV",
    "DEFAULT_BASE_PATCHES_PATH",
    "DEFAULT_CHANGE_LOG_PATH",
    "DEFAULT_LOG_PATH",
    "project_root",
    "resolve_path",
]
