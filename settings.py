"""Runtime configuration for the patchsync tools.

Values come from ``PATCHSYNC_*`` environment variables.  A ``.env`` file found
from the working directory upwards is loaded first without overriding
variables that are already set.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import find_dotenv, load_dotenv

from patchsync import app_paths
from patchsync.game_profiles import GAME_PROFILES
from patchsync.git_branch import DEFAULT_BRANCH_PREFIX
from patchsync.sheets_client import DEFAULT_PROBE_TIMEOUT, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

DEFAULT_BIND_ADDRESS = "127.0.0.1:8787"
DEFAULT_ALLOWED_ORIGINS = "http://127.0.0.1:5173,http://localhost:5173"


def split_csv(value: Optional[str]) -> List[str]:
    """``" a, b ,,c"`` becomes ``["a", "b", "c"]``."""

    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _env_str(env: Mapping[str, str], key: str, default: str = "") -> str:
    value = env.get(key)
    if value is None:
        return default
    return value.strip()


def _env_float(env: Mapping[str, str], key: str, default: float, minimum: float, maximum: float) -> float:
    raw = _env_str(env, key)
    if not raw:
        return default
    try:
        return max(minimum, min(maximum, float(raw)))
    except ValueError:
        logger.warning("Ignoring %s=%r: not a number", key, raw)
        return default


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = _env_str(env, key).lower()
    if not raw:
        return default
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    logger.warning("Ignoring %s=%r: not a boolean", key, raw)
    return default


@dataclass
class PatchSyncSettings:
    bind_address: str = DEFAULT_BIND_ADDRESS
    allowed_origins: List[str] = field(default_factory=lambda: split_csv(DEFAULT_ALLOWED_ORIGINS))
    auth_token: str = ""
    project_root: Optional[Path] = None
    base_patches_path: str = app_paths.DEFAULT_BASE_PATCHES_PATH
    change_log_path: str = app_paths.DEFAULT_CHANGE_LOG_PATH
    timeout: float = DEFAULT_TIMEOUT
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    branch_prefix: str = DEFAULT_BRANCH_PREFIX
    skip_existing: bool = True
    credentials_path: Optional[Path] = None
    api_key: str = ""
    spreadsheet_overrides: Dict[str, str] = field(default_factory=dict)

    def resolve(self, path: str) -> Path:
        """Return ``path`` rooted at the configured project directory."""

        return app_paths.resolve_path(path, self.project_root)

    def spreadsheet_id_for(self, game_id: str, default: str) -> str:
        return self.spreadsheet_overrides.get(game_id) or default


def load_settings(env: Optional[Mapping[str, str]] = None, *, load_env_file: bool = True) -> PatchSyncSettings:
    """Build :class:`PatchSyncSettings` from the environment.

    Timeouts are clamped to sensible ranges (1-300 seconds for content
    fetches, 0.5-60 seconds for discovery probes).
    """

    if env is None:
        if load_env_file:
            dotenv_path = find_dotenv(usecwd=True)
            if dotenv_path:
                load_dotenv(dotenv_path, override=False)
                logger.debug("Loaded environment from %s", dotenv_path)
        env = os.environ

    overrides: Dict[str, str] = {}
    for profile in GAME_PROFILES.values():
        value = _env_str(env, profile.spreadsheet_env_key)
        if value:
            overrides[profile.id] = value

    project_root = _env_str(env, app_paths.PROJECT_ROOT_ENV)
    credentials = _env_str(env, "PATCHSYNC_CREDENTIALS_PATH")
    origins = env.get("PATCHSYNC_ALLOWED_ORIGINS")

    return PatchSyncSettings(
        bind_address=_env_str(env, "PATCHSYNC_ADDR", DEFAULT_BIND_ADDRESS) or DEFAULT_BIND_ADDRESS,
        allowed_origins=split_csv(DEFAULT_ALLOWED_ORIGINS if origins is None else origins),
        auth_token=_env_str(env, "PATCHSYNC_TOKEN"),
        project_root=Path(project_root).expanduser() if project_root else None,
        base_patches_path=_env_str(env, "PATCHSYNC_BASE_PATCHES_PATH") or app_paths.DEFAULT_BASE_PATCHES_PATH,
        change_log_path=_env_str(env, "PATCHSYNC_CHANGE_LOG_PATH") or app_paths.DEFAULT_CHANGE_LOG_PATH,
        timeout=_env_float(env, "PATCHSYNC_TIMEOUT", DEFAULT_TIMEOUT, 1.0, 300.0),
        probe_timeout=_env_float(env, "PATCHSYNC_PROBE_TIMEOUT", DEFAULT_PROBE_TIMEOUT, 0.5, 60.0),
        branch_prefix=_env_str(env, "PATCHSYNC_BRANCH_PREFIX") or DEFAULT_BRANCH_PREFIX,
        skip_existing=_env_bool(env, "PATCHSYNC_SKIP_EXISTING", True),
        credentials_path=Path(credentials).expanduser() if credentials else None,
        api_key=_env_str(env, "PATCHSYNC_API_KEY"),
        spreadsheet_overrides=overrides,
    )


__all__ = [
    "DEFAULT_BIND_ADDRESS",
    "DEFAULT_ALLOWED_ORIGINS",
    "PatchSyncSettings",
    "load_settings",
    "split_csv",
]
