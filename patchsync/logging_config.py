"""Process-wide logging configuration for the patchsync tools."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from patchsync import app_paths

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_LOG_PATH: Optional[Path] = None


def configure_logging(level: int = logging.INFO, log_path: Optional[Path] = None) -> Path:
    """Configure the root logger to write to stderr and the patchsync log file.

    Parameters
    ----------
    level:
        The minimum logging level for the root logger.
    log_path:
        Log file location. Defaults to ``logs/patchsync.log`` under the
        project root.

    Returns
    -------
    pathlib.Path
        The path to the log file. Repeated calls keep the first path and only
        lower the root level when asked for more detail.
    """

    global _LOG_PATH

    root_logger = logging.getLogger()
    if _LOG_PATH is not None:
        root_logger.setLevel(min(root_logger.level, level))
        return _LOG_PATH

    if log_path is None:
        log_path = app_paths.resolve_path(app_paths.DEFAULT_LOG_PATH)
    log_path = Path(log_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    if not root_logger.handlers:
        root_logger.setLevel(level)
    else:
        root_logger.setLevel(min(root_logger.level, level))

    formatter = logging.Formatter(LOG_FORMAT)

    already_configured = any(
        isinstance(handler, logging.FileHandler)
        and getattr(handler, "baseFilename", None) == str(log_path.resolve())
        for handler in root_logger.handlers
    )
    if not already_configured:
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    has_stream = any(
        type(handler) is logging.StreamHandler for handler in root_logger.handlers
    )
    if not has_stream:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        root_logger.addHandler(stream_handler)

    _LOG_PATH = log_path
    root_logger.debug("Logging configured. Writing to %s", log_path)
    return log_path


def reset_logging() -> None:
    """Forget the configured log path and close the handlers added for it."""

    global _LOG_PATH

    if _LOG_PATH is None:
        return
    root_logger = logging.getLogger()
    target = str(_LOG_PATH.resolve())
    for handler in list(root_logger.handlers):
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
            root_logger.removeHandler(handler)
            handler.close()
    _LOG_PATH = None


__all__ = ["LOG_FORMAT", "configure_logging", "reset_logging"]
