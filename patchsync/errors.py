"""Error hierarchy shared by every patchsync component.

Callers that only need to report a failure can catch :class:`PatchSyncError`.
The orchestrator relies on the concrete subclasses to decide whether a
failure aborts the run or merely excludes one sheet.
"""

from __future__ import annotations

from typing import Optional


class PatchSyncError(RuntimeError):
    """Base error raised by the synchronisation engine."""


class ConfigurationError(PatchSyncError):
    """Raised for unknown game ids or a missing spreadsheet id."""


class DiscoveryError(PatchSyncError):
    """Raised when every sheet discovery strategy came back empty."""


class FetchError(PatchSyncError):
    """Raised when a sheet cannot be downloaded as tabular text."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ParseError(PatchSyncError):
    """Raised when a sheet layout does not match the game's parser."""


class ReconciliationError(PatchSyncError):
    """Raised when computed pull totals disagree with published totals."""


class PersistenceError(PatchSyncError):
    """Raised for filesystem failures or malformed prior generated state."""


class BranchError(PatchSyncError):
    """Raised when the git branch for a sync run cannot be created."""


class SyncCancelledError(PatchSyncError):
    """Raised when a caller cancelled the run before it finished."""


__all__ = [
    "PatchSyncError",
    "ConfigurationError",
    "DiscoveryError",
    "FetchError",
    "ParseError",
    "ReconciliationError",
    "PersistenceError",
    "BranchError",
    "SyncCancelledError",
]
