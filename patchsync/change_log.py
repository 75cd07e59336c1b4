"""Append-only JSON lines history of patch table changes."""
from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import List, Mapping, Sequence

from patchsync.errors import PersistenceError
from patchsync.models import ChangeLogRecord


class ChangeLog:
    """Record which patches each sync added or updated, one JSON object per line."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, records: Sequence[ChangeLogRecord]) -> None:
        if not records:
            return
        serialised = [json.dumps(record.to_dict(), ensure_ascii=False) for record in records]
        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as handle:
                    for line in serialised:
                        handle.write(line)
                        handle.write("\n")
            except OSError as exc:
                raise PersistenceError(f"append change log {self._path}: {exc}") from exc

    def read(self) -> List[Mapping[str, object]]:
        """Return every well-formed entry; blank and corrupt lines are skipped."""

        with self._lock:
            if not self._path.exists():
                return []
            with self._path.open("r", encoding="utf-8") as handle:
                lines = handle.readlines()

        entries: List[Mapping[str, object]] = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                entries.append(payload)
        return entries


__all__ = ["ChangeLog"]
