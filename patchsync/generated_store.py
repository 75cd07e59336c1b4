"""Reading, merging and writing generated patch files.

Each game has one generated JavaScript module consumed by the front end.  The
merged canonical patches are kept next to it in a JSON state file so later
runs can diff against them without parsing generated source text.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Set

from patchsync.errors import ParseError, PersistenceError
from patchsync.models import GeneratedMeta, Patch, Source
from patchsync.sheet_parsing import STRICT_VERSION_PATTERN, version_sort_key

logger = logging.getLogger(__name__)

GENERATED_MARKER = "// Auto-generated by patchsync. Do not edit by hand."
STATE_VERSION = 1

_BASE_PATCH_FIELD = re.compile(r'(?:\bpatch\s*:|"patch"\s*:)\s*"(\d+\.\d+)"', re.MULTILINE)


def state_path_for(output_path: Path) -> Path:
    """``src/data/x.generated.js`` keeps its state in ``src/data/x.generated.state.json``."""

    output_path = Path(output_path)
    return output_path.with_name(output_path.stem + ".state.json")


def patch_key(patch: Patch) -> str:
    return (patch.patch or "").strip() or (patch.id or "").strip()


def sort_patches(patches: Iterable[Patch]) -> List[Patch]:
    return sorted(patches, key=lambda patch: version_sort_key(patch_key(patch)))


def merge_patches_by_id(existing: Iterable[Patch], additions: Iterable[Patch]) -> List[Patch]:
    """Union by id where ``additions`` replace existing patches, sorted by version."""

    merged: Dict[str, Patch] = {}
    for patch in list(existing) + list(additions):
        if not patch.id.strip():
            continue
        merged[patch.id] = patch
    return sort_patches(merged.values())


def patches_equivalent(left: Patch, right: Patch) -> bool:
    return left.comparable() == right.comparable()


def _sources_by_id(patch: Patch) -> Dict[str, Source]:
    return {source.id.strip(): source for source in patch.sources if source.id.strip()}


def changed_source_ids(previous: Patch, current: Patch) -> List[str]:
    """Sorted ids of sources that differ, including ones present on one side only."""

    before = _sources_by_id(previous)
    after = _sources_by_id(current)
    changed = []
    for source_id in sorted(set(before) | set(after)):
        old = before.get(source_id)
        new = after.get(source_id)
        if old is None or new is None or old.to_dict() != new.to_dict():
            changed.append(source_id)
    return changed


def read_base_patch_ids(path: Path) -> Set[str]:
    """Return the ``patch: "N.N"`` ids declared in a hand-maintained patch module."""

    try:
        content = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return set()
    except OSError as exc:
        raise PersistenceError(f"read base patches file {path}: {exc}") from exc
    return {
        match.strip()
        for match in _BASE_PATCH_FIELD.findall(content)
        if STRICT_VERSION_PATTERN.match(match.strip())
    }


@dataclass
class GeneratedState:
    patches: List[Patch] = field(default_factory=list)
    meta: Optional[GeneratedMeta] = None

    def by_key(self) -> Dict[str, Patch]:
        return {patch_key(patch): patch for patch in self.patches if patch_key(patch)}


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
            handle.write(content)
        os.replace(temp_name, path)
    except OSError:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        raise


class GeneratedStore:
    """Generated module plus its JSON state file for one game."""

    def __init__(self, output_path: Path, public_rewards) -> None:
        self.output_path = Path(output_path)
        self.state_path = state_path_for(self.output_path)
        self._public_rewards = public_rewards

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def load(self) -> GeneratedState:
        """Return the previously merged patches; empty when nothing usable exists."""

        try:
            raw = self.state_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return GeneratedState()
        except OSError as exc:
            raise PersistenceError(f"read generated state {self.state_path}: {exc}") from exc

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"generated state {self.state_path} is not valid JSON: {exc.msg}") from exc

        if not isinstance(payload, dict) or not isinstance(payload.get("patches"), list):
            logger.warning("Ignoring generated state %s: unexpected layout", self.state_path)
            return GeneratedState()
        try:
            patches = [Patch.from_dict(item) for item in payload["patches"]]
        except (ParseError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Ignoring generated state %s: %s", self.state_path, exc)
            return GeneratedState()
        meta_payload = payload.get("meta")
        meta = GeneratedMeta.from_dict(meta_payload) if isinstance(meta_payload, Mapping) else None
        return GeneratedState(patches=patches, meta=meta)

    def write(self, patches: List[Patch], meta: GeneratedMeta) -> None:
        """Write the state file and then the generated module.

        If the module cannot be written the previous state file is put back,
        so the next run still sees these patches as pending.
        """

        state = {
            "version": STATE_VERSION,
            "meta": meta.to_dict(),
            "patches": [patch.to_dict() for patch in patches],
        }
        try:
            previous = self.state_path.read_text(encoding="utf-8") if self.state_path.exists() else None
            _atomic_write(self.state_path, json.dumps(state, indent=2, ensure_ascii=False) + "\n")
            try:
                _atomic_write(self.output_path, self.render(patches, meta))
            except OSError:
                self._restore_state(previous)
                raise
        except OSError as exc:
            raise PersistenceError(f"write generated file {self.output_path}: {exc}") from exc
        logger.info("Wrote %d patches to %s", len(patches), self.output_path)

    def render(self, patches: List[Patch], meta: GeneratedMeta) -> str:
        public = [self._public_patch(patch) for patch in patches]
        return "\n".join(
            [
                GENERATED_MARKER,
                f"export const GENERATED_PATCHES = {json.dumps(public, indent=2, ensure_ascii=False)};",
                f"export const GENERATED_PATCHES_META = {json.dumps(meta.to_dict(), indent=2, ensure_ascii=False)};",
                "",
            ]
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _restore_state(self, previous: Optional[str]) -> None:
        if previous is None:
            self.state_path.unlink(missing_ok=True)
        else:
            _atomic_write(self.state_path, previous)

    def _public_patch(self, patch: Patch) -> Dict[str, object]:
        payload = patch.to_dict()
        for source_payload, source in zip(payload["sources"], patch.sources):
            source_payload["rewards"] = self._public_rewards(source.rewards)
            source_payload["costs"] = self._public_rewards(source.costs)
            for scaler_payload, scaler in zip(source_payload["scalers"], source.scalers):
                scaler_payload["rewards"] = self._public_rewards(scaler.rewards)
        return payload


__all__ = [
    "GENERATED_MARKER",
    "state_path_for",
    "patch_key",
    "sort_patches",
    "merge_patches_by_id",
    "patches_equivalent",
    "changed_source_ids",
    "read_base_patch_ids",
    "GeneratedState",
    "GeneratedStore",
]
