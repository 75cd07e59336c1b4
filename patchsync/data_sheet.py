"""Authoritative pull counts from a spreadsheet's ``Data`` tab.

Some spreadsheets keep a ``Data`` tab with one column per patch and one row
per reward source holding the pull count the sheet owners consider
authoritative.  Those numbers replace the reward derived counts of the
matching sources.  When the tab also publishes running tier totals, the
overridden sources are summed per tier and either reconciled through a
nominated catch-all source or checked against the total within a tolerance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from patchsync.errors import ParseError, ReconciliationError
from patchsync.models import Patch, round_to_tenth
from patchsync.sheet_parsing import (
    LabelAliases,
    canonical_patch_id,
    cell,
    is_version_like_sheet_name,
    merge_tags,
    normalize_sheet_name,
    parse_pull_value,
    patch_tags_from,
    read_records,
)

logger = logging.getLogger(__name__)

DATA_SHEET_NAME = "Data"
TOTAL_F2P = "__totalF2P"
TOTAL_PAID = "__totalPaid"
TOTAL_KEYS = (TOTAL_F2P, TOTAL_PAID)


@dataclass(frozen=True)
class DataSheetRules:
    """Per-game description of a ``Data`` tab.

    ``f2p_source_ids`` and ``paid_source_ids`` list the sources summed for
    each published tier total.  A tier without source ids is not checked.
    When ``catch_all_source_id`` is set, the F2P difference is added to that
    source instead of being checked.
    """

    rows: LabelAliases
    sheet_name: str = DATA_SHEET_NAME
    f2p_source_ids: Tuple[str, ...] = ()
    paid_source_ids: Tuple[str, ...] = ()
    catch_all_source_id: Optional[str] = None
    tolerance: float = 0.05


@dataclass
class DataSheet:
    """Parsed ``Data`` tab: ``patch id -> source id -> pulls`` plus header tags."""

    pulls: Dict[str, Dict[str, float]] = field(default_factory=dict)
    tags: Dict[str, List[str]] = field(default_factory=dict)

    def pulls_for(self, patch_id: str) -> Optional[Dict[str, float]]:
        return self.pulls.get(canonical_patch_id(patch_id))

    def tags_for(self, patch_id: str) -> List[str]:
        return list(self.tags.get(canonical_patch_id(patch_id), []))


@dataclass(slots=True)
class OverrideReport:
    patch_id: str
    overridden: List[str] = field(default_factory=list)
    catch_all_delta: float = 0.0


def parse_data_sheet(csv_text: str, rules: DataSheetRules) -> DataSheet:
    """Parse the ``Data`` tab text using the row labels in ``rules``."""

    records = read_records(csv_text)
    if len(records) < 2:
        raise ParseError("Data sheet has no rows")

    sheet = DataSheet()
    patch_columns: Dict[int, str] = {}
    for index, header in enumerate(records[0]):
        name = normalize_sheet_name(header)
        if not name or not is_version_like_sheet_name(name):
            continue
        patch_id = canonical_patch_id(name)
        patch_columns[index] = patch_id
        tags = patch_tags_from(name)
        if tags:
            sheet.tags[patch_id] = merge_tags(sheet.tags.get(patch_id, []), tags)
    if not patch_columns:
        raise ParseError("Data sheet has no patch columns")

    for record in records[1:]:
        source_id = rules.rows.resolve(cell(record, 0))
        if source_id is None:
            continue
        for index, patch_id in patch_columns.items():
            value = parse_pull_value(cell(record, index))
            if value is None:
                continue
            sheet.pulls.setdefault(patch_id, {})[source_id] = value

    if not sheet.pulls:
        raise ParseError("Data sheet has no recognized pull rows")
    logger.debug("Parsed Data sheet with %d patch columns", len(patch_columns))
    return sheet


def _tier_sum(patch: Patch, source_ids: Tuple[str, ...]) -> float:
    wanted = set(source_ids)
    return sum(
        source.pulls
        for source in patch.sources
        if source.id in wanted and source.pulls is not None and source.count_in_pulls
    )


def _absorb(patch: Patch, source_id: str, total: float, source_ids: Tuple[str, ...]) -> float:
    delta = total - _tier_sum(patch, source_ids)
    target = patch.source(source_id)
    if delta == 0 or target is None:
        return 0.0
    base = target.pulls or 0.0
    target.pulls = round_to_tenth(base + delta)
    # TODO: fail instead of absorbing once the sheet owners confirm a maximum delta.
    logger.warning(
        "Patch %s: absorbed %+.1f pulls into %s to match the published F2P total",
        patch.id,
        delta,
        source_id,
    )
    return delta


def _verify(patch: Patch, label: str, total: float, source_ids: Tuple[str, ...], tolerance: float) -> None:
    computed = _tier_sum(patch, source_ids)
    if abs(total - computed) > tolerance:
        raise ReconciliationError(
            f"Patch {patch.id}: {label} total mismatch, Data sheet says {total:.1f} pulls, "
            f"sources add up to {computed:.1f}"
        )


def apply_overrides(patch: Patch, sheet: DataSheet, rules: DataSheetRules) -> OverrideReport:
    """Replace source pull counts in ``patch`` with the ``Data`` tab values.

    Raises :class:`ReconciliationError` when the tab has no column for the
    patch or a checked tier total disagrees beyond ``rules.tolerance``.
    """

    values = sheet.pulls_for(patch.patch or patch.id)
    if values is None:
        raise ReconciliationError(f"Data sheet has no column for patch {patch.patch or patch.id!r}")

    report = OverrideReport(patch_id=patch.id)
    for source in patch.sources:
        if source.id in TOTAL_KEYS or source.id not in values:
            continue
        source.pulls = round_to_tenth(values[source.id])
        report.overridden.append(source.id)

    f2p_total = values.get(TOTAL_F2P)
    if f2p_total is not None and rules.f2p_source_ids:
        if rules.catch_all_source_id:
            report.catch_all_delta = _absorb(patch, rules.catch_all_source_id, f2p_total, rules.f2p_source_ids)
        else:
            _verify(patch, "F2P", f2p_total, rules.f2p_source_ids, rules.tolerance)

    paid_total = values.get(TOTAL_PAID)
    if paid_total is not None and rules.paid_source_ids:
        _verify(patch, "paid", paid_total, rules.paid_source_ids, rules.tolerance)

    return report


__all__ = [
    "DATA_SHEET_NAME",
    "TOTAL_F2P",
    "TOTAL_PAID",
    "DataSheetRules",
    "DataSheet",
    "OverrideReport",
    "parse_data_sheet",
    "apply_overrides",
]
