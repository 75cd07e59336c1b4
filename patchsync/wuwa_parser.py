"""Parser for Wuthering Waves patch tabs.

These tabs only carry aggregate rows, each with Astrite, Radiant Tide,
Forging Tide and Lustrous Tide in columns B to E.  Astrite is stored as
canonical ``oroberyl``, Radiant Tide as ``chartered``, Forging Tide as
``firewalker`` and Lustrous Tide as ``basic``.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Sequence

from patchsync.errors import ParseError, ReconciliationError
from patchsync.models import Gate, Patch, Rewards, Scaler, ScalerUnit, Source
from patchsync.sheet_parsing import (
    LabelAliases,
    SheetParser,
    canonical_patch_id,
    cell,
    grid_duration_days,
    normalize_label,
    parse_date_iso,
    parse_number,
    patch_tags_from,
    read_records,
)

logger = logging.getLogger(__name__)

GAME_ID = "wuthering-waves"

ASTRITE_PER_PULL = 160.0
TOTALS_EPSILON = 0.001

DATE_LAYOUTS = ("%d.%m.%Y", "%d/%m/%Y", "%m/%d/%Y")

_VERSION_WITH_DATE = re.compile(r"^version\s+\d+\.\d+\s*\(([^)]+)\)", re.IGNORECASE)

REQUIRED_ROWS = ("events", "permanent", "mailbox", "recurring")

AGGREGATE_LABELS = LabelAliases(
    {
        "events": ("version events",),
        "permanent": ("permanent content",),
        "mailbox": ("mailbox/miscellaneous",),
        "recurring": ("recurring sources",),
        "paidPodcast": ("paid pioneer podcast",),
        "monthly": ("lunite subscription",),
        "totalF2P": ("total f2p",),
        "totalPaid": ("total paid",),
    }
)


def pulls_from_rewards(rewards: Rewards) -> float:
    return rewards.oroberyl / ASTRITE_PER_PULL + rewards.chartered + rewards.firewalker


def _row_rewards(record: Sequence[str]) -> Rewards:
    return Rewards(
        oroberyl=parse_number(cell(record, 1)),
        chartered=parse_number(cell(record, 2)),
        firewalker=parse_number(cell(record, 3)),
        basic=parse_number(cell(record, 4)),
    )


def _collect_rows(records: Sequence[Sequence[str]]) -> Dict[str, Rewards]:
    rows: Dict[str, Rewards] = {}
    for record in records:
        row_id = AGGREGATE_LABELS.resolve(cell(record, 0))
        if row_id is not None:
            rows[row_id] = _row_rewards(record)
    return rows


def _start_date(records: Sequence[Sequence[str]]) -> str:
    for record in records:
        match = _VERSION_WITH_DATE.match(cell(record, 0))
        if match:
            return parse_date_iso(match.group(1), DATE_LAYOUTS)
    return ""


def _check_totals(rows: Dict[str, Rewards], duration: int, sheet_name: str) -> None:
    """Compare reward derived pulls with the sheet's own Total rows."""

    if "totalF2P" not in rows or "totalPaid" not in rows:
        return

    free = Rewards()
    for row_id in REQUIRED_ROWS:
        free.add(rows[row_id])
    paid = free.plus(rows.get("paidPodcast", Rewards()))
    paid.oroberyl += rows.get("monthly", Rewards()).oroberyl * duration

    for label, total_label, expected_row, actual in (
        ("f2p", "Total F2P", rows["totalF2P"], free),
        ("paid", "Total Paid", rows["totalPaid"], paid),
    ):
        expected = pulls_from_rewards(expected_row)
        computed = pulls_from_rewards(actual)
        if abs(expected - computed) > TOTALS_EPSILON:
            raise ReconciliationError(
                f"Sheet {sheet_name!r}: {label} mismatch, expected {expected:.3f} pulls "
                f"from {total_label}, got {computed:.3f}"
            )


def build_sources(rows: Dict[str, Rewards]) -> List[Source]:
    """Return the nine Wuthering Waves sources in their fixed output order."""

    monthly_row = rows.get("monthly", Rewards())
    monthly = Source(
        "monthly",
        "Lunite Subscription",
        Gate.MONTHLY,
        rewards=monthly_row.without("oroberyl", "origeometry"),
    )
    if monthly_row.oroberyl > 0:
        monthly.scalers.append(
            Scaler(unit=ScalerUnit.DAY, rewards=Rewards(oroberyl=monthly_row.oroberyl))
        )

    return [
        Source("events", "Version Events", rewards=rows["events"].copy()),
        Source("permanent", "Permanent Content", rewards=rows["permanent"].copy()),
        Source("mailbox", "Mailbox/Miscellaneous", rewards=rows["mailbox"].copy()),
        Source("dailyActivity", "Daily Activity"),
        Source("endgameModes", "Endgame Modes", rewards=rows["recurring"].copy()),
        Source("coralShop", "Coral Shop"),
        Source("weaponPulls", "Weapon Pulls"),
        Source("paidPodcast", "Paid Pioneer Podcast", Gate.BP2, rewards=rows.get("paidPodcast", Rewards()).copy()),
        monthly,
    ]


class WuwaSheetParser(SheetParser):
    game_id = GAME_ID
    notes = "Generated from Wuthering Waves Google Sheets by patchsync"

    def parse(self, sheet_name: str, csv_text: str) -> Patch:
        records = read_records(csv_text)
        if len(records) < 3:
            raise ParseError(f"Sheet {sheet_name!r} has no data rows")

        duration = grid_duration_days(records)
        if duration <= 0:
            raise ParseError(f"Sheet {sheet_name!r}: unable to determine durationDays")

        rows = _collect_rows(records)
        missing = [row_id for row_id in REQUIRED_ROWS if row_id not in rows]
        if missing:
            expected = ", ".join(AGGREGATE_LABELS.labels_for(row_id)[0] for row_id in missing)
            raise ParseError(f"Sheet {sheet_name!r} is missing required aggregate rows: {expected}")

        _check_totals(rows, duration, sheet_name)

        patch_id = canonical_patch_id(sheet_name)
        title = cell(records[0], 0)
        version_name = title
        if not version_name or normalize_label(version_name).startswith("version "):
            version_name = f"Version {patch_id}"

        logger.debug("Parsed Wuthering Waves sheet %s as patch %s (%d days)", sheet_name, patch_id, duration)
        return Patch(
            id=patch_id,
            patch=patch_id,
            version_name=version_name,
            start_date=_start_date(records),
            duration_days=duration,
            tags=patch_tags_from(sheet_name),
            notes=self.notes,
            sources=build_sources(rows),
        )


__all__ = [
    "GAME_ID",
    "AGGREGATE_LABELS",
    "ASTRITE_PER_PULL",
    "WuwaSheetParser",
    "build_sources",
    "pulls_from_rewards",
]
