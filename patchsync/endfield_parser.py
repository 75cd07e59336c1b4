"""Parser for Arknights: Endfield patch tabs.

A tab lists reward rows grouped under section header rows (``Events``,
``Permanent Content``, ``Mailbox & Web Events`` and ``Recurring Sources``).
Two layouts are in circulation: one with explicit currency headers in the
first row and one where the first row is a title and the currency columns
follow a fixed order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from patchsync.errors import ParseError
from patchsync.models import (
    CrateModel,
    Gate,
    Patch,
    Rewards,
    Rounding,
    Scaler,
    ScalerUnit,
    Source,
)
from patchsync.sheet_parsing import (
    DURATION_MARKERS,
    LabelAliases,
    SheetParser,
    canonical_patch_id,
    cell,
    find_header_index,
    header_duration_days,
    normalize_label,
    parse_number,
    parse_title_meta,
    patch_tags_from,
    read_records,
)

logger = logging.getLogger(__name__)

GAME_ID = "arknights-endfield"

MONTHLY_PASS_DAILY_OROBERYL = 200
MONTHLY_BONUS_CYCLE_DAYS = 30
MONTHLY_BONUS_ORIGEOMETRY = 12

SECTION_LABELS = LabelAliases(
    {
        "events": ("events",),
        "permanent": ("permanent content",),
        "mailbox": ("mailbox & web events", "mailbox and web events"),
        "recurring": ("recurring sources",),
        "total": ("total",),
    }
)

ROW_LABELS = LabelAliases(
    {
        "firewalker": ("firewalker's trail",),
        "messenger": ("messenger express",),
        "hues": ("hues of passion",),
        "dailyActivity": ("daily activity",),
        "weekly": ("weekly routine",),
        "monumental": ("monumental etching",),
        "aicQuota": ("aic quota exchange", "aic quata exchange"),
        "urgentRecruit": ("urgent recruit",),
        "hhDossier": ("hh dossier",),
        "monthly": ("monthly pass",),
        "bp2Pass": ("originium supply pass",),
        "bp3Pass": ("protocol customized pass",),
        "bpCrateM": ("exchange crate-o-surprise [m]",),
        "bpCrateL": ("exchange crate-o-surprise [l]",),
    }
)

# Header candidates per currency, checked as exact or substring matches.
_HEADER_CANDIDATES: Dict[str, Sequence[str]] = {
    "oroberyl": ("oroberyl",),
    "origeometry": ("origeometry",),
    "chartered": ("chartered hh permit", "chartered"),
    "basic": ("basic hh permit", "basic"),
    "arsenal": ("arsenal tickets", "arsenal"),
}

# Name, Oroberyl, Chartered, Basic, Origeometry, Arsenal
_IMPLICIT_COLUMNS: Dict[str, int] = {
    "oroberyl": 1,
    "chartered": 2,
    "basic": 3,
    "origeometry": 4,
    "arsenal": 5,
}

_TIMED_PERMITS = ("firewalker", "messenger", "hues")
_PASS_CORE_KEYS = ("origeometry", "arsenal")
_PASS_CRATE_KEYS = ("oroberyl", "chartered", "basic", "firewalker", "messenger", "hues")


@dataclass(slots=True)
class _SheetRow:
    name: str
    rewards: Rewards
    has_data: bool


@dataclass
class _Totals:
    """Accumulates section sums and named rows while walking the sheet."""

    events_aggregate: Rewards = field(default_factory=Rewards)
    events_sum: Rewards = field(default_factory=Rewards)
    permanent: Rewards = field(default_factory=Rewards)
    mailbox: Rewards = field(default_factory=Rewards)
    timed: Dict[str, float] = field(default_factory=lambda: {key: 0.0 for key in _TIMED_PERMITS})
    named: Dict[str, Rewards] = field(default_factory=dict)


def _column_indexes(headers: Sequence[str]) -> Dict[str, int]:
    explicit = {
        key: find_header_index(headers, candidates) for key, candidates in _HEADER_CANDIDATES.items()
    }
    if all(index >= 0 for index in explicit.values()):
        return explicit
    return dict(_IMPLICIT_COLUMNS)


def _read_row(record: Sequence[str], columns: Dict[str, int]) -> _SheetRow:
    raw = {key: cell(record, index) for key, index in columns.items()}
    return _SheetRow(
        name=cell(record, 0),
        rewards=Rewards(**{key: parse_number(value) for key, value in raw.items()}),
        has_data=any(value for value in raw.values()),
    )


def _collect(rows: Sequence[_SheetRow]) -> _Totals:
    totals = _Totals()
    section = ""
    for row in rows:
        name = normalize_label(row.name)
        if not name:
            continue

        header = SECTION_LABELS.resolve(name)
        if header is not None:
            if header == "events" and row.has_data:
                totals.events_aggregate = row.rewards.copy()
            if header != "total":
                section = header
            continue

        if row.has_data:
            if section == "events":
                totals.events_sum.add(row.rewards)
            elif section == "permanent":
                totals.permanent.add(row.rewards)
            elif section == "mailbox":
                totals.mailbox.add(row.rewards)

        row_id = ROW_LABELS.resolve(name)
        if row_id is None:
            continue
        if row_id in _TIMED_PERMITS:
            totals.timed[row_id] += row.rewards.chartered
        elif row_id in ("bp2Pass", "bp3Pass"):
            _split_pass_row(totals, row_id, row.rewards)
        else:
            totals.named[row_id] = row.rewards.copy()
    return totals


def _split_pass_row(totals: _Totals, row_id: str, rewards: Rewards) -> None:
    # Pass rows mix guaranteed rewards with the crate estimate; an explicit
    # crate row always wins over the fallback taken from here.
    core_id, crate_id = ("bp2Core", "bpCrateM") if row_id == "bp2Pass" else ("bp3Core", "bpCrateL")
    core = rewards.only(*_PASS_CORE_KEYS)
    if core.has_any():
        totals.named[core_id] = core
    fallback = rewards.only(*_PASS_CRATE_KEYS)
    existing = totals.named.get(crate_id)
    if fallback.has_any() and (existing is None or not existing.has_any()):
        totals.named[crate_id] = fallback


def _events_rewards(totals: _Totals) -> Rewards:
    aggregate = totals.events_aggregate if totals.events_aggregate.has_any() else totals.events_sum
    timed_total = sum(totals.timed.values())
    chartered = aggregate.chartered
    if timed_total > 0 and aggregate.chartered >= timed_total:
        chartered = aggregate.chartered - timed_total
    return Rewards(
        oroberyl=aggregate.oroberyl,
        origeometry=aggregate.origeometry,
        chartered=chartered,
        basic=aggregate.basic,
        firewalker=totals.timed["firewalker"],
        messenger=totals.timed["messenger"],
        hues=totals.timed["hues"],
        arsenal=aggregate.arsenal,
    )


def _monthly_source(named: Dict[str, Rewards]) -> Source:
    sheet_value = named.get("monthly", Rewards()).oroberyl
    source = Source("monthly", "Monthly Pass", Gate.MONTHLY)
    if sheet_value:
        source.rewards = Rewards(oroberyl=sheet_value)
    else:
        source.scalers.append(
            Scaler(unit=ScalerUnit.DAY, rewards=Rewards(oroberyl=MONTHLY_PASS_DAILY_OROBERYL))
        )
    return source


def _monthly_bonus_source() -> Source:
    return Source(
        "monthlyBonus",
        "Monthly Pass Bonus",
        Gate.MONTHLY,
        count_in_pulls=False,
        scalers=[
            Scaler(
                unit=ScalerUnit.CYCLE,
                every_days=MONTHLY_BONUS_CYCLE_DAYS,
                rounding=Rounding.CEIL,
                rewards=Rewards(origeometry=MONTHLY_BONUS_ORIGEOMETRY),
            )
        ],
    )


def build_sources(totals: _Totals) -> List[Source]:
    """Return the fifteen Endfield sources in their fixed output order."""

    named = totals.named

    def rewards(row_id: str) -> Rewards:
        return named.get(row_id, Rewards()).copy()

    return [
        Source("events", "Events", rewards=_events_rewards(totals)),
        Source("permanent", "Permanent Content", rewards=totals.permanent.copy()),
        Source("mailbox", "Mailbox & Web Events", rewards=totals.mailbox.copy()),
        Source("dailyActivity", "Daily Activity", rewards=rewards("dailyActivity")),
        Source("weekly", "Weekly Routine", rewards=rewards("weekly")),
        Source("monumental", "Monumental Etching", rewards=rewards("monumental")),
        Source("aicQuota", "AIC Quota Exchange", option_key="includeAicQuotaExchange", rewards=rewards("aicQuota")),
        Source("urgentRecruit", "Urgent Recruit", option_key="includeUrgentRecruit", rewards=rewards("urgentRecruit")),
        Source("hhDossier", "HH Dossier", option_key="includeHhDossier", rewards=rewards("hhDossier")),
        _monthly_source(named),
        _monthly_bonus_source(),
        Source("bp2Core", "Originium Supply Pass", Gate.BP2, count_in_pulls=False, rewards=rewards("bp2Core")),
        Source("bp3Core", "Protocol Customized Pass", Gate.BP3, count_in_pulls=False, rewards=rewards("bp3Core")),
        Source(
            "bpCrateM",
            "Exchange Crate-o-Surprise [M]",
            Gate.BP2,
            option_key="includeBpCrates",
            rewards=rewards("bpCrateM"),
            crate_model=CrateModel(),
        ),
        Source(
            "bpCrateL",
            "Exchange Crate-o-Surprise [L]",
            Gate.BP3,
            option_key="includeBpCrates",
            rewards=rewards("bpCrateL"),
            crate_model=CrateModel(),
        ),
    ]


class EndfieldSheetParser(SheetParser):
    game_id = GAME_ID

    def parse(self, sheet_name: str, csv_text: str) -> Patch:
        records = read_records(csv_text)
        if len(records) < 2:
            raise ParseError(f"Sheet {sheet_name!r} has no data rows")

        headers = records[0]
        columns = _column_indexes(headers)
        duration = header_duration_days(headers, records[1])
        if duration <= 0:
            markers = " / ".join(DURATION_MARKERS)
            raise ParseError(f"Sheet {sheet_name!r}: unable to determine durationDays ({markers})")

        rows = [_read_row(record, columns) for record in records[1:]]
        totals = _collect(rows)
        title = cell(headers, 0)
        version_name, start_date = parse_title_meta(title)
        patch_id = canonical_patch_id(sheet_name)
        logger.debug("Parsed Endfield sheet %s as patch %s (%d days)", sheet_name, patch_id, duration)
        return Patch(
            id=patch_id,
            patch=patch_id,
            version_name=version_name,
            start_date=start_date,
            duration_days=duration,
            tags=patch_tags_from(sheet_name, title),
            notes=self.notes,
            sources=build_sources(totals),
        )


__all__ = [
    "GAME_ID",
    "SECTION_LABELS",
    "ROW_LABELS",
    "EndfieldSheetParser",
    "build_sources",
]
