"""Row, label and number helpers shared by the per-game sheet parsers.

Spreadsheet owners type numbers with whatever separators their locale uses,
rename rows between patches and annotate tab names with work-in-progress
markers.  The helpers in this module absorb that variation so the parsers can
work with normalised labels and plain floats.
"""

from __future__ import annotations

import csv
import io
import math
import re
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from patchsync.errors import ParseError
from patchsync.models import round_to_tenth

VERSION_LIKE_PATTERN = re.compile(r"^\d+\.\d+(?:\*+)?(?:\s*(?:\([^)]+\)|[A-Za-z][A-Za-z0-9 ._-]*))?$")
VERSION_PREFIX_PATTERN = re.compile(r"^\s*(\d+)\.(\d+)")
STRICT_VERSION_PATTERN = re.compile(r"^\d+\.\d+$")
WIP_TAG_PATTERN = re.compile(r"(?:^|[^a-z0-9])(?:wip|stc)(?:[^a-z0-9]|$)", re.IGNORECASE)
WIP_TAG = "WIP"

_FLOAT_PATTERN = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_TITLE_DATE_PATTERN = re.compile(r"\((\d{1,2}/\d{1,2}/\d{4})\)")
_APOSTROPHES = str.maketrans({"’": "'", "`": "'"})

DURATION_MARKERS: Tuple[str, ...] = ("version length", "version duration")


# ----------------------------------------------------------------------
# Sheet and patch names
# ----------------------------------------------------------------------
def normalize_sheet_name(raw: str) -> str:
    """Collapse runs of whitespace so tab names compare reliably."""

    return " ".join((raw or "").split())


def is_version_like_sheet_name(raw: str) -> bool:
    """Return ``True`` for tab names such as ``"1.2"``, ``"3.1 (STC)"`` or ``"2.0* WIP"``."""

    return bool(VERSION_LIKE_PATTERN.match(normalize_sheet_name(raw)))


def canonical_patch_id(sheet_name: str) -> str:
    """Return the ``major.minor`` prefix of ``sheet_name``.

    Names without a version prefix are returned whitespace-normalised.
    """

    match = VERSION_PREFIX_PATTERN.match(sheet_name or "")
    if not match:
        return normalize_sheet_name(sheet_name)
    return f"{int(match.group(1))}.{int(match.group(2))}"


def patch_tags_from(*values: str) -> List[str]:
    """Return ``["WIP"]`` when any of ``values`` carries a WIP or STC marker."""

    for raw in values:
        normalized = normalize_sheet_name(raw)
        if normalized and WIP_TAG_PATTERN.search(normalized):
            return [WIP_TAG]
    return []


def merge_tags(*tag_lists: Iterable[str]) -> List[str]:
    merged: List[str] = []
    for tags in tag_lists:
        for tag in tags or ():
            tag = tag.strip()
            if tag and tag not in merged:
                merged.append(tag)
    return merged


def version_sort_key(value: str) -> Tuple[int, int, int, str]:
    """Sort key placing ``major.minor`` values first, numerically, then the rest lexically."""

    match = VERSION_PREFIX_PATTERN.match((value or "").strip())
    if not match:
        return (1, 0, 0, value or "")
    return (0, int(match.group(1)), int(match.group(2)), value)


def sort_versions(values: Iterable[str]) -> List[str]:
    return sorted(values, key=version_sort_key)


def unique_names(values: Iterable[str]) -> List[str]:
    """Drop blanks and duplicates while keeping the first spelling seen."""

    seen = set()
    result: List[str] = []
    for value in values:
        key = (value or "").strip()
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(value)
    return result


# ----------------------------------------------------------------------
# Labels
# ----------------------------------------------------------------------
def normalize_label(value: str) -> str:
    """Normalise a row label for case, whitespace and apostrophe insensitive matching."""

    value = (value or "").strip()
    if value.endswith(":"):
        value = value[:-1]
    value = value.translate(_APOSTROPHES).lower()
    return " ".join(value.split())


class LabelAliases:
    """Explicit table mapping canonical ids to the raw labels accepted for them.

    Labels are normalised with :func:`normalize_label` on construction, so the
    table can be written with the spelling used in the sheets.
    """

    def __init__(self, table: Mapping[str, Sequence[str]]) -> None:
        self._table: Dict[str, Tuple[str, ...]] = {}
        self._reverse: Dict[str, str] = {}
        for canonical, labels in table.items():
            normalized = tuple(normalize_label(label) for label in labels)
            self._table[canonical] = normalized
            for label in normalized:
                existing = self._reverse.get(label)
                if existing is not None and existing != canonical:
                    raise ValueError(
                        f"Label {label!r} is mapped to both {existing!r} and {canonical!r}"
                    )
                self._reverse[label] = canonical

    def resolve(self, raw_label: str) -> Optional[str]:
        return self._reverse.get(normalize_label(raw_label))

    def labels_for(self, canonical: str) -> Tuple[str, ...]:
        return self._table.get(canonical, ())

    def coverage(self) -> Dict[str, Tuple[str, ...]]:
        return dict(self._table)


# ----------------------------------------------------------------------
# Numbers
# ----------------------------------------------------------------------
def _to_float(cleaned: str) -> Optional[float]:
    if not _FLOAT_PATTERN.match(cleaned):
        return None
    value = float(cleaned)
    if not math.isfinite(value):
        return None
    return value


def _resolve_separators(cleaned: str, *, lone_comma_is_decimal: bool) -> str:
    last_comma = cleaned.rfind(",")
    last_dot = cleaned.rfind(".")
    if last_comma >= 0 and last_dot >= 0:
        if last_comma > last_dot:
            return cleaned.replace(".", "").replace(",", ".")
        return cleaned.replace(",", "")
    if last_comma < 0:
        return cleaned
    if lone_comma_is_decimal:
        return cleaned.replace(",", ".")
    if cleaned.count(",") > 1:
        return cleaned.replace(",", "")
    head, tail = cleaned.split(",")
    if len(tail) == 3:
        return head + tail
    return f"{head}.{tail}"


def _collapse_dot_thousands(cleaned: str) -> str:
    parts = cleaned.split(".")
    if len(parts) < 2:
        return cleaned
    if not all(part.isdigit() for part in parts):
        return cleaned
    if any(len(part) != 3 for part in parts[1:]):
        return cleaned
    return "".join(parts)


def parse_number(raw: Optional[str]) -> float:
    """Parse a locale formatted number; blanks and junk parse to ``0.0``.

    ``"1,234.5"``, ``"1234.5"`` and ``"1.234,5"`` all yield ``1234.5``.  A
    trailing ``%`` and non-breaking spaces are ignored.
    """

    cleaned = (raw or "").strip()
    if not cleaned:
        return 0.0
    cleaned = cleaned.replace("\u00a0", "").replace(" ", "")
    if cleaned.endswith("%"):
        cleaned = cleaned[:-1]
    cleaned = _resolve_separators(cleaned, lone_comma_is_decimal=False)
    cleaned = _collapse_dot_thousands(cleaned)
    value = _to_float(cleaned)
    return 0.0 if value is None else value


def parse_int(raw: Optional[str]) -> int:
    return int(parse_number(raw))


def parse_pull_value(raw: Optional[str]) -> Optional[float]:
    """Parse an authoritative pull count, rounded to one decimal.

    Unlike :func:`parse_number` a lone comma is always a decimal mark and
    blank or non-numeric cells return ``None`` so callers can tell "missing"
    apart from zero.
    """

    cleaned = (raw or "").strip()
    if not cleaned:
        return None
    cleaned = cleaned.replace("\u00a0", "").replace(" ", "")
    cleaned = _resolve_separators(cleaned, lone_comma_is_decimal=True)
    value = _to_float(cleaned)
    if value is None:
        return None
    return round_to_tenth(value)


# ----------------------------------------------------------------------
# Records
# ----------------------------------------------------------------------
def read_records(csv_text: str) -> List[List[str]]:
    """Split CSV text into rows, tolerating ragged rows."""

    try:
        return [list(row) for row in csv.reader(io.StringIO(csv_text or ""))]
    except csv.Error as exc:
        raise ParseError(f"csv parse error: {exc}") from exc


def cell(record: Sequence[str], index: int) -> str:
    if index < 0 or index >= len(record):
        return ""
    return (record[index] or "").strip()


def find_header_index(headers: Sequence[str], expected: Sequence[str], default: int = -1) -> int:
    """Return the first header equal to, or containing, one of ``expected``."""

    for index, header in enumerate(headers):
        normalized = normalize_label(header)
        for candidate in expected:
            if normalized == candidate or candidate in normalized:
                return index
    return default


def header_duration_days(headers: Sequence[str], first_row: Sequence[str]) -> int:
    """Read the patch length next to a duration marker in the header row.

    The value may sit in the next header cell or below the marker in the
    first data row.  Returns ``0`` when no positive value is found.
    """

    for index, header in enumerate(headers):
        normalized = normalize_label(header)
        if not any(marker in normalized for marker in DURATION_MARKERS):
            continue
        days = parse_int(cell(headers, index + 1))
        if days > 0:
            return days
        days = parse_int(cell(first_row, index))
        if days > 0:
            return days
    return 0


def grid_duration_days(records: Sequence[Sequence[str]], marker: str = "version length") -> int:
    """Scan every cell for ``marker`` and read the value to its right.

    When the cell to the right is empty the diagonal cell on the next row is
    used, which is where stacked label/value layouts keep it.
    """

    for row_index, record in enumerate(records):
        for col_index, value in enumerate(record):
            if marker not in normalize_label(value):
                continue
            days = parse_int(cell(record, col_index + 1))
            if days > 0:
                return days
            if row_index + 1 < len(records):
                days = parse_int(cell(records[row_index + 1], col_index + 1))
                if days > 0:
                    return days
    return 0


# ----------------------------------------------------------------------
# Header metadata
# ----------------------------------------------------------------------
def parse_date_iso(raw: str, layouts: Sequence[str]) -> str:
    """Return ``raw`` as ``YYYY-MM-DD`` using the first matching layout, else ``""``."""

    value = (raw or "").strip()
    if not value:
        return ""
    for layout in layouts:
        try:
            return datetime.strptime(value, layout).strftime("%Y-%m-%d")
        except ValueError:
            continue
    return ""


def parse_title_meta(title_cell: str) -> Tuple[str, str]:
    """Split a title cell like ``"Version 1.2: Into the Wild (03/14/2025)"``.

    Returns ``(version_name, start_date)``; the name is the text after the
    first colon without its trailing parenthetical and the date is ISO
    formatted from a month-first ``(MM/DD/YYYY)`` group.
    """

    title = (title_cell or "").strip()
    if not title:
        return "", ""

    start_date = ""
    match = _TITLE_DATE_PATTERN.search(title)
    if match:
        start_date = parse_date_iso(match.group(1), ("%m/%d/%Y",))

    _, colon, remainder = title.partition(":")
    version_name = remainder.strip() if colon else title
    open_index = version_name.rfind("(")
    if open_index >= 0:
        version_name = version_name[:open_index].strip()
    return version_name, start_date


class SheetParser:
    """Turns one patch tab into a :class:`~patchsync.models.Patch`.

    Each supported game provides one subclass; the game profile table holds
    an instance so callers never dispatch on game id strings themselves.
    """

    game_id: str = ""
    notes: str = "Generated from Google Sheets by patchsync"

    def parse(self, sheet_name: str, csv_text: str):
        raise NotImplementedError


__all__ = [
    "SheetParser",
    "VERSION_LIKE_PATTERN",
    "VERSION_PREFIX_PATTERN",
    "STRICT_VERSION_PATTERN",
    "WIP_TAG",
    "DURATION_MARKERS",
    "normalize_sheet_name",
    "is_version_like_sheet_name",
    "canonical_patch_id",
    "patch_tags_from",
    "merge_tags",
    "version_sort_key",
    "sort_versions",
    "unique_names",
    "normalize_label",
    "LabelAliases",
    "parse_number",
    "parse_int",
    "parse_pull_value",
    "read_records",
    "cell",
    "find_header_index",
    "header_duration_days",
    "grid_duration_days",
    "parse_date_iso",
    "parse_title_meta",
]

