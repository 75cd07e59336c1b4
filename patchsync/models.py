"""Canonical domain model for generated patch catalogs.

All reward amounts are stored under the fixed canonical resource keys listed
in :data:`RESOURCE_KEYS`.  Game specific currency names are accepted when
reading mappings (see :meth:`Rewards.from_mapping`) and are only produced
again when a generated file is rendered for a particular game.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from patchsync.errors import ParseError

RESOURCE_KEYS = (
    "oroberyl",
    "origeometry",
    "chartered",
    "basic",
    "firewalker",
    "messenger",
    "hues",
    "arsenal",
)

_RESOURCE_ALIASES: Mapping[str, Iterable[str]] = {
    "oroberyl": ("oroberyl", "astrite", "polychrome", "primogem", "stellarjade"),
    "origeometry": ("origeometry", "lunite", "monochrome", "genesiscrystal", "oneiricshard"),
    "chartered": ("chartered", "radianttide", "encryptedmastertape", "intertwinedfate", "specialpass"),
    "basic": ("basic", "lustroustide", "mastertape", "acquaintfate", "railpass"),
    "firewalker": ("firewalker", "forgingtide"),
    "messenger": ("messenger",),
    "hues": ("hues",),
    "arsenal": ("arsenal", "forgingtoken", "boopon", "starglitter", "tracksofdestiny"),
}

_ALIAS_TO_KEY: Dict[str, str] = {
    alias: key for key, aliases in _RESOURCE_ALIASES.items() for alias in aliases
}

_KEY_STRIP_CHARS = str.maketrans("", "", " _-'\"")


def normalize_resource_key(raw: str) -> str:
    """Return ``raw`` lower-cased with spaces, ``_``, ``-`` and quotes removed."""

    return (raw or "").strip().lower().translate(_KEY_STRIP_CHARS)


def canonical_resource_key(raw: str) -> Optional[str]:
    """Map a canonical key or any known public alias onto its canonical key."""

    return _ALIAS_TO_KEY.get(normalize_resource_key(raw))


def clean_number(value: float) -> float | int:
    """Render whole floats as ints so generated output stays stable."""

    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def round_to_tenth(value: float) -> float:
    # Half away from zero.
    scaled = abs(value) * 10
    rounded = math.floor(scaled + 0.5) / 10
    return math.copysign(rounded, value) if rounded else 0.0


@dataclass(slots=True)
class Rewards:
    """A reward or cost bundle keyed by canonical resource names."""

    oroberyl: float = 0.0
    origeometry: float = 0.0
    chartered: float = 0.0
    basic: float = 0.0
    firewalker: float = 0.0
    messenger: float = 0.0
    hues: float = 0.0
    arsenal: float = 0.0

    @classmethod
    def from_mapping(cls, payload: Optional[Mapping[str, Any]]) -> "Rewards":
        """Build a bundle from ``payload`` accepting public currency aliases.

        Unknown keys are ignored.  Several aliases of the same canonical key
        are summed.
        """

        rewards = cls()
        if not payload:
            return rewards
        if not isinstance(payload, Mapping):
            raise ParseError(f"Reward bundle must be an object, got {type(payload).__name__}")
        for raw_key, raw_value in payload.items():
            key = canonical_resource_key(str(raw_key))
            if key is None:
                continue
            try:
                amount = float(raw_value)
            except (TypeError, ValueError) as exc:
                raise ParseError(f"Reward amount for {raw_key!r} is not numeric") from exc
            setattr(rewards, key, getattr(rewards, key) + amount)
        return rewards

    def add(self, other: "Rewards") -> None:
        for key in RESOURCE_KEYS:
            setattr(self, key, getattr(self, key) + getattr(other, key))

    def plus(self, other: "Rewards") -> "Rewards":
        combined = self.copy()
        combined.add(other)
        return combined

    def scaled(self, factor: float) -> "Rewards":
        return Rewards(**{key: getattr(self, key) * factor for key in RESOURCE_KEYS})

    def only(self, *keys: str) -> "Rewards":
        """Return a copy keeping just ``keys``; every other amount is zero."""

        return Rewards(**{key: getattr(self, key) for key in keys})

    def without(self, *keys: str) -> "Rewards":
        return Rewards(**{key: getattr(self, key) for key in RESOURCE_KEYS if key not in keys})

    def copy(self) -> "Rewards":
        return Rewards(**self.to_dict())

    def has_any(self) -> bool:
        return any(getattr(self, key) != 0 for key in RESOURCE_KEYS)

    def to_dict(self) -> Dict[str, float]:
        return {key: clean_number(float(getattr(self, key))) for key in RESOURCE_KEYS}


class Gate(Enum):
    ALWAYS = "always"
    MONTHLY = "monthly"
    BP2 = "bp2"
    BP3 = "bp3"


class ScalerUnit(Enum):
    DAY = "day"
    CYCLE = "cycle"


class Rounding(Enum):
    FLOOR = "floor"
    CEIL = "ceil"
    ROUND = "round"


def _enum_value(enum_type, raw: Any, label: str):
    try:
        return enum_type(str(raw).strip().lower())
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_type)
        raise ParseError(f"Unknown {label} {raw!r} (allowed: {allowed})") from exc


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(slots=True)
class Scaler:
    """Periodic reward rule expanded against a patch duration."""

    unit: ScalerUnit
    rewards: Rewards
    every_days: int = 1
    rounding: Rounding = Rounding.FLOOR
    type: str = "per_duration"

    def __post_init__(self) -> None:
        if self.every_days <= 0:
            raise ParseError("Scaler everyDays must be a positive integer")

    def cycles(self, duration_days: int) -> int:
        """Return how many times the per-cycle reward is granted."""

        if self.unit is ScalerUnit.DAY:
            return duration_days
        ratio = duration_days / self.every_days
        if self.rounding is Rounding.CEIL:
            return math.ceil(ratio)
        if self.rounding is Rounding.ROUND:
            return _round_half_up(ratio)
        return math.floor(ratio)

    def evaluate(self, duration_days: int) -> Rewards:
        return self.rewards.scaled(self.cycles(duration_days))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "unit": self.unit.value,
            "everyDays": self.every_days,
            "rounding": self.rounding.value,
            "rewards": self.rewards.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Scaler":
        return cls(
            type=str(payload.get("type") or "per_duration"),
            unit=_enum_value(ScalerUnit, payload.get("unit", "day"), "scaler unit"),
            every_days=int(payload.get("everyDays") or 1),
            rounding=_enum_value(Rounding, payload.get("rounding", "floor"), "scaler rounding"),
            rewards=Rewards.from_mapping(payload.get("rewards")),
        )


@dataclass(slots=True)
class CrateModel:
    """Crate estimate attached to the battle pass exchange sources."""

    type: str = "post_bp60_estimate"
    days_to_level60_tier3: int = 21
    tier2_xp_bonus: float = 0.03
    tier3_xp_bonus: float = 0.06

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "daysToLevel60Tier3": self.days_to_level60_tier3,
            "tier2XpBonus": self.tier2_xp_bonus,
            "tier3XpBonus": self.tier3_xp_bonus,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "CrateModel":
        return cls(
            type=str(payload.get("type") or "post_bp60_estimate"),
            days_to_level60_tier3=int(payload.get("daysToLevel60Tier3") or 0),
            tier2_xp_bonus=float(payload.get("tier2XpBonus") or 0.0),
            tier3_xp_bonus=float(payload.get("tier3XpBonus") or 0.0),
        )


@dataclass(slots=True)
class Source:
    """One reward granting mechanism inside a patch."""

    id: str
    label: str
    gate: Gate = Gate.ALWAYS
    option_key: Optional[str] = None
    count_in_pulls: bool = True
    pulls: Optional[float] = None
    rewards: Rewards = field(default_factory=Rewards)
    costs: Rewards = field(default_factory=Rewards)
    scalers: List[Scaler] = field(default_factory=list)
    crate_model: Optional[CrateModel] = None

    def expanded_rewards(self, duration_days: int) -> Rewards:
        """Return the flat rewards plus every scaler evaluated for ``duration_days``."""

        total = self.rewards.copy()
        for scaler in self.scalers:
            total.add(scaler.evaluate(duration_days))
        return total

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "label": self.label,
            "gate": self.gate.value,
            "optionKey": self.option_key,
            "countInPulls": self.count_in_pulls,
        }
        if self.pulls is not None:
            payload["pulls"] = clean_number(float(self.pulls))
        payload["rewards"] = self.rewards.to_dict()
        payload["costs"] = self.costs.to_dict()
        payload["scalers"] = [scaler.to_dict() for scaler in self.scalers]
        if self.crate_model is not None:
            payload["bpCrateModel"] = self.crate_model.to_dict()
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Source":
        source_id = str(payload.get("id") or "").strip()
        if not source_id:
            raise ParseError("Source entries require an id")
        pulls = payload.get("pulls")
        crate = payload.get("bpCrateModel")
        return cls(
            id=source_id,
            label=str(payload.get("label") or ""),
            gate=_enum_value(Gate, payload.get("gate", "always"), "gate"),
            option_key=payload.get("optionKey") or None,
            count_in_pulls=bool(payload.get("countInPulls", True)),
            pulls=None if pulls is None else float(pulls),
            rewards=Rewards.from_mapping(payload.get("rewards")),
            costs=Rewards.from_mapping(payload.get("costs")),
            scalers=[Scaler.from_dict(item) for item in payload.get("scalers") or []],
            crate_model=CrateModel.from_dict(crate) if isinstance(crate, Mapping) else None,
        )


@dataclass(slots=True)
class Patch:
    """One game content update cycle."""

    id: str
    patch: str
    version_name: str
    start_date: str
    duration_days: int
    sources: List[Source] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    notes: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.duration_days, int) or self.duration_days <= 0:
            raise ParseError(f"Patch {self.id!r} durationDays must be a positive integer")
        seen = set()
        for source in self.sources:
            if source.id in seen:
                raise ParseError(f"Patch {self.id!r} has duplicate source id {source.id!r}")
            seen.add(source.id)

    def source(self, source_id: str) -> Optional[Source]:
        for candidate in self.sources:
            if candidate.id == source_id:
                return candidate
        return None

    def comparable(self) -> Dict[str, Any]:
        """Return the view used to decide whether two patches are equivalent.

        Notes are deliberately left out; they only describe provenance.
        """

        return {
            "id": self.id.strip(),
            "patch": self.patch.strip(),
            "versionName": self.version_name.strip(),
            "startDate": self.start_date.strip(),
            "durationDays": self.duration_days,
            "tags": list(self.tags),
            "sources": [source.to_dict() for source in self.sources],
        }

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "patch": self.patch,
            "versionName": self.version_name,
            "startDate": self.start_date,
            "durationDays": self.duration_days,
        }
        if self.tags:
            payload["tags"] = list(self.tags)
        payload["notes"] = self.notes
        payload["sources"] = [source.to_dict() for source in self.sources]
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Patch":
        patch_id = str(payload.get("id") or payload.get("patch") or "").strip()
        if not patch_id:
            raise ParseError("Patch entries require an id")
        try:
            duration = int(payload.get("durationDays") or 0)
        except (TypeError, ValueError) as exc:
            raise ParseError(f"Patch {patch_id!r} durationDays is not an integer") from exc
        return cls(
            id=patch_id,
            patch=str(payload.get("patch") or patch_id),
            version_name=str(payload.get("versionName") or ""),
            start_date=str(payload.get("startDate") or ""),
            duration_days=duration,
            tags=[str(tag) for tag in payload.get("tags") or []],
            notes=str(payload.get("notes") or ""),
            sources=[Source.from_dict(item) for item in payload.get("sources") or []],
        )


@dataclass(slots=True)
class GeneratedMeta:
    game_id: str
    spreadsheet_id: str
    sheets: List[str]
    generated_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gameId": self.game_id,
            "spreadsheetId": self.spreadsheet_id,
            "sheets": list(self.sheets),
            "generatedAt": self.generated_at,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "GeneratedMeta":
        return cls(
            game_id=str(payload.get("gameId") or ""),
            spreadsheet_id=str(payload.get("spreadsheetId") or ""),
            sheets=[str(name) for name in payload.get("sheets") or []],
            generated_at=str(payload.get("generatedAt") or ""),
        )


CHANGE_ADDED = "added"
CHANGE_UPDATED = "updated"


@dataclass(slots=True)
class PatchChange:
    patch: str
    change_type: str
    changed_sources: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"patch": self.patch, "changeType": self.change_type}
        if self.changed_sources:
            payload["changedSources"] = list(self.changed_sources)
        return payload


@dataclass(slots=True)
class ChangeLogRecord:
    timestamp: str
    game_id: str
    spreadsheet_id: str
    output_path: str
    generated_at: str
    updated_patches: List[PatchChange] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "gameId": self.game_id,
            "spreadsheetId": self.spreadsheet_id,
            "outputPath": self.output_path,
            "generatedAt": self.generated_at,
            "updatedPatches": [change.to_dict() for change in self.updated_patches],
        }


__all__ = [
    "RESOURCE_KEYS",
    "normalize_resource_key",
    "canonical_resource_key",
    "clean_number",
    "round_to_tenth",
    "Rewards",
    "Gate",
    "ScalerUnit",
    "Rounding",
    "Scaler",
    "CrateModel",
    "Source",
    "Patch",
    "GeneratedMeta",
    "CHANGE_ADDED",
    "CHANGE_UPDATED",
    "PatchChange",
    "ChangeLogRecord",
]
