from __future__ import annotations

import pytest

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
    canonical_resource_key,
    clean_number,
    round_to_tenth,
)


def test_day_scaler_multiplies_by_duration() -> None:
    scaler = Scaler(unit=ScalerUnit.DAY, rewards=Rewards(oroberyl=200))

    assert scaler.cycles(54) == 54
    assert scaler.evaluate(54).oroberyl == 10800


@pytest.mark.parametrize(
    "rounding, expected",
    [(Rounding.FLOOR, 1), (Rounding.CEIL, 2), (Rounding.ROUND, 2)],
)
def test_cycle_scaler_rounding(rounding: Rounding, expected: int) -> None:
    scaler = Scaler(unit=ScalerUnit.CYCLE, every_days=30, rounding=rounding, rewards=Rewards(origeometry=12))

    assert scaler.cycles(45) == expected
    assert scaler.evaluate(45).origeometry == 12 * expected


def test_scaler_rejects_non_positive_interval() -> None:
    with pytest.raises(ParseError):
        Scaler(unit=ScalerUnit.CYCLE, every_days=0, rewards=Rewards())


def test_rewards_from_mapping_accepts_public_aliases() -> None:
    rewards = Rewards.from_mapping({"astrite": 160, "Radiant Tide": 2, "forging_tide": 1, "unknown": 9})

    assert rewards.oroberyl == 160
    assert rewards.chartered == 2
    assert rewards.firewalker == 1
    assert canonical_resource_key("Lustrous-Tide") == "basic"


def test_rewards_from_mapping_rejects_non_numeric_amount() -> None:
    with pytest.raises(ParseError):
        Rewards.from_mapping({"oroberyl": "lots"})


def test_round_to_tenth_rounds_half_away_from_zero() -> None:
    assert round_to_tenth(12.25) == 12.3
    assert round_to_tenth(-12.25) == -12.3
    assert round_to_tenth(0.04) == 0.0
    assert clean_number(3.0) == 3
    assert isinstance(clean_number(3.0), int)


def test_source_expanded_rewards_adds_scalers() -> None:
    source = Source(
        "monthly",
        "Monthly Pass",
        Gate.MONTHLY,
        rewards=Rewards(origeometry=6),
        scalers=[Scaler(unit=ScalerUnit.DAY, rewards=Rewards(oroberyl=200))],
    )

    total = source.expanded_rewards(30)

    assert total.oroberyl == 6000
    assert total.origeometry == 6


def test_patch_validates_duration_and_unique_sources() -> None:
    with pytest.raises(ParseError):
        Patch(id="1.0", patch="1.0", version_name="", start_date="", duration_days=0)

    with pytest.raises(ParseError):
        Patch(
            id="1.0",
            patch="1.0",
            version_name="",
            start_date="",
            duration_days=42,
            sources=[Source("events", "Events"), Source("events", "Events again")],
        )


def test_patch_round_trips_through_dict() -> None:
    patch = Patch(
        id="1.2",
        patch="1.2",
        version_name="Into the Wild",
        start_date="2026-03-14",
        duration_days=42,
        tags=["WIP"],
        notes="note",
        sources=[
            Source("events", "Events", pulls=12.5, rewards=Rewards(oroberyl=1000)),
            Source("bpCrateM", "Crate", Gate.BP2, option_key="includeBpCrates", crate_model=CrateModel()),
        ],
    )

    payload = patch.to_dict()
    restored = Patch.from_dict(payload)

    assert payload["sources"][0]["pulls"] == 12.5
    assert "pulls" not in payload["sources"][1]
    assert payload["sources"][1]["bpCrateModel"]["daysToLevel60Tier3"] == 21
    assert restored.comparable() == patch.comparable()


def test_comparable_ignores_notes() -> None:
    first = Patch(id="1.0", patch="1.0", version_name="", start_date="", duration_days=42, notes="a")
    second = Patch(id="1.0", patch="1.0", version_name="", start_date="", duration_days=42, notes="b")

    assert first.comparable() == second.comparable()
    assert "tags" not in first.to_dict()
