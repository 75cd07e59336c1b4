"""Registry of supported games.

Adding a game means writing a :class:`~patchsync.sheet_parsing.SheetParser`
subclass and adding one :class:`GameProfile` row to :data:`GAME_PROFILES`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from patchsync.data_sheet import TOTAL_F2P, TOTAL_PAID, DataSheetRules
from patchsync.endfield_parser import EndfieldSheetParser
from patchsync.errors import ConfigurationError
from patchsync.models import RESOURCE_KEYS, Patch, Rewards, clean_number
from patchsync.sheet_parsing import LabelAliases, SheetParser
from patchsync.wuwa_parser import WuwaSheetParser

ENDFIELD = "arknights-endfield"
WUTHERING_WAVES = "wuthering-waves"
DEFAULT_GAME_ID = ENDFIELD

# Public currency name -> canonical keys summed into it.
Vocabulary = Mapping[str, Tuple[str, ...]]

CANONICAL_VOCABULARY: Vocabulary = {key: (key,) for key in RESOURCE_KEYS}

WUWA_VOCABULARY: Vocabulary = {
    "astrite": ("oroberyl",),
    "lunite": ("origeometry",),
    "forgingToken": ("arsenal",),
    "radiantTide": ("chartered",),
    "lustrousTide": ("basic",),
    "forgingTide": ("firewalker", "messenger", "hues"),
}


@dataclass(frozen=True)
class GameProfile:
    id: str
    title: str
    default_spreadsheet_id: str
    default_output_path: str
    parser: SheetParser
    data_sheet: Optional[DataSheetRules] = None
    vocabulary: Vocabulary = field(default_factory=lambda: CANONICAL_VOCABULARY)

    @property
    def spreadsheet_env_key(self) -> str:
        """Environment variable that overrides the default spreadsheet id."""

        return "PATCHSYNC_SPREADSHEET_ID_" + re.sub(r"[^A-Z0-9]+", "_", self.id.upper())

    def parse(self, sheet_name: str, csv_text: str) -> Patch:
        return self.parser.parse(sheet_name, csv_text)

    def public_rewards(self, rewards: Rewards) -> Dict[str, float]:
        """Render ``rewards`` with this game's public currency names."""

        return {
            name: clean_number(float(sum(getattr(rewards, key) for key in keys)))
            for name, keys in self.vocabulary.items()
        }


ENDFIELD_F2P_SOURCES = (
    "events",
    "permanent",
    "mailbox",
    "dailyActivity",
    "weekly",
    "monumental",
    "aicQuota",
    "urgentRecruit",
    "hhDossier",
)
# "Total Paid" is cumulative: every F2P source plus the paid ones.
ENDFIELD_PAID_SOURCES = ("monthly", "bpCrateM", "bpCrateL")

ENDFIELD_DATA_SHEET = DataSheetRules(
    rows=LabelAliases(
        {
            "dailyActivity": ("daily activity",),
            "weekly": ("weekly routine",),
            "monumental": ("monumental etching",),
            "aicQuota": ("aic quota exchange",),
            "urgentRecruit": ("urgent recruit",),
            "hhDossier": ("hh dossier",),
            "permanent": ("permanent content",),
            "events": ("events",),
            "mailbox": ("mailbox & web events", "mailbox and web events"),
            "bpCrateM": ("originium supply pass",),
            "bpCrateL": ("protocol customized pass",),
            "monthly": ("monthly pass",),
            TOTAL_F2P: ("f2p headhunt total", "total f2p"),
            TOTAL_PAID: ("total paid",),
        }
    ),
    f2p_source_ids=ENDFIELD_F2P_SOURCES,
    paid_source_ids=ENDFIELD_F2P_SOURCES + ENDFIELD_PAID_SOURCES,
)

WUWA_F2P_SOURCES = (
    "events",
    "permanent",
    "mailbox",
    "dailyActivity",
    "endgameModes",
    "coralShop",
    "weaponPulls",
)

WUWA_DATA_SHEET = DataSheetRules(
    rows=LabelAliases(
        {
            "events": ("version events",),
            "permanent": ("permanent content",),
            "mailbox": ("mailbox/miscellaneous",),
            "dailyActivity": ("daily activity",),
            "endgameModes": ("recurring sources",),
            "coralShop": ("coral shop",),
            "weaponPulls": ("weapon pulls",),
            "paidPodcast": ("paid pioneer podcast",),
            "monthly": ("lunite subscription",),
            TOTAL_F2P: ("limited total f2p",),
        }
    ),
    f2p_source_ids=WUWA_F2P_SOURCES,
    catch_all_source_id="endgameModes",
)

GAME_PROFILES: Dict[str, GameProfile] = {
    ENDFIELD: GameProfile(
        id=ENDFIELD,
        title="Arknights: Endfield",
        default_spreadsheet_id="1zGNuQ53R7c190RG40dHxcHv8tJuT3cBaclm8CjI-luY",
        default_output_path="src/data/endfield.generated.js",
        parser=EndfieldSheetParser(),
        data_sheet=ENDFIELD_DATA_SHEET,
    ),
    WUTHERING_WAVES: GameProfile(
        id=WUTHERING_WAVES,
        title="Wuthering Waves",
        default_spreadsheet_id="1msSsnWBcXKniykf4rWQCEdk2IQuB9JHy",
        default_output_path="src/data/wuwa.generated.js",
        parser=WuwaSheetParser(),
        data_sheet=WUWA_DATA_SHEET,
        vocabulary=WUWA_VOCABULARY,
    ),
}


def available_game_ids() -> List[str]:
    return list(GAME_PROFILES)


def resolve_profile(game_id: Optional[str]) -> GameProfile:
    """Return the profile for ``game_id``; blank ids select the default game."""

    key = (game_id or "").strip() or DEFAULT_GAME_ID
    try:
        return GAME_PROFILES[key]
    except KeyError:
        allowed = ", ".join(available_game_ids())
        raise ConfigurationError(f"unknown game id {key!r} (allowed: {allowed})") from None


__all__ = [
    "ENDFIELD",
    "WUTHERING_WAVES",
    "DEFAULT_GAME_ID",
    "CANONICAL_VOCABULARY",
    "WUWA_VOCABULARY",
    "GameProfile",
    "GAME_PROFILES",
    "available_game_ids",
    "resolve_profile",
]
