"""Discovery of patch tabs inside a spreadsheet.

Patch tabs are named like versions (``"1.2"``, ``"3.1 (STC)"``).  Several
strategies are tried in order; the first that produces names wins:

1. the worksheet listing (Sheets API or public feed) together with the tab
   captions scraped from the edit page, filtered by name shape and merged;
2. a brute-force probe of ``<major>.<minor>`` names, one worker per major.

Published spreadsheets only expose their landing page, so their tab names
come from the cached ``name -> gid`` map instead.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Sequence

from patchsync.errors import DiscoveryError, FetchError, PatchSyncError, SyncCancelledError
from patchsync.sheet_parsing import SheetParser, is_version_like_sheet_name, sort_versions, unique_names
from patchsync.sheets_client import SheetsClient, is_published_spreadsheet_id

logger = logging.getLogger(__name__)

DEFAULT_PROBE_MAJORS: Sequence[int] = (1, 0, 2, 3, 4, 5)
MAX_PROBE_MINOR = 50
MAX_CONSECUTIVE_MISSES = 2


def version_like(names: Iterable[str]) -> List[str]:
    return sort_versions(unique_names(name for name in names if is_version_like_sheet_name(name)))


class SheetDiscovery:
    """Enumerates the patch tab names of one spreadsheet."""

    def __init__(
        self,
        client: SheetsClient,
        parser: SheetParser,
        *,
        probe_majors: Sequence[int] = DEFAULT_PROBE_MAJORS,
        max_minor: int = MAX_PROBE_MINOR,
    ) -> None:
        self._client = client
        self._parser = parser
        self._probe_majors = tuple(probe_majors)
        self._max_minor = max_minor

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def discover(self, spreadsheet_id: str) -> List[str]:
        """Return the sorted patch tab names, raising :class:`DiscoveryError` if none exist."""

        if is_published_spreadsheet_id(spreadsheet_id):
            return self.from_published(spreadsheet_id)

        failures: List[str] = []
        names: List[str] = []
        for label, strategy in (
            ("worksheet listing", self.from_listing),
            ("tab captions", self.from_tab_captions),
        ):
            try:
                found = strategy(spreadsheet_id)
            except SyncCancelledError:
                raise
            except FetchError as exc:
                logger.info("Sheet discovery via %s failed: %s", label, exc)
                failures.append(f"{label}: {exc}")
                continue
            logger.debug("Sheet discovery via %s found %d tabs", label, len(found))
            names.extend(found)

        names = version_like(names)
        if names:
            return names

        probed = self.probe(spreadsheet_id)
        if probed:
            return probed

        failures.append("probe: no <major>.<minor> sheets answered")
        raise DiscoveryError("failed to discover version sheets automatically (" + "; ".join(failures) + ")")

    def from_published(self, spreadsheet_id: str) -> List[str]:
        try:
            gids = self._client.published_sheet_gids(spreadsheet_id)
        except FetchError as exc:
            raise DiscoveryError(f"failed to discover version sheets automatically: {exc}") from exc
        names = version_like(gids)
        if not names:
            raise DiscoveryError("no version-like sheet names found in the published page")
        return names

    def from_listing(self, spreadsheet_id: str) -> List[str]:
        return version_like(self._client.list_worksheet_titles(spreadsheet_id))

    def from_tab_captions(self, spreadsheet_id: str) -> List[str]:
        return version_like(self._client.list_tab_captions(spreadsheet_id))

    def probe(self, spreadsheet_id: str) -> List[str]:
        """Probe ``<major>.<minor>`` names concurrently, one worker per major."""

        if not self._probe_majors:
            return []
        with ThreadPoolExecutor(max_workers=len(self._probe_majors)) as executor:
            futures = [
                executor.submit(self.probe_major, spreadsheet_id, major) for major in self._probe_majors
            ]
            found: List[str] = []
            for future in futures:
                found.extend(future.result())
        logger.info("Probe discovery found %d sheets", len(found))
        return sort_versions(unique_names(found))

    def probe_major(self, spreadsheet_id: str, major: int) -> List[str]:
        """Probe minors of ``major`` in order.

        A miss at minor 0 ends the major; after that, two consecutive misses do.
        """

        hits: List[str] = []
        misses = 0
        for minor in range(self._max_minor + 1):
            candidate = f"{major}.{minor}"
            if self._probe(spreadsheet_id, candidate):
                misses = 0
                hits.append(candidate)
                continue
            misses += 1
            if minor == 0 or misses >= MAX_CONSECUTIVE_MISSES:
                break
        return hits

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _probe(self, spreadsheet_id: str, sheet_name: str) -> bool:
        try:
            csv_text = self._client.fetch_csv(
                spreadsheet_id, sheet_name, timeout=self._client.probe_timeout
            )
            self._parser.parse(sheet_name, csv_text)
        except SyncCancelledError:
            raise
        except PatchSyncError as exc:
            logger.debug("Probe %s missed: %s", sheet_name, exc)
            return False
        return True


__all__ = [
    "DEFAULT_PROBE_MAJORS",
    "MAX_PROBE_MINOR",
    "SheetDiscovery",
    "version_like",
]
