from __future__ import annotations

import pytest
from google.auth.exceptions import TransportError

from conftest import FailingSheetsService, FakeSheets, endfield_sheet
from patchsync.discovery import SheetDiscovery, version_like
from patchsync.endfield_parser import EndfieldSheetParser
from patchsync.errors import DiscoveryError
from patchsync.sheets_client import SheetsClient


def _discovery(fake: FakeSheets, **kwargs) -> SheetDiscovery:
    return SheetDiscovery(SheetsClient(transport=fake), EndfieldSheetParser(), **kwargs)


def test_version_like_filters_and_sorts() -> None:
    assert version_like(["Data", "1.10", "1.2", "1.2", "Notes 1.0"]) == ["1.2", "1.10"]


def test_discovery_uses_worksheet_listing() -> None:
    fake = FakeSheets({}, listed={"abc": ["Data", "1.1 (WIP)", "1.0", "Notes"]})

    assert _discovery(fake).discover("abc") == ["1.0", "1.1 (WIP)"]
    assert fake.count("/gviz/") == 0


def test_probe_stops_after_two_consecutive_misses() -> None:
    tabs = {"abc": {name: endfield_sheet() for name in ("1.0", "1.1", "1.3", "1.6")}}
    fake = FakeSheets(tabs)

    assert _discovery(fake, probe_majors=(1,)).probe("abc") == ["1.0", "1.1", "1.3"]


def test_probe_skips_major_without_zero_minor() -> None:
    fake = FakeSheets({"abc": {"2.1": endfield_sheet()}})

    assert _discovery(fake, probe_majors=(2,)).probe_major("abc", 2) == []
    assert fake.count("sheet=2.1") == 0


def test_probe_ignores_tabs_the_parser_rejects() -> None:
    fake = FakeSheets({"abc": {"1.0": endfield_sheet(), "1.1": "not,a,patch\n"}})

    assert _discovery(fake, probe_majors=(1,)).probe("abc") == ["1.0"]


def test_discovery_falls_back_to_probing() -> None:
    fake = FakeSheets({"abc": {"1.0": endfield_sheet(), "0.0": endfield_sheet()}})

    assert _discovery(fake, probe_majors=(1, 0)).discover("abc") == ["0.0", "1.0"]


def test_discovery_reads_published_landing_page() -> None:
    fake = FakeSheets({"2PACX-pub": {"Data": "x", "1.1": "x", "1.0": "x"}})
    fake.published_pages["2PACX-pub"] = fake.published_page("2PACX-pub")

    assert _discovery(fake).discover("2PACX-pub") == ["1.0", "1.1"]


def test_discovery_reports_every_failed_strategy() -> None:
    fake = FakeSheets({})

    with pytest.raises(DiscoveryError) as excinfo:
        _discovery(fake, probe_majors=(1,)).discover("abc")

    message = str(excinfo.value)
    assert "worksheet listing" in message
    assert "tab captions" in message
    assert "probe" in message


def test_unreachable_sheets_api_falls_back_to_probing() -> None:
    fake = FakeSheets({"abc": {"1.0": endfield_sheet(), "1.1": endfield_sheet()}})
    client = SheetsClient(transport=fake, sheets_service=FailingSheetsService(TransportError("offline")))

    names = SheetDiscovery(client, EndfieldSheetParser(), probe_majors=(1,)).discover("abc")

    assert names == ["1.0", "1.1"]
    assert fake.count("/edit") == 1
