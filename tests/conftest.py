from __future__ import annotations

import json
import sys
import urllib.parse
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from patchsync.sheets_client import HttpResponse
from settings import PatchSyncSettings


def endfield_sheet(
    *,
    title: str = "Version 1.0: Zeroth Directive (01/22/2026)",
    duration: int = 54,
    event_oroberyl: int = 1000,
    monthly: str = "",
) -> str:
    rows = [
        [title, "Oroberyl", "Chartered HH Permit", "Basic HH Permit", "Origeometry", "Arsenal Tickets", "Version Length", str(duration)],
        ["Events", "", "", "", "", ""],
        ["Event A", str(event_oroberyl), "5", "0", "0", "0"],
        ["Event B", "500", "3", "2", "0", "0"],
        ["Firewalker's Trail", "0", "2", "0", "0", "0"],
        ["Permanent Content", "", "", "", "", ""],
        ["Story", "3,000", "0", "10", "0", "0"],
        ["Mailbox & Web Events", "", "", "", "", ""],
        ["Compensation", "600", "0", "0", "0", "0"],
        ["Recurring Sources", "", "", "", "", ""],
        ["Daily Activity", "5400", "0", "0", "0", "0"],
        ["Weekly Routine", "2000", "0", "0", "0", "0"],
        ["Monthly Pass", monthly, "", "", "", ""],
        ["Originium Supply Pass", "0", "0", "0", "50", "100"],
        ["Total", "12500", "10", "12", "50", "100"],
    ]
    return "\n".join(",".join(_quote(value) for value in row) for row in rows) + "\n"


def wuwa_sheet(*, with_totals: bool = True, total_f2p_radiant: int = 12) -> str:
    rows = [
        ["Version 2.0", "", "", "", ""],
        ["Version 2.0 (02.01.2025)", "", "", "", ""],
        ["Version Length", "42", "", "", ""],
        ["Source", "Astrite", "Radiant Tide", "Forging Tide", "Lustrous Tide"],
        ["Version Events", "8000", "10", "5", "10"],
        ["Permanent Content", "3200", "0", "0", "5"],
        ["Mailbox/Miscellaneous", "1600", "2", "0", "0"],
        ["Recurring Sources", "4800", "0", "0", "0"],
        ["Lunite Subscription", "90", "", "", ""],
    ]
    if with_totals:
        rows.append(["Total F2P", "17600", str(total_f2p_radiant), "5", "15"])
        rows.append(["Total Paid", "21380", "12", "5", "15"])
    return "\n".join(",".join(row) for row in rows) + "\n"


def endfield_data_sheet(columns: Iterable[str] = ("1.0", "1.1 (WIP)")) -> str:
    columns = list(columns)
    rows = [
        ["Source"] + columns,
        ["Daily Activity"] + ["33.8"] * len(columns),
        ["Events"] + ["12"] * len(columns),
        ["F2P Headhunt Total"] + ["45.8"] * len(columns),
    ]
    return "\n".join(",".join(row) for row in rows) + "\n"


def wuwa_data_sheet(column: str = "2.0") -> str:
    rows = [
        ["Source", column],
        ["Version Events", "40"],
        ["Permanent Content", "20"],
        ["Mailbox/Miscellaneous", "10"],
        ["Daily Activity", "15"],
        ["Recurring Sources", "30"],
        ["Coral Shop", "5"],
        ["Weapon Pulls", "0"],
        ["Limited Total F2P", "125"],
    ]
    return "\n".join(",".join(row) for row in rows) + "\n"


def _quote(value: str) -> str:
    if "," in value or '"' in value:
        return '"' + value.replace('"', '""') + '"'
    return value


class FakeSheets:
    """Transport answering Google Sheets URLs from in-memory tabs.

    ``tabs`` maps spreadsheet id to ``{sheet name: csv text}``.  Sheet names
    listed in ``listed`` are also served by the public worksheet feed.
    """

    def __init__(
        self,
        tabs: Dict[str, Dict[str, str]],
        *,
        listed: Optional[Dict[str, List[str]]] = None,
        published_pages: Optional[Dict[str, str]] = None,
    ) -> None:
        self.tabs = tabs
        self.listed = listed or {}
        self.published_pages = published_pages or {}
        self.calls: List[str] = []

    def __call__(self, url: str, timeout: float) -> HttpResponse:
        self.calls.append(url)
        parsed = urllib.parse.urlsplit(url)
        query = urllib.parse.parse_qs(parsed.query)
        parts = parsed.path.split("/")
        if "/gviz/tq" in parsed.path:
            spreadsheet_id = parts[parts.index("d") + 1]
            sheet = query.get("sheet", [""])[0]
            body = self.tabs.get(spreadsheet_id, {}).get(sheet)
            if body is None:
                return HttpResponse(400, "<!DOCTYPE html><html>error</html>")
            return HttpResponse(200, body)
        if parsed.path.endswith("/pubhtml"):
            spreadsheet_id = parts[parts.index("e") + 1]
            page = self.published_pages.get(spreadsheet_id)
            return HttpResponse(200, page) if page is not None else HttpResponse(404, "missing")
        if parsed.path.endswith("/pub"):
            spreadsheet_id = parts[parts.index("e") + 1]
            gid = query.get("gid", [""])[0]
            for name, body in self.tabs.get(spreadsheet_id, {}).items():
                if self._gid_for(spreadsheet_id, name) == gid:
                    return HttpResponse(200, body)
            return HttpResponse(404, "missing")
        if "/feeds/worksheets/" in parsed.path:
            spreadsheet_id = parsed.path.split("/feeds/worksheets/")[1].split("/")[0]
            titles = self.listed.get(spreadsheet_id)
            if titles is None:
                return HttpResponse(404, "not found")
            entries = [{"title": {"$t": title}} for title in titles]
            return HttpResponse(200, json.dumps({"feed": {"entry": entries}}))
        return HttpResponse(404, "not found")

    def _gid_for(self, spreadsheet_id: str, name: str) -> str:
        names = list(self.tabs.get(spreadsheet_id, {}))
        return str(100 + names.index(name))

    def published_page(self, spreadsheet_id: str) -> str:
        items = [
            f'items.push({{name: "{name}", pageUrl: "x", gid: "{self._gid_for(spreadsheet_id, name)}"}});'
            for name in self.tabs.get(spreadsheet_id, {})
        ]
        return "<html><script>" + "\n".join(items) + "</script></html>"

    def count(self, fragment: str) -> int:
        return sum(1 for url in self.calls if fragment in url)


class FakeSheetsService:
    """Mimics ``service.spreadsheets().get(...).execute()``."""

    def __init__(self, titles):
        self.titles = titles
        self.requests = []

    def spreadsheets(self):
        return self

    def get(self, **kwargs):
        self.requests.append(kwargs)
        return self

    def execute(self):
        return {"sheets": [{"properties": {"title": title}} for title in self.titles]}


class FailingSheetsService(FakeSheetsService):
    """Sheets API stand-in whose requests fail below the API layer."""

    def __init__(self, error: Exception) -> None:
        super().__init__([])
        self.error = error

    def execute(self):
        raise self.error


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    (root / "src" / "data").mkdir(parents=True)
    return root


@pytest.fixture
def settings(project_dir: Path) -> PatchSyncSettings:
    return PatchSyncSettings(project_root=project_dir, allowed_origins=["http://127.0.0.1:5173"])
