"""Network access to Google Sheets.

All traffic for one sync run goes through :class:`SheetsClient`:

* Tab contents are downloaded as CSV, either through the ``gviz`` export
  addressed by sheet name or, for spreadsheets published to the web
  (``2PACX-`` ids), through the ``pub`` export addressed by numeric gid.
  The gid of each tab is scraped once from the published landing page and
  kept in a :class:`PublishedSheetIndex`.
* Worksheet titles are listed through the Sheets API when a service account
  or API key is configured, otherwise through the legacy public feed.
* A ``200`` answer that is an HTML page (a sign-in or error page) is a
  failure, just like a non-success status.

Every call checks the client's cancel event first.
"""

from __future__ import annotations

import html
import http.client
import json
import logging
import re
import threading
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httplib2
from google.auth.exceptions import GoogleAuthError
from googleapiclient.discovery import build
from googleapiclient.errors import Error as GoogleApiError

from patchsync.errors import ConfigurationError, FetchError, SyncCancelledError
from patchsync.google_credentials import CredentialsFileInvalidError, service_account_credentials
from patchsync.sheet_parsing import normalize_sheet_name

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20.0
DEFAULT_PROBE_TIMEOUT = 3.0
USER_AGENT = "patchsync/1.0"
PUBLISHED_ID_PREFIX = "2PACX-"

_SHEETS_HOST = "https://docs.google.com/spreadsheets"
_FEED_URL = "https://spreadsheets.google.com/feeds/worksheets/{id}/public/basic?alt=json"

_PUBLISHED_ID_FROM_URL = re.compile(r"/spreadsheets/d/e/([a-zA-Z0-9-_]+)")
_ID_FROM_URL = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
_PUBLISHED_ITEM = re.compile(r'items\.push\(\{name:\s*"([^"]+)"[\s\S]*?gid:\s*"(-?\d+)"')
_TAB_CAPTION = re.compile(r'docs-sheet-tab-caption">([^<]+)</div>')


@dataclass(slots=True)
class HttpResponse:
    status: int
    body: str


Transport = Callable[[str, float], HttpResponse]


def urllib_transport(url: str, timeout: float) -> HttpResponse:
    """Default transport performing a plain GET with :mod:`urllib`."""

    request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:  # nosec: B310 - Google Sheets URL
            payload = response.read()
            status = response.status
    except urllib.error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
        return HttpResponse(exc.code, body)
    except urllib.error.URLError as exc:
        raise FetchError(f"Unable to reach {url}: {exc.reason}") from exc
    except (OSError, http.client.HTTPException) as exc:
        raise FetchError(f"Unable to reach {url}: {exc}") from exc
    return HttpResponse(status, payload.decode("utf-8", errors="replace"))


# ----------------------------------------------------------------------
# Spreadsheet ids and URLs
# ----------------------------------------------------------------------
def extract_spreadsheet_id(value: Optional[str]) -> str:
    """Return the spreadsheet id from a bare id or a full spreadsheet URL."""

    text = (value or "").strip()
    if not text:
        return ""
    for pattern in (_PUBLISHED_ID_FROM_URL, _ID_FROM_URL):
        match = pattern.search(text)
        if match:
            return match.group(1)
    return text


def is_published_spreadsheet_id(value: str) -> bool:
    return (value or "").strip().startswith(PUBLISHED_ID_PREFIX)


def _quote_id(spreadsheet_id: str) -> str:
    return urllib.parse.quote(spreadsheet_id.strip(), safe="")


def sheet_csv_url(spreadsheet_id: str, sheet_name: str) -> str:
    return (
        f"{_SHEETS_HOST}/d/{_quote_id(spreadsheet_id)}/gviz/tq?tqx=out:csv"
        f"&sheet={urllib.parse.quote_plus(sheet_name)}"
    )


def published_csv_url(spreadsheet_id: str, gid: str) -> str:
    return (
        f"{_SHEETS_HOST}/d/e/{_quote_id(spreadsheet_id)}/pub"
        f"?gid={urllib.parse.quote_plus(gid.strip())}&single=true&output=csv"
    )


def published_page_url(spreadsheet_id: str) -> str:
    return f"{_SHEETS_HOST}/d/e/{_quote_id(spreadsheet_id)}/pubhtml"


def edit_page_url(spreadsheet_id: str) -> str:
    return f"{_SHEETS_HOST}/d/{_quote_id(spreadsheet_id)}/edit"


def worksheet_feed_url(spreadsheet_id: str) -> str:
    return _FEED_URL.format(id=_quote_id(spreadsheet_id))


# ----------------------------------------------------------------------
# HTML scraping
# ----------------------------------------------------------------------
def parse_published_gids(page: str) -> Dict[str, str]:
    """Return the ``name -> gid`` map embedded in a published landing page."""

    result: Dict[str, str] = {}
    for raw_name, raw_gid in _PUBLISHED_ITEM.findall(page or ""):
        name = html.unescape(raw_name).strip()
        gid = raw_gid.strip()
        if name and gid and name not in result:
            result[name] = gid
    return result


def parse_tab_captions(page: str) -> List[str]:
    return [html.unescape(caption) for caption in _TAB_CAPTION.findall(page or "")]


def parse_worksheet_feed(body: str) -> List[str]:
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise FetchError(f"Worksheet feed is not JSON: {exc.msg}") from exc
    feed = payload.get("feed") if isinstance(payload, dict) else None
    entries = feed.get("entry") if isinstance(feed, dict) else None
    titles: List[str] = []
    for entry in entries or []:
        title = entry.get("title") if isinstance(entry, dict) else None
        text = title.get("$t") if isinstance(title, dict) else None
        if isinstance(text, str):
            titles.append(html.unescape(text))
    return titles


class PublishedSheetIndex:
    """Cache of ``name -> gid`` maps keyed by published spreadsheet id.

    One index is shared by every client created for a service instance, so
    an all-games run scrapes each landing page only once.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._maps: Dict[str, Dict[str, str]] = {}

    def get_or_load(self, spreadsheet_id: str, loader: Callable[[], Dict[str, str]]) -> Dict[str, str]:
        key = spreadsheet_id.strip()
        with self._lock:
            cached = self._maps.get(key)
        if cached:
            return cached
        loaded = loader()
        with self._lock:
            return self._maps.setdefault(key, loaded)


def build_sheets_service(credentials_path: Optional[Path] = None, api_key: str = ""):
    """Return a Sheets API v4 service, or ``None`` when nothing is configured."""

    if credentials_path:
        try:
            credentials = service_account_credentials(Path(credentials_path))
        except CredentialsFileInvalidError as exc:
            raise ConfigurationError(str(exc)) from exc
        try:
            return build("sheets", "v4", credentials=credentials, cache_discovery=False)
        except (GoogleApiError, httplib2.HttpLib2Error, OSError) as exc:  # pragma: no cover - discovery document failure
            raise FetchError(f"Unable to initialise the Sheets API client: {exc}") from exc
    if api_key:
        try:
            return build("sheets", "v4", developerKey=api_key, cache_discovery=False)
        except (GoogleApiError, httplib2.HttpLib2Error, OSError) as exc:  # pragma: no cover - discovery document failure
            raise FetchError(f"Unable to initialise the Sheets API client: {exc}") from exc
    return None


class SheetsClient:
    """Fetches spreadsheet tabs for one sync run."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        transport: Optional[Transport] = None,
        published_index: Optional[PublishedSheetIndex] = None,
        cancel_event: Optional[threading.Event] = None,
        sheets_service=None,
        credentials_path: Optional[Path] = None,
        api_key: str = "",
    ) -> None:
        self.timeout = timeout if timeout > 0 else DEFAULT_TIMEOUT
        self.probe_timeout = probe_timeout if probe_timeout > 0 else DEFAULT_PROBE_TIMEOUT
        self._transport = transport or urllib_transport
        self._published = published_index or PublishedSheetIndex()
        self._cancel_event = cancel_event or threading.Event()
        self._service = sheets_service
        self._credentials_path = credentials_path
        self._api_key = api_key

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------
    def check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise SyncCancelledError("sync was cancelled")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def fetch_text(self, url: str, *, timeout: Optional[float] = None) -> str:
        """GET ``url`` and return the body, raising :class:`FetchError` on non-200."""

        self.check_cancelled()
        response = self._transport(url, timeout or self.timeout)
        self.check_cancelled()
        if response.status != 200:
            snippet = (response.body or "").strip()[:200]
            raise FetchError(f"HTTP {response.status}: {snippet}", status=response.status)
        return response.body

    def fetch_csv(self, spreadsheet_id: str, sheet_name: str, *, timeout: Optional[float] = None) -> str:
        """Return the CSV text of ``sheet_name``."""

        if is_published_spreadsheet_id(spreadsheet_id):
            gid = self._published_gid(spreadsheet_id, sheet_name, timeout=timeout)
            url = published_csv_url(spreadsheet_id, gid)
        else:
            url = sheet_csv_url(spreadsheet_id, sheet_name)

        body = self.fetch_text(url, timeout=timeout)
        if "<!doctype html" in body.lower():
            raise FetchError(f"Sheet {sheet_name!r} is not accessible as CSV")
        return body

    def published_sheet_gids(self, spreadsheet_id: str, *, timeout: Optional[float] = None) -> Dict[str, str]:
        def load() -> Dict[str, str]:
            page = self.fetch_text(published_page_url(spreadsheet_id), timeout=timeout)
            gids = parse_published_gids(page)
            if not gids:
                raise FetchError("No sheet names found in the published page")
            logger.debug("Indexed %d published tabs for %s", len(gids), spreadsheet_id)
            return gids

        return self._published.get_or_load(spreadsheet_id, load)

    def list_worksheet_titles(self, spreadsheet_id: str) -> List[str]:
        """Return every worksheet title of ``spreadsheet_id``."""

        service = self._sheets_service()
        if service is None:
            return parse_worksheet_feed(self.fetch_text(worksheet_feed_url(spreadsheet_id)))

        self.check_cancelled()
        try:
            response = (
                service.spreadsheets()
                .get(spreadsheetId=spreadsheet_id, fields="sheets.properties.title")
                .execute()
            )
        except GoogleApiError as exc:
            raise FetchError(f"Sheets API worksheet listing failed: {exc}") from exc
        except (GoogleAuthError, httplib2.HttpLib2Error, OSError) as exc:
            raise FetchError(f"Sheets API unreachable: {exc}") from exc
        sheets = (response or {}).get("sheets") or []
        return [
            str(sheet["properties"]["title"])
            for sheet in sheets
            if isinstance(sheet, dict) and (sheet.get("properties") or {}).get("title")
        ]

    def list_tab_captions(self, spreadsheet_id: str) -> List[str]:
        """Return tab captions scraped from the spreadsheet edit page."""

        return parse_tab_captions(self.fetch_text(edit_page_url(spreadsheet_id)))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _sheets_service(self):
        if self._service is None and (self._credentials_path or self._api_key):
            self._service = build_sheets_service(self._credentials_path, self._api_key)
        return self._service

    def _published_gid(self, spreadsheet_id: str, sheet_name: str, *, timeout: Optional[float]) -> str:
        gids = self.published_sheet_gids(spreadsheet_id, timeout=timeout)
        if sheet_name in gids:
            return gids[sheet_name]
        target = normalize_sheet_name(sheet_name)
        for name, gid in gids.items():
            if normalize_sheet_name(name) == target:
                return gid
        raise FetchError(f"Published sheet {sheet_name!r} not found")


__all__ = [
    "DEFAULT_TIMEOUT",
    "DEFAULT_PROBE_TIMEOUT",
    "HttpResponse",
    "Transport",
    "urllib_transport",
    "extract_spreadsheet_id",
    "is_published_spreadsheet_id",
    "sheet_csv_url",
    "published_csv_url",
    "published_page_url",
    "edit_page_url",
    "worksheet_feed_url",
    "parse_published_gids",
    "parse_tab_captions",
    "parse_worksheet_feed",
    "PublishedSheetIndex",
    "build_sheets_service",
    "SheetsClient",
]
