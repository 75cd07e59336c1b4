from __future__ import annotations

import json
import subprocess
import threading
from dataclasses import replace
from pathlib import Path
from typing import List

import pytest
from google.auth.exceptions import TransportError

from conftest import (
    FailingSheetsService,
    FakeSheets,
    endfield_data_sheet,
    endfield_sheet,
    wuwa_data_sheet,
    wuwa_sheet,
)
from patchsync.change_log import ChangeLog
from patchsync.errors import ConfigurationError, FetchError, PatchSyncError, SyncCancelledError
from patchsync.game_profiles import ENDFIELD, GAME_PROFILES, WUTHERING_WAVES
from patchsync.models import CHANGE_ADDED, CHANGE_UPDATED
from patchsync.sync_service import SyncRequest, SyncService
from settings import PatchSyncSettings


def _endfield_tabs(**sheet_kwargs) -> dict:
    return {
        "Data": endfield_data_sheet(("1.0", "1.1 (WIP)")),
        "1.0": endfield_sheet(**sheet_kwargs),
        "1.1": endfield_sheet(title="Version 1.1: Second Wind (03/17/2026)"),
    }


def _fake(**sheet_kwargs) -> FakeSheets:
    return FakeSheets({"abc": _endfield_tabs(**sheet_kwargs)}, listed={"abc": ["Data", "1.1", "1.0", "Notes"]})


def _output(settings: PatchSyncSettings) -> Path:
    return settings.resolve(GAME_PROFILES[ENDFIELD].default_output_path)


def _change_log(settings: PatchSyncSettings) -> ChangeLog:
    return ChangeLog(settings.resolve(settings.change_log_path))


def test_first_sync_adds_discovered_patches(settings: PatchSyncSettings) -> None:
    lines: List[str] = []
    service = SyncService(settings, transport=_fake(), log_callback=lines.append)

    result = service.sync(SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc"))

    assert result.patch_names == ["1.0", "1.1"]
    assert [change.change_type for change in result.changes] == [CHANGE_ADDED, CHANGE_ADDED]
    assert result.sheets == ["1.0", "1.1"]
    assert result.all_patches[1].tags == ["WIP"]
    assert result.all_patches[0].source("dailyActivity").pulls == 33.8
    assert _output(settings).exists()
    assert result.output_path == str(_output(settings))
    assert len(_change_log(settings).read()) == 1
    assert lines and lines == result.logs
    assert any("sync completed" in line for line in lines)


def test_second_sync_skips_unchanged_patches(settings: PatchSyncSettings) -> None:
    service = SyncService(settings, transport=_fake())
    service.sync(SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc"))
    written = _output(settings).read_text(encoding="utf-8")

    result = service.sync(SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc"))

    assert result.patches == []
    assert result.changes == []
    assert result.skipped == ["1.0", "1.1"]
    assert [patch.id for patch in result.all_patches] == ["1.0", "1.1"]
    assert _output(settings).read_text(encoding="utf-8") == written
    assert len(_change_log(settings).read()) == 1


def test_changed_sheet_is_reported_as_update(settings: PatchSyncSettings) -> None:
    SyncService(settings, transport=_fake()).sync(SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc"))

    result = SyncService(settings, transport=_fake(event_oroberyl=1200)).sync(
        SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc")
    )

    assert result.patch_names == ["1.0"]
    assert result.skipped == ["1.1"]
    change = result.changes[0]
    assert change.change_type == CHANGE_UPDATED
    assert "events" in change.changed_sources
    entries = _change_log(settings).read()
    assert entries[-1]["updatedPatches"][0]["changeType"] == "updated"


def test_skip_existing_disabled_rewrites_every_patch(settings: PatchSyncSettings) -> None:
    service = SyncService(settings, transport=_fake())
    service.sync(SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc"))

    result = service.sync(SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc", skip_existing=False))

    assert result.patch_names == ["1.0", "1.1"]
    assert all(change.change_type == CHANGE_UPDATED for change in result.changes)
    assert all(change.changed_sources == [] for change in result.changes)


def test_base_patch_ids_are_reported(settings: PatchSyncSettings) -> None:
    settings.resolve(settings.base_patches_path).write_text('export const PATCHES = [{ patch: "1.0" }];\n', encoding="utf-8")

    result = SyncService(settings, transport=_fake()).sync(SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc"))

    assert any("1.0 also exists in the base patches file" in line for line in result.logs)
    assert result.patch_names == ["1.0", "1.1"]


def test_dry_run_writes_nothing(settings: PatchSyncSettings) -> None:
    result = SyncService(settings, transport=_fake()).sync(
        SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc", dry_run=True)
    )

    assert result.patch_names == ["1.0", "1.1"]
    assert result.dry_run is True
    assert not _output(settings).exists()
    assert not _change_log(settings).path.exists()


def test_explicit_sheet_failure_aborts_run(settings: PatchSyncSettings) -> None:
    service = SyncService(settings, transport=_fake())

    with pytest.raises(FetchError, match="fetch sheet 9.9"):
        service.sync(SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc", sheet_names=["1.0", "9.9"]))

    assert not _output(settings).exists()


def test_discovered_sheet_failure_is_skipped(settings: PatchSyncSettings) -> None:
    tabs = _endfield_tabs()
    tabs["1.2"] = "nothing,useful\n"
    fake = FakeSheets({"abc": tabs}, listed={"abc": ["1.0", "1.1", "1.2"]})

    result = SyncService(settings, transport=fake).sync(SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc"))

    assert result.patch_names == ["1.0", "1.1"]


def test_no_valid_sheets_is_an_error(settings: PatchSyncSettings) -> None:
    fake = FakeSheets(
        {"abc": {"Data": endfield_data_sheet(), "1.0": "nothing,useful\n"}},
        listed={"abc": ["1.0"]},
    )

    with pytest.raises(PatchSyncError, match="no valid patch sheets"):
        SyncService(settings, transport=fake).sync(SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc"))


def test_missing_data_sheet_is_fatal(settings: PatchSyncSettings) -> None:
    fake = FakeSheets({"abc": {"1.0": endfield_sheet()}}, listed={"abc": ["1.0"]})

    with pytest.raises(FetchError, match="fetch Data sheet for arknights-endfield"):
        SyncService(settings, transport=fake).sync(SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc"))


def test_unknown_game_is_rejected(settings: PatchSyncSettings) -> None:
    with pytest.raises(ConfigurationError, match="unknown game id"):
        SyncService(settings, transport=_fake()).sync(SyncRequest(game_id="tetris"))


def test_missing_spreadsheet_id(settings: PatchSyncSettings, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(GAME_PROFILES, ENDFIELD, replace(GAME_PROFILES[ENDFIELD], default_spreadsheet_id=""))

    with pytest.raises(ConfigurationError, match="spreadsheet-id is required"):
        SyncService(settings, transport=_fake()).sync(SyncRequest(game_id=ENDFIELD))


def test_spreadsheet_url_and_settings_override(settings: PatchSyncSettings) -> None:
    settings.spreadsheet_overrides[ENDFIELD] = "https://docs.google.com/spreadsheets/d/abc/edit"

    result = SyncService(settings, transport=_fake()).sync(SyncRequest(game_id=ENDFIELD, dry_run=True))

    assert result.spreadsheet_id == "abc"


def test_branch_is_created_before_writing(settings: PatchSyncSettings) -> None:
    calls = []

    def runner(args, **kwargs):
        calls.append((args, kwargs.get("cwd")))
        return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

    service = SyncService(settings, transport=_fake(), branch_runner=runner)
    result = service.sync(SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc", create_branch=True, branch_prefix="data/test"))

    assert result.branch.startswith("data/test-")
    assert calls[0][0][:3] == ["git", "checkout", "-b"]
    assert calls[0][1] == str(settings.resolve("."))


def test_cancelled_run_raises(settings: PatchSyncSettings) -> None:
    event = threading.Event()
    event.set()

    with pytest.raises(SyncCancelledError):
        SyncService(settings, transport=_fake()).sync(SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc"), event)


def test_wuwa_sync_renders_public_currency_names(settings: PatchSyncSettings) -> None:
    fake = FakeSheets({"wuwa": {"Data": wuwa_data_sheet(), "2.0": wuwa_sheet()}})

    result = SyncService(settings, transport=fake).sync(
        SyncRequest(game_id=WUTHERING_WAVES, spreadsheet_id="wuwa", sheet_names=["2.0"])
    )

    assert result.patch_names == ["2.0"]
    assert result.all_patches[0].source("endgameModes").pulls == 35.0
    assert any("catch-all adjusted by 5.0" in line for line in result.logs)
    rendered = settings.resolve(GAME_PROFILES[WUTHERING_WAVES].default_output_path).read_text(encoding="utf-8")
    assert '"astrite": 8000' in rendered


def test_sync_all_isolates_failures(settings: PatchSyncSettings) -> None:
    settings.spreadsheet_overrides[ENDFIELD] = "abc"
    settings.spreadsheet_overrides[WUTHERING_WAVES] = "missing"

    outcomes, all_ok = SyncService(settings, transport=_fake()).sync_all(dry_run=True)

    assert all_ok is False
    by_game = {outcome.game_id: outcome for outcome in outcomes}
    assert by_game[ENDFIELD].ok
    assert by_game[ENDFIELD].result.patch_names == ["1.0", "1.1"]
    assert not by_game[WUTHERING_WAVES].ok
    assert "fetch Data sheet" in by_game[WUTHERING_WAVES].error
    payload = [outcome.to_dict() for outcome in outcomes]
    assert payload[1] == {"gameId": WUTHERING_WAVES, "error": by_game[WUTHERING_WAVES].error}
    json.dumps(payload)


def test_result_payload_is_compact(settings: PatchSyncSettings) -> None:
    service = SyncService(settings, transport=_fake())
    service.sync(SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc"))

    payload = service.sync(SyncRequest(game_id=ENDFIELD, spreadsheet_id="abc")).to_response()

    assert payload["ok"] is True
    assert payload["message"] == "sync completed"
    assert payload["skipped"] == ["1.0", "1.1"]
    assert "patches" not in payload
    assert "changeCount" not in payload
    assert "branch" not in payload


def test_sync_all_survives_unreachable_sheets_api(settings: PatchSyncSettings) -> None:
    settings.spreadsheet_overrides[ENDFIELD] = "abc"
    settings.spreadsheet_overrides[WUTHERING_WAVES] = "missing"
    fake = FakeSheets({"abc": _endfield_tabs()})
    service = SyncService(
        settings,
        transport=fake,
        sheets_service=FailingSheetsService(TransportError("token endpoint unreachable")),
    )

    outcomes, all_ok = service.sync_all(dry_run=True)

    assert all_ok is False
    by_game = {outcome.game_id: outcome for outcome in outcomes}
    assert by_game[ENDFIELD].ok
    assert by_game[ENDFIELD].result.patch_names == ["1.0", "1.1"]
    assert "fetch Data sheet" in by_game[WUTHERING_WAVES].error
