"""Business logic for synchronising spreadsheet tabs into generated patch files."""
from __future__ import annotations

import logging
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from patchsync import git_branch
from patchsync.change_log import ChangeLog
from patchsync.data_sheet import DataSheet, apply_overrides, parse_data_sheet
from patchsync.discovery import SheetDiscovery
from patchsync.errors import ConfigurationError, PatchSyncError, PersistenceError, SyncCancelledError
from patchsync.game_profiles import GameProfile, available_game_ids, resolve_profile
from patchsync.generated_store import (
    GeneratedStore,
    changed_source_ids,
    merge_patches_by_id,
    patch_key,
    patches_equivalent,
    read_base_patch_ids,
    sort_patches,
)
from patchsync.models import (
    CHANGE_ADDED,
    CHANGE_UPDATED,
    ChangeLogRecord,
    GeneratedMeta,
    Patch,
    PatchChange,
)
from patchsync.sheet_parsing import merge_tags, sort_versions, unique_names
from patchsync.sheets_client import (
    PublishedSheetIndex,
    SheetsClient,
    Transport,
    extract_spreadsheet_id,
)
from settings import PatchSyncSettings

logger = logging.getLogger(__name__)

LogCallback = Callable[[str], None]


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def _compact(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in payload.items() if value not in ("", None, 0, [])}


@dataclass
class SyncRequest:
    """Parameters of one single-game sync run.

    Blank values fall back to the game profile and the settings.
    ``skip_existing`` and ``timeout`` left as ``None`` use the settings value.
    """

    game_id: str = ""
    spreadsheet_id: str = ""
    sheet_names: List[str] = field(default_factory=list)
    output_path: str = ""
    create_branch: bool = False
    branch_prefix: str = ""
    skip_existing: Optional[bool] = None
    dry_run: bool = False
    timeout: Optional[float] = None


@dataclass
class SyncResult:
    game_id: str
    spreadsheet_id: str = ""
    patches: List[Patch] = field(default_factory=list)
    all_patches: List[Patch] = field(default_factory=list)
    changes: List[PatchChange] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    sheets: List[str] = field(default_factory=list)
    output_path: str = ""
    branch: str = ""
    logs: List[str] = field(default_factory=list)
    change_log_path: str = ""
    generated_at: str = ""
    dry_run: bool = False

    @property
    def patch_names(self) -> List[str]:
        return [patch.patch for patch in self.patches]

    @property
    def change_count(self) -> int:
        return len(self.changes)

    def to_dict(self) -> Dict[str, Any]:
        """JSON view with camelCase keys; empty values are left out."""

        return _compact(
            {
                "gameId": self.game_id,
                "sheets": list(self.sheets),
                "patches": self.patch_names,
                "skipped": list(self.skipped),
                "outputPath": self.output_path,
                "branch": self.branch,
                "logs": list(self.logs),
                "changeCount": self.change_count,
                "changeLogPath": self.change_log_path,
                "generatedAt": self.generated_at,
            }
        )

    def to_response(self, message: str = "sync completed") -> Dict[str, Any]:
        payload: Dict[str, Any] = {"ok": True, "message": message}
        payload.update(self.to_dict())
        return payload


@dataclass
class GameOutcome:
    """One game's entry in a sync-all run."""

    game_id: str
    result: Optional[SyncResult] = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.result is not None and not self.error

    def to_dict(self) -> Dict[str, Any]:
        if self.result is None:
            return {"gameId": self.game_id, "error": self.error}
        payload = self.result.to_dict()
        payload.pop("branch", None)
        payload["gameId"] = self.game_id
        return payload


class SyncRun:
    """Mutable state of one sync run: the log lines shown to the caller."""

    def __init__(self, log_callback: Optional[LogCallback] = None) -> None:
        self.logs: List[str] = []
        self._log_callback = log_callback

    def log(self, message: str, *args: object) -> None:
        text = message % args if args else message
        line = f"[{datetime.now().strftime('%H:%M:%S')}] {text}"
        self.logs.append(line)
        logger.info(text)
        if self._log_callback:
            try:
                self._log_callback(line)
            except Exception:  # pragma: no cover - UI callbacks must not break a sync
                logger.debug("Sync log callback failed", exc_info=True)


class SyncService:
    """Coordinate single-game and all-games sync runs."""

    def __init__(
        self,
        settings: PatchSyncSettings,
        *,
        transport: Optional[Transport] = None,
        sheets_service=None,
        published_index: Optional[PublishedSheetIndex] = None,
        branch_runner: git_branch.Runner = subprocess.run,
        log_callback: Optional[LogCallback] = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._sheets_service = sheets_service
        self._published_index = published_index or PublishedSheetIndex()
        self._branch_runner = branch_runner
        self._log_callback = log_callback

    @property
    def settings(self) -> PatchSyncSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def sync(self, request: SyncRequest, cancel_event: Optional[threading.Event] = None) -> SyncResult:
        """Run one game's sync and return what changed.

        Raises a :class:`PatchSyncError` subclass when the run fails.  Output
        and change log are written once, after every sheet has been parsed.
        """

        run = SyncRun(self._log_callback)
        profile = resolve_profile(request.game_id)
        run.log("sync start for game=%s (%s)", profile.id, profile.title)

        spreadsheet_id = self._resolve_spreadsheet_id(profile, request.spreadsheet_id)
        skip_existing = self._settings.skip_existing if request.skip_existing is None else request.skip_existing
        output_path = self._settings.resolve(request.output_path.strip() or profile.default_output_path)
        change_log = ChangeLog(self._settings.resolve(self._settings.change_log_path))
        run.log("spreadsheet=%s", spreadsheet_id)

        client = self._build_client(request.timeout, cancel_event)
        data_sheet = self._load_data_sheet(client, profile, spreadsheet_id, run)

        store = GeneratedStore(output_path, profile.public_rewards)
        existing = store.load()
        run.log("loaded %d existing generated patches", len(existing.patches))
        existing_by_key = existing.by_key()

        base_ids = set()
        if skip_existing:
            base_ids = read_base_patch_ids(self._settings.resolve(self._settings.base_patches_path))
            run.log("loaded %d base patch ids for skip-existing", len(base_ids))

        sheet_names = unique_names(request.sheet_names)
        explicit = bool(sheet_names)
        if not explicit:
            sheet_names = SheetDiscovery(client, profile.parser).discover(spreadsheet_id)
        sheet_names = sort_versions(sheet_names)
        run.log("sheet names discovered: %d", len(sheet_names))

        accepted: List[Patch] = []
        parsed_sheets: List[str] = []
        skipped: List[str] = []
        changes: List[PatchChange] = []
        valid = 0
        for sheet_name in sheet_names:
            patch = self._parse_sheet(client, profile, spreadsheet_id, sheet_name, data_sheet, explicit, run)
            if patch is None:
                continue
            valid += 1
            key = patch_key(patch)
            if data_sheet is not None:
                patch.tags = merge_tags(patch.tags, data_sheet.tags_for(key))

            previous = existing_by_key.get(key)
            if skip_existing:
                if previous is not None and patches_equivalent(previous, patch):
                    skipped.append(key)
                    run.log("skip unchanged patch %s", key)
                    continue
                if key in base_ids:
                    run.log("patch %s also exists in the base patches file", key)

            if previous is None:
                change = PatchChange(patch=key, change_type=CHANGE_ADDED)
            else:
                change = PatchChange(
                    patch=key,
                    change_type=CHANGE_UPDATED,
                    changed_sources=changed_source_ids(previous, patch),
                )
            changes.append(change)
            run.log("queue %s patch %s", change.change_type, key)
            accepted.append(patch)
            parsed_sheets.append(sheet_name)
            existing_by_key[key] = patch

        if valid == 0 and not accepted and not skipped:
            raise PatchSyncError("no valid patch sheets found with N.N names")

        accepted = sort_patches(accepted)
        skipped = unique_names(skipped)
        run.log("parsed=%d changed=%d skipped=%d", valid, len(accepted), len(skipped))

        client.check_cancelled()
        branch = ""
        if request.create_branch:
            branch = git_branch.create_branch(
                request.branch_prefix or self._settings.branch_prefix,
                cwd=self._settings.resolve("."),
                runner=self._branch_runner,
            )
            run.log("created branch %s", branch)

        merged = merge_patches_by_id(existing.patches, accepted)
        generated_at = _utc_timestamp()
        if not request.dry_run and accepted:
            client.check_cancelled()
            meta = GeneratedMeta(
                game_id=profile.id,
                spreadsheet_id=spreadsheet_id,
                sheets=unique_names(parsed_sheets + skipped),
                generated_at=generated_at,
            )
            store.write(merged, meta)
            run.log("written generated patches to %s", output_path)

        if not request.dry_run and changes:
            record = ChangeLogRecord(
                timestamp=_utc_timestamp(),
                game_id=profile.id,
                spreadsheet_id=spreadsheet_id,
                output_path=str(output_path),
                generated_at=generated_at,
                updated_patches=changes,
            )
            try:
                change_log.append([record])
            except PersistenceError as exc:
                run.log("change log write failed: %s", exc)
            else:
                run.log("change log updated: %s", change_log.path)

        run.log(
            "sync completed: game=%s changed=%d skipped=%d dryRun=%s",
            profile.id,
            len(accepted),
            len(skipped),
            str(request.dry_run).lower(),
        )
        return SyncResult(
            game_id=profile.id,
            spreadsheet_id=spreadsheet_id,
            patches=accepted,
            all_patches=merged,
            changes=changes,
            skipped=skipped,
            sheets=parsed_sheets,
            output_path=str(output_path),
            branch=branch,
            logs=run.logs,
            change_log_path=str(change_log.path),
            generated_at=generated_at,
            dry_run=request.dry_run,
        )

    def sync_all(
        self,
        dry_run: bool = False,
        cancel_event: Optional[threading.Event] = None,
        base: Optional[SyncRequest] = None,
    ) -> Tuple[List[GameOutcome], bool]:
        """Sync every registered game; one game's failure never stops the others.

        Only ``skip_existing`` and ``timeout`` are taken from ``base``; the
        spreadsheet, sheet names, output path and branch options always come
        from each game's profile.
        """

        base = base or SyncRequest()
        outcomes: List[GameOutcome] = []
        all_ok = True
        for game_id in available_game_ids():
            request = SyncRequest(
                game_id=game_id,
                skip_existing=base.skip_existing,
                dry_run=dry_run,
                timeout=base.timeout,
            )
            try:
                result = self.sync(request, cancel_event)
            except SyncCancelledError:
                raise
            except PatchSyncError as exc:
                logger.warning("Sync for %s failed: %s", game_id, exc)
                all_ok = False
                outcomes.append(GameOutcome(game_id=game_id, error=str(exc)))
                continue
            outcomes.append(GameOutcome(game_id=game_id, result=result))
        return outcomes, all_ok

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _resolve_spreadsheet_id(self, profile: GameProfile, requested: str) -> str:
        spreadsheet_id = extract_spreadsheet_id(requested)
        if not spreadsheet_id:
            spreadsheet_id = extract_spreadsheet_id(
                self._settings.spreadsheet_id_for(profile.id, profile.default_spreadsheet_id)
            )
        if not spreadsheet_id:
            raise ConfigurationError(
                f"spreadsheet-id is required (set --spreadsheet-id or {profile.spreadsheet_env_key} in .env)"
            )
        return spreadsheet_id

    def _build_client(self, timeout: Optional[float], cancel_event: Optional[threading.Event]) -> SheetsClient:
        return SheetsClient(
            timeout=timeout if timeout and timeout > 0 else self._settings.timeout,
            probe_timeout=self._settings.probe_timeout,
            transport=self._transport,
            published_index=self._published_index,
            cancel_event=cancel_event,
            sheets_service=self._sheets_service,
            credentials_path=self._settings.credentials_path,
            api_key=self._settings.api_key,
        )

    def _load_data_sheet(
        self, client: SheetsClient, profile: GameProfile, spreadsheet_id: str, run: SyncRun
    ) -> Optional[DataSheet]:
        rules = profile.data_sheet
        if rules is None:
            return None
        run.log("fetch %s sheet", rules.sheet_name)
        try:
            csv_text = client.fetch_csv(spreadsheet_id, rules.sheet_name)
        except SyncCancelledError:
            raise
        except PatchSyncError as exc:
            raise type(exc)(f"fetch {rules.sheet_name} sheet for {profile.id}: {exc}") from exc
        try:
            return parse_data_sheet(csv_text, rules)
        except PatchSyncError as exc:
            raise type(exc)(f"parse {rules.sheet_name} sheet for {profile.id}: {exc}") from exc

    def _parse_sheet(
        self,
        client: SheetsClient,
        profile: GameProfile,
        spreadsheet_id: str,
        sheet_name: str,
        data_sheet: Optional[DataSheet],
        explicit: bool,
        run: SyncRun,
    ) -> Optional[Patch]:
        """Fetch, parse and override one tab; ``None`` means the tab was dropped."""

        stage = "fetch sheet"
        try:
            csv_text = client.fetch_csv(spreadsheet_id, sheet_name)
            stage = "parse sheet"
            patch = profile.parse(sheet_name, csv_text)
            if data_sheet is not None and profile.data_sheet is not None:
                stage = "apply Data overrides for sheet"
                report = apply_overrides(patch, data_sheet, profile.data_sheet)
                if report.catch_all_delta:
                    run.log("patch %s: catch-all adjusted by %.1f pulls", patch.id, report.catch_all_delta)
        except SyncCancelledError:
            raise
        except PatchSyncError as exc:
            if explicit:
                raise type(exc)(f"{stage} {sheet_name}: {exc}") from exc
            logger.debug("Dropping sheet %s (%s): %s", sheet_name, stage, exc)
            return None
        return patch


__all__ = [
    "SyncRequest",
    "SyncResult",
    "GameOutcome",
    "SyncRun",
    "SyncService",
]
