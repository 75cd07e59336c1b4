"""Command line entry point for patchsync.

Runs one sync (default), a sync of every game (``--all``) or the local HTTP
service the front end calls (``--serve``).
"""

from __future__ import annotations

import argparse
import logging
import re
import sys

from patchsync import app_paths
from patchsync.errors import PatchSyncError
from patchsync.game_profiles import DEFAULT_GAME_ID, available_game_ids
from patchsync.http_service import create_app
from patchsync.logging_config import configure_logging
from patchsync.sync_service import SyncRequest, SyncResult, SyncService
from settings import PatchSyncSettings, load_settings, split_csv

_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m)?\s*$")
_DURATION_FACTORS = {"ms": 0.001, "s": 1.0, "m": 60.0, None: 1.0}


def parse_duration(value: str) -> float:
    """``"20"``, ``"20s"``, ``"1.5m"`` and ``"500ms"`` become seconds."""

    match = _DURATION.match(value or "")
    if not match:
        raise argparse.ArgumentTypeError(f"invalid duration: {value!r}")
    seconds = float(match.group(1)) * _DURATION_FACTORS[match.group(2)]
    if seconds <= 0:
        raise argparse.ArgumentTypeError("duration must be positive")
    return seconds


def parse_address(value: str) -> tuple[str, int]:
    host, _, port = value.rpartition(":")
    if not host or not port.isdigit():
        raise ValueError(f"invalid bind address {value!r} (expected host:port)")
    return host.strip("[]"), int(port)


def build_request(args: argparse.Namespace) -> SyncRequest:
    return SyncRequest(
        game_id=args.game,
        spreadsheet_id=args.spreadsheet_id,
        sheet_names=split_csv(args.sheet_names),
        output_path=args.output,
        create_branch=args.create_branch,
        branch_prefix=args.branch_prefix,
        skip_existing=args.skip_existing,
        dry_run=args.dry_run,
        timeout=args.timeout,
    )


def print_result(result: SyncResult) -> None:
    print(f"Game: {result.game_id}")
    if result.patches:
        print(f"Synced patches: {', '.join(result.patch_names)}")
    else:
        print("Synced patches: none (all discovered patches are already present)")
    if result.skipped:
        print(f"Skipped patches: {', '.join(result.skipped)}")
    if result.dry_run:
        print("Dry run: nothing was written")
    else:
        print(f"Output: {result.output_path}")
    if result.branch:
        print(f"Branch: {result.branch}")


def command_sync(args: argparse.Namespace, service: SyncService) -> int:
    try:
        result = service.sync(build_request(args))
    except PatchSyncError as exc:
        print(f"sync failed: {exc}", file=sys.stderr)
        return 1
    print_result(result)
    return 0


def command_sync_all(args: argparse.Namespace, service: SyncService) -> int:
    try:
        outcomes, all_ok = service.sync_all(dry_run=args.dry_run, base=build_request(args))
    except PatchSyncError as exc:
        print(f"sync failed: {exc}", file=sys.stderr)
        return 1
    for outcome in outcomes:
        if outcome.result is None:
            print(f"Game: {outcome.game_id}")
            print(f"  error: {outcome.error}")
            continue
        print_result(outcome.result)
    if not all_ok:
        print("sync completed with errors", file=sys.stderr)
        return 1
    return 0


def command_serve(args: argparse.Namespace, service: SyncService) -> int:
    try:
        host, port = parse_address(args.addr)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    app = create_app(
        service,
        allowed_origins=split_csv(args.allowed_origins),
        auth_token=args.auth_token,
        defaults=build_request(args),
    )
    print(f"patchsync service listening on http://{args.addr}")
    if not args.auth_token.strip():
        print("warning: auth token is empty; set --auth-token or PATCHSYNC_TOKEN for stricter access control")
    try:
        app.run(host=host, port=port, debug=False, use_reloader=False)
    except OSError as exc:
        print(f"server failed: {exc}", file=sys.stderr)
        return 1
    return 0


def build_parser(settings: PatchSyncSettings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Synchronise patch data from Google Sheets")
    parser.add_argument("--serve", action="store_true", help="Run as local HTTP service for the UI button")
    parser.add_argument("--all", action="store_true", help="Sync every supported game")
    parser.add_argument(
        "--game",
        default=DEFAULT_GAME_ID,
        help=f"Game id ({', '.join(available_game_ids())})",
    )
    parser.add_argument("--addr", default=settings.bind_address, help="HTTP bind address in serve mode")
    parser.add_argument(
        "--allowed-origins",
        default=",".join(settings.allowed_origins),
        help="Comma-separated allowed CORS origins in serve mode",
    )
    parser.add_argument(
        "--auth-token",
        default=settings.auth_token,
        help="Token required in the X-Patchsync-Token header (defaults to PATCHSYNC_TOKEN)",
    )
    parser.add_argument("--spreadsheet-id", default="", help="Google Spreadsheet ID or full spreadsheet URL")
    parser.add_argument(
        "--sheet-names",
        default="",
        help="Comma-separated sheet names (auto-detects N.N sheet names when empty)",
    )
    parser.add_argument("--output", default="", help="Output JS file path (defaults by game)")
    parser.add_argument(
        "--create-branch",
        action="store_true",
        help="Create a git branch before writing the generated file",
    )
    parser.add_argument("--branch-prefix", default=settings.branch_prefix, help="Git branch prefix for --create-branch")
    parser.add_argument(
        "--skip-existing",
        action=argparse.BooleanOptionalAction,
        default=settings.skip_existing,
        help="Skip patches already present in the generated output",
    )
    parser.add_argument("--dry-run", action="store_true", help="Parse and validate only, do not write files")
    parser.add_argument(
        "--timeout",
        type=parse_duration,
        default=settings.timeout,
        help="HTTP client timeout, e.g. 20s",
    )
    parser.add_argument("--verbose", action="store_true", help="Log debug details")
    return parser


def main(argv: list[str] | None = None, settings: PatchSyncSettings | None = None) -> int:
    settings = settings or load_settings()
    parser = build_parser(settings)
    args = parser.parse_args(argv)
    configure_logging(
        logging.DEBUG if args.verbose else logging.INFO,
        settings.resolve(app_paths.DEFAULT_LOG_PATH),
    )

    service = SyncService(settings)
    if args.serve:
        return command_serve(args, service)
    if args.all:
        return command_sync_all(args, service)
    return command_sync(args, service)


if __name__ == "__main__":
    sys.exit(main())
