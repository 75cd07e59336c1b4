"""Local HTTP service that lets the front end trigger a sync."""
from __future__ import annotations

import hmac
import json
import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple
from urllib.parse import urlsplit

from flask import Flask, Response, jsonify, request
from flask_cors import CORS

from patchsync.errors import PatchSyncError
from patchsync.sync_service import SyncRequest, SyncService

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Patchsync-Token"
MAX_BODY_BYTES = 1 << 20
LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}
LOOPBACK_ORIGIN_PATTERN = r"^[a-z][a-z0-9+.-]*://(localhost|127\.0\.0\.1|\[::1\])(:\d+)?/?$"

_SYNC_FIELDS: Mapping[str, type] = {
    "gameId": str,
    "spreadsheetId": str,
    "sheetNames": list,
    "createBranch": bool,
    "branchPrefix": str,
    "dryRun": bool,
}
_SYNC_ALL_FIELDS: Mapping[str, type] = {"dryRun": bool}


class InvalidBody(ValueError):
    """Raised when a request body is not an acceptable JSON object."""


def is_loopback_origin(origin: str) -> bool:
    origin = origin.strip()
    if origin.lower() == "null":
        return True
    try:
        host = urlsplit(origin).hostname or ""
    except ValueError:
        return False
    return host.lower() in LOOPBACK_HOSTS


def is_origin_allowed(origin: str, allowed: Iterable[str]) -> bool:
    """Blank origins (same-origin or non-browser callers) are always allowed."""

    if not origin:
        return True
    allowed = set(allowed)
    return "*" in allowed or origin in allowed or is_loopback_origin(origin)


def is_authorized(supplied: Optional[str], token: str) -> bool:
    if not token.strip():
        return True
    return hmac.compare_digest((supplied or "").strip().encode("utf-8"), token.encode("utf-8"))


def decode_body(raw: bytes, fields: Mapping[str, type]) -> Dict[str, Any]:
    """Decode a JSON object body; blank bodies decode to ``{}``.

    Unknown keys and values of the wrong type raise :class:`InvalidBody`.
    """

    text = raw.decode("utf-8", errors="strict").strip() if raw else ""
    if not text:
        return {}
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InvalidBody(exc.msg) from exc
    if not isinstance(payload, dict):
        raise InvalidBody("body must be a JSON object")
    for key, value in payload.items():
        expected = fields.get(key)
        if expected is None:
            raise InvalidBody(f"unknown field {key!r}")
        if value is None:
            continue
        if not isinstance(value, expected):
            raise InvalidBody(f"field {key!r} has the wrong type")
        if expected is list and not all(isinstance(item, str) for item in value):
            raise InvalidBody(f"field {key!r} must be a list of strings")
    return payload


def _message(ok: bool, message: str, status: int) -> Tuple[Response, int]:
    return jsonify({"ok": ok, "message": message}), status


def create_app(
    service: SyncService,
    *,
    allowed_origins: Iterable[str] = (),
    auth_token: str = "",
    defaults: Optional[SyncRequest] = None,
) -> Flask:
    """Build the Flask application serving ``/health``, ``/sync`` and ``/sync-all``.

    ``defaults`` carries the command line options; request bodies override
    the game, spreadsheet, sheet names, branch options and dry-run flag.
    """

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = MAX_BODY_BYTES
    app.json.sort_keys = False

    origins = [origin.strip() for origin in allowed_origins if origin.strip()]
    base_request = defaults or SyncRequest()

    CORS(
        app,
        origins=origins + [LOOPBACK_ORIGIN_PATTERN, "null"],
        methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type", TOKEN_HEADER],
        vary_header=True,
    )

    @app.before_request
    def _check_origin():
        origin = (request.headers.get("Origin") or "").strip()
        if not is_origin_allowed(origin, origins):
            logger.warning("Rejected request from origin %s", origin)
            return _message(False, "origin is not allowed", 403)
        return None

    @app.errorhandler(405)
    def _method_not_allowed(_error):
        return _message(False, "method not allowed", 405)

    @app.errorhandler(413)
    def _too_large(_error):
        return _message(False, "invalid JSON body", 400)

    def _guard(fields: Mapping[str, type]):
        if not is_authorized(request.headers.get(TOKEN_HEADER), auth_token):
            return None, _message(False, "unauthorized", 401)
        try:
            body = decode_body(request.get_data(cache=False), fields)
        except (InvalidBody, UnicodeDecodeError) as exc:
            logger.info("Rejected request body: %s", exc)
            return None, _message(False, "invalid JSON body", 400)
        return body, None

    @app.route("/health", methods=["GET", "OPTIONS"])
    def health():
        if request.method == "OPTIONS":
            return "", 204
        return _message(True, "patchsync service is running", 200)

    @app.route("/sync", methods=["POST", "OPTIONS"])
    def sync():
        if request.method == "OPTIONS":
            return "", 204
        body, failure = _guard(_SYNC_FIELDS)
        if failure is not None:
            return failure

        sync_request = replace(
            base_request,
            game_id=(body.get("gameId") or "").strip() or base_request.game_id,
            spreadsheet_id=(body.get("spreadsheetId") or "").strip() or base_request.spreadsheet_id,
            sheet_names=list(body.get("sheetNames") or []),
            create_branch=bool(body.get("createBranch")),
            branch_prefix=(body.get("branchPrefix") or "").strip() or base_request.branch_prefix,
            dry_run=bool(body.get("dryRun")),
        )
        try:
            result = service.sync(sync_request)
        except PatchSyncError as exc:
            logger.warning("Sync request failed: %s", exc)
            return _message(False, str(exc), 400)
        return jsonify(result.to_response()), 200

    @app.route("/sync-all", methods=["POST", "OPTIONS"])
    def sync_all():
        if request.method == "OPTIONS":
            return "", 204
        body, failure = _guard(_SYNC_ALL_FIELDS)
        if failure is not None:
            return failure

        try:
            outcomes, all_ok = service.sync_all(dry_run=bool(body.get("dryRun")), base=base_request)
        except PatchSyncError as exc:
            logger.warning("Sync-all request failed: %s", exc)
            return _message(False, str(exc), 400)
        message = "sync completed for all games" if all_ok else "sync completed with errors"
        return (
            jsonify({"ok": all_ok, "message": message, "results": [outcome.to_dict() for outcome in outcomes]}),
            200,
        )

    return app


__all__ = [
    "TOKEN_HEADER",
    "MAX_BODY_BYTES",
    "InvalidBody",
    "is_loopback_origin",
    "is_origin_allowed",
    "is_authorized",
    "decode_body",
    "create_app",
]
