"""Loading of optional Google service account credentials.

Public spreadsheets need no credentials at all.  A service account is only
used for the Sheets API worksheet listing when the public feed is not
reachable for a private or domain restricted spreadsheet.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, Mapping, Sequence

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account

__all__ = [
    "CredentialsFileInvalidError",
    "READONLY_SCOPES",
    "REQUIRED_FIELDS",
    "load_service_account_data",
    "service_account_credentials",
]

READONLY_SCOPES: Sequence[str] = ("https://www.googleapis.com/auth/spreadsheets.readonly",)


class CredentialsFileInvalidError(Exception):
    """Raised when a service account JSON file is missing or malformed."""


REQUIRED_FIELDS: Iterable[str] = (
    "type",
    "project_id",
    "private_key_id",
    "private_key",
    "client_email",
    "token_uri",
)


def _normalise_private_key(key: str) -> str:
    key = key.replace("\r\n", "\n").replace("\r", "\n")
    key = key.replace("\\n", "\n")
    if not key.endswith("\n"):
        key += "\n"
    return key


def _load_json(path: Path) -> Mapping[str, object]:
    try:
        raw = path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise CredentialsFileInvalidError(f"Could not read credentials file {path}: {exc}") from exc

    payload_text = raw.strip()
    if not payload_text:
        raise CredentialsFileInvalidError(f"Credentials file {path} is empty.")

    try:
        payload = json.loads(payload_text)
    except json.JSONDecodeError as exc:
        raise CredentialsFileInvalidError(f"Credentials file {path} is not valid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise CredentialsFileInvalidError(f"Credentials file {path} must contain a JSON object.")
    return payload


def _validate_payload(payload: Mapping[str, object]) -> Dict[str, object]:
    data: Dict[str, object] = dict(payload)
    missing = [
        field
        for field in REQUIRED_FIELDS
        if not isinstance(data.get(field), str) or not str(data.get(field)).strip()
    ]
    if data.get("type") != "service_account":
        missing.append("type")

    if missing:
        ordered = ", ".join(sorted(dict.fromkeys(missing)))
        raise CredentialsFileInvalidError(f"Service account JSON missing fields: {ordered}")

    data["private_key"] = _normalise_private_key(str(data["private_key"]))
    return data


def load_service_account_data(path: Path) -> Dict[str, object]:
    """Return validated service account data from ``path``."""

    return _validate_payload(_load_json(Path(path)))


def service_account_credentials(path: Path, scopes: Sequence[str] = READONLY_SCOPES):
    """Build ``google.oauth2`` credentials for the service account at ``path``."""

    payload = load_service_account_data(path)
    try:
        return service_account.Credentials.from_service_account_info(payload, scopes=list(scopes))
    except (ValueError, GoogleAuthError) as exc:
        raise CredentialsFileInvalidError(f"Service account credentials rejected: {exc}") from exc
