"""Encode and decode the OAuth ``state`` round-trip payload.

The payload travels through Google untouched and comes back on the
callback, so everything decoded here is treated as untrusted input.
"""
from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass

from gmail_connect.core.errors import InvalidStateError

MAX_FIELD_LENGTH = 255


@dataclass(frozen=True)
class PendingAuthorization:
    family_id: str
    family_name: str | None = None


def encode_state(family_id: str, family_name: str | None = None) -> str:
    """Return the base64-encoded JSON state for an authorization request."""
    payload = {"familyId": family_id, "familyName": family_name or ""}
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_state(state: str | None) -> PendingAuthorization:
    """Decode and validate a state value returned by the provider."""
    if not state:
        raise InvalidStateError("Missing state parameter")

    # Accept the URL-safe alphabet and missing padding as well.
    normalized = state.strip().replace("-", "+").replace("_", "/")
    normalized += "=" * (-len(normalized) % 4)
    try:
        decoded = base64.b64decode(normalized, validate=True)
        payload = json.loads(decoded.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise InvalidStateError() from exc

    if not isinstance(payload, dict):
        raise InvalidStateError()

    family_id = payload.get("familyId")
    if not isinstance(family_id, str) or not family_id.strip():
        raise InvalidStateError()
    if len(family_id) > MAX_FIELD_LENGTH:
        raise InvalidStateError()

    family_name = payload.get("familyName")
    if family_name is not None and not isinstance(family_name, str):
        raise InvalidStateError()
    if family_name and len(family_name) > MAX_FIELD_LENGTH:
        raise InvalidStateError()

    return PendingAuthorization(family_id=family_id.strip(), family_name=family_name or None)
