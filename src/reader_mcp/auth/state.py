"""Opaque state carried through the consent and token forms.

The browser holds the pending authorization between form round-trips, so it
travels as base64-encoded JSON in a hidden ``state`` field. The payload is
encoded, not signed.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

import orjson
from pydantic import ValidationError

from reader_mcp.auth.provider import AuthorizationRequest


class StateError(ValueError):
    """The carried state could not be decoded."""


def encode_state(data: dict[str, Any]) -> str:
    return base64.b64encode(orjson.dumps(data)).decode("ascii")


def decode_state(blob: str) -> dict[str, Any]:
    try:
        data = orjson.loads(base64.b64decode(blob, validate=True))
    except (binascii.Error, ValueError) as e:
        raise StateError("Malformed state") from e
    if not isinstance(data, dict):
        raise StateError("State must be a JSON object")
    return data


def encode_request(request: AuthorizationRequest) -> str:
    """Encode an authorization request for a hidden form field."""
    return encode_state(request.model_dump(mode="json"))


def decode_request(blob: str) -> AuthorizationRequest:
    return request_from_state(decode_state(blob))


def request_from_state(data: Any) -> AuthorizationRequest:
    try:
        return AuthorizationRequest.model_validate(data)
    except ValidationError as e:
        raise StateError("State does not hold an authorization request") from e
