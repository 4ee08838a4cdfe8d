from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

_TOKEN_DIGEST = hashlib.sha256


class InvalidAccessTokenError(Exception):
    pass


def issue_access_token(
    *,
    subject: str,
    secret_key: str,
    ttl_minutes: int,
    extra_claims: Mapping[str, Any] | None = None,
) -> tuple[str, int]:
    """Sign a compact ``payload.signature`` token for ``subject``.

    Returns the token and its lifetime in seconds. This is the issuing half
    of ``verify_access_token``: the login flow of the surrounding product mints
    caller tokens with it, and the route tests use it to build bearer headers.
    """
    issued_at = datetime.now(UTC)
    expires_at = issued_at + timedelta(minutes=ttl_minutes)
    claims = {
        **dict(extra_claims or {}),
        "sub": subject,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    payload_segment = _b64url_encode(
        json.dumps(claims, separators=(",", ":"), sort_keys=True).encode("utf-8"),
    )
    token = f"{payload_segment}.{_b64url_encode(_sign(payload_segment, secret_key))}"
    return token, max(int((expires_at - issued_at).total_seconds()), 0)


def verify_access_token(
    token: str,
    secret_key: str,
    *,
    leeway_seconds: int = 0,
) -> dict[str, Any]:
    payload_segment, separator, signature_segment = token.strip().partition(".")
    if not separator or not payload_segment or not signature_segment:
        raise InvalidAccessTokenError("malformed token")

    try:
        provided_signature = _b64url_decode(signature_segment)
        payload_bytes = _b64url_decode(payload_segment)
    except (ValueError, binascii.Error) as exc:
        raise InvalidAccessTokenError("token is not base64url encoded") from exc
    if not hmac.compare_digest(_sign(payload_segment, secret_key), provided_signature):
        raise InvalidAccessTokenError("signature mismatch")

    try:
        claims = json.loads(payload_bytes.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidAccessTokenError("payload is not JSON") from exc
    if not isinstance(claims, dict):
        raise InvalidAccessTokenError("payload is not a JSON object")

    expires_at = claims.get("exp")
    if not isinstance(expires_at, int) or isinstance(expires_at, bool):
        raise InvalidAccessTokenError("missing exp claim")
    if expires_at + leeway_seconds < int(datetime.now(UTC).timestamp()):
        raise InvalidAccessTokenError("token expired")

    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise InvalidAccessTokenError("missing sub claim")
    return claims


def _sign(payload_segment: str, secret_key: str) -> bytes:
    return hmac.new(
        secret_key.encode("utf-8"),
        payload_segment.encode("utf-8"),
        _TOKEN_DIGEST,
    ).digest()


def _b64url_encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    padded = value + "=" * ((-len(value)) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))
