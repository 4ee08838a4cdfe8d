from __future__ import annotations

import base64
import json
import logging
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from http import client as http_client
from typing import Any
from urllib import error, parse, request

from app.services.ingestion_errors import AuthenticationError
from app.services.integration_connection_store import (
    ZOOM_INTEGRATION_TYPE,
    IntegrationConnectionStore,
)

logger = logging.getLogger(__name__)

REFRESH_BUFFER = timedelta(minutes=5)
_DEFAULT_TOKEN_TTL_SECONDS = 3600


class ZoomCredentialManager:
    """Keeps the Zoom bearer token of an integration connection usable.

    Tokens closer than ``REFRESH_BUFFER`` to expiry are refreshed with the
    refresh-token grant; the refreshed credential is written back to the
    connection store before the new access token is handed out.
    """

    def __init__(
        self,
        *,
        connection_store: IntegrationConnectionStore,
        client_id: str,
        client_secret: str,
        oauth_token_url: str = "https://zoom.us/oauth/token",
        timeout_seconds: float = 15.0,
    ) -> None:
        self.connection_store = connection_store
        self.client_id = client_id.strip()
        self.client_secret = client_secret.strip()
        self.oauth_token_url = oauth_token_url
        self.timeout_seconds = timeout_seconds

    def resolve_active_connection(self, user_id: str) -> dict[str, Any]:
        connection = self.connection_store.get_active_connection(user_id, ZOOM_INTEGRATION_TYPE)
        if not connection:
            raise AuthenticationError("Zoom connection not found or inactive")
        credentials = connection.get("credentials")
        if not isinstance(credentials, Mapping) or not _to_text(credentials.get("access_token")):
            raise AuthenticationError("No Zoom access token available")
        return connection

    def ensure_valid_access_token(self, connection: Mapping[str, Any]) -> str:
        credentials = dict(connection.get("credentials") or {})
        access_token = _to_text(credentials.get("access_token"))
        if not access_token:
            raise AuthenticationError("No Zoom access token available")

        expires_at = parse_expires_at(credentials.get("expires_at"))
        if expires_at is None:
            return access_token
        if expires_at - datetime.now(UTC) > REFRESH_BUFFER:
            return access_token

        logger.info(
            "Refreshing Zoom access token connection_id=%s expires_at=%s",
            connection.get("_id"),
            expires_at.isoformat(),
        )
        refreshed_credentials = self._refresh_credentials(credentials)
        self.connection_store.update_credentials(str(connection.get("_id", "")), refreshed_credentials)
        logger.info("Zoom access token refreshed connection_id=%s", connection.get("_id"))
        return str(refreshed_credentials["access_token"])

    def _refresh_credentials(self, credentials: Mapping[str, Any]) -> dict[str, Any]:
        refresh_token = _to_text(credentials.get("refresh_token"))
        if not refresh_token:
            raise AuthenticationError("Zoom credential has no refresh token.")
        if not self.client_id or not self.client_secret:
            raise AuthenticationError("Zoom OAuth client credentials are not configured.")

        payload = self._request_token_refresh(refresh_token)
        new_access_token = _to_text(payload.get("access_token"))
        if not new_access_token:
            raise AuthenticationError("Zoom token refresh did not include access_token.")

        expires_in = _to_positive_int(payload.get("expires_in")) or _DEFAULT_TOKEN_TTL_SECONDS
        updated_credentials = dict(credentials)
        updated_credentials["access_token"] = new_access_token
        updated_credentials["refresh_token"] = _to_text(payload.get("refresh_token")) or refresh_token
        updated_credentials["expires_at"] = (
            datetime.now(UTC) + timedelta(seconds=expires_in)
        ).isoformat()
        return updated_credentials

    def _request_token_refresh(self, refresh_token: str) -> dict[str, Any]:
        basic_auth = base64.b64encode(
            f"{self.client_id}:{self.client_secret}".encode("utf-8"),
        ).decode("ascii")
        body = parse.urlencode(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
        ).encode("utf-8")
        req = request.Request(
            self.oauth_token_url,
            data=body,
            headers={
                "Authorization": f"Basic {basic_auth}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise AuthenticationError("Zoom token refresh timed out.") from exc
        except error.HTTPError as exc:
            body_text = exc.read().decode("utf-8", errors="ignore")
            logger.warning("Zoom token refresh failed status_code=%s", exc.code)
            raise AuthenticationError(
                f"Failed to refresh Zoom token: HTTP {exc.code}: {body_text or 'empty response body'}",
            ) from exc
        except error.URLError as exc:
            raise AuthenticationError(
                f"Zoom token refresh connection error: {exc.reason}",
            ) from exc
        except (OSError, http_client.HTTPException) as exc:
            raise AuthenticationError(f"Zoom token refresh failed: {exc}") from exc

        try:
            payload = json.loads(response_body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise AuthenticationError("Zoom token refresh returned invalid JSON.") from exc
        if not isinstance(payload, dict):
            raise AuthenticationError("Zoom token refresh response is not a JSON object.")
        return payload


def parse_expires_at(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            # An unreadable expiry is handled like an expired one.
            return datetime.fromtimestamp(0, UTC)
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _to_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _to_positive_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
        return parsed if parsed > 0 else None
    return None
