from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from http import client as http_client
from typing import Any
from urllib import error, parse, request

from app.services.ingestion_errors import DownloadError, RecordingNotFoundError

logger = logging.getLogger(__name__)

TRANSCRIPT_FILE_TYPE = "TRANSCRIPT"
COMPLETED_STATUS = "completed"


class ZoomApiError(Exception):
    pass


@dataclass
class RecordingAsset:
    file_type: str
    status: str
    download_url: str
    asset_id: str | None = None
    file_extension: str | None = None
    file_size: int | None = None
    recording_start: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> RecordingAsset:
        raw_size = payload.get("file_size")
        return cls(
            file_type=str(payload.get("file_type") or ""),
            status=str(payload.get("status") or ""),
            download_url=str(payload.get("download_url") or ""),
            asset_id=_to_text(payload.get("id")),
            file_extension=_to_text(payload.get("file_extension")),
            file_size=raw_size if isinstance(raw_size, int) and not isinstance(raw_size, bool) else None,
            recording_start=_to_text(payload.get("recording_start")),
        )

    def is_completed_transcript(self) -> bool:
        return (
            self.file_type == TRANSCRIPT_FILE_TYPE
            and self.status == COMPLETED_STATUS
            and bool(self.download_url.strip())
        )


class ZoomApiClient:
    def __init__(
        self,
        *,
        api_base_url: str = "https://api.zoom.us/v2",
        timeout_seconds: float = 15.0,
        download_timeout_seconds: float = 30.0,
    ) -> None:
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.download_timeout_seconds = download_timeout_seconds

    def list_recording_assets(self, meeting_id: str, access_token: str) -> list[RecordingAsset]:
        path = f"/meetings/{encode_meeting_id(meeting_id)}/recordings"
        try:
            payload = self._request_json(path, access_token)
        except ZoomApiError as exc:
            raise RecordingNotFoundError(
                f"Failed to get recording info for meeting {meeting_id}: {exc}",
            ) from exc

        raw_files = payload.get("recording_files")
        if not isinstance(raw_files, list):
            return []
        return [
            RecordingAsset.from_payload(raw_file)
            for raw_file in raw_files
            if isinstance(raw_file, Mapping)
        ]

    def locate_transcript_asset(self, meeting_id: str, access_token: str) -> RecordingAsset:
        assets = self.list_recording_assets(meeting_id, access_token)
        logger.info("Zoom recording files listed meeting_id=%s count=%s", meeting_id, len(assets))

        candidates = [asset for asset in assets if asset.is_completed_transcript()]
        if not candidates:
            raise RecordingNotFoundError("No transcript file found or download URL missing")
        if len(candidates) > 1:
            logger.warning(
                "Multiple completed transcripts meeting_id=%s count=%s selected_asset_id=%s",
                meeting_id,
                len(candidates),
                candidates[0].asset_id,
            )
        return candidates[0]

    def download_asset(self, asset: RecordingAsset, access_token: str) -> bytes:
        req = request.Request(
            asset.download_url,
            headers={"Authorization": f"Bearer {access_token}"},
            method="GET",
        )
        try:
            with request.urlopen(req, timeout=self.download_timeout_seconds) as response:
                body = response.read()
        except TimeoutError as exc:
            raise DownloadError("Zoom transcript download timed out.") from exc
        except error.HTTPError as exc:
            raise DownloadError(f"Failed to download transcript: {exc.code}") from exc
        except error.URLError as exc:
            raise DownloadError(f"Zoom transcript download connection error: {exc.reason}") from exc
        except (OSError, http_client.HTTPException) as exc:
            raise DownloadError(f"Zoom transcript download failed: {exc}") from exc

        if not body:
            raise DownloadError("Zoom transcript download returned an empty body.")
        return body

    def list_previous_meetings(self, access_token: str, page_size: int = 30) -> list[dict[str, Any]]:
        query = parse.urlencode({"type": "previous_meetings", "page_size": page_size})
        payload = self._request_json(f"/users/me/meetings?{query}", access_token)
        meetings = payload.get("meetings")
        if not isinstance(meetings, list):
            return []
        return [dict(meeting) for meeting in meetings if isinstance(meeting, Mapping)]

    def _request_json(self, path: str, access_token: str) -> dict[str, Any]:
        req = request.Request(
            f"{self.api_base_url}{path}",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            method="GET",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise ZoomApiError("Zoom API request timed out.") from exc
        except error.HTTPError as exc:
            body = exc.read().decode("utf-8", errors="ignore")
            raise ZoomApiError(f"Zoom API HTTP {exc.code}: {body or 'empty response body'}") from exc
        except error.URLError as exc:
            raise ZoomApiError(f"Zoom API connection error: {exc.reason}") from exc
        except (OSError, http_client.HTTPException) as exc:
            raise ZoomApiError(f"Zoom API request failed: {exc}") from exc

        try:
            parsed_body = json.loads(response_body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ZoomApiError("Zoom API returned invalid JSON.") from exc
        if not isinstance(parsed_body, dict):
            raise ZoomApiError("Zoom API response is not a JSON object.")
        return parsed_body


def encode_meeting_id(meeting_id: str) -> str:
    cleaned = meeting_id.strip()
    encoded = parse.quote(cleaned, safe="")
    # Zoom requires UUIDs starting with "/" or containing "//" to be encoded twice.
    if cleaned.startswith("/") or "//" in cleaned:
        return parse.quote(encoded, safe="")
    return encoded


def decode_transcript_bytes(body: bytes) -> str:
    return body.decode("utf-8-sig", errors="replace")


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None
