from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from app.core.config import Settings
from app.schemas.zoom import ZoomMeetingSummary, ZoomMeetingsResponse
from app.services.ingestion_errors import AuthenticationError
from app.services.integration_connection_store import create_integration_connection_store
from app.services.transcript_store import TranscriptStore, create_transcript_store
from app.services.zoom_api_client import ZoomApiClient
from app.services.zoom_credential_manager import ZoomCredentialManager

logger = logging.getLogger(__name__)

MIN_TRANSCRIPT_DURATION_MINUTES = 15
MAX_LISTED_MEETINGS = 10
NEW_MEETING_WINDOW = timedelta(hours=24)
_ESTIMATED_WORDS_PER_MINUTE = 175
_ESTIMATED_BYTES_PER_WORD = 6


class ZoomMeetingsService:
    def __init__(
        self,
        settings: Settings,
        transcript_store: TranscriptStore | None = None,
        credential_manager: ZoomCredentialManager | None = None,
        api_client: ZoomApiClient | None = None,
    ) -> None:
        self.settings = settings
        self.transcript_store = transcript_store or create_transcript_store(
            store_name=settings.transcripts_store,
            mongodb_uri=settings.mongodb_uri,
            mongodb_db_name=settings.mongodb_db_name,
            mongodb_collection_name=settings.mongodb_transcripts_collection,
            mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
        )
        self.credential_manager = credential_manager or ZoomCredentialManager(
            connection_store=create_integration_connection_store(settings),
            client_id=settings.zoom_client_id,
            client_secret=settings.zoom_client_secret,
            oauth_token_url=settings.zoom_oauth_token_url,
            timeout_seconds=settings.zoom_api_timeout_seconds,
        )
        self.api_client = api_client or ZoomApiClient(
            api_base_url=settings.zoom_api_base_url,
            timeout_seconds=settings.zoom_api_timeout_seconds,
            download_timeout_seconds=settings.zoom_download_timeout_seconds,
        )

    def list_available_meetings(self, owner_id: str) -> ZoomMeetingsResponse:
        """List recent Zoom meetings that still need ingesting, newest first.

        A user without an active Zoom connection simply gets an empty list.
        """
        try:
            connection = self.credential_manager.resolve_active_connection(owner_id)
        except AuthenticationError:
            logger.info("No active Zoom connection owner_id=%s", owner_id)
            return ZoomMeetingsResponse()

        access_token = self.credential_manager.ensure_valid_access_token(connection)
        meetings = self.api_client.list_previous_meetings(access_token)
        processed_meeting_ids = self.transcript_store.list_source_meeting_ids(owner_id)

        now = datetime.now(UTC)
        available: list[tuple[datetime, ZoomMeetingSummary]] = []
        for meeting in meetings:
            summary = self._to_summary(meeting, now=now)
            if summary is None or summary.id in processed_meeting_ids:
                continue
            if not summary.has_transcript:
                continue
            available.append((_parse_start_time(meeting.get("start_time")), summary))

        available.sort(key=lambda entry: entry[0], reverse=True)
        listed = [summary for _, summary in available[:MAX_LISTED_MEETINGS]]
        logger.info(
            "Zoom meetings listed owner_id=%s total=%s processed=%s available=%s",
            owner_id,
            len(meetings),
            len(processed_meeting_ids),
            len(listed),
        )
        return ZoomMeetingsResponse(
            meetings=listed,
            processed_count=len(processed_meeting_ids),
            available_count=len(listed),
            total_meetings=len(meetings),
        )

    def _to_summary(self, meeting: Mapping[str, Any], *, now: datetime) -> ZoomMeetingSummary | None:
        meeting_uuid = meeting.get("uuid")
        if not isinstance(meeting_uuid, str) or not meeting_uuid.strip():
            return None

        duration = meeting.get("duration")
        duration_minutes = duration if isinstance(duration, int) and not isinstance(duration, bool) else 0
        start_time = meeting.get("start_time") if isinstance(meeting.get("start_time"), str) else None
        attendees = meeting.get("participants_count")
        return ZoomMeetingSummary(
            id=meeting_uuid,
            title=str(meeting.get("topic") or "").strip() or "Untitled Meeting",
            date=start_time,
            duration=duration_minutes,
            transcript_size=estimate_transcript_size(duration_minutes),
            attendees=attendees if isinstance(attendees, int) and not isinstance(attendees, bool) else 0,
            has_transcript=duration_minutes >= MIN_TRANSCRIPT_DURATION_MINUTES,
            is_new=_parse_start_time(start_time) > now - NEW_MEETING_WINDOW,
        )


def estimate_transcript_size(duration_minutes: int) -> str:
    estimated_bytes = duration_minutes * _ESTIMATED_WORDS_PER_MINUTE * _ESTIMATED_BYTES_PER_WORD
    if estimated_bytes < 1024:
        return f"{estimated_bytes} B"
    if estimated_bytes < 1024 * 1024:
        return f"~{int(estimated_bytes / 1024 + 0.5)} KB"
    megabytes = int(estimated_bytes / (1024 * 1024) * 10 + 0.5) / 10
    return f"~{megabytes} MB"


def _parse_start_time(value: Any) -> datetime:
    if not isinstance(value, str) or not value.strip():
        return datetime.min.replace(tzinfo=UTC)
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=UTC)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed
