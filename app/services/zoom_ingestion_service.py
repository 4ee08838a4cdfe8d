from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel

from app.core.config import Settings
from app.schemas.zoom import (
    IngestionFailureResponse,
    MeetingAlreadyProcessedResponse,
    ProcessZoomTranscriptRequest,
    ProcessZoomTranscriptResponse,
)
from app.services.analysis_dispatcher import AnalysisDispatcher, create_analysis_dispatcher
from app.services.ingestion_errors import (
    AlreadyProcessedError,
    AuthenticationError,
    DispatchError,
    DownloadError,
    IngestionRequestError,
    TranscriptIngestionError,
)
from app.services.integration_connection_store import create_integration_connection_store
from app.services.transcript_metadata import (
    ParticipantExtractor,
    derive_metadata,
    extract_speaker_labels,
)
from app.services.transcript_normalizer import (
    classify_transcript_format,
    normalize_transcript_text_as,
)
from app.services.transcript_store import (
    TranscriptStore,
    build_transcript_document,
    create_transcript_store,
)
from app.services.zoom_api_client import ZoomApiClient, decode_transcript_bytes
from app.services.zoom_credential_manager import ZoomCredentialManager

DEFAULT_MEETING_TITLE = "Zoom Meeting"


class IngestionStage(StrEnum):
    validating_credential = "validating_credential"
    checking_duplicate = "checking_duplicate"
    locating_asset = "locating_asset"
    downloading = "downloading"
    normalizing = "normalizing"
    extracting_metadata = "extracting_metadata"
    persisting = "persisting"
    dispatching = "dispatching"
    done = "done"
    failed = "failed"


@dataclass
class IngestionResult:
    transcript_id: str
    meeting_id: str
    analysis_dispatched: bool
    stages: list[IngestionStage] = field(default_factory=list)


@dataclass
class _PipelineRun:
    meeting_id: str
    logger: logging.Logger
    stages: list[IngestionStage] = field(default_factory=list)

    @property
    def current(self) -> IngestionStage | None:
        return self.stages[-1] if self.stages else None

    def advance(self, stage: IngestionStage) -> None:
        self.stages.append(stage)
        self.logger.debug("Ingestion stage meeting_id=%s stage=%s", self.meeting_id, stage.value)


class ZoomTranscriptIngestionService:
    def __init__(
        self,
        settings: Settings,
        transcript_store: TranscriptStore | None = None,
        credential_manager: ZoomCredentialManager | None = None,
        api_client: ZoomApiClient | None = None,
        analysis_dispatcher: AnalysisDispatcher | None = None,
        participant_extractor: ParticipantExtractor = extract_speaker_labels,
        logger: logging.Logger | None = None,
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
        self.analysis_dispatcher = analysis_dispatcher or create_analysis_dispatcher(settings)
        self.participant_extractor = participant_extractor
        self.logger = logger or logging.getLogger(__name__)

    def process_meeting(
        self,
        owner_id: str | None,
        ingestion_request: ProcessZoomTranscriptRequest,
    ) -> tuple[int, BaseModel]:
        """Run the pipeline and translate its outcome into a response body.

        This is the single place where ingestion errors are caught.
        """
        try:
            result = self.ingest(owner_id, ingestion_request)
        except AlreadyProcessedError as exc:
            self.logger.info(
                "Meeting already processed owner_id=%s meeting_id=%s transcript_id=%s",
                owner_id,
                ingestion_request.meeting_id,
                exc.transcript_id,
            )
            return 400, MeetingAlreadyProcessedResponse(
                transcript_id=exc.transcript_id,
                status=exc.processing_status,
            )
        except TranscriptIngestionError as exc:
            self.logger.warning(
                "Zoom transcript ingestion failed owner_id=%s meeting_id=%s stage=%s error_type=%s error=%s",
                owner_id,
                ingestion_request.meeting_id,
                exc.stage,
                type(exc).__name__,
                exc,
            )
            return 500, IngestionFailureResponse(error=str(exc))
        except Exception as exc:
            self.logger.exception(
                "Unexpected Zoom transcript ingestion error owner_id=%s meeting_id=%s",
                owner_id,
                ingestion_request.meeting_id,
            )
            return 500, IngestionFailureResponse(error=str(exc) or type(exc).__name__)

        return 200, ProcessZoomTranscriptResponse(
            transcript_id=result.transcript_id,
            meeting_id=result.meeting_id,
            analysis_dispatched=result.analysis_dispatched,
        )

    def ingest(
        self,
        owner_id: str | None,
        ingestion_request: ProcessZoomTranscriptRequest,
    ) -> IngestionResult:
        if not owner_id:
            raise AuthenticationError(
                "Authentication required.",
                stage=IngestionStage.validating_credential.value,
            )
        meeting_id = (ingestion_request.meeting_id or "").strip()
        if not meeting_id:
            raise IngestionRequestError("Meeting ID is required")

        run = _PipelineRun(meeting_id=meeting_id, logger=self.logger)
        self.logger.info("Processing Zoom meeting meeting_id=%s owner_id=%s", meeting_id, owner_id)
        try:
            result = self._run_stages(run, owner_id, meeting_id, ingestion_request)
        except TranscriptIngestionError as exc:
            if exc.stage is None and run.current is not None:
                exc.stage = run.current.value
            run.advance(IngestionStage.failed)
            raise
        return result

    def check_not_processed(self, owner_id: str, meeting_id: str) -> None:
        existing = self.transcript_store.get_by_source_meeting_id(owner_id, meeting_id)
        if existing:
            raise AlreadyProcessedError(
                transcript_id=str(existing.get("_id", "")),
                processing_status=_to_text(existing.get("processing_status")),
            )

    def _run_stages(
        self,
        run: _PipelineRun,
        owner_id: str,
        meeting_id: str,
        ingestion_request: ProcessZoomTranscriptRequest,
    ) -> IngestionResult:
        run.advance(IngestionStage.validating_credential)
        connection = self.credential_manager.resolve_active_connection(owner_id)
        access_token = self.credential_manager.ensure_valid_access_token(connection)

        run.advance(IngestionStage.checking_duplicate)
        self.check_not_processed(owner_id, meeting_id)

        run.advance(IngestionStage.locating_asset)
        asset = self.api_client.locate_transcript_asset(meeting_id, access_token)

        run.advance(IngestionStage.downloading)
        raw_bytes = self.api_client.download_asset(asset, access_token)
        raw_text = decode_transcript_bytes(raw_bytes)
        self.logger.info(
            "Transcript downloaded meeting_id=%s content_length=%s",
            meeting_id,
            len(raw_text),
        )

        run.advance(IngestionStage.normalizing)
        transcript_format = classify_transcript_format(raw_text)
        canonical_text = normalize_transcript_text_as(raw_text, transcript_format)
        if not canonical_text:
            raise DownloadError("Failed to download transcript from Zoom")
        self.logger.info(
            "Transcript normalized meeting_id=%s format=%s plain_text_length=%s",
            meeting_id,
            transcript_format.value,
            len(canonical_text),
        )

        run.advance(IngestionStage.extracting_metadata)
        metadata = derive_metadata(canonical_text, self.participant_extractor)
        duration_minutes = ingestion_request.meeting_duration or metadata.estimated_duration_minutes
        meeting_date = ingestion_request.meeting_date
        source_metadata: dict[str, Any] = {
            "meetingTopic": ingestion_request.meeting_title,
            "startTime": meeting_date.isoformat() if meeting_date else None,
            "duration": ingestion_request.meeting_duration,
            "attendees": ingestion_request.attendee_count,
            "downloadedAt": datetime.now(UTC).isoformat(),
            "transcriptFormat": transcript_format.value,
            "assetId": asset.asset_id,
        }

        run.advance(IngestionStage.persisting)
        document = build_transcript_document(
            owner_id=owner_id,
            title=ingestion_request.meeting_title or DEFAULT_MEETING_TITLE,
            participants=metadata.participants,
            duration_minutes=duration_minutes,
            meeting_date=(meeting_date or datetime.now(UTC)).isoformat(),
            raw_text=canonical_text,
            source_meeting_id=meeting_id,
            source_metadata=source_metadata,
        )
        transcript_id = self.transcript_store.create(document)
        self.logger.info(
            "Transcript record created meeting_id=%s transcript_id=%s",
            meeting_id,
            transcript_id,
        )

        run.advance(IngestionStage.dispatching)
        analysis_dispatched = self._dispatch_analysis(transcript_id)

        run.advance(IngestionStage.done)
        return IngestionResult(
            transcript_id=transcript_id,
            meeting_id=meeting_id,
            analysis_dispatched=analysis_dispatched,
            stages=list(run.stages),
        )

    def _dispatch_analysis(self, transcript_id: str) -> bool:
        try:
            self.analysis_dispatcher.dispatch(transcript_id)
        except DispatchError as exc:
            # Never fatal: the transcript record is already persisted.
            self.logger.error(
                "Analysis dispatch failed transcript_id=%s error=%s",
                transcript_id,
                exc,
            )
            return False
        except Exception:
            self.logger.exception(
                "Unexpected analysis dispatch error transcript_id=%s",
                transcript_id,
            )
            return False
        self.logger.info("Analysis dispatched transcript_id=%s", transcript_id)
        return True


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None
