from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping
from typing import Any

from fastapi import HTTPException, status
from pydantic import BaseModel, ValidationError

from app.core.config import Settings
from app.schemas.zoom import (
    ProcessZoomTranscriptRequest,
    ZoomUrlValidationResponse,
    ZoomWebhookEvent,
    ZoomWebhookMeetingObject,
    ZoomWebhookResponse,
)
from app.services.ingestion_errors import AlreadyProcessedError, TranscriptIngestionError
from app.services.integration_connection_store import (
    ZOOM_INTEGRATION_TYPE,
    IntegrationConnectionStore,
    create_integration_connection_store,
)
from app.services.zoom_ingestion_service import ZoomTranscriptIngestionService

URL_VALIDATION_EVENT = "endpoint.url_validation"
TRANSCRIPT_COMPLETED_EVENT = "recording.transcript_completed"
ACKNOWLEDGED_EVENTS = frozenset({"recording.completed", "meeting.ended"})
SIGNATURE_VERSION = "v0"

logger = logging.getLogger(__name__)


class ZoomWebhookService:
    """Receives Zoom event notifications and feeds completed transcripts
    into the ingestion pipeline.

    Redelivered events land on the same (owner, meeting) idempotency key as
    manual requests, so a second delivery reports the existing transcript.
    """

    def __init__(
        self,
        settings: Settings,
        connection_store: IntegrationConnectionStore | None = None,
        ingestion_service: ZoomTranscriptIngestionService | None = None,
    ) -> None:
        self.settings = settings
        self.connection_store = connection_store or create_integration_connection_store(settings)
        self._ingestion_service = ingestion_service

    @property
    def ingestion_service(self) -> ZoomTranscriptIngestionService:
        if self._ingestion_service is None:
            self._ingestion_service = ZoomTranscriptIngestionService(self.settings)
        return self._ingestion_service

    def handle(
        self,
        payload: Mapping[str, Any],
        raw_body: bytes,
        *,
        timestamp: str | None,
        signature: str | None,
    ) -> BaseModel:
        self.verify_signature(raw_body, timestamp, signature)
        event = self._parse_event(payload)

        if event.event == URL_VALIDATION_EVENT:
            return self._answer_url_validation(event)

        account_id = event.payload.account_id
        meeting = event.payload.object
        if not account_id or meeting is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid webhook payload.",
            )

        connection = self.connection_store.find_active_connection_by_account(
            ZOOM_INTEGRATION_TYPE,
            account_id,
        )
        if not connection:
            logger.info("No active Zoom connection for webhook account_id=%s", account_id)
            return ZoomWebhookResponse(
                status="ignored",
                event=event.event,
                meeting_id=meeting.uuid,
                reason="No active connection found",
            )

        if event.event == TRANSCRIPT_COMPLETED_EVENT:
            return self._ingest_completed_transcript(event, meeting, connection)

        if event.event in ACKNOWLEDGED_EVENTS:
            logger.info(
                "Zoom webhook acknowledged event=%s meeting_id=%s connection_id=%s",
                event.event,
                meeting.uuid,
                connection.get("_id"),
            )
            return ZoomWebhookResponse(status="acknowledged", event=event.event, meeting_id=meeting.uuid)

        logger.info("Unhandled Zoom webhook event=%s", event.event)
        return ZoomWebhookResponse(status="ignored", event=event.event, meeting_id=meeting.uuid)

    def verify_signature(
        self,
        raw_body: bytes,
        timestamp: str | None,
        signature: str | None,
    ) -> None:
        secret = self.settings.zoom_webhook_secret
        if not secret:
            logger.warning("ZOOM_WEBHOOK_SECRET is not configured; skipping signature validation")
            return
        if timestamp and signature and is_valid_zoom_signature(
            payload=raw_body,
            timestamp=timestamp,
            signature=signature,
            secret=secret,
        ):
            return
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature.",
        )

    def _parse_event(self, payload: Mapping[str, Any]) -> ZoomWebhookEvent:
        try:
            return ZoomWebhookEvent.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Zoom webhook payload rejected errors=%s", exc.error_count())
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid webhook payload.",
            ) from exc

    def _answer_url_validation(self, event: ZoomWebhookEvent) -> ZoomUrlValidationResponse:
        plain_token = event.payload.plain_token
        if not plain_token:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid webhook payload.",
            )
        secret = self.settings.zoom_webhook_secret
        if not secret:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Zoom webhook secret is not configured.",
            )
        return ZoomUrlValidationResponse(
            plain_token=plain_token,
            encrypted_token=_hmac_hex(secret, plain_token.encode("utf-8")),
        )

    def _ingest_completed_transcript(
        self,
        event: ZoomWebhookEvent,
        meeting: ZoomWebhookMeetingObject,
        connection: Mapping[str, Any],
    ) -> ZoomWebhookResponse:
        def skipped(reason: str) -> ZoomWebhookResponse:
            logger.info("Zoom webhook skipped meeting_id=%s reason=%s", meeting.uuid, reason)
            return ZoomWebhookResponse(
                status="skipped",
                event=event.event,
                meeting_id=meeting.uuid,
                reason=reason,
            )

        if not any(file.file_type == "TRANSCRIPT" for file in meeting.recording_files):
            return skipped("No transcript file in recording")

        configuration = connection.get("configuration") or {}
        if not configuration.get("auto_transcript_processing"):
            return skipped("Auto-processing disabled")

        min_duration = resolve_min_duration_minutes(
            configuration,
            default=self.settings.zoom_webhook_min_duration_minutes,
        )
        if meeting.duration < min_duration:
            return skipped(f"Meeting too short ({meeting.duration}min < {min_duration}min)")

        owner_id = str(connection.get("user_id") or "")
        ingestion_request = ProcessZoomTranscriptRequest(
            meeting_id=meeting.uuid,
            meeting_title=meeting.topic,
            meeting_date=meeting.start_time,
            meeting_duration=meeting.duration or None,
        )
        try:
            result = self.ingestion_service.ingest(owner_id, ingestion_request)
        except AlreadyProcessedError as exc:
            logger.info(
                "Zoom webhook redelivery meeting_id=%s transcript_id=%s",
                meeting.uuid,
                exc.transcript_id,
            )
            return ZoomWebhookResponse(
                status="already_processed",
                event=event.event,
                meeting_id=meeting.uuid,
                transcript_id=exc.transcript_id,
            )
        except TranscriptIngestionError as exc:
            logger.warning(
                "Zoom webhook ingestion failed meeting_id=%s stage=%s error_type=%s error=%s",
                meeting.uuid,
                exc.stage,
                type(exc).__name__,
                exc,
            )
            return ZoomWebhookResponse(
                status="failed",
                event=event.event,
                meeting_id=meeting.uuid,
                reason=str(exc),
            )

        return ZoomWebhookResponse(
            status="processed",
            event=event.event,
            meeting_id=result.meeting_id,
            transcript_id=result.transcript_id,
            analysis_dispatched=result.analysis_dispatched,
        )


def resolve_min_duration_minutes(configuration: Mapping[str, Any], *, default: int) -> int:
    analysis_settings = configuration.get("analysis_settings")
    if not isinstance(analysis_settings, Mapping):
        return default
    try:
        parsed_value = int(analysis_settings.get("min_duration_minutes") or 0)
    except (TypeError, ValueError):
        return default
    if parsed_value <= 0:
        return default
    return parsed_value


def is_valid_zoom_signature(*, payload: bytes, timestamp: str, signature: str, secret: str) -> bool:
    provided_signature = signature.strip()
    version, separator, provided_digest = provided_signature.partition("=")
    if not separator or version != SIGNATURE_VERSION or not provided_digest:
        return False

    message = f"{SIGNATURE_VERSION}:{timestamp.strip()}:".encode("utf-8") + payload
    return hmac.compare_digest(_hmac_hex(secret, message), provided_digest)


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=message,
        digestmod=hashlib.sha256,
    ).hexdigest()
