import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.schemas.auth import CurrentUserResponse
from app.schemas.zoom import (
    IngestionFailureResponse,
    MeetingAlreadyProcessedResponse,
    ProcessZoomTranscriptRequest,
    ProcessZoomTranscriptResponse,
    ZoomMeetingsErrorResponse,
    ZoomMeetingsResponse,
    ZoomWebhookResponse,
)
from app.services.auth_service import resolve_current_user
from app.services.ingestion_errors import AuthenticationError, TranscriptIngestionError
from app.services.zoom_api_client import ZoomApiError
from app.services.zoom_ingestion_service import ZoomTranscriptIngestionService
from app.services.zoom_meetings_service import ZoomMeetingsService
from app.services.zoom_webhook_service import ZoomWebhookService

router = APIRouter(prefix="/zoom", tags=["zoom"])
logger = logging.getLogger(__name__)


@router.post(
    "/transcripts/process",
    response_model=ProcessZoomTranscriptResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": MeetingAlreadyProcessedResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": IngestionFailureResponse},
    },
)
def process_zoom_transcript(
    payload: ProcessZoomTranscriptRequest,
    current_user: CurrentUserResponse | None = Depends(resolve_current_user),
) -> JSONResponse:
    service = ZoomTranscriptIngestionService(get_settings())
    owner_id = current_user.id if current_user else None
    status_code, body = service.process_meeting(owner_id, payload)
    logger.info(
        "Zoom transcript request handled owner_id=%s meeting_id=%s status_code=%s",
        owner_id,
        payload.meeting_id,
        status_code,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", by_alias=True))


@router.get(
    "/meetings",
    response_model=ZoomMeetingsResponse,
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": ZoomMeetingsErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ZoomMeetingsErrorResponse},
    },
)
def list_zoom_meetings(
    current_user: CurrentUserResponse | None = Depends(resolve_current_user),
) -> JSONResponse:
    if not current_user:
        return _meetings_error(status.HTTP_401_UNAUTHORIZED, "Authentication required.")

    service = ZoomMeetingsService(get_settings())
    try:
        response = service.list_available_meetings(current_user.id)
    except AuthenticationError as exc:
        logger.warning("Zoom meetings listing unauthorized owner_id=%s error=%s", current_user.id, exc)
        return _meetings_error(status.HTTP_401_UNAUTHORIZED, str(exc))
    except (TranscriptIngestionError, ZoomApiError) as exc:
        logger.warning("Zoom meetings listing failed owner_id=%s error=%s", current_user.id, exc)
        return _meetings_error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    return JSONResponse(
        content=response.model_dump(mode="json", by_alias=True),
        headers={"Cache-Control": "private, max-age=120"},
    )


@router.post("/webhook", response_model=ZoomWebhookResponse)
async def receive_zoom_webhook(request: Request) -> JSONResponse:
    payload, raw_body = await _load_payload_and_raw_body(request)
    logger.info(
        "Webhook received provider=zoom path=%s event=%s has_signature=%s",
        str(request.url.path),
        payload.get("event"),
        bool(request.headers.get("x-zm-signature")),
    )
    service = ZoomWebhookService(get_settings())
    try:
        body = service.handle(
            payload,
            raw_body,
            timestamp=request.headers.get("x-zm-request-timestamp"),
            signature=request.headers.get("x-zm-signature"),
        )
    except HTTPException as exc:
        logger.warning(
            "Webhook rejected provider=zoom path=%s status_code=%s detail=%s",
            str(request.url.path),
            exc.status_code,
            exc.detail,
        )
        raise
    except Exception:
        logger.exception("Webhook processing failed provider=zoom path=%s", str(request.url.path))
        raise

    content = body.model_dump(mode="json", by_alias=True, exclude_none=True)
    logger.info(
        "Webhook processed provider=zoom path=%s status=%s transcript_id=%s",
        str(request.url.path),
        content.get("status"),
        content.get("transcriptId"),
    )
    return JSONResponse(content=content)


def _meetings_error(status_code: int, message: str) -> JSONResponse:
    body = ZoomMeetingsErrorResponse(error=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", by_alias=True))


async def _load_payload_and_raw_body(request: Request) -> tuple[dict[str, Any], bytes]:
    raw_body = await request.body()
    try:
        parsed_payload = json.loads(raw_body or b"{}")
    except json.JSONDecodeError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Request body must be valid JSON.",
        ) from exc

    if not isinstance(parsed_payload, dict):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Request body must be a JSON object.",
        )

    return parsed_payload, raw_body
