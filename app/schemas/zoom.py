from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProcessZoomTranscriptRequest(_CamelModel):
    meeting_id: str | None = None
    meeting_title: str | None = None
    meeting_date: datetime | None = None
    meeting_duration: int | None = Field(default=None, ge=0)
    attendee_count: int | None = Field(default=None, ge=0)


class ProcessZoomTranscriptResponse(_CamelModel):
    success: bool = True
    transcript_id: str
    meeting_id: str
    status: str = "processing"
    message: str = "Transcript downloaded and analysis started"
    analysis_dispatched: bool


class MeetingAlreadyProcessedResponse(_CamelModel):
    error: str = "Meeting already processed"
    transcript_id: str
    status: str | None = None


class IngestionFailureResponse(_CamelModel):
    success: bool = False
    error: str


class ZoomMeetingSummary(_CamelModel):
    id: str
    title: str
    date: str | None = None
    duration: int
    transcript_size: str | None = None
    attendees: int = 0
    has_transcript: bool
    is_new: bool = False


class ZoomMeetingsResponse(_CamelModel):
    meetings: list[ZoomMeetingSummary] = Field(default_factory=list)
    processed_count: int = 0
    available_count: int = 0
    total_meetings: int = 0


class ZoomMeetingsErrorResponse(_CamelModel):
    error: str
    meetings: list[ZoomMeetingSummary] = Field(default_factory=list)


class ZoomWebhookRecordingFile(BaseModel):
    id: str | None = None
    file_type: str | None = None
    status: str | None = None
    download_url: str | None = None


class ZoomWebhookMeetingObject(BaseModel):
    uuid: str = Field(min_length=1, max_length=100)
    id: int | None = None
    host_id: str | None = Field(default=None, max_length=100)
    topic: str | None = Field(default=None, max_length=200)
    start_time: datetime | None = None
    duration: int = Field(default=0, ge=0, le=10000)
    recording_files: list[ZoomWebhookRecordingFile] = Field(default_factory=list)


class ZoomWebhookPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_id: str | None = Field(default=None, max_length=100)
    object: ZoomWebhookMeetingObject | None = None
    plain_token: str | None = Field(default=None, alias="plainToken")


class ZoomWebhookEvent(BaseModel):
    event: str = Field(min_length=1, max_length=100)
    payload: ZoomWebhookPayload
    event_ts: int | None = None


class ZoomWebhookResponse(_CamelModel):
    status: str
    event: str
    meeting_id: str | None = None
    transcript_id: str | None = None
    analysis_dispatched: bool | None = None
    reason: str | None = None


class ZoomUrlValidationResponse(_CamelModel):
    plain_token: str
    encrypted_token: str
