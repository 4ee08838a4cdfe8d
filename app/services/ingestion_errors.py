from __future__ import annotations


class TranscriptIngestionError(Exception):
    """Base class for failures raised while ingesting a meeting transcript.

    ``stage`` is filled in by the pipeline with the stage that was running
    when the error surfaced, so callers can report where ingestion stopped.
    """

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.stage = stage


class IngestionRequestError(TranscriptIngestionError):
    pass


class AuthenticationError(TranscriptIngestionError):
    pass


class AlreadyProcessedError(TranscriptIngestionError):
    """Short-circuit signal: the meeting already has a transcript record."""

    def __init__(
        self,
        *,
        transcript_id: str,
        processing_status: str | None,
        stage: str | None = None,
    ) -> None:
        super().__init__("Meeting already processed", stage=stage)
        self.transcript_id = transcript_id
        self.processing_status = processing_status


class RecordingNotFoundError(TranscriptIngestionError):
    pass


class DownloadError(TranscriptIngestionError):
    pass


class PersistenceError(TranscriptIngestionError):
    pass


class DuplicateTranscriptError(PersistenceError):
    """Raised by a store when the (owner, source meeting) key already exists."""


class DispatchError(TranscriptIngestionError):
    pass
