import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.main import app
from app.services.access_tokens import issue_access_token
from app.services.analysis_dispatcher import clear_analysis_dispatcher_cache, create_analysis_dispatcher
from app.services.integration_connection_store import (
    ZOOM_INTEGRATION_TYPE,
    clear_integration_connection_store_cache,
    create_integration_connection_store,
)
from app.services.transcript_store import clear_transcript_store_cache, create_transcript_store
from app.services.zoom_webhook_service import resolve_min_duration_minutes

client = TestClient(app)

_WEBHOOK_SECRET = "zoom-webhook-secret"
_VTT_BODY = (
    b"WEBVTT\n\n"
    b"1\n00:00:01.000 --> 00:00:04.000\nAlice Smith: Let's review the launch plan\n\n"
    b"2\n00:00:05.000 --> 00:00:08.000\nBob Jones: Budget is approved\n"
)


class _MockResponse:
    def __init__(self, payload: dict[str, object] | bytes) -> None:
        if isinstance(payload, bytes):
            self._payload = payload
        else:
            self._payload = json.dumps(payload).encode("utf-8")

    def __enter__(self) -> "_MockResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def read(self) -> bytes:
        return self._payload


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    monkeypatch = pytest.MonkeyPatch()
    monkeypatch.setenv("TRANSCRIPTS_STORE", "memory")
    monkeypatch.setenv("INTEGRATION_CONNECTIONS_STORE", "memory")
    monkeypatch.setenv("ANALYSIS_DISPATCH_MODE", "memory")
    monkeypatch.setenv("ZOOM_WEBHOOK_SECRET", _WEBHOOK_SECRET)
    get_settings.cache_clear()
    clear_transcript_store_cache()
    clear_integration_connection_store_cache()
    clear_analysis_dispatcher_cache()
    yield
    monkeypatch.undo()
    get_settings.cache_clear()
    clear_transcript_store_cache()
    clear_integration_connection_store_cache()
    clear_analysis_dispatcher_cache()


def _connect_zoom(configuration: dict[str, object] | None = None) -> None:
    create_integration_connection_store(get_settings()).upsert_connection(
        user_id="user-1",
        integration_type=ZOOM_INTEGRATION_TYPE,
        credentials={
            "access_token": "zoom-access-token",
            "refresh_token": "zoom-refresh-token",
            "account_id": "zoom-account-1",
        },
        configuration=configuration if configuration is not None else {"auto_transcript_processing": True},
    )


def _transcript_completed_event(*, duration: int = 45, account_id: str = "zoom-account-1") -> dict[str, object]:
    return {
        "event": "recording.transcript_completed",
        "event_ts": 1770735600000,
        "payload": {
            "account_id": account_id,
            "object": {
                "uuid": "meeting-1",
                "id": 81234567890,
                "host_id": "host-1",
                "topic": "Launch review",
                "start_time": "2026-02-10T15:00:00Z",
                "duration": duration,
                "recording_files": [
                    {
                        "id": "transcript-1",
                        "file_type": "TRANSCRIPT",
                        "status": "completed",
                        "download_url": "https://zoom.us/rec/download/transcript-1",
                    },
                ],
            },
        },
    }


def _signed_headers(raw_body: bytes, *, secret: str = _WEBHOOK_SECRET) -> dict[str, str]:
    timestamp = "1770735600"
    digest = hmac.new(
        key=secret.encode("utf-8"),
        msg=f"v0:{timestamp}:".encode("utf-8") + raw_body,
        digestmod=hashlib.sha256,
    ).hexdigest()
    return {
        "Content-Type": "application/json",
        "x-zm-request-timestamp": timestamp,
        "x-zm-signature": f"v0={digest}",
    }


def _post_event(event: dict[str, object], *, secret: str = _WEBHOOK_SECRET):  # type: ignore[no-untyped-def]
    raw_body = json.dumps(event).encode("utf-8")
    return client.post("/api/zoom/webhook", content=raw_body, headers=_signed_headers(raw_body, secret=secret))


def _fake_zoom_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
    target = req.full_url
    if target == "https://api.zoom.us/v2/meetings/meeting-1/recordings":
        return _MockResponse(
            {
                "recording_files": [
                    {
                        "id": "transcript-1",
                        "file_type": "TRANSCRIPT",
                        "status": "completed",
                        "download_url": "https://zoom.us/rec/download/transcript-1",
                    },
                ],
            },
        )
    if target == "https://zoom.us/rec/download/transcript-1":
        return _MockResponse(_VTT_BODY)
    raise AssertionError(f"Unexpected request: {target}")


def _fail_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
    raise AssertionError(f"Unexpected HTTP call to {req.full_url}")


def _analysis_jobs() -> list[dict[str, object]]:
    return create_analysis_dispatcher(get_settings()).jobs  # type: ignore[attr-defined]


def test_transcript_completed_event_is_ingested(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("app.services.zoom_api_client.request.urlopen", _fake_zoom_urlopen)
    _connect_zoom()

    response = _post_event(_transcript_completed_event())

    assert response.status_code == 200
    assert response.json() == {
        "status": "processed",
        "event": "recording.transcript_completed",
        "meetingId": "meeting-1",
        "transcriptId": "memory-transcript-1",
        "analysisDispatched": True,
    }
    settings = get_settings()
    store = create_transcript_store(
        store_name=settings.transcripts_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_collection_name=settings.mongodb_transcripts_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )
    record = store.get_by_source_meeting_id("user-1", "meeting-1")
    assert record is not None
    assert record["title"] == "Launch review"
    assert record["duration_minutes"] == 45
    assert [job["transcript_id"] for job in _analysis_jobs()] == ["memory-transcript-1"]


def test_redelivered_event_keeps_a_single_record(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("app.services.zoom_api_client.request.urlopen", _fake_zoom_urlopen)
    _connect_zoom()

    first = _post_event(_transcript_completed_event())
    second = _post_event(_transcript_completed_event())

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["status"] == "already_processed"
    assert second.json()["transcriptId"] == first.json()["transcriptId"]
    assert len(_analysis_jobs()) == 1


def test_manual_processing_after_webhook_reports_already_processed(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr("app.services.zoom_api_client.request.urlopen", _fake_zoom_urlopen)
    _connect_zoom()

    _post_event(_transcript_completed_event())
    token, _ = issue_access_token(
        subject="user-1",
        secret_key=get_settings().auth_secret_key,
        ttl_minutes=60,
    )
    manual = client.post(
        "/api/zoom/transcripts/process",
        headers={"Authorization": f"Bearer {token}"},
        json={"meetingId": "meeting-1"},
    )

    assert manual.status_code == 400
    assert manual.json()["transcriptId"] == "memory-transcript-1"


def test_invalid_signature_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("app.services.zoom_api_client.request.urlopen", _fail_urlopen)
    _connect_zoom()

    response = _post_event(_transcript_completed_event(), secret="someone-else")

    assert response.status_code == 401
    assert response.json() == {"detail": "Invalid webhook signature."}
    assert _analysis_jobs() == []


def test_missing_signature_is_rejected() -> None:
    _connect_zoom()
    raw_body = json.dumps(_transcript_completed_event()).encode("utf-8")

    response = client.post(
        "/api/zoom/webhook",
        content=raw_body,
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 401


def test_short_meeting_is_skipped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("app.services.zoom_api_client.request.urlopen", _fail_urlopen)
    _connect_zoom()

    response = _post_event(_transcript_completed_event(duration=3))

    assert response.status_code == 200
    assert response.json()["status"] == "skipped"
    assert response.json()["reason"] == "Meeting too short (3min < 5min)"
    assert _analysis_jobs() == []


def test_connection_minimum_duration_overrides_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("app.services.zoom_api_client.request.urlopen", _fail_urlopen)
    _connect_zoom(
        {
            "auto_transcript_processing": True,
            "analysis_settings": {"min_duration_minutes": 60},
        },
    )

    response = _post_event(_transcript_completed_event(duration=45))

    assert response.json()["status"] == "skipped"
    assert response.json()["reason"] == "Meeting too short (45min < 60min)"


def test_disabled_auto_processing_is_skipped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("app.services.zoom_api_client.request.urlopen", _fail_urlopen)
    _connect_zoom({"auto_transcript_processing": False})

    response = _post_event(_transcript_completed_event())

    assert response.json()["status"] == "skipped"
    assert response.json()["reason"] == "Auto-processing disabled"


def test_event_without_transcript_file_is_skipped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("app.services.zoom_api_client.request.urlopen", _fail_urlopen)
    _connect_zoom()
    event = _transcript_completed_event()
    event["payload"]["object"]["recording_files"] = [  # type: ignore[index]
        {"id": "video-1", "file_type": "MP4", "status": "completed"},
    ]

    response = _post_event(event)

    assert response.json()["status"] == "skipped"
    assert response.json()["reason"] == "No transcript file in recording"


def test_unknown_account_is_ignored(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("app.services.zoom_api_client.request.urlopen", _fail_urlopen)
    _connect_zoom()

    response = _post_event(_transcript_completed_event(account_id="zoom-account-2"))

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"
    assert response.json()["reason"] == "No active connection found"


def test_ingestion_failure_is_acknowledged(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        return _MockResponse({"recording_files": []})

    monkeypatch.setattr("app.services.zoom_api_client.request.urlopen", fake_urlopen)
    _connect_zoom()

    response = _post_event(_transcript_completed_event())

    assert response.status_code == 200
    assert response.json()["status"] == "failed"
    assert response.json()["reason"] == "No transcript file found or download URL missing"


def test_recording_completed_event_is_acknowledged() -> None:
    _connect_zoom()
    event = _transcript_completed_event()
    event["event"] = "recording.completed"

    response = _post_event(event)

    assert response.status_code == 200
    assert response.json()["status"] == "acknowledged"


def test_invalid_payload_is_rejected() -> None:
    response = _post_event({"event": "recording.transcript_completed", "payload": {"object": {}}})

    assert response.status_code == 400
    assert response.json() == {"detail": "Invalid webhook payload."}


def test_non_json_body_is_rejected() -> None:
    response = client.post(
        "/api/zoom/webhook",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 422


def test_url_validation_returns_encrypted_token() -> None:
    response = _post_event({"event": "endpoint.url_validation", "payload": {"plainToken": "plain-123"}})

    expected = hmac.new(
        key=_WEBHOOK_SECRET.encode("utf-8"),
        msg=b"plain-123",
        digestmod=hashlib.sha256,
    ).hexdigest()
    assert response.status_code == 200
    assert response.json() == {"plainToken": "plain-123", "encryptedToken": expected}


def test_unsigned_events_are_accepted_without_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ZOOM_WEBHOOK_SECRET", "")
    get_settings.cache_clear()
    raw_body = json.dumps(_transcript_completed_event(account_id="zoom-account-2")).encode("utf-8")

    response = client.post(
        "/api/zoom/webhook",
        content=raw_body,
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "ignored"


def test_resolve_min_duration_minutes_falls_back_to_default() -> None:
    assert resolve_min_duration_minutes({}, default=5) == 5
    assert resolve_min_duration_minutes({"analysis_settings": {"min_duration_minutes": 0}}, default=5) == 5
    assert resolve_min_duration_minutes({"analysis_settings": {"min_duration_minutes": "x"}}, default=5) == 5
    assert resolve_min_duration_minutes({"analysis_settings": {"min_duration_minutes": 20}}, default=5) == 20
