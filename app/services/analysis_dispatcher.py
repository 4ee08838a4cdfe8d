from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from functools import lru_cache
from http import client as http_client
from typing import Any
from urllib import error, request

from app.core.config import Settings
from app.services.ingestion_errors import DispatchError

ANALYSIS_JOB_STATUS_QUEUED = "queued"


class AnalysisDispatcher(ABC):
    """Hands a persisted transcript to the downstream analysis stage.

    Implementations raise ``DispatchError`` on failure; the ingestion
    pipeline treats that as non-fatal because the analysis stage can be
    re-triggered independently of ingestion.
    """

    @abstractmethod
    def dispatch(self, transcript_id: str) -> None:
        raise NotImplementedError


class InMemoryAnalysisQueue(AnalysisDispatcher):
    def __init__(self) -> None:
        self.jobs: list[dict[str, Any]] = []

    def dispatch(self, transcript_id: str) -> None:
        self.jobs.append(build_analysis_job(transcript_id))


class MongoAnalysisQueue(AnalysisDispatcher):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        self._jobs = self._client[db_name][collection_name]
        self._jobs.create_index([("status", 1), ("enqueued_at", 1)])

    def dispatch(self, transcript_id: str) -> None:
        from pymongo.errors import PyMongoError

        try:
            self._jobs.insert_one(build_analysis_job(transcript_id))
        except PyMongoError as exc:
            raise DispatchError(f"Failed to enqueue analysis job: {exc}") from exc


class HttpAnalysisDispatcher(AnalysisDispatcher):
    def __init__(self, *, endpoint_url: str, timeout_seconds: float = 10.0) -> None:
        self.endpoint_url = endpoint_url
        self.timeout_seconds = timeout_seconds

    def dispatch(self, transcript_id: str) -> None:
        if not self.endpoint_url.strip():
            raise DispatchError("ANALYSIS_DISPATCH_URL is not configured.")
        try:
            req = request.Request(
                self.endpoint_url,
                data=json.dumps({"transcript_id": transcript_id}).encode("utf-8"),
                headers={"Content-Type": "application/json"},
                method="POST",
            )
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response.read()
        except TimeoutError as exc:
            raise DispatchError("Analysis trigger timed out.") from exc
        except error.HTTPError as exc:
            raise DispatchError(f"Analysis trigger HTTP {exc.code}") from exc
        except error.URLError as exc:
            raise DispatchError(f"Analysis trigger connection error: {exc.reason}") from exc
        except (OSError, http_client.HTTPException, ValueError) as exc:
            raise DispatchError(f"Analysis trigger failed: {exc}") from exc


def build_analysis_job(transcript_id: str) -> dict[str, Any]:
    return {
        "transcript_id": transcript_id,
        "status": ANALYSIS_JOB_STATUS_QUEUED,
        "attempts": 0,
        "enqueued_at": datetime.now(UTC),
    }


def create_analysis_dispatcher(settings: Settings) -> AnalysisDispatcher:
    return _create_analysis_dispatcher_cached(
        dispatch_mode=settings.analysis_dispatch_mode,
        endpoint_url=settings.analysis_dispatch_url,
        timeout_seconds=settings.analysis_dispatch_timeout_seconds,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_collection_name=settings.mongodb_analysis_jobs_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_analysis_dispatcher_cached(
    *,
    dispatch_mode: str,
    endpoint_url: str,
    timeout_seconds: float,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
) -> AnalysisDispatcher:
    if dispatch_mode == "http":
        return HttpAnalysisDispatcher(endpoint_url=endpoint_url, timeout_seconds=timeout_seconds)
    if dispatch_mode == "mongodb":
        return MongoAnalysisQueue(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_collection_name,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )
    return InMemoryAnalysisQueue()


def clear_analysis_dispatcher_cache() -> None:
    _create_analysis_dispatcher_cached.cache_clear()
