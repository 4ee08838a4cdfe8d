from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from app.services.ingestion_errors import DuplicateTranscriptError, PersistenceError

TRANSCRIPT_SOURCE = "external-platform"
TRANSCRIPT_STATUS_UPLOADED = "uploaded"
PROCESSING_STATUS_PENDING = "pending"


class TranscriptStore(ABC):
    @abstractmethod
    def create(self, record: Mapping[str, Any]) -> str:
        raise NotImplementedError

    @abstractmethod
    def get_by_id(self, record_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def get_by_source_meeting_id(
        self,
        owner_id: str,
        source_meeting_id: str,
    ) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def list_source_meeting_ids(self, owner_id: str) -> set[str]:
        raise NotImplementedError


class InMemoryTranscriptStore(TranscriptStore):
    def __init__(self) -> None:
        self._records: list[dict[str, Any]] = []
        self._record_id_by_key: dict[tuple[str, str], str] = {}

    def create(self, record: Mapping[str, Any]) -> str:
        key = _idempotency_key(record)
        if key in self._record_id_by_key:
            raise DuplicateTranscriptError(
                f"Transcript already exists for source_meeting_id={key[1]}.",
            )

        record_id = f"memory-transcript-{len(self._records) + 1}"
        stored_record = dict(record)
        stored_record["_id"] = record_id
        self._records.append(stored_record)
        self._record_id_by_key[key] = record_id
        return record_id

    def get_by_id(self, record_id: str) -> dict[str, Any] | None:
        for record in self._records:
            if str(record.get("_id")) == record_id:
                return dict(record)
        return None

    def get_by_source_meeting_id(
        self,
        owner_id: str,
        source_meeting_id: str,
    ) -> dict[str, Any] | None:
        record_id = self._record_id_by_key.get((owner_id, source_meeting_id))
        if not record_id:
            return None
        return self.get_by_id(record_id)

    def list_source_meeting_ids(self, owner_id: str) -> set[str]:
        return {
            source_meeting_id
            for stored_owner_id, source_meeting_id in self._record_id_by_key
            if stored_owner_id == owner_id
        }


class MongoTranscriptStore(TranscriptStore):
    def __init__(
        self,
        uri: str,
        db_name: str,
        collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import DESCENDING, MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        self._collection = self._client[db_name][collection_name]
        self._collection.create_index([("owner_id", 1), ("created_at", DESCENDING)])
        # Storage-level guard for the ingestion idempotency key.
        self._collection.create_index(
            [("owner_id", 1), ("source_meeting_id", 1)],
            unique=True,
            partialFilterExpression={"source_meeting_id": {"$exists": True, "$type": "string"}},
        )

    def create(self, record: Mapping[str, Any]) -> str:
        from pymongo.errors import DuplicateKeyError, PyMongoError

        payload = dict(record)
        try:
            insert_result = self._collection.insert_one(payload)
        except DuplicateKeyError as exc:
            raise DuplicateTranscriptError(
                f"Transcript already exists for source_meeting_id={payload.get('source_meeting_id')}.",
            ) from exc
        except PyMongoError as exc:
            raise PersistenceError(f"Failed to create transcript record: {exc}") from exc
        return str(insert_result.inserted_id)

    def get_by_id(self, record_id: str) -> dict[str, Any] | None:
        from bson import ObjectId
        from bson.errors import InvalidId

        try:
            object_id = ObjectId(record_id)
        except InvalidId:
            return None
        return _serialize_record(self._collection.find_one({"_id": object_id}))

    def get_by_source_meeting_id(
        self,
        owner_id: str,
        source_meeting_id: str,
    ) -> dict[str, Any] | None:
        record = self._collection.find_one(
            {"owner_id": owner_id, "source_meeting_id": source_meeting_id},
        )
        return _serialize_record(record)

    def list_source_meeting_ids(self, owner_id: str) -> set[str]:
        cursor = self._collection.find(
            {"owner_id": owner_id, "source_meeting_id": {"$type": "string"}},
            {"source_meeting_id": 1},
        )
        return {str(record["source_meeting_id"]) for record in cursor}


def _idempotency_key(record: Mapping[str, Any]) -> tuple[str, str]:
    return (str(record.get("owner_id", "")), str(record.get("source_meeting_id", "")))


def _serialize_record(record: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if not record:
        return None
    serialized = dict(record)
    serialized["_id"] = str(record.get("_id", ""))
    return serialized


def create_transcript_store(
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
) -> TranscriptStore:
    return _create_transcript_store_cached(
        store_name=store_name,
        mongodb_uri=mongodb_uri,
        mongodb_db_name=mongodb_db_name,
        mongodb_collection_name=mongodb_collection_name,
        mongodb_connect_timeout_ms=mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_transcript_store_cached(
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
) -> TranscriptStore:
    if store_name == "mongodb":
        return MongoTranscriptStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_collection_name,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )
    return InMemoryTranscriptStore()


def clear_transcript_store_cache() -> None:
    _create_transcript_store_cached.cache_clear()


def build_transcript_document(
    *,
    owner_id: str,
    title: str,
    participants: list[str],
    duration_minutes: int,
    meeting_date: str,
    raw_text: str,
    source_meeting_id: str,
    source_metadata: Mapping[str, Any],
) -> dict[str, Any]:
    if not raw_text.strip():
        raise PersistenceError("Refusing to store an uploaded transcript without text.")
    return {
        "owner_id": owner_id,
        "title": title,
        "participants": list(participants),
        "duration_minutes": duration_minutes,
        "meeting_date": meeting_date,
        "raw_text": raw_text,
        "source": TRANSCRIPT_SOURCE,
        "source_meeting_id": source_meeting_id,
        "source_metadata": dict(source_metadata),
        "status": TRANSCRIPT_STATUS_UPLOADED,
        "processing_status": PROCESSING_STATUS_PENDING,
        "created_at": datetime.now(UTC),
    }
