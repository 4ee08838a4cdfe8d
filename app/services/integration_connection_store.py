from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from app.core.config import Settings

ZOOM_INTEGRATION_TYPE = "zoom"
CONNECTION_STATUS_ACTIVE = "active"


class IntegrationConnectionStore(ABC):
    @abstractmethod
    def get_active_connection(
        self,
        user_id: str,
        integration_type: str,
    ) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def find_active_connection_by_account(
        self,
        integration_type: str,
        account_id: str,
    ) -> dict[str, Any] | None:
        """Return the active connection whose credentials carry ``account_id``."""
        raise NotImplementedError

    @abstractmethod
    def upsert_connection(
        self,
        *,
        user_id: str,
        integration_type: str,
        credentials: Mapping[str, Any],
        connection_status: str = CONNECTION_STATUS_ACTIVE,
        configuration: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Create or replace the (user, platform) connection.

        Written by the OAuth connect flow of the surrounding product; this
        service only reads connections and rewrites their credentials.
        ``configuration`` is left untouched when omitted.
        """
        raise NotImplementedError

    @abstractmethod
    def update_credentials(self, connection_id: str, credentials: Mapping[str, Any]) -> None:
        raise NotImplementedError


class InMemoryIntegrationConnectionStore(IntegrationConnectionStore):
    def __init__(self) -> None:
        self._next_id = 1
        self._connections_by_id: dict[str, dict[str, Any]] = {}
        self._connection_id_by_key: dict[tuple[str, str], str] = {}

    def get_active_connection(
        self,
        user_id: str,
        integration_type: str,
    ) -> dict[str, Any] | None:
        connection_id = self._connection_id_by_key.get((user_id, integration_type))
        if not connection_id:
            return None
        connection = self._connections_by_id[connection_id]
        if connection.get("connection_status") != CONNECTION_STATUS_ACTIVE:
            return None
        return _copy_connection(connection)

    def find_active_connection_by_account(
        self,
        integration_type: str,
        account_id: str,
    ) -> dict[str, Any] | None:
        for connection in self._connections_by_id.values():
            if connection.get("integration_type") != integration_type:
                continue
            if connection.get("connection_status") != CONNECTION_STATUS_ACTIVE:
                continue
            if connection["credentials"].get("account_id") == account_id:
                return _copy_connection(connection)
        return None

    def upsert_connection(
        self,
        *,
        user_id: str,
        integration_type: str,
        credentials: Mapping[str, Any],
        connection_status: str = CONNECTION_STATUS_ACTIVE,
        configuration: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        key = (user_id, integration_type)
        connection_id = self._connection_id_by_key.get(key)
        if not connection_id:
            connection_id = str(self._next_id)
            self._next_id += 1
            self._connection_id_by_key[key] = connection_id

        previous = self._connections_by_id.get(connection_id, {})
        if configuration is None:
            configuration = previous.get("configuration") or {}
        connection = {
            "_id": connection_id,
            "user_id": user_id,
            "integration_type": integration_type,
            "connection_status": connection_status,
            "credentials": dict(credentials),
            "configuration": dict(configuration),
            "updated_at": datetime.now(UTC),
        }
        self._connections_by_id[connection_id] = connection
        return _copy_connection(connection)

    def update_credentials(self, connection_id: str, credentials: Mapping[str, Any]) -> None:
        connection = self._connections_by_id.get(connection_id)
        if not connection:
            raise KeyError(f"Unknown integration connection: {connection_id}")
        connection["credentials"] = dict(credentials)
        connection["updated_at"] = datetime.now(UTC)


class MongoIntegrationConnectionStore(IntegrationConnectionStore):
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
        self._connections = self._client[db_name][collection_name]
        self._connections.create_index(
            [("user_id", 1), ("integration_type", 1)],
            unique=True,
        )
        self._connections.create_index(
            [("integration_type", 1), ("credentials.account_id", 1)],
        )

    def get_active_connection(
        self,
        user_id: str,
        integration_type: str,
    ) -> dict[str, Any] | None:
        record = self._connections.find_one(
            {
                "user_id": user_id,
                "integration_type": integration_type,
                "connection_status": CONNECTION_STATUS_ACTIVE,
            },
        )
        return _serialize_connection(record)

    def find_active_connection_by_account(
        self,
        integration_type: str,
        account_id: str,
    ) -> dict[str, Any] | None:
        record = self._connections.find_one(
            {
                "integration_type": integration_type,
                "connection_status": CONNECTION_STATUS_ACTIVE,
                "credentials.account_id": account_id,
            },
        )
        return _serialize_connection(record)

    def upsert_connection(
        self,
        *,
        user_id: str,
        integration_type: str,
        credentials: Mapping[str, Any],
        connection_status: str = CONNECTION_STATUS_ACTIVE,
        configuration: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        from pymongo import ReturnDocument

        now = datetime.now(UTC)
        update_fields: dict[str, Any] = {
            "credentials": dict(credentials),
            "connection_status": connection_status,
            "updated_at": now,
        }
        if configuration is not None:
            update_fields["configuration"] = dict(configuration)
        record = self._connections.find_one_and_update(
            {"user_id": user_id, "integration_type": integration_type},
            {
                "$set": update_fields,
                "$setOnInsert": {"created_at": now},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        serialized = _serialize_connection(record)
        if not serialized:
            raise RuntimeError("Unable to read upserted integration connection.")
        return serialized

    def update_credentials(self, connection_id: str, credentials: Mapping[str, Any]) -> None:
        from bson import ObjectId

        self._connections.update_one(
            {"_id": ObjectId(connection_id)},
            {
                "$set": {
                    "credentials": dict(credentials),
                    "updated_at": datetime.now(UTC),
                },
            },
        )


def _copy_connection(connection: Mapping[str, Any]) -> dict[str, Any]:
    copied = dict(connection)
    copied["credentials"] = dict(connection.get("credentials") or {})
    copied["configuration"] = dict(connection.get("configuration") or {})
    return copied


def _serialize_connection(record: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if not record:
        return None
    serialized = _copy_connection(record)
    serialized["_id"] = str(record.get("_id", ""))
    return serialized


def create_integration_connection_store(settings: Settings) -> IntegrationConnectionStore:
    return _create_integration_connection_store_cached(
        store_name=settings.integration_connections_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_collection_name=settings.mongodb_integration_connections_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_integration_connection_store_cached(
    *,
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
) -> IntegrationConnectionStore:
    if store_name == "mongodb":
        return MongoIntegrationConnectionStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_collection_name,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )
    return InMemoryIntegrationConnectionStore()


def clear_integration_connection_store_cache() -> None:
    _create_integration_connection_store_cached.cache_clear()
