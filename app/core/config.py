from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_SUPPORTED_STORES = frozenset({"memory", "mongodb"})
_SUPPORTED_DISPATCH_MODES = frozenset({"memory", "mongodb", "http"})


class Settings(BaseSettings):
    app_name: str = "Call Ingestion API"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    auth_secret_key: str = "change-me-in-production"
    auth_token_leeway_seconds: int = 30
    zoom_client_id: str = ""
    zoom_client_secret: str = ""
    zoom_oauth_token_url: str = "https://zoom.us/oauth/token"
    zoom_api_base_url: str = "https://api.zoom.us/v2"
    zoom_api_timeout_seconds: float = 15.0
    zoom_download_timeout_seconds: float = 30.0
    zoom_webhook_secret: str = ""
    zoom_webhook_min_duration_minutes: int = 5
    transcripts_store: str = "mongodb"
    integration_connections_store: str = "mongodb"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "call_ingestion"
    mongodb_transcripts_collection: str = "transcripts"
    mongodb_integration_connections_collection: str = "integration_connections"
    mongodb_analysis_jobs_collection: str = "analysis_jobs"
    mongodb_connect_timeout_ms: int = 2000
    analysis_dispatch_mode: str = "mongodb"
    analysis_dispatch_url: str = ""
    analysis_dispatch_timeout_seconds: float = 10.0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("transcripts_store", "integration_connections_store", mode="before")
    @classmethod
    def normalize_store_name(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in _SUPPORTED_STORES:
            return "memory"
        return normalized

    @field_validator("analysis_dispatch_mode", mode="before")
    @classmethod
    def normalize_analysis_dispatch_mode(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in _SUPPORTED_DISPATCH_MODES:
            return "memory"
        return normalized

    @field_validator("zoom_api_timeout_seconds", mode="before")
    @classmethod
    def normalize_zoom_api_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 15.0
        return parsed_value

    @field_validator("zoom_download_timeout_seconds", mode="before")
    @classmethod
    def normalize_zoom_download_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 30.0
        return parsed_value

    @field_validator("zoom_webhook_min_duration_minutes", mode="before")
    @classmethod
    def normalize_zoom_webhook_min_duration(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 5
        return parsed_value

    @field_validator("analysis_dispatch_timeout_seconds", mode="before")
    @classmethod
    def normalize_analysis_dispatch_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 10.0
        return parsed_value


@lru_cache
def get_settings() -> Settings:
    return Settings()
