from datetime import UTC, datetime

from app.core.config import Settings
from app.schemas.health import HealthResponse


class HealthService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def get_status(self) -> HealthResponse:
        return HealthResponse(
            service=self.settings.app_name,
            version=self.settings.app_version,
            transcripts_store=self.settings.transcripts_store,
            analysis_dispatch_mode=self.settings.analysis_dispatch_mode,
            zoom_oauth_configured=bool(
                self.settings.zoom_client_id.strip() and self.settings.zoom_client_secret.strip()
            ),
            timestamp=datetime.now(UTC),
        )
