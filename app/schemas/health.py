from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str
    version: str
    transcripts_store: str
    analysis_dispatch_mode: str
    zoom_oauth_configured: bool
    timestamp: datetime
