from fastapi import APIRouter, status

from app.core.config import get_settings
from app.schemas.health import HealthResponse
from app.services.health_service import HealthService

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness and configured ingestion backends",
)
def get_health() -> HealthResponse:
    return HealthService(get_settings()).get_status()
