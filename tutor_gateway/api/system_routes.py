import datetime

from fastapi import APIRouter, Depends

from tutor_gateway.deps import get_settings
from tutor_gateway.schemas import HealthResponse
from tutor_gateway.settings import Settings

router = APIRouter(tags=["system"], prefix="/api")


@router.get("/health", response_model=HealthResponse)
async def health(cfg: Settings = Depends(get_settings)) -> HealthResponse:
    return HealthResponse(
        timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
        environment=cfg.environment,
        version=cfg.app_version,
    )
