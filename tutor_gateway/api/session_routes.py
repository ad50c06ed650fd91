"""
Session lifecycle routes: token issuance and usage stats.
"""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from tutor_gateway.deps import get_client_id, get_session_store, get_settings
from tutor_gateway.errors import not_found
from tutor_gateway.log_sanitizer import mask_session_token
from tutor_gateway.logging_config import logger
from tutor_gateway.schemas import SessionInitResponse, UsageStatsResponse
from tutor_gateway.session_store import SessionStore
from tutor_gateway.settings import Settings

router = APIRouter(tags=["session"], prefix="/api")


@router.post(
    "/session/init",
    response_model=SessionInitResponse,
    status_code=status.HTTP_200_OK,
)
async def init_session(
    store: SessionStore = Depends(get_session_store),
    cfg: Settings = Depends(get_settings),
    client_id: str = Depends(get_client_id),
) -> JSONResponse:
    session = await store.create()
    logger.info(
        "session: created token=%s for client=%s",
        mask_session_token(session.token),
        client_id,
    )
    body = SessionInitResponse(
        token=session.token, expires_in=cfg.session_duration_seconds
    )
    return JSONResponse(content=body.model_dump(by_alias=True))


@router.get("/stats/{token}", response_model=UsageStatsResponse)
async def get_usage_stats(
    token: str,
    store: SessionStore = Depends(get_session_store),
) -> JSONResponse:
    stats = await store.stats(token)
    if stats is None:
        return not_found("Session not found")
    return JSONResponse(content=UsageStatsResponse.model_validate(stats).model_dump(by_alias=True))
