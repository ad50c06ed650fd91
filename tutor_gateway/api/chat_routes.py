from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from tutor_gateway.auth import optional_session_token
from tutor_gateway.deps import get_client_id, get_gateway
from tutor_gateway.errors import (
    content_blocked,
    daily_limit_reached,
    too_many_requests,
    unauthorized,
    upstream_unavailable,
)
from tutor_gateway.gateway import (
    ChatResult,
    ContentBlocked,
    DailyLimitReached,
    Gateway,
    Ok,
    RateLimited,
    Unauthorized,
    UpstreamUnavailable,
)
from tutor_gateway.schemas import ChatRequest

router = APIRouter(tags=["chat"], prefix="/api")


def chat_result_to_response(result: ChatResult) -> JSONResponse:
    """Translate a Gateway result into the HTTP response seen by clients."""
    if isinstance(result, Ok):
        return JSONResponse(content=result.payload)
    if isinstance(result, Unauthorized):
        return unauthorized()
    if isinstance(result, DailyLimitReached):
        return daily_limit_reached(result.retry_after_seconds)
    if isinstance(result, RateLimited):
        return too_many_requests(result.retry_after_seconds)
    if isinstance(result, ContentBlocked):
        return content_blocked(result.reason)
    if isinstance(result, UpstreamUnavailable):
        return upstream_unavailable()
    raise TypeError(f"Unexpected chat result: {result!r}")


@router.post("/chat")
async def chat(
    body: ChatRequest,
    token: str | None = Depends(optional_session_token),
    gateway: Gateway = Depends(get_gateway),
    client_id: str = Depends(get_client_id),
) -> JSONResponse:
    """
    Proxy one chat completion through the safety pipeline.

    On success the body is the provider's JSON with the reply content
    filtered; failures use the JSON error bodies from ``tutor_gateway.errors``.
    """
    result = await gateway.handle_chat(
        token, body.messages, body.options, client_id=client_id
    )
    return chat_result_to_response(result)
