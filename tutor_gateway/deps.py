from fastapi import Request

from .gateway import Gateway
from .session_store import SessionStore
from .settings import Settings


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.gateway.session_store


def resolve_client_ip(request: Request, *, trust_forwarded_headers: bool = False) -> str:
    """
    Identify the caller for rate limiting.

    Forwarded headers are only honoured when the gateway sits behind a
    trusted proxy; otherwise any client could pick its own identity.
    Priority: X-Forwarded-For (first hop), X-Real-IP, socket peer.
    """
    if trust_forwarded_headers:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


async def get_client_id(request: Request) -> str:
    cfg: Settings = request.app.state.settings
    return resolve_client_ip(request, trust_forwarded_headers=cfg.trust_forwarded_headers)
