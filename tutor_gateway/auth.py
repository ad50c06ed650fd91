from fastapi import Header


def parse_bearer_token(authorization: str | None) -> str | None:
    """
    Extract the token from an ``Authorization: Bearer <token>`` header.

    Returns None for a missing header, another scheme or an empty token;
    the gateway then answers 401.
    """
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


async def optional_session_token(
    authorization: str | None = Header(default=None),
) -> str | None:
    """FastAPI dependency wrapping parse_bearer_token."""
    return parse_bearer_token(authorization)
