from __future__ import annotations

from collections.abc import Mapping

REDACTED = "***REDACTED***"

TOKEN_PREVIEW_LENGTH = 8


_SENSITIVE_HEADER_NAMES = {
    "authorization",
    "proxy-authorization",
    "x-api-key",
    "api-key",
    "cookie",
    "set-cookie",
}


def sanitize_headers_for_log(
    headers: Mapping[str, str], *, mask_token: str = REDACTED
) -> dict[str, str]:
    """
    Return a copy of the headers that is safe to log.

    Known sensitive headers are masked, as is any header whose name mentions
    key/token/secret/auth/cookie/session. Everything else is kept for
    troubleshooting.
    """
    sanitized: dict[str, str] = {}
    for name, value in headers.items():
        lower_name = name.lower()
        if lower_name in _SENSITIVE_HEADER_NAMES or any(
            marker in lower_name
            for marker in ("key", "token", "secret", "auth", "cookie", "session")
        ):
            sanitized[name] = mask_token
            continue
        sanitized[name] = value
    return sanitized


def mask_session_token(token: str | None) -> str:
    """Shorten a session token to a prefix usable for correlating log lines."""
    if not token:
        return "-"
    if len(token) <= TOKEN_PREVIEW_LENGTH:
        return REDACTED
    return f"{token[:TOKEN_PREVIEW_LENGTH]}..."


def sanitize_path_for_log(path: str) -> str:
    """Mask the token segment of /api/stats/<token> paths."""
    prefix = "/api/stats/"
    if path.startswith(prefix):
        return prefix + mask_session_token(path[len(prefix):])
    return path


__all__ = [
    "REDACTED",
    "mask_session_token",
    "sanitize_headers_for_log",
    "sanitize_path_for_log",
]
