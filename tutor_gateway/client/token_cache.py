from __future__ import annotations

import time
from collections.abc import Callable


class SessionTokenCache:
    """
    Holds the current session token until its expiry.

    Kept in memory only; one instance is shared by everything that talks to
    the gateway on behalf of the same user.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._token: str | None = None
        self._expires_at = 0.0

    def get(self) -> str | None:
        if self._token is not None and self._clock() < self._expires_at:
            return self._token
        return None

    def set(self, token: str, expires_in: float) -> None:
        self._token = token
        self._expires_at = self._clock() + expires_in

    def clear(self) -> None:
        self._token = None
        self._expires_at = 0.0

    @property
    def has_token(self) -> bool:
        return self._token is not None

    @property
    def expires_at(self) -> float:
        return self._expires_at


__all__ = ["SessionTokenCache"]
