from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx

from .logging_config import logger
from .schemas import ChatMessage, ChatOptions
from .settings import Settings

# Upstream error bodies are logged for diagnosis, truncated to this size.
_LOG_BODY_LIMIT = 500


class UpstreamError(Exception):
    """
    The upstream provider could not produce a usable response: transport
    failure, timeout, non-2xx status or a body that is not JSON.
    """

    def __init__(
        self,
        *,
        status_code: int | None,
        message: str,
        text: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.text = text


def clamp_options(options: ChatOptions, cfg: Settings) -> dict[str, Any]:
    """
    Resolve generation options against defaults and safety ceilings.

    temperature and max_tokens are capped no matter what the client sent;
    model is passed through.
    """
    temperature = cfg.default_temperature if options.temperature is None else options.temperature
    max_tokens = cfg.default_max_tokens if options.max_tokens is None else options.max_tokens
    return {
        "model": options.model or cfg.default_model,
        "temperature": min(temperature, cfg.temperature_ceiling),
        "top_p": cfg.default_top_p if options.top_p is None else options.top_p,
        "max_tokens": min(max_tokens, cfg.max_tokens_ceiling),
    }


def build_upstream_payload(
    messages: Sequence[ChatMessage], options: ChatOptions, cfg: Settings
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "messages": [m.model_dump() for m in messages],
        **clamp_options(options, cfg),
    }
    if options.response_format is not None:
        payload["response_format"] = options.response_format
    return payload


def build_upstream_headers(api_key: str) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "Authorization": f"Bearer {api_key}",
    }


async def call_upstream(
    *,
    client: httpx.AsyncClient,
    url: str,
    api_key: str,
    payload: dict[str, Any],
    timeout: float,
) -> dict[str, Any]:
    """
    Make one chat completion call and return the decoded JSON body.

    Raises UpstreamError for every failure; the error body is logged here and
    must not be forwarded to gateway callers.
    """
    try:
        resp = await client.post(
            url,
            headers=build_upstream_headers(api_key),
            json=payload,
            timeout=timeout,
        )
    except httpx.TimeoutException as exc:
        logger.warning("upstream: timeout after %.1fs calling %s", timeout, url)
        raise UpstreamError(status_code=None, message="Upstream timeout") from exc
    except httpx.HTTPError as exc:
        logger.warning("upstream: transport error calling %s: %s", url, exc)
        raise UpstreamError(status_code=None, message=f"Upstream transport error: {exc}") from exc

    if resp.status_code < 200 or resp.status_code >= 300:
        text = resp.text
        logger.warning(
            "upstream: HTTP error %s for %s (model=%s); response=%s",
            resp.status_code,
            url,
            payload.get("model"),
            text[:_LOG_BODY_LIMIT],
        )
        raise UpstreamError(
            status_code=resp.status_code,
            message=f"Upstream HTTP error {resp.status_code}",
            text=text,
        )

    try:
        data = resp.json()
    except ValueError as exc:
        logger.warning("upstream: non-JSON body from %s", url)
        raise UpstreamError(
            status_code=resp.status_code, message="Upstream returned a non-JSON body"
        ) from exc
    if not isinstance(data, dict):
        raise UpstreamError(
            status_code=resp.status_code, message="Upstream returned an unexpected body"
        )
    return data


def extract_reply_text(data: dict[str, Any]) -> str | None:
    """Return choices[0].message.content when present and a string."""
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    message = first.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None


def replace_reply_text(data: dict[str, Any], text: str) -> dict[str, Any]:
    """Set choices[0].message.content; the body must already carry one."""
    data["choices"][0]["message"]["content"] = text
    return data


__all__ = [
    "UpstreamError",
    "build_upstream_headers",
    "build_upstream_payload",
    "call_upstream",
    "clamp_options",
    "extract_reply_text",
    "replace_reply_text",
]
