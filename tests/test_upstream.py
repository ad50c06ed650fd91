import json

import httpx
import pytest

from tutor_gateway.schemas import ChatMessage, ChatOptions
from tutor_gateway.settings import Settings
from tutor_gateway.upstream import (
    UpstreamError,
    build_upstream_payload,
    call_upstream,
    clamp_options,
    extract_reply_text,
    replace_reply_text,
)


@pytest.fixture
def cfg() -> Settings:
    return Settings(upstream_api_key="sk-test", upstream_base_url="https://upstream.test/")


def test_defaults_applied_when_options_missing(cfg):
    assert clamp_options(ChatOptions(), cfg) == {
        "model": "deepseek-chat",
        "temperature": 0.7,
        "top_p": 0.95,
        "max_tokens": 1000,
    }


def test_temperature_and_max_tokens_are_clamped(cfg):
    opts = ChatOptions(temperature=5.0, max_tokens=5000, top_p=0.5, model="deepseek-reasoner")
    clamped = clamp_options(opts, cfg)
    assert clamped["temperature"] == 0.9
    assert clamped["max_tokens"] == 2000
    assert clamped["top_p"] == 0.5
    assert clamped["model"] == "deepseek-reasoner"


def test_values_below_ceiling_pass_through(cfg):
    clamped = clamp_options(ChatOptions(temperature=0.0, max_tokens=50), cfg)
    assert clamped["temperature"] == 0.0
    assert clamped["max_tokens"] == 50


def test_payload_excludes_client_only_options(cfg):
    opts = ChatOptions.model_validate(
        {
            "retryCount": 5,
            "fallbackMessage": "oops",
            "response_format": {"type": "json_object"},
        }
    )
    payload = build_upstream_payload([ChatMessage(role="user", content="hi")], opts, cfg)
    assert payload["messages"] == [{"role": "user", "content": "hi"}]
    assert payload["response_format"] == {"type": "json_object"}
    assert "retryCount" not in payload
    assert "retry_count" not in payload
    assert "fallbackMessage" not in payload


def test_upstream_chat_url_joins_base_and_path(cfg):
    assert cfg.upstream_chat_url == "https://upstream.test/chat/completions"


@pytest.mark.asyncio
async def test_call_upstream_success_sends_bearer_key():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "Hello!"}}]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        data = await call_upstream(
            client=client,
            url="https://upstream.test/chat/completions",
            api_key="sk-test",
            payload={"model": "deepseek-chat", "messages": []},
            timeout=5,
        )

    assert extract_reply_text(data) == "Hello!"
    assert captured["auth"] == "Bearer sk-test"
    assert captured["body"]["model"] == "deepseek-chat"


@pytest.mark.asyncio
async def test_call_upstream_non_2xx_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="internal upstream detail")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(UpstreamError) as exc_info:
            await call_upstream(
                client=client, url="https://upstream.test/x", api_key="k", payload={}, timeout=5
            )
    assert exc_info.value.status_code == 500
    assert "internal upstream detail" not in str(exc_info.value)


@pytest.mark.asyncio
async def test_call_upstream_timeout_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(UpstreamError) as exc_info:
            await call_upstream(
                client=client, url="https://upstream.test/x", api_key="k", payload={}, timeout=5
            )
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_call_upstream_non_json_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>not json</html>")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(UpstreamError):
            await call_upstream(
                client=client, url="https://upstream.test/x", api_key="k", payload={}, timeout=5
            )


def test_extract_reply_text_handles_odd_shapes():
    assert extract_reply_text({}) is None
    assert extract_reply_text({"choices": []}) is None
    assert extract_reply_text({"choices": [{"message": {}}]}) is None
    assert extract_reply_text({"choices": [{"message": {"content": None}}]}) is None


def test_replace_reply_text_keeps_other_fields():
    data = {"id": "x", "choices": [{"index": 0, "message": {"role": "assistant", "content": "a"}}]}
    replace_reply_text(data, "b")
    assert data["choices"][0]["message"] == {"role": "assistant", "content": "b"}
    assert data["id"] == "x"
