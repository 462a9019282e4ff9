"""
Unit tests for provider adapters.

HTTP is served by httpx.MockTransport; no real network calls.
"""
import json

import httpx
import pytest

from ai_orchestrator.core.config import ProviderSettings
from ai_orchestrator.core.errors import (
    ConfigError,
    ProviderError,
    StreamError,
    TransportError,
    ValidationError,
)
from ai_orchestrator.services.ai.providers import (
    DeepSeekProvider,
    GeminiProvider,
    GenericProvider,
    build_provider,
)


def generic(handler, **kwargs):
    return GenericProvider(
        api_key="secret",
        api_base="https://ai.example.com/v1",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_call_sends_auth_and_correlation_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": {"text": "hi"}, "meta": {"version": "2.0"}})

    provider = generic(handler)
    response = await provider.call("text/generate", {"prompt": "hello"}, {"correlation_id": "cid-1"})

    assert seen["url"] == "https://ai.example.com/v1/text/generate"
    assert seen["headers"]["authorization"] == "Bearer secret"
    assert seen["headers"]["x-request-id"] == "cid-1"
    assert seen["headers"]["content-type"] == "application/json"
    assert seen["headers"]["user-agent"].startswith("ai-orchestrator/")
    assert seen["body"] == {"prompt": "hello"}
    assert response.status_code == 200
    assert response.body["data"] == {"text": "hi"}
    assert response.correlation_id == "cid-1"


@pytest.mark.asyncio
async def test_call_generates_correlation_id_when_missing():
    ids = []

    def handler(request):
        ids.append(request.headers["x-request-id"])
        return httpx.Response(200, json={"data": 1})

    provider = generic(handler)
    await provider.call("x", {})
    await provider.call("x", {})

    assert len(ids) == 2
    assert ids[0] != ids[1]


@pytest.mark.asyncio
@pytest.mark.parametrize("status,retryable", [(429, True), (500, True), (503, True), (400, False), (404, False)])
async def test_non_2xx_raises_provider_error_with_status(status, retryable):
    def handler(request):
        return httpx.Response(status, json={"error": {"message": "nope"}})

    with pytest.raises(ProviderError) as exc_info:
        await generic(handler).call("text/generate", {})

    assert exc_info.value.status_code == status
    assert exc_info.value.message == "nope"
    assert exc_info.value.retryable is retryable


@pytest.mark.asyncio
async def test_non_json_error_body_still_classified():
    def handler(request):
        return httpx.Response(502, text="<html>bad gateway</html>")

    with pytest.raises(ProviderError) as exc_info:
        await generic(handler).call("text/generate", {})

    assert exc_info.value.status_code == 502
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_error_payload_on_200_is_terminal():
    def handler(request):
        return httpx.Response(200, json={"error": {"message": "quota exhausted"}})

    with pytest.raises(ProviderError) as exc_info:
        await generic(handler).call("text/generate", {})

    assert exc_info.value.retryable is False
    assert "quota exhausted" in exc_info.value.message


@pytest.mark.asyncio
async def test_invalid_json_is_validation_error():
    def handler(request):
        return httpx.Response(200, text="not json")

    with pytest.raises(ValidationError):
        await generic(handler).call("text/generate", {})


@pytest.mark.asyncio
async def test_connection_failure_is_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError) as exc_info:
        await generic(handler).call("text/generate", {})

    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_timeout_is_transport_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(TransportError):
        await generic(handler).call("text/generate", {})


@pytest.mark.asyncio
async def test_generic_execute_returns_envelope():
    def handler(request):
        body = json.loads(request.content)
        assert body["model"] == "general"
        assert body["params"] == {"temperature": 0.7}
        return httpx.Response(200, json={"data": {"text": "out"}, "meta": {"version": "2.1", "processing_time": 0.5}})

    envelope = await generic(handler).execute("text/generate", {"prompt": "p", "params": {"temperature": 0.7}})

    assert envelope["data"] == {"text": "out"}
    assert envelope["meta"]["version"] == "2.1"
    assert envelope["meta"]["processing_time"] == 0.5
    assert envelope["meta"]["provider"] == "generic"
    assert envelope["meta"]["correlation_id"]


@pytest.mark.asyncio
async def test_generic_execute_requires_data_field():
    def handler(request):
        return httpx.Response(200, json={"result": "x"})

    with pytest.raises(ValidationError):
        await generic(handler).execute("text/generate", {"prompt": "p"})


@pytest.mark.asyncio
async def test_unknown_operation_is_config_error():
    provider = generic(lambda request: httpx.Response(200, json={"data": 1}))

    with pytest.raises(ConfigError):
        await provider.execute("video/generate", {})


@pytest.mark.asyncio
async def test_deepseek_text_generation():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "deepseek-chat",
                "choices": [{"message": {"role": "assistant", "content": "Hello!"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 3, "completion_tokens": 2},
            },
        )

    provider = DeepSeekProvider(api_key="k", transport=httpx.MockTransport(handler))
    envelope = await provider.execute(
        "text/generate",
        {"prompt": "Say hi", "params": {"max_tokens": 50, "temperature": 0.2, "format": "x"}},
    )

    assert seen["url"] == "https://api.deepseek.com/v1/chat/completions"
    assert seen["body"]["messages"] == [{"role": "user", "content": "Say hi"}]
    assert seen["body"]["max_tokens"] == 50
    assert "format" not in seen["body"]
    assert envelope["data"]["text"] == "Hello!"
    assert envelope["meta"]["model"] == "deepseek-chat"


@pytest.mark.asyncio
async def test_deepseek_structured_operation_parses_json_content():
    def handler(request):
        body = json.loads(request.content)
        assert body["response_format"] == {"type": "json_object"}
        assert body["messages"][0]["role"] == "system"
        content = '```json\n{"entities": [{"text": "Ada", "type": "PERSON", "confidence": 0.9}]}\n```'
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    provider = DeepSeekProvider(api_key="k", transport=httpx.MockTransport(handler))
    envelope = await provider.execute("entities", {"text": "Ada wrote code"})

    assert envelope["data"]["entities"][0]["text"] == "Ada"


@pytest.mark.asyncio
async def test_deepseek_structured_operation_rejects_prose():
    def handler(request):
        return httpx.Response(200, json={"choices": [{"message": {"content": "Sorry, I can't."}}]})

    provider = DeepSeekProvider(api_key="k", transport=httpx.MockTransport(handler))

    with pytest.raises(ValidationError):
        await provider.execute("topics", {"text": "t"})


@pytest.mark.asyncio
async def test_deepseek_image_generation():
    def handler(request):
        assert str(request.url).endswith("/images/generations")
        body = json.loads(request.content)
        assert body["size"] == "512x512"
        return httpx.Response(200, json={"data": [{"url": "https://img.example.com/1.png"}]})

    provider = DeepSeekProvider(api_key="k", transport=httpx.MockTransport(handler))
    envelope = await provider.execute("image/generate", {"prompt": "a cat", "params": {"size": "512x512"}})

    assert envelope["data"]["url"] == "https://img.example.com/1.png"


@pytest.mark.asyncio
async def test_gemini_uses_api_key_header_and_candidates():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"text": "Gemini says hi"}]}, "finishReason": "STOP"}]},
        )

    provider = GeminiProvider(api_key="gkey", transport=httpx.MockTransport(handler))
    envelope = await provider.execute("text/generate", {"prompt": "hi", "params": {"max_tokens": 10, "top_p": 0.9}})

    assert seen["url"] == "https://generativelanguage.googleapis.com/v1beta/models/gemini-pro:generateContent"
    assert seen["headers"]["x-goog-api-key"] == "gkey"
    assert "authorization" not in seen["headers"]
    assert seen["body"]["contents"][0]["parts"][0]["text"] == "hi"
    assert seen["body"]["generationConfig"] == {"topP": 0.9, "maxOutputTokens": 10}
    assert envelope["data"]["text"] == "Gemini says hi"
    assert envelope["data"]["finish_reason"] == "STOP"


@pytest.mark.asyncio
async def test_gemini_image_inline_data():
    def handler(request):
        return httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"inlineData": {"mimeType": "image/png", "data": "aGk="}}]}}]},
        )

    provider = GeminiProvider(api_key="gkey", transport=httpx.MockTransport(handler))
    envelope = await provider.execute("image/generate", {"prompt": "a cat"})

    assert envelope["data"] == {"b64_json": "aGk=", "mime_type": "image/png"}


@pytest.mark.asyncio
async def test_gemini_missing_candidates_is_validation_error():
    provider = GeminiProvider(
        api_key="gkey",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"candidates": []})),
    )

    with pytest.raises(ValidationError):
        await provider.execute("text/generate", {"prompt": "hi"})


@pytest.mark.asyncio
async def test_stream_hands_chunks_to_callback():
    payload = b"x" * 20000

    def handler(request):
        return httpx.Response(200, content=payload)

    chunks = []
    provider = generic(handler)
    total = await provider.stream("text/generate", {"prompt": "long"}, chunks.append, {"chunk_size": 8192})

    assert total == len(payload)
    assert b"".join(chunks) == payload
    assert all(len(c) <= 8192 for c in chunks)


@pytest.mark.asyncio
async def test_stream_accepts_async_callback():
    received = []

    async def callback(chunk):
        received.append(chunk)

    provider = generic(lambda request: httpx.Response(200, content=b"abc"))

    assert await provider.stream("x", {}, callback) == 3
    assert b"".join(received) == b"abc"


@pytest.mark.asyncio
async def test_stream_read_failure_is_stream_error():
    def handler(request):
        raise httpx.ReadError("connection reset", request=request)

    with pytest.raises(StreamError) as exc_info:
        await generic(handler).stream("x", {}, lambda chunk: None)

    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_stream_error_status_is_provider_error():
    def handler(request):
        return httpx.Response(503, json={"error": {"message": "busy"}})

    with pytest.raises(ProviderError) as exc_info:
        await generic(handler).stream("x", {}, lambda chunk: None)

    assert exc_info.value.status_code == 503


def test_build_provider_selects_adapter():
    provider = build_provider("gemini", ProviderSettings(name="gemini", api_key="k", timeout_seconds=12))

    assert isinstance(provider, GeminiProvider)
    assert provider.timeout_seconds == 12


def test_build_provider_unknown_name():
    with pytest.raises(ConfigError):
        build_provider("mystery", ProviderSettings(api_key="k"))


def test_build_provider_missing_api_key():
    with pytest.raises(ConfigError):
        build_provider("deepseek", ProviderSettings(name="deepseek"))


def test_generic_provider_requires_api_base():
    with pytest.raises(ConfigError):
        GenericProvider(api_key="k")


def test_image_operations_use_image_timeout():
    provider = DeepSeekProvider(api_key="k", timeout_seconds=30, image_timeout_seconds=60)

    assert provider.timeout_for("image/generate") == 60
    assert provider.timeout_for("text/generate") == 30
