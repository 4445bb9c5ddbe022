from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from catalog_sync.config import ProviderConfig, ProviderDirectory, ProviderProtocol
from catalog_sync.engine import (
    CancelToken,
    Cancelled,
    CredentialMissing,
    PermanentRequest,
    ProviderGateway,
    RateLimiter,
    TransientNetwork,
    safe_json_from_text,
)
from catalog_sync.engine.gateway import parse_retry_after, pick_completion_provider
from catalog_sync.engine.protocols import OpenAICompatibleAdapter
from catalog_sync.records import Domain


def make_gateway(fake_clock, mock_transport, handler, **kwargs) -> ProviderGateway:
    limiter = RateLimiter(100, 60.0, clock=fake_clock, sleep=fake_clock.sleep)
    return ProviderGateway(limiter, mock_transport(handler), sleep=fake_clock.sleep, **kwargs)


OPENAI = ProviderConfig(enabled=True, api_key="sk-test")


@pytest.mark.asyncio
async def test_retries_503_twice_then_succeeds(fake_clock, mock_transport) -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) <= 2:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"data": [{"id": "gpt-4o"}]})

    gateway = make_gateway(fake_clock, mock_transport, handler)
    records = await gateway.list_models("openai", OPENAI)

    assert [record.id for record in records] == ["openai-gpt-4o"]
    assert len(calls) == 3
    assert fake_clock.sleeps == [1.0, 2.0]
    assert fake_clock.now >= 3.0


@pytest.mark.asyncio
async def test_404_is_not_retried(fake_clock, mock_transport) -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404, text="no such route")

    gateway = make_gateway(fake_clock, mock_transport, handler)
    with pytest.raises(PermanentRequest) as excinfo:
        await gateway.list_models("openai", OPENAI)

    assert excinfo.value.status == 404
    assert len(calls) == 1
    assert fake_clock.sleeps == []


@pytest.mark.asyncio
async def test_retries_exhausted_raise_transient(fake_clock, mock_transport) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502)

    gateway = make_gateway(fake_clock, mock_transport, handler)
    with pytest.raises(TransientNetwork) as excinfo:
        await gateway.list_models("openai", OPENAI)

    assert excinfo.value.status == 502
    assert fake_clock.sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_bypass_path_makes_a_single_attempt(fake_clock, mock_transport) -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    gateway = make_gateway(fake_clock, mock_transport, handler)
    config = ProviderConfig(enabled=True, api_key="sk-test", bypass_proxy=True)
    with pytest.raises(TransientNetwork):
        await gateway.list_models("openai", config)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_missing_credential_fails_without_network(fake_clock, mock_transport) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    gateway = make_gateway(fake_clock, mock_transport, handler)
    with pytest.raises(CredentialMissing):
        await gateway.list_models("openai", ProviderConfig(enabled=True))
    with pytest.raises(CredentialMissing):
        await gateway.complete_text("anthropic", ProviderConfig(enabled=True), "sys", "user")
    assert gateway.limiter.history == ()


@pytest.mark.asyncio
async def test_retry_after_header_overrides_backoff(fake_clock, mock_transport) -> None:
    responses = iter(
        [
            httpx.Response(429, headers={"Retry-After": "7"}),
            httpx.Response(200, json={"data": []}),
        ]
    )

    gateway = make_gateway(fake_clock, mock_transport, lambda request: next(responses))
    assert await gateway.list_models("openai", OPENAI) == []
    assert fake_clock.sleeps == [7.0]


@pytest.mark.asyncio
async def test_connection_errors_are_transient(fake_clock, mock_transport) -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise httpx.ConnectError("connection reset", request=request)
        return httpx.Response(200, json={"data": [{"id": "o1"}]})

    gateway = make_gateway(fake_clock, mock_transport, handler)
    records = await gateway.list_models("openai", OPENAI)
    assert [record.id for record in records] == ["openai-o1"]
    assert attempts["count"] == 2


@pytest.mark.asyncio
async def test_cancel_during_backoff_stops_retrying(fake_clock, mock_transport) -> None:
    token = CancelToken()
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    async def cancelling_sleep(delay: float) -> None:
        token.cancel("user abort")
        await asyncio.Event().wait()

    limiter = RateLimiter(100, 60.0, clock=fake_clock, sleep=fake_clock.sleep)
    gateway = ProviderGateway(limiter, mock_transport(handler), sleep=cancelling_sleep)

    with pytest.raises(Cancelled):
        await gateway.list_models("openai", OPENAI, token)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_listing_drops_malformed_items(fake_clock, mock_transport) -> None:
    payload = {
        "data": [
            {
                "id": "gpt-4o",
                "context_length": 128000,
                "pricing": {"prompt": "0.005", "completion": "0.015"},
                "capabilities": ["vision"],
            },
            "garbage",
            {"id": ""},
        ]
    }
    gateway = make_gateway(fake_clock, mock_transport, lambda request: httpx.Response(200, json=payload))

    records = await gateway.list_models("openai", OPENAI)

    assert len(records) == 1
    record = records[0]
    assert record.provider == "OpenAI"
    assert record.context_window == 128000
    assert record.domain is Domain.VISION
    assert record.pricing[0].input == pytest.approx(0.005)
    assert record.hosting.api_available


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"object": "list"}),
        httpx.Response(200, text="<html>maintenance</html>"),
    ],
)
async def test_non_array_listing_yields_empty(fake_clock, mock_transport, response) -> None:
    gateway = make_gateway(fake_clock, mock_transport, lambda request: response)
    assert await gateway.list_models("openai", OPENAI) == []


@pytest.mark.asyncio
async def test_static_catalog_skips_network(fake_clock, mock_transport) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    gateway = make_gateway(fake_clock, mock_transport, handler)
    records = await gateway.list_models("perplexity", ProviderConfig(enabled=True, api_key="pplx"))

    assert len(records) == 5
    assert all(record.id.startswith("perplexity-") for record in records)


@pytest.mark.asyncio
async def test_anthropic_request_shape(fake_clock, mock_transport) -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["headers"] = request.headers
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"content": [{"type": "text", "text": "hello"}]})

    gateway = make_gateway(fake_clock, mock_transport, handler)
    text = await gateway.complete_text(
        "anthropic", ProviderConfig(enabled=True, api_key="ak"), "be brief", "hi"
    )

    assert text == "hello"
    assert captured["url"] == "https://api.anthropic.com/v1/messages"
    assert captured["headers"]["x-api-key"] == "ak"
    assert captured["headers"]["anthropic-version"] == "2023-06-01"
    assert captured["body"]["system"] == "be brief"
    assert captured["body"]["max_tokens"] == 4000


@pytest.mark.asyncio
async def test_ollama_json_completion_without_key(fake_clock, mock_transport) -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"message": {"content": '```json\n{"ok": true}\n```'}})

    gateway = make_gateway(fake_clock, mock_transport, handler)
    config = ProviderConfig(enabled=True, base_url="http://localhost:11434/", protocol=ProviderProtocol.OLLAMA)
    result = await gateway.complete_json("mybox", config, "sys", "user")

    assert result == {"ok": True}
    assert captured["url"] == "http://localhost:11434/api/chat"
    assert captured["body"]["format"] == "json"
    assert captured["body"]["stream"] is False


@pytest.mark.asyncio
async def test_complete_json_returns_none_on_prose(fake_clock, mock_transport) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"message": {"content": "I cannot help with that."}}]})

    gateway = make_gateway(fake_clock, mock_transport, handler)
    assert await gateway.complete_json("openai", OPENAI, "sys", "user") is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>oops</html>"),
        httpx.Response(200, json={"result": "unexpected shape"}),
    ],
)
async def test_malformed_completion_counts_as_empty(fake_clock, mock_transport, response) -> None:
    gateway = make_gateway(fake_clock, mock_transport, lambda request: response)

    assert await gateway.complete_json("openai", OPENAI, "sys", "user") is None
    assert await gateway.complete_text("openai", OPENAI, "sys", "user") == ""


@pytest.mark.asyncio
async def test_unrepresentable_item_fields_only_drop_that_item(fake_clock, mock_transport) -> None:
    payload = {
        "data": [
            {"id": "good"},
            {"id": "far-future", "created": 1e20},
            {"id": "odd-capabilities", "capabilities": 5},
        ]
    }
    gateway = make_gateway(fake_clock, mock_transport, lambda request: httpx.Response(200, json=payload))

    records = await gateway.list_models("openai", OPENAI)

    assert [record.id for record in records] == ["openai-good", "openai-far-future", "openai-odd-capabilities"]
    assert records[1].release_date is None
    assert records[2].domain is Domain.LLM


@pytest.mark.asyncio
async def test_item_mapping_errors_are_isolated(fake_clock, mock_transport, monkeypatch) -> None:
    original = OpenAICompatibleAdapter.to_record

    def flaky(self, provider_key, provider_name, item):
        if item.get("id") == "boom":
            raise TypeError("unexpected field type")
        return original(self, provider_key, provider_name, item)

    monkeypatch.setattr(OpenAICompatibleAdapter, "to_record", flaky)
    payload = {"data": [{"id": "boom"}, {"id": "gpt-4o"}]}
    gateway = make_gateway(fake_clock, mock_transport, lambda request: httpx.Response(200, json=payload))

    records = await gateway.list_models("openai", OPENAI)

    assert [record.id for record in records] == ["openai-gpt-4o"]


def test_safe_json_from_text_variants() -> None:
    assert safe_json_from_text('{"a": 1}') == {"a": 1}
    assert safe_json_from_text('Sure!\n```json\n[1, 2]\n```') == [1, 2]
    assert safe_json_from_text('Result: {"b": 2} as requested') == {"b": 2}
    assert safe_json_from_text("nothing here") is None
    assert safe_json_from_text("") is None


def test_parse_retry_after() -> None:
    assert parse_retry_after("12") == 12.0
    assert parse_retry_after("9999") == 60.0
    assert parse_retry_after(None) is None
    assert parse_retry_after("soon") is None


def test_backoff_doubles_and_caps() -> None:
    gateway = ProviderGateway(backoff_base=1.0, backoff_cap=5.0)
    assert [gateway.backoff_delay(attempt) for attempt in range(1, 5)] == [1.0, 2.0, 4.0, 5.0]
    assert gateway.backoff_delay(1, retry_after=3.0) == 3.0


def test_pick_completion_provider_prefers_local() -> None:
    providers = ProviderDirectory.model_validate(
        {
            "openai": {"enabled": True, "api_key": "sk"},
            "ollama": {"enabled": True},
            "anthropic": {"enabled": False, "api_key": "ak"},
        }
    )
    assert pick_completion_provider(providers)[0] == "ollama"

    remote_only = ProviderDirectory.model_validate(
        {"deepseek": {"enabled": True}, "openai": {"enabled": True, "api_key": "sk"}}
    )
    assert pick_completion_provider(remote_only)[0] == "openai"
    assert pick_completion_provider(ProviderDirectory()) is None
