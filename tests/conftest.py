"""Shared fixtures: record builders, provider directories, fake clocks and mocked HTTP."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import httpx
import pytest

from catalog_sync.config import ProviderDirectory
from catalog_sync.engine import HttpTransport
from catalog_sync.records import CatalogSource, Domain, ModelRecord


class FakeClock:
    """Monotonic clock that only moves when someone sleeps on it."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_record() -> Callable[..., ModelRecord]:
    def _builder(**overrides: Any) -> ModelRecord:
        base: dict[str, Any] = {
            "id": "example-model",
            "name": "Example Model",
            "provider": "Example Labs",
            "domain": Domain.LLM,
            "source": CatalogSource.HUGGINGFACE,
            "description": "A general purpose language model.",
        }
        base.update(overrides)
        return ModelRecord(**base)

    return _builder


@pytest.fixture
def sample_providers() -> Callable[..., ProviderDirectory]:
    def _builder(**providers: dict[str, Any]) -> ProviderDirectory:
        return ProviderDirectory.model_validate(providers)

    return _builder


@pytest.fixture
def mock_transport() -> Callable[[Callable[[httpx.Request], httpx.Response]], HttpTransport]:
    def _builder(handler: Callable[[httpx.Request], httpx.Response]) -> HttpTransport:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpTransport(client)

    return _builder
