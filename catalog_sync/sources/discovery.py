"""Model discovery through provider listing endpoints and a local Ollama server."""

from __future__ import annotations

import asyncio

import structlog

from ..config import ProviderConfig, ProviderDirectory, ProviderProtocol
from ..engine.errors import CancelToken, Cancelled
from ..engine.gateway import ProviderGateway
from ..engine.protocols import resolve_protocol
from ..events import NullObserver, ProgressEvent, ProgressObserver
from ..records import FetchResult, ModelRecord

LOCAL_OLLAMA_URL = "http://127.0.0.1:11434"


def _partition(records: list[ModelRecord], result: FetchResult) -> None:
    for record in records:
        (result.complete if record.is_complete() else result.flagged).append(record)


class ProviderDiscovery:
    """List models from every enabled provider that has a credential."""

    name = "Provider APIs"

    def __init__(
        self,
        gateway: ProviderGateway,
        providers: ProviderDirectory,
        *,
        observer: ProgressObserver | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.gateway = gateway
        self.providers = providers
        self.observer = observer or NullObserver()
        self.logger = logger or structlog.get_logger("catalog_sync.discovery")

    def candidates(self) -> dict[str, ProviderConfig]:
        return {
            key: config
            for key, config in self.providers.enabled().items()
            if resolve_protocol(key, config) is not ProviderProtocol.OLLAMA and config.has_credential
        }

    async def fetch(self, cancel_token: CancelToken | None = None) -> FetchResult:
        candidates = self.candidates()
        result = FetchResult()
        if not candidates:
            self.logger.info("discovery_skipped", reason="no provider with a credential")
            return result
        listings = await asyncio.gather(
            *(self._list(key, config, cancel_token) for key, config in candidates.items())
        )
        for records in listings:
            _partition(records, result)
        return result

    async def _list(self, key: str, config: ProviderConfig, cancel_token: CancelToken | None) -> list[ModelRecord]:
        try:
            records = await self.gateway.list_models(key, config, cancel_token)
        except Cancelled:
            raise
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("discovery_failed", provider=key, error=str(exc))
            self.observer.notify(
                ProgressEvent(kind="provider_failed", message=f"{key}: listing failed ({exc})", source=self.name)
            )
            return []
        self.observer.notify(
            ProgressEvent(
                kind="provider_listed",
                message=f"{key}: {len(records)} models",
                source=self.name,
                found=len(records),
            )
        )
        return records


class LocalDiscovery:
    """Installed models on a local Ollama instance."""

    name = "Local (Ollama)"

    def __init__(
        self,
        gateway: ProviderGateway,
        providers: ProviderDirectory,
        *,
        default_base_url: str = LOCAL_OLLAMA_URL,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.gateway = gateway
        self.providers = providers
        self.default_base_url = default_base_url
        self.logger = logger or structlog.get_logger("catalog_sync.discovery")

    def target(self) -> tuple[str, ProviderConfig] | None:
        for key, config in self.providers.enabled().items():
            if resolve_protocol(key, config) is ProviderProtocol.OLLAMA:
                if not config.base_url:
                    config = config.model_copy(update={"base_url": self.default_base_url})
                return key, config.model_copy(update={"protocol": ProviderProtocol.OLLAMA})
        return None

    async def fetch(self, cancel_token: CancelToken | None = None) -> FetchResult:
        result = FetchResult()
        target = self.target()
        if target is None:
            self.logger.info("local_discovery_skipped", reason="no enabled Ollama provider")
            return result
        key, config = target
        try:
            records = await self.gateway.list_models(key, config, cancel_token)
        except Cancelled:
            raise
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("local_discovery_failed", provider=key, error=str(exc))
            return result
        _partition(records, result)
        return result


__all__ = ["LOCAL_OLLAMA_URL", "LocalDiscovery", "ProviderDiscovery"]
