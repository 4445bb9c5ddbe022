"""Sync orchestrator wiring sources, safety filtering, translation and merging."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol, Sequence

import structlog

from .config import ProviderDirectory, SyncOptions
from .engine import (
    CancelToken,
    Cancelled,
    ContentSafetyFilter,
    DedupMergeEngine,
    FeedSource,
    HttpTransport,
    ProviderGateway,
    ProxyCapability,
    RateLimiter,
    SourceFetcher,
    TranslationModule,
)
from .events import NullObserver, ProgressEvent, ProgressObserver
from .logging_conf import source_logger
from .records import FetchResult, ModelRecord, SyncSummary
from .sources import CivitaiFeed, CivitasBayFeed, HuggingFaceFeed, LocalDiscovery, ModelScopeFeed, ProviderDiscovery


class SyncSource(Protocol):
    name: str

    async def fetch(self, cancel_token: CancelToken | None = None) -> FetchResult: ...


@dataclass(slots=True)
class SyncContext:
    """Shared collaborators handed to every source factory."""

    options: SyncOptions
    providers: ProviderDirectory
    gateway: ProviderGateway
    transport: HttpTransport
    observer: ProgressObserver
    sleep: Callable[[float], Awaitable[None]] | None = None


@dataclass(slots=True)
class SourceSpec:
    id: str
    name: str
    enabled: Callable[[SyncOptions], bool]
    build: Callable[[SyncContext], SyncSource]


class SourceRegistry:
    """Sources keyed by id, in registration order."""

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._specs: dict[str, SourceSpec] = {}
        self.logger = logger or structlog.get_logger("catalog_sync.registry")

    def register(self, spec: SourceSpec) -> None:
        if spec.id in self._specs:
            self.logger.warning("source_overwritten", source=spec.id)
        self._specs[spec.id] = spec

    def get(self, source_id: str) -> SourceSpec | None:
        return self._specs.get(source_id)

    def all(self) -> list[SourceSpec]:
        return list(self._specs.values())

    def enabled(self, options: SyncOptions) -> list[SourceSpec]:
        return [spec for spec in self._specs.values() if spec.enabled(options)]


def _fetcher(ctx: SyncContext, feed: FeedSource) -> SyncSource:
    return SourceFetcher(
        feed,
        ctx.transport,
        observer=ctx.observer,
        sleep=ctx.sleep,
        logger=source_logger(feed.name),
    )


def _paging(ctx: SyncContext) -> dict:
    return {
        "batch_size": ctx.options.batch_size,
        "inter_batch_delay": ctx.options.inter_batch_delay,
        "page_retries": ctx.options.page_retries,
    }


def _civitasbay(ctx: SyncContext) -> SyncSource:
    return _fetcher(ctx, CivitasBayFeed(max_pages=ctx.options.civitasbay_max_pages, **_paging(ctx)))


def _huggingface(ctx: SyncContext) -> SyncSource:
    return _fetcher(ctx, HuggingFaceFeed(limit=ctx.options.huggingface_limit, page_retries=ctx.options.page_retries))


def _modelscope(ctx: SyncContext) -> SyncSource:
    return _fetcher(ctx, ModelScopeFeed(max_pages=ctx.options.modelscope_max_pages, **_paging(ctx)))


def _civitai(ctx: SyncContext) -> SyncSource:
    return _fetcher(ctx, CivitaiFeed(max_pages=ctx.options.civitai_max_pages, **_paging(ctx)))


def default_registry() -> SourceRegistry:
    registry = SourceRegistry()
    registry.register(SourceSpec("civitasbay", "CivitasBay", lambda opts: opts.sources.civitasbay, _civitasbay))
    registry.register(SourceSpec("huggingface", "HuggingFace", lambda opts: opts.sources.huggingface, _huggingface))
    registry.register(SourceSpec("modelscope", "ModelScope", lambda opts: opts.sources.modelscope, _modelscope))
    registry.register(SourceSpec("civitai", "Civitai", lambda opts: opts.sources.civitai, _civitai))
    registry.register(
        SourceSpec(
            "providers",
            "Provider APIs",
            lambda opts: opts.sources.providers,
            lambda ctx: ProviderDiscovery(ctx.gateway, ctx.providers, observer=ctx.observer),
        )
    )
    registry.register(
        SourceSpec(
            "local",
            "Local (Ollama)",
            lambda opts: opts.sources.local,
            lambda ctx: LocalDiscovery(ctx.gateway, ctx.providers, default_base_url=ctx.options.ollama_base_url),
        )
    )
    return registry


@dataclass(slots=True)
class SyncOutcome:
    """Terminal result of one run; partial when ``cancelled`` or ``errors`` is set."""

    merged: list[ModelRecord] = field(default_factory=list)
    complete: list[ModelRecord] = field(default_factory=list)
    flagged: list[ModelRecord] = field(default_factory=list)
    summary: SyncSummary = field(default_factory=SyncSummary)
    per_source: dict[str, FetchResult] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    cancelled: bool = False


class SyncOrchestrator:
    """Run every enabled source, then filter, translate and merge the results.

    :meth:`run` never raises for source, stage or cancellation failures;
    those end up in the returned :class:`SyncOutcome`.
    """

    def __init__(
        self,
        providers: ProviderDirectory | None = None,
        options: SyncOptions | None = None,
        *,
        gateway: ProviderGateway | None = None,
        transport: HttpTransport | None = None,
        proxy: ProxyCapability | None = None,
        registry: SourceRegistry | None = None,
        observer: ProgressObserver | None = None,
        merge_engine: DedupMergeEngine | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.providers = providers or ProviderDirectory()
        self.options = options or SyncOptions()
        self._owns_transport = transport is None
        self.transport = transport or HttpTransport(proxy=proxy)
        self._owns_gateway = gateway is None
        self.gateway = gateway or ProviderGateway(
            RateLimiter.for_tier(self.options.tier),
            self.transport,
        )
        self.registry = registry or default_registry()
        self.observer = observer or NullObserver()
        self.merge_engine = merge_engine or DedupMergeEngine()
        self.safety = ContentSafetyFilter(
            self.options.strictness,
            self.options.extra_blocklist,
            gateway=self.gateway,
            providers=self.providers,
        )
        self.translator = TranslationModule(self.gateway, self.providers, sleep=sleep)
        self._sleep = sleep
        self.logger = logger or structlog.get_logger("catalog_sync.orchestrator")
        self._completed = 0

    async def __aenter__(self) -> "SyncOrchestrator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_gateway:
            await self.gateway.aclose()
        if self._owns_transport:
            await self.transport.aclose()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    async def run(
        self,
        existing: Sequence[ModelRecord] = (),
        cancel_token: CancelToken | None = None,
    ) -> SyncOutcome:
        token = cancel_token or CancelToken()
        outcome = SyncOutcome(merged=list(existing))
        specs = self.registry.enabled(self.options)
        total = len(specs)
        self._completed = 0
        self._notify("sync_started", f"Syncing {total} sources", current=0, total=total)

        context = SyncContext(
            options=self.options,
            providers=self.providers,
            gateway=self.gateway,
            transport=self.transport,
            observer=self.observer,
            sleep=self._sleep,
        )
        try:
            results = await asyncio.gather(*(self._run_source(spec, context, token, total, outcome) for spec in specs))
            for spec, result in zip(specs, results):
                outcome.per_source[spec.id] = result
                outcome.flagged.extend(result.flagged)
            token.raise_if_cancelled()

            collected = [record for result in results for record in result.complete]
            self._notify("collected", f"Collected {len(collected)} models from all sources", found=len(collected))

            screened = self.safety.apply_lexical(collected)
            outcome.complete = screened.complete
            outcome.flagged.extend(screened.flagged)
            self._notify(
                "safety_lexical",
                f"Safety filter ({self.options.strictness.value}): {len(screened.flagged)} blocked",
                found=len(screened.complete),
            )

            if self.safety.assisted_enabled:
                self._notify("safety_assisted", "Running LLM safety review")
                assisted = await self.safety.apply_assisted(outcome.complete, token)
                outcome.complete = assisted.complete
                outcome.flagged.extend(assisted.flagged)

            if self.options.translate:
                outcome.complete = await self.translator.translate(
                    outcome.complete,
                    token,
                    on_batch=lambda done, batches: self._notify(
                        "translation_batch",
                        f"Translating... batch {done}/{batches}",
                        batch=done,
                        total=batches,
                    ),
                )
        except Cancelled:
            outcome.cancelled = True
            self.logger.warning("sync_cancelled", reason=token.reason)
            self._notify("sync_cancelled", "Sync cancelled; returning partial results")
        except Exception as exc:  # noqa: BLE001
            outcome.errors["pipeline"] = str(exc)
            self.logger.error("pipeline_error", error=str(exc), exc_info=True)
            self._notify("pipeline_error", f"Pipeline error: {exc}")

        merge = self.merge_engine.merge(existing, outcome.complete)
        outcome.merged = merge.merged
        outcome.summary = merge.summary
        outcome.summary.flagged = len(outcome.flagged)
        self._notify(
            "sync_finished",
            "Sync complete: {found} found, {added} added, {updated} updated, {flagged} flagged".format(
                **outcome.summary.as_dict()
            ),
            current=total,
            total=total,
            found=outcome.summary.found,
        )
        return outcome

    async def _run_source(
        self,
        spec: SourceSpec,
        context: SyncContext,
        token: CancelToken,
        total: int,
        outcome: SyncOutcome,
    ) -> FetchResult:
        self._notify("source_started", f"Fetching from {spec.name}...", source=spec.name, total=total)
        try:
            source = spec.build(context)
            result = await source.fetch(token)
        except Cancelled:
            result = FetchResult()
            outcome.errors[spec.id] = "cancelled"
        except Exception as exc:  # noqa: BLE001
            result = FetchResult()
            outcome.errors[spec.id] = str(exc)
            self.logger.warning("source_failed", source=spec.id, error=str(exc))
            self._notify("source_failed", f"{spec.name}: Failed - {exc}", source=spec.name)
        else:
            self._notify(
                "source_finished",
                f"{spec.name}: Found {len(result.complete)} models",
                source=spec.name,
                found=len(result.complete),
            )
        self._completed += 1
        self._notify("progress", "", source=spec.name, current=self._completed, total=total)
        return result

    def _notify(self, kind: str, message: str, **fields) -> None:
        if message:
            self.logger.info(kind, message=message)
        self.observer.notify(ProgressEvent(kind=kind, message=message, **fields))


__all__ = [
    "SourceRegistry",
    "SourceSpec",
    "SyncContext",
    "SyncOrchestrator",
    "SyncOutcome",
    "SyncSource",
    "default_registry",
]
