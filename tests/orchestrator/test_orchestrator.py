from __future__ import annotations

import httpx
import pytest

from catalog_sync.config import FilterStrictness, ProviderDirectory, SourceToggles, SyncOptions
from catalog_sync.engine import Cancelled, ProviderGateway, RateLimiter, SourceFetcher
from catalog_sync.engine.translation import FALLBACK_TAG
from catalog_sync.events import CollectingObserver
from catalog_sync.orchestrator import SourceRegistry, SourceSpec, SyncContext, SyncOrchestrator, default_registry
from catalog_sync.records import FetchResult


class StaticSource:
    def __init__(self, name: str, result: FetchResult | BaseException) -> None:
        self.name = name
        self.result = result

    async def fetch(self, cancel_token=None) -> FetchResult:
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


class CancellingSource:
    name = "Cancelling"

    async def fetch(self, cancel_token=None) -> FetchResult:
        cancel_token.cancel("user interrupt")
        raise Cancelled("user interrupt")


def registry_of(**sources) -> SourceRegistry:
    registry = SourceRegistry()
    for source_id, source in sources.items():
        registry.register(SourceSpec(source_id, source.name, lambda _opts: True, lambda _ctx, s=source: s))
    return registry


@pytest.fixture
def offline_gateway(fake_clock, mock_transport):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="unexpected request")

    limiter = RateLimiter(100, 60.0, clock=fake_clock, sleep=fake_clock.sleep)
    return ProviderGateway(limiter, mock_transport(handler), sleep=fake_clock.sleep)


def make_orchestrator(offline_gateway, registry, **option_overrides) -> tuple[SyncOrchestrator, CollectingObserver]:
    observer = CollectingObserver()
    orchestrator = SyncOrchestrator(
        ProviderDirectory(),
        SyncOptions(**option_overrides),
        gateway=offline_gateway,
        transport=offline_gateway.transport,
        registry=registry,
        observer=observer,
    )
    return orchestrator, observer


def test_default_registry_follows_source_toggles() -> None:
    registry = default_registry()
    options = SyncOptions(sources=SourceToggles(civitasbay=False, modelscope=True, local=True))

    assert [spec.id for spec in registry.all()] == [
        "civitasbay",
        "huggingface",
        "modelscope",
        "civitai",
        "providers",
        "local",
    ]
    assert [spec.id for spec in registry.enabled(options)] == ["huggingface", "modelscope", "providers", "local"]
    assert [spec.id for spec in registry.enabled(SyncOptions())] == ["civitasbay", "huggingface", "providers"]


def test_paged_catalogs_are_built_from_options(offline_gateway) -> None:
    options = SyncOptions(modelscope_max_pages=2, civitai_max_pages=4, batch_size=3, page_retries=0)
    ctx = SyncContext(options, ProviderDirectory(), offline_gateway, offline_gateway.transport, CollectingObserver())
    registry = default_registry()

    modelscope = registry.get("modelscope").build(ctx)
    civitai = registry.get("civitai").build(ctx)

    assert isinstance(modelscope, SourceFetcher) and isinstance(civitai, SourceFetcher)
    assert modelscope.source.name == "ModelScope" and civitai.source.name == "Civitai"
    assert (modelscope.source.max_pages, modelscope.source.batch_size) == (2, 3)
    assert (civitai.source.max_pages, civitai.source.page_retries) == (4, 0)


def test_registering_same_id_replaces_source() -> None:
    registry = registry_of(a=StaticSource("First", FetchResult()))
    registry.register(SourceSpec("a", "Second", lambda _opts: True, lambda _ctx: StaticSource("Second", FetchResult())))
    assert [spec.name for spec in registry.all()] == ["Second"]


@pytest.mark.asyncio
async def test_failing_source_does_not_stop_the_run(offline_gateway, sample_record) -> None:
    registry = registry_of(
        good=StaticSource("Good", FetchResult(complete=[sample_record(id="good-1", name="Phi 3 Mini")])),
        bad=StaticSource("Bad", RuntimeError("feed offline")),
    )
    orchestrator, observer = make_orchestrator(offline_gateway, registry)

    outcome = await orchestrator.run()

    assert [record.id for record in outcome.merged] == ["good-1"]
    assert outcome.errors == {"bad": "feed offline"}
    assert not outcome.cancelled
    assert observer.kinds()[0] == "sync_started"
    assert observer.kinds()[-1] == "sync_finished"
    assert [event.source for event in observer.of_kind("source_failed")] == ["Bad"]
    assert [event.current for event in observer.of_kind("progress")] == [1, 2]


@pytest.mark.asyncio
async def test_flagged_records_are_counted(offline_gateway, sample_record) -> None:
    incomplete = sample_record(id="no-provider", provider="")
    explicit = sample_record(id="explicit", name="Hentai Mix", provider="Community")
    registry = registry_of(
        feed=StaticSource(
            "Feed",
            FetchResult(complete=[explicit, sample_record(id="clean", name="Clean Model")], flagged=[incomplete]),
        )
    )
    orchestrator, _ = make_orchestrator(offline_gateway, registry, strictness=FilterStrictness.BLOCK)

    outcome = await orchestrator.run()

    assert {record.id for record in outcome.flagged} == {"no-provider", "explicit"}
    assert [record.id for record in outcome.merged] == ["clean"]
    assert outcome.summary.flagged == 2
    assert outcome.summary.added == 1


@pytest.mark.asyncio
async def test_translation_and_merge_with_existing(offline_gateway, sample_record) -> None:
    existing = [sample_record(id="hf-llama", name="Llama 3 8B", provider="Meta")]
    registry = registry_of(
        feed=StaticSource(
            "Feed",
            FetchResult(
                complete=[
                    sample_record(id="api-llama", name="Llama-3 8B", provider="Meta"),
                    sample_record(id="cn-1", name="百川", provider="Baichuan"),
                ]
            ),
        )
    )
    orchestrator, _ = make_orchestrator(offline_gateway, registry)

    outcome = await orchestrator.run(existing)

    assert [record.id for record in outcome.merged] == ["hf-llama", "cn-1"]
    assert outcome.summary.updated == 1
    assert outcome.summary.added == 1
    translated = outcome.merged[1]
    assert translated.name.isascii()
    assert translated.has_tag(FALLBACK_TAG)


@pytest.mark.asyncio
async def test_translation_can_be_disabled(offline_gateway, sample_record) -> None:
    registry = registry_of(feed=StaticSource("Feed", FetchResult(complete=[sample_record(id="cn", name="百川")])))
    orchestrator, observer = make_orchestrator(offline_gateway, registry, translate=False)

    outcome = await orchestrator.run()

    assert outcome.merged[0].name == "百川"
    assert observer.of_kind("translation_batch") == []


@pytest.mark.asyncio
async def test_cancellation_returns_partial_outcome(offline_gateway, sample_record) -> None:
    existing = [sample_record(id="kept")]
    registry = registry_of(
        feed=StaticSource("Feed", FetchResult(complete=[sample_record(id="new", name="New Model")])),
        stop=CancellingSource(),
    )
    orchestrator, observer = make_orchestrator(offline_gateway, registry)

    outcome = await orchestrator.run(existing)

    assert outcome.cancelled
    assert outcome.errors["stop"] == "cancelled"
    assert [record.id for record in outcome.merged] == ["kept"]
    assert "sync_cancelled" in observer.kinds()
    assert observer.kinds()[-1] == "sync_finished"
