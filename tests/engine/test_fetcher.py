from __future__ import annotations

import json

import httpx
import pytest

from catalog_sync.engine import CancelToken, Cancelled, FeedItem, FeedSource, SourceFetcher, TagVocabulary
from catalog_sync.events import CollectingObserver
from catalog_sync.records import CatalogSource, Domain, ModelRecord


class PagedFeed(FeedSource):
    name = "Paged"
    inter_batch_delay = 0.5
    retry_delay = 0.25
    vocabulary = TagVocabulary(groups={"family": ["flux", "sdxl"]}, popularity_thresholds=[(10, "popular")])

    def __init__(self, batch_size: int = 5, max_pages: int | None = None, page_retries: int = 1) -> None:
        self.batch_size = batch_size
        self.max_pages = max_pages
        self.page_retries = page_retries

    def page_url(self, page: int) -> str:
        return f"https://feed.test/items?page={page}"

    def parse_page(self, body: str, page: int) -> list[FeedItem]:
        data = json.loads(body)
        if not isinstance(data, list):
            raise ValueError("not a page")
        return [FeedItem(**entry) for entry in data]

    def build_record(self, item: FeedItem, identity: str, tags: list[str]) -> ModelRecord | None:
        return ModelRecord(
            id=f"paged-{identity}",
            name=item.title,
            provider="" if item.extra.get("anonymous") else "Paged Community",
            domain=Domain.IMAGE_GEN,
            source=CatalogSource.CUSTOM,
            url=item.link,
            tags=tags,
        )


def page_items(page: int, count: int = 2) -> list[dict]:
    return [
        {"title": f"Model {page}-{index}", "link": f"https://feed.test/m/{page}-{index}", "guid": f"{page}-{index}"}
        for index in range(count)
    ]


def serve(pages: dict[int, object], requested: list[int] | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        if requested is not None:
            requested.append(page)
        body = pages.get(page, [])
        if isinstance(body, httpx.Response):
            return body
        return httpx.Response(200, text=json.dumps(body))

    return handler


@pytest.mark.asyncio
async def test_stops_at_first_empty_page_in_one_batch(fake_clock, mock_transport) -> None:
    pages = {1: page_items(1), 2: page_items(2), 3: page_items(3)}
    observer = CollectingObserver()
    fetcher = SourceFetcher(
        PagedFeed(batch_size=5), mock_transport(serve(pages)), observer=observer, sleep=fake_clock.sleep
    )

    result = await fetcher.fetch()

    assert [record.name for record in result.complete] == [
        "Model 1-0",
        "Model 1-1",
        "Model 2-0",
        "Model 2-1",
        "Model 3-0",
        "Model 3-1",
    ]
    assert fetcher.stats.batches == 1
    assert fetcher.stats.empty_page == 4
    assert sorted(fetcher.requested_pages) == [1, 2, 3, 4, 5]
    assert fake_clock.sleeps == []
    assert observer.kinds().count("page_fetched") == 3
    assert observer.of_kind("page_empty")[0].page == 4


@pytest.mark.asyncio
async def test_small_batches_continue_until_empty(fake_clock, mock_transport) -> None:
    pages = {1: page_items(1), 2: page_items(2), 3: page_items(3)}
    fetcher = SourceFetcher(PagedFeed(batch_size=2), mock_transport(serve(pages)), sleep=fake_clock.sleep)

    result = await fetcher.fetch()

    assert len(result.complete) == 6
    assert fetcher.stats.batches == 2
    assert fake_clock.sleeps == [0.5]


@pytest.mark.asyncio
async def test_stats_describe_only_the_latest_fetch(fake_clock, mock_transport) -> None:
    pages = {1: page_items(1), 2: page_items(2)}
    fetcher = SourceFetcher(PagedFeed(batch_size=2), mock_transport(serve(pages)), sleep=fake_clock.sleep)

    first = await fetcher.fetch()
    second = await fetcher.fetch()

    assert len(first.complete) == len(second.complete) == 4
    assert fetcher.stats.batches == 2
    assert fetcher.stats.pages_fetched == 2
    assert fetcher.stats.items_seen == 4
    assert fetcher.stats.empty_page == 3
    assert sorted(fetcher.requested_pages) == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_max_pages_bounds_requests(fake_clock, mock_transport) -> None:
    pages = {number: page_items(number) for number in range(1, 10)}
    fetcher = SourceFetcher(
        PagedFeed(batch_size=2, max_pages=3), mock_transport(serve(pages)), sleep=fake_clock.sleep
    )

    result = await fetcher.fetch()

    assert len(result.complete) == 6
    assert sorted(fetcher.requested_pages) == [1, 2, 3]


@pytest.mark.asyncio
async def test_failed_page_is_retried_then_reported(fake_clock, mock_transport) -> None:
    requested: list[int] = []
    pages = {1: page_items(1), 2: httpx.Response(500)}
    observer = CollectingObserver()
    fetcher = SourceFetcher(
        PagedFeed(batch_size=2, page_retries=1),
        mock_transport(serve(pages, requested)),
        observer=observer,
        sleep=fake_clock.sleep,
    )

    result = await fetcher.fetch()

    assert len(result.complete) == 2
    assert requested.count(2) == 2
    assert fetcher.stats.failed_pages == [2]
    assert fetcher.stats.empty_page is None
    assert observer.of_kind("page_failed")[0].page == 2
    assert fake_clock.sleeps == [0.25]


@pytest.mark.asyncio
async def test_unparseable_page_counts_as_failed(fake_clock, mock_transport) -> None:
    pages = {1: {"error": "maintenance"}}
    fetcher = SourceFetcher(
        PagedFeed(batch_size=1, page_retries=0), mock_transport(serve(pages)), sleep=fake_clock.sleep
    )

    result = await fetcher.fetch()

    assert len(result) == 0
    assert fetcher.stats.failed_pages == [1]


@pytest.mark.asyncio
async def test_items_are_deduped_and_validated(fake_clock, mock_transport) -> None:
    first = page_items(1)
    second = [
        first[0],
        {"title": "", "link": "https://feed.test/m/untitled", "guid": "untitled"},
        {"title": "No link", "link": ""},
        {"title": "Anonymous FLUX tune", "link": "https://feed.test/m/anon", "popularity": 12, "extra": {"anonymous": True}},
    ]
    fetcher = SourceFetcher(
        PagedFeed(batch_size=3), mock_transport(serve({1: first, 2: second})), sleep=fake_clock.sleep
    )

    result = await fetcher.fetch()

    assert [record.id for record in result.complete] == ["paged-1-0", "paged-1-1"]
    assert [record.id for record in result.flagged] == ["paged-anon"]
    assert result.flagged[0].tags == ["flux", "popular"]
    assert fetcher.stats.duplicates == 1
    assert fetcher.stats.items_dropped == 2


@pytest.mark.asyncio
async def test_cancelled_fetch_raises(fake_clock, mock_transport) -> None:
    token = CancelToken()
    token.cancel()
    fetcher = SourceFetcher(PagedFeed(), mock_transport(serve({})), sleep=fake_clock.sleep)

    with pytest.raises(Cancelled):
        await fetcher.fetch(token)


def test_identity_fallbacks() -> None:
    feed = PagedFeed()
    assert feed.identity(FeedItem(title="a", link="x", guid=" g-1 "), 1, 0) == "g-1"
    assert feed.identity(FeedItem(title="a", link="https://feed.test/m/slug/"), 1, 0) == "slug"
    assert feed.identity(FeedItem(title="a", link=""), 3, 7) == "3-7"


def test_vocabulary_matches_separator_variants() -> None:
    vocabulary = TagVocabulary(groups={"tech": ["stable-diffusion", "flux.1"]})
    assert vocabulary.scan("A Stable Diffusion finetune on FLUX 1") == ["stable-diffusion", "flux.1"]
