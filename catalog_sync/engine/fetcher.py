"""Generic concurrent ingestion of paginated catalog feeds."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Sequence

import structlog

from ..events import NullObserver, ProgressEvent, ProgressObserver
from ..records import FetchResult, ModelRecord
from .errors import CancelToken, Cancelled, cancellable_sleep
from .transport import HttpTransport


@dataclass(slots=True)
class FeedItem:
    """Raw fields pulled from one feed entry before normalization."""

    title: str
    link: str
    description: str = ""
    published: str | None = None
    guid: str | None = None
    popularity: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class TagVocabulary:
    """Fixed term lists scanned to enrich records with tags.

    A term also matches when its ``-`` or ``.`` separators are written as
    spaces.  Popularity thresholds are ``(minimum, tag)`` pairs.
    """

    groups: Mapping[str, Sequence[str]] = field(default_factory=dict)
    popularity_thresholds: Sequence[tuple[int, str]] = ()

    def scan(self, text: str, popularity: int | None = None) -> list[str]:
        lowered = text.lower()
        found: list[str] = []
        for terms in self.groups.values():
            for term in terms:
                variants = {term, term.replace("-", " "), term.replace(".", " ")}
                if any(variant in lowered for variant in variants) and term not in found:
                    found.append(term)
        if popularity is not None:
            for minimum, tag in self.popularity_thresholds:
                if popularity >= minimum and tag not in found:
                    found.append(tag)
        return found


@dataclass(slots=True)
class PageOutcome:
    page: int
    items: list[FeedItem] = field(default_factory=list)
    failed: bool = False
    error: str | None = None


@dataclass(slots=True)
class FeedStats:
    pages_fetched: int = 0
    batches: int = 0
    items_seen: int = 0
    items_dropped: int = 0
    duplicates: int = 0
    empty_page: int | None = None
    failed_pages: list[int] = field(default_factory=list)


class FeedSource(ABC):
    """Describe one paginated catalog; :class:`SourceFetcher` does the driving."""

    name: str = "feed"
    batch_size: int = 5
    max_pages: int | None = None
    inter_batch_delay: float = 0.5
    page_retries: int = 1
    retry_delay: float = 1.0
    vocabulary: TagVocabulary = TagVocabulary()

    @abstractmethod
    def page_url(self, page: int) -> str:
        """URL of 1-based ``page``."""

    @abstractmethod
    def parse_page(self, body: str, page: int) -> list[FeedItem]:
        """Parse a page body; raise ``ValueError`` when it is not a valid page."""

    @abstractmethod
    def build_record(self, item: FeedItem, identity: str, tags: list[str]) -> ModelRecord | None:
        """Map an item into a canonical record, or ``None`` to drop it."""

    def request_headers(self) -> dict[str, str] | None:
        return None

    def identity(self, item: FeedItem, page: int, index: int) -> str:
        if item.guid and item.guid.strip():
            return item.guid.strip()
        tail = item.link.rstrip("/").rsplit("/", 1)[-1] if item.link else ""
        if tail:
            return tail
        return f"{page}-{index}"


class SourceFetcher:
    """Fetch a :class:`FeedSource` in concurrent page batches until it runs dry."""

    def __init__(
        self,
        source: FeedSource,
        transport: HttpTransport,
        *,
        observer: ProgressObserver | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.source = source
        self.name = source.name
        self.transport = transport
        self.observer = observer or NullObserver()
        self._sleep = sleep or asyncio.sleep
        self.logger = logger or structlog.get_logger("catalog_sync.fetcher").bind(source=source.name)
        self.stats = FeedStats()
        self.requested_pages: list[int] = []

    async def fetch(self, cancel_token: CancelToken | None = None) -> FetchResult:
        self.stats = FeedStats()
        self.requested_pages = []
        result = FetchResult()
        seen: set[str] = set()
        page = 1
        while True:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            pages = self._next_pages(page)
            if not pages:
                break
            self.stats.batches += 1
            outcomes = await asyncio.gather(*(self._fetch_page(number, cancel_token) for number in pages))
            if self._apply_batch(outcomes, seen, result):
                break
            page = pages[-1] + 1
            if self.source.max_pages is not None and page > self.source.max_pages:
                break
            await cancellable_sleep(self.source.inter_batch_delay, cancel_token, self._sleep)

        self.logger.info(
            "feed_complete",
            complete=len(result.complete),
            flagged=len(result.flagged),
            pages=self.stats.pages_fetched,
            failed_pages=self.stats.failed_pages,
        )
        return result

    # ------------------------------------------------------------------
    # Batch handling
    # ------------------------------------------------------------------
    def _next_pages(self, first: int) -> list[int]:
        last = first + max(self.source.batch_size, 1) - 1
        if self.source.max_pages is not None:
            last = min(last, self.source.max_pages)
        return list(range(first, last + 1))

    def _apply_batch(self, outcomes: Sequence[PageOutcome], seen: set[str], result: FetchResult) -> bool:
        """Apply outcomes in page order; return ``True`` when the feed is finished."""

        for outcome in sorted(outcomes, key=lambda item: item.page):
            if outcome.failed:
                self.stats.failed_pages.append(outcome.page)
                self._notify(
                    "page_failed",
                    f"{self.source.name}: page {outcome.page} failed ({outcome.error})",
                    page=outcome.page,
                )
                return True
            if not outcome.items:
                self.stats.empty_page = outcome.page
                self._notify("page_empty", f"{self.source.name}: end of feed at page {outcome.page}", page=outcome.page)
                return True
            self.stats.pages_fetched += 1
            found = self._apply_page(outcome, seen, result)
            self._notify(
                "page_fetched",
                f"{self.source.name}: page {outcome.page} yielded {found} models",
                page=outcome.page,
                found=found,
            )
        return False

    def _apply_page(self, outcome: PageOutcome, seen: set[str], result: FetchResult) -> int:
        accepted = 0
        for index, item in enumerate(outcome.items):
            self.stats.items_seen += 1
            if not item.title.strip() or not item.link.strip():
                self.stats.items_dropped += 1
                continue
            identity = self.source.identity(item, outcome.page, index)
            if identity in seen:
                self.stats.duplicates += 1
                continue
            seen.add(identity)
            tags = self.source.vocabulary.scan(f"{item.title} {item.description}", item.popularity)
            try:
                record = self.source.build_record(item, identity, tags)
            except Exception as exc:  # noqa: BLE001
                self.stats.items_dropped += 1
                self.logger.warning("item_parse_error", page=outcome.page, index=index, error=str(exc))
                continue
            if record is None:
                self.stats.items_dropped += 1
                continue
            if record.is_complete():
                result.complete.append(record)
            else:
                result.flagged.append(record)
            accepted += 1
        return accepted

    # ------------------------------------------------------------------
    # Page requests
    # ------------------------------------------------------------------
    async def _fetch_page(self, page: int, cancel_token: CancelToken | None) -> PageOutcome:
        url = self.source.page_url(page)
        self.requested_pages.append(page)
        attempts = 1 + max(self.source.page_retries, 0)
        last_error = ""
        for attempt in range(1, attempts + 1):
            try:
                response = await self.transport.get(
                    url, headers=self.source.request_headers(), cancel_token=cancel_token
                )
                if response.status_code >= 400:
                    raise ValueError(f"HTTP {response.status_code}")
                items = self.source.parse_page(response.text, page)
                return PageOutcome(page=page, items=items)
            except Cancelled:
                raise
            except Exception as exc:  # noqa: BLE001
                last_error = str(exc) or exc.__class__.__name__
                self.logger.warning("page_error", page=page, attempt=attempt, url=url, error=last_error)
            if attempt < attempts:
                await cancellable_sleep(self.source.retry_delay, cancel_token, self._sleep)
        return PageOutcome(page=page, failed=True, error=last_error)

    def _notify(self, kind: str, message: str, **fields: Any) -> None:
        self.observer.notify(ProgressEvent(kind=kind, message=message, source=self.source.name, **fields))


__all__ = [
    "FeedItem",
    "FeedSource",
    "FeedStats",
    "PageOutcome",
    "SourceFetcher",
    "TagVocabulary",
]
