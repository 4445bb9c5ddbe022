"""Progress events emitted by the pipeline and the observers that receive them."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import AsyncIterator, Protocol


@dataclass(slots=True, frozen=True)
class ProgressEvent:
    """One progress notification.

    ``kind`` is a short machine-readable tag (``source_started``,
    ``page_fetched``, ``page_failed`` ...); ``message`` is the human log line.
    """

    kind: str
    message: str = ""
    source: str | None = None
    current: int | None = None
    total: int | None = None
    found: int | None = None
    page: int | None = None
    batch: int | None = None


class ProgressObserver(Protocol):
    def notify(self, event: ProgressEvent) -> None: ...


class NullObserver:
    def notify(self, event: ProgressEvent) -> None:
        return


@dataclass(slots=True)
class CollectingObserver:
    """Keep every event in memory; handy for tests and batch reporting."""

    events: list[ProgressEvent] = field(default_factory=list)

    def notify(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [event.kind for event in self.events]

    def of_kind(self, kind: str) -> list[ProgressEvent]:
        return [event for event in self.events if event.kind == kind]


class ProgressChannel:
    """Bounded queue the pipeline writes into and the caller drains.

    ``notify`` never blocks: when the buffer is full the oldest pending event
    is discarded to make room.
    """

    def __init__(self, maxsize: int = 256) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self._closed = False

    def notify(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        self._put(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._put(None)

    def _put(self, item: ProgressEvent | None) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()
                self.dropped += 1

    async def get(self) -> ProgressEvent | None:
        """Next event, or ``None`` once the channel is closed and drained."""

        return await self._queue.get()

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


__all__ = [
    "CollectingObserver",
    "NullObserver",
    "ProgressChannel",
    "ProgressEvent",
    "ProgressObserver",
]
