"""Error taxonomy and cancellation primitive for outbound calls."""

from __future__ import annotations

import asyncio


class CatalogSyncError(RuntimeError):
    """Base class for failures raised by the sync engine."""


class CredentialMissing(CatalogSyncError):
    """Raised before any network attempt when a provider needs a key we lack."""

    def __init__(self, provider_key: str) -> None:
        super().__init__(f"No credential configured for provider '{provider_key}'")
        self.provider_key = provider_key


class TransientNetwork(CatalogSyncError):
    """Timeout, dropped connection or a retryable HTTP status."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after


class PermanentRequest(CatalogSyncError):
    """Upstream rejected the request in a way retrying cannot fix."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class MalformedResponse(CatalogSyncError):
    """Payload was not JSON or lacked the expected structure."""


class Cancelled(CatalogSyncError):
    """The caller aborted the operation."""


class CancelToken:
    """Cooperative cancellation signal shared between a caller and the pipeline."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()


async def guarded(awaitable, token: CancelToken | None):
    """Await ``awaitable`` unless ``token`` fires first, then raise :class:`Cancelled`."""

    if token is None:
        return await awaitable
    token.raise_if_cancelled()
    work = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        work.cancel()
        watcher.cancel()
        raise
    if work in done:
        watcher.cancel()
        return work.result()
    work.cancel()
    try:
        await work
    except (asyncio.CancelledError, Exception):  # noqa: BLE001
        pass
    raise Cancelled(token.reason or "cancelled")


async def cancellable_sleep(delay: float, token: CancelToken | None, sleep=asyncio.sleep) -> None:
    if delay <= 0:
        if token is not None:
            token.raise_if_cancelled()
        return
    await guarded(sleep(delay), token)


__all__ = [
    "CancelToken",
    "Cancelled",
    "CatalogSyncError",
    "CredentialMissing",
    "MalformedResponse",
    "PermanentRequest",
    "TransientNetwork",
    "cancellable_sleep",
    "guarded",
]
