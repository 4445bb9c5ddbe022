"""HTTP transport that prefers a host-supplied proxy and falls back to direct calls."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx
import structlog

from .errors import CancelToken, Cancelled, guarded

UrlRewriter = Callable[[str], "str | None"]
Forwarder = Callable[[httpx.Request], Awaitable[httpx.Response]]

DEFAULT_TIMEOUT = 30.0
DEFAULT_HEADERS = {
    "User-Agent": "catalog-sync/0.1 (+https://github.com/catalog-sync)",
    "Accept": "application/json, application/rss+xml, application/xml;q=0.9, */*;q=0.8",
}


@dataclass(slots=True)
class ProxyCapability:
    """In-process forwarding hook supplied by the host.

    ``rewrite`` maps an upstream URL onto a forwarding endpoint (returning
    ``None`` skips the proxy for that URL); ``forward`` sends the request
    itself.  When both are set ``forward`` is used.
    """

    rewrite: UrlRewriter | None = None
    forward: Forwarder | None = None

    @property
    def available(self) -> bool:
        return self.rewrite is not None or self.forward is not None


@dataclass(slots=True)
class TransportRequest:
    url: str
    method: str = "GET"
    headers: dict[str, str] | None = None
    json: Any = None
    timeout: float | None = None


class HttpTransport:
    """Send requests through the proxy capability first, then directly."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        proxy: ProxyCapability | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            follow_redirects=True,
            timeout=timeout,
            headers=DEFAULT_HEADERS,
        )
        self.proxy = proxy or ProxyCapability()
        self.timeout = timeout
        self.logger = logger or structlog.get_logger("catalog_sync.transport")

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------
    async def get(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        cancel_token: CancelToken | None = None,
        use_proxy: bool = True,
    ) -> httpx.Response:
        return await self.send(
            TransportRequest(url=url, headers=headers),
            cancel_token=cancel_token,
            use_proxy=use_proxy,
        )

    async def send(
        self,
        request: TransportRequest,
        *,
        cancel_token: CancelToken | None = None,
        use_proxy: bool = True,
    ) -> httpx.Response:
        """Return the upstream response; transport errors propagate as ``httpx`` errors."""

        if use_proxy and self.proxy.available:
            response = await self._via_proxy(request, cancel_token)
            if response is not None:
                return response
        return await guarded(self._client.send(self._build(request, request.url)), cancel_token)

    async def _via_proxy(
        self, request: TransportRequest, cancel_token: CancelToken | None
    ) -> httpx.Response | None:
        try:
            if self.proxy.forward is not None:
                response = await guarded(
                    self.proxy.forward(self._build(request, request.url)), cancel_token
                )
            else:
                target = self.proxy.rewrite(request.url)
                if not target:
                    return None
                response = await guarded(self._client.send(self._build(request, target)), cancel_token)
        except Cancelled:
            raise
        except Exception as exc:  # noqa: BLE001
            self.logger.info("proxy_unavailable", url=request.url, error=str(exc))
            return None
        if response.status_code >= 500 or response.status_code in (403, 407):
            self.logger.info("proxy_rejected", url=request.url, status=response.status_code)
            return None
        return response

    def _build(self, request: TransportRequest, url: str) -> httpx.Request:
        return self._client.build_request(
            request.method,
            url,
            headers=request.headers,
            json=request.json,
            timeout=request.timeout or self.timeout,
        )


__all__ = [
    "DEFAULT_TIMEOUT",
    "Forwarder",
    "HttpTransport",
    "ProxyCapability",
    "TransportRequest",
    "UrlRewriter",
]
