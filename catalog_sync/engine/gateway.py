"""Rate-limited, retrying access to LLM provider APIs."""

from __future__ import annotations

import asyncio
import json
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable

import httpx
import structlog

from ..config import ProviderConfig, ProviderDirectory, ProviderProtocol
from ..records import ModelRecord
from .errors import (
    CancelToken,
    Cancelled,
    CredentialMissing,
    MalformedResponse,
    PermanentRequest,
    TransientNetwork,
    cancellable_sleep,
)
from .protocols import (
    Mode,
    ProviderRequest,
    adapter_for,
    defaults_for,
    display_name,
    resolve_base_url,
    resolve_protocol,
    static_records,
)
from .rate_limiter import RateLimiter
from .transport import HttpTransport, TransportRequest

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
MAX_RETRY_AFTER = 60.0

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def safe_json_from_text(text: str | None) -> Any | None:
    """Pull a JSON value out of model output.

    Tries the raw text, then a fenced code block, then the outermost
    ``{...}`` and ``[...]`` spans.
    """

    if not text:
        return None
    candidates = [text.strip()]
    fenced = _FENCE_PATTERN.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    for opener, closer in (("{", "}"), ("[", "]")):
        start, end = text.find(opener), text.rfind(closer)
        if start != -1 and end > start:
            candidates.append(text[start : end + 1])
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except ValueError:
            continue
    return None


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            moment = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        seconds = (moment - (now or datetime.now(timezone.utc))).total_seconds()
    return min(max(seconds, 0.0), MAX_RETRY_AFTER)


def pick_completion_provider(providers: ProviderDirectory | None) -> tuple[str, ProviderConfig] | None:
    """First usable text-completion provider, local Ollama-protocol ones first."""

    if providers is None:
        return None
    enabled = providers.enabled()
    for key, config in enabled.items():
        if resolve_protocol(key, config) is ProviderProtocol.OLLAMA:
            return key, config
    for key, config in enabled.items():
        if config.has_credential:
            return key, config
    return None


class ProviderGateway:
    """Single entry point for listing models and requesting completions.

    Every call checks the credential, then waits on the shared
    :class:`RateLimiter`, then runs the request with bounded retries.
    """

    def __init__(
        self,
        limiter: RateLimiter | None = None,
        transport: HttpTransport | None = None,
        *,
        max_attempts: int = 3,
        direct_attempts: int = 1,
        backoff_base: float = 1.0,
        backoff_cap: float = 10.0,
        completion_timeout: float = 60.0,
        listing_timeout: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.limiter = limiter or RateLimiter.for_tier()
        self._owns_transport = transport is None
        self.transport = transport or HttpTransport()
        self.max_attempts = max(max_attempts, 1)
        self.direct_attempts = max(direct_attempts, 1)
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.completion_timeout = completion_timeout
        self.listing_timeout = listing_timeout
        self._sleep = sleep or asyncio.sleep
        self.logger = logger or structlog.get_logger("catalog_sync.gateway")

    async def __aenter__(self) -> "ProviderGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_transport:
            await self.transport.aclose()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    async def list_models(
        self,
        provider_key: str,
        config: ProviderConfig,
        cancel_token: CancelToken | None = None,
    ) -> list[ModelRecord]:
        protocol = resolve_protocol(provider_key, config)
        adapter = adapter_for(protocol)
        self._check_credential(provider_key, config, adapter.requires_key)

        defaults = defaults_for(provider_key)
        if defaults is not None and defaults.static_models is not None and not config.base_url:
            self.logger.info("static_catalog", provider=provider_key, count=len(defaults.static_models))
            return static_records(provider_key, defaults)

        await self.limiter.acquire(cancel_token)
        request = adapter.list_request(resolve_base_url(provider_key, config), config)
        response = await self._send(provider_key, config, request, self.listing_timeout, cancel_token)
        try:
            payload = response.json()
        except ValueError:
            self.logger.warning("listing_not_json", provider=provider_key, url=request.url)
            return []

        items = adapter.list_items(payload)
        if items is None:
            self.logger.warning("listing_without_array", provider=provider_key, url=request.url)
            return []

        provider_name = display_name(provider_key, config)
        records: list[ModelRecord] = []
        for item in items:
            try:
                record = adapter.to_record(provider_key, provider_name, item)
            except Exception as exc:  # noqa: BLE001
                self.logger.debug("listing_item_dropped", provider=provider_key, item=repr(item)[:200], error=str(exc))
                continue
            if record is None:
                self.logger.debug("listing_item_dropped", provider=provider_key, item=repr(item)[:200])
                continue
            records.append(record)
        self.logger.info(
            "listing_complete",
            provider=provider_key,
            count=len(records),
            dropped=len(items) - len(records),
        )
        return records

    async def complete_text(
        self,
        provider_key: str,
        config: ProviderConfig,
        system_prompt: str,
        user_prompt: str,
        cancel_token: CancelToken | None = None,
    ) -> str:
        """Return the model's answer; a malformed response counts as an empty one."""

        text = await self._completion_text(provider_key, config, system_prompt, user_prompt, "text", cancel_token)
        return text or ""

    async def complete_json(
        self,
        provider_key: str,
        config: ProviderConfig,
        system_prompt: str,
        user_prompt: str,
        cancel_token: CancelToken | None = None,
    ) -> Any | None:
        """Return the parsed JSON answer, or ``None`` when the model produced none."""

        text = await self._completion_text(provider_key, config, system_prompt, user_prompt, "json", cancel_token)
        if text is None:
            return None
        parsed = safe_json_from_text(text)
        if parsed is None:
            self.logger.warning(
                "malformed_completion",
                provider=provider_key,
                error="no JSON value in model output",
                preview=text[:200],
            )
        return parsed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _completion_text(
        self,
        provider_key: str,
        config: ProviderConfig,
        system_prompt: str,
        user_prompt: str,
        mode: Mode,
        cancel_token: CancelToken | None,
    ) -> str | None:
        try:
            payload = await self._complete(provider_key, config, system_prompt, user_prompt, mode, cancel_token)
            return adapter_for(resolve_protocol(provider_key, config)).extract_text(payload)
        except MalformedResponse as exc:
            self.logger.warning("malformed_completion", provider=provider_key, error=str(exc))
            return None

    async def _complete(
        self,
        provider_key: str,
        config: ProviderConfig,
        system_prompt: str,
        user_prompt: str,
        mode: Mode,
        cancel_token: CancelToken | None,
    ) -> Any:
        protocol = resolve_protocol(provider_key, config)
        adapter = adapter_for(protocol)
        self._check_credential(provider_key, config, adapter.requires_key)
        await self.limiter.acquire(cancel_token)

        defaults = defaults_for(provider_key)
        model = config.model or (defaults.default_model if defaults else "")
        request = adapter.chat_request(
            resolve_base_url(provider_key, config), config, model, system_prompt, user_prompt, mode
        )
        response = await self._send(provider_key, config, request, self.completion_timeout, cancel_token)
        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponse(f"{provider_key} returned a non-JSON body") from exc

    def _check_credential(self, provider_key: str, config: ProviderConfig, required: bool) -> None:
        if required and not config.has_credential:
            raise CredentialMissing(provider_key)

    def backoff_delay(self, attempt: int, retry_after: float | None = None) -> float:
        if retry_after is not None:
            return retry_after
        return min(self.backoff_base * 2 ** (attempt - 1), self.backoff_cap)

    async def _send(
        self,
        provider_key: str,
        config: ProviderConfig,
        request: ProviderRequest,
        timeout: float,
        cancel_token: CancelToken | None,
    ) -> httpx.Response:
        use_proxy = not config.bypass_proxy
        attempts = self.max_attempts if use_proxy else self.direct_attempts
        outbound = TransportRequest(
            url=request.url,
            method=request.method,
            headers=request.headers,
            json=request.body,
            timeout=timeout,
        )
        attempt = 0
        while True:
            attempt += 1
            error: TransientNetwork
            try:
                response = await self.transport.send(outbound, cancel_token=cancel_token, use_proxy=use_proxy)
            except Cancelled:
                raise
            except httpx.TimeoutException as exc:
                error = TransientNetwork(f"{provider_key} request timed out: {exc}")
            except httpx.TransportError as exc:
                error = TransientNetwork(f"{provider_key} connection failed: {exc}")
            else:
                status = response.status_code
                if status < 400:
                    return response
                if status not in RETRYABLE_STATUSES:
                    self.logger.warning("provider_rejected", provider=provider_key, status=status, url=request.url)
                    raise PermanentRequest(
                        f"{provider_key} API error {status}: {response.text[:200]}",
                        status=status,
                    )
                error = TransientNetwork(
                    f"{provider_key} API error {status}",
                    status=status,
                    retry_after=parse_retry_after(response.headers.get("retry-after")),
                )

            if attempt >= attempts:
                self.logger.warning(
                    "provider_request_failed",
                    provider=provider_key,
                    attempts=attempt,
                    error=str(error),
                )
                raise error
            delay = self.backoff_delay(attempt, error.retry_after)
            self.logger.info(
                "retry_scheduled",
                provider=provider_key,
                attempt=attempt,
                delay=delay,
                status=error.status,
            )
            await cancellable_sleep(delay, cancel_token, self._sleep)


__all__ = [
    "ProviderGateway",
    "RETRYABLE_STATUSES",
    "parse_retry_after",
    "pick_completion_provider",
    "safe_json_from_text",
]
