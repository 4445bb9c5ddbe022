"""Sliding-window admission control for outbound provider calls."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

import structlog

from .errors import CancelToken, cancellable_sleep, guarded

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]

WINDOW_BUFFER = 1.0


class RateLimitTier(str, Enum):
    FREE = "free"
    TIER1 = "tier1"
    TIER2 = "tier2"
    TIER3 = "tier3"
    TIER4 = "tier4"


@dataclass(slots=True, frozen=True)
class RateLimitPreset:
    max_requests: int
    time_window: float
    min_interval: float


TIER_PRESETS: dict[RateLimitTier, RateLimitPreset] = {
    RateLimitTier.FREE: RateLimitPreset(3, 60.0, 20.0),
    RateLimitTier.TIER1: RateLimitPreset(20, 60.0, 3.0),
    RateLimitTier.TIER2: RateLimitPreset(50, 60.0, 1.2),
    RateLimitTier.TIER3: RateLimitPreset(100, 60.0, 0.6),
    RateLimitTier.TIER4: RateLimitPreset(300, 60.0, 0.2),
}

DEFAULT_TIER = RateLimitTier.TIER4


@dataclass(slots=True, frozen=True)
class RateLimitStatus:
    remaining: int
    reset_in: float


class RateLimiter:
    """Admit callers while keeping both a window quota and a minimum spacing.

    ``acquire`` holds an internal lock from the admission check until the
    timestamp is recorded, so two tasks can never claim the same free slot.
    """

    def __init__(
        self,
        max_requests: int,
        time_window: float,
        min_interval: float = 0.0,
        *,
        clock: Clock | None = None,
        sleep: Sleeper | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if time_window <= 0:
            raise ValueError("time_window must be positive")
        self.max_requests = max_requests
        self.time_window = time_window
        self.min_interval = max(min_interval, 0.0)
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._window: deque[float] = deque()
        self._lock = asyncio.Lock()
        self.logger = logger or structlog.get_logger("catalog_sync.rate_limiter")

    @classmethod
    def for_tier(cls, tier: RateLimitTier | str = DEFAULT_TIER, **kwargs) -> "RateLimiter":
        preset = TIER_PRESETS[RateLimitTier(tier)]
        return cls(preset.max_requests, preset.time_window, preset.min_interval, **kwargs)

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------
    async def acquire(self, cancel_token: CancelToken | None = None) -> float:
        """Wait for a slot, record it and return the recorded timestamp."""

        await self._enter(cancel_token)
        try:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._window) >= self.max_requests:
                    wait = self.time_window - (now - self._window[0]) + WINDOW_BUFFER
                    self.logger.debug("rate_limit_window_full", wait=round(wait, 3))
                    await cancellable_sleep(wait, cancel_token, self._sleep)
                    continue
                if self._window:
                    since_last = now - self._window[-1]
                    if since_last < self.min_interval:
                        wait = self.min_interval - since_last
                        self.logger.debug("rate_limit_spacing", wait=round(wait, 3))
                        await cancellable_sleep(wait, cancel_token, self._sleep)
                        continue
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                self._window.append(now)
                return now
        finally:
            self._lock.release()

    async def _enter(self, cancel_token: CancelToken | None) -> None:
        """Take the admission lock; a queued caller gives up when its token fires."""

        if cancel_token is None:
            await self._lock.acquire()
            return
        cancel_token.raise_if_cancelled()
        acquiring = asyncio.ensure_future(self._lock.acquire())
        try:
            await guarded(asyncio.shield(acquiring), cancel_token)
        except BaseException:
            # the lock may have been granted in the same step the token fired
            if acquiring.done() and not acquiring.cancelled() and acquiring.exception() is None:
                self._lock.release()
            else:
                acquiring.cancel()
            raise

    def status(self) -> RateLimitStatus:
        now = self._clock()
        self._prune(now)
        remaining = max(self.max_requests - len(self._window), 0)
        if self._window:
            reset_in = max(self.time_window - (now - self._window[0]), 0.0)
        else:
            reset_in = 0.0
        return RateLimitStatus(remaining=remaining, reset_in=reset_in)

    def reset(self) -> None:
        self._window.clear()

    @property
    def history(self) -> tuple[float, ...]:
        return tuple(self._window)

    def _prune(self, now: float) -> None:
        while self._window and now - self._window[0] >= self.time_window:
            self._window.popleft()


__all__ = [
    "DEFAULT_TIER",
    "RateLimitPreset",
    "RateLimitStatus",
    "RateLimitTier",
    "RateLimiter",
    "TIER_PRESETS",
]
