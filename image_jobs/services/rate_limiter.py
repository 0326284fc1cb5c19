from __future__ import annotations

import logging
import time
from collections import OrderedDict
from typing import Callable, Dict, Tuple

from image_jobs.models import RateLimitCategory, RateLimitRule
from image_jobs.services.errors import RateLimitExceededError
from image_jobs.services.settings_store import SettingsCache

logger = logging.getLogger(__name__)

LimiterKey = Tuple[str, int, int]

_CATEGORY_LABELS = {
    RateLimitCategory.IMAGE_PROCESSING: "image processing requests",
    RateLimitCategory.BATCH_OPERATION: "batch operations",
    RateLimitCategory.API: "requests",
}


def _format_minutes(window_ms: int) -> str:
    minutes = window_ms / 60_000
    return str(int(minutes)) if minutes == int(minutes) else f"{minutes:g}"


class FixedWindowRateLimiter:
    """Counts hits per client key in fixed windows of ``rule.window_ms``."""

    def __init__(self, rule: RateLimitRule, clock: Callable[[], float] = time.monotonic) -> None:
        self.rule = rule
        self._clock = clock
        self._window_seconds = rule.window_ms / 1000
        self._hits: Dict[str, Tuple[float, int]] = {}
        self._last_prune = clock()

    @property
    def message(self) -> str:
        label = _CATEGORY_LABELS[self.rule.category]
        return (
            f"Too many {label}. Limit: {self.rule.max_requests} requests "
            f"per {_format_minutes(self.rule.window_ms)} minutes."
        )

    def hit(self, client_key: str) -> int:
        """Record one request for ``client_key``; returns the remaining allowance.

        Raises ``RateLimitExceededError`` when the window's budget is spent.
        """

        now = self._clock()
        self._prune(now)
        window_start, count = self._hits.get(client_key, (now, 0))
        if now - window_start >= self._window_seconds:
            window_start, count = now, 0
        if count >= self.rule.max_requests:
            logger.info("Rate limit tripped for %s on %s", client_key, self.rule.category.value)
            raise RateLimitExceededError(self.message, retry_after=self.rule.retry_after_seconds)
        self._hits[client_key] = (window_start, count + 1)
        return self.rule.max_requests - count - 1

    def _prune(self, now: float) -> None:
        if now - self._last_prune < self._window_seconds:
            return
        expired = [key for key, (start, _) in self._hits.items() if now - start >= self._window_seconds]
        for key in expired:
            del self._hits[key]
        self._last_prune = now


class RateLimiterFactory:
    """Hands out one limiter per (category, window, max) triple, bounded to ``max_instances``."""

    def __init__(
        self,
        settings_cache: SettingsCache,
        max_instances: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings_cache = settings_cache
        self._max_instances = max_instances
        self._clock = clock
        self._limiters: "OrderedDict[LimiterKey, FixedWindowRateLimiter]" = OrderedDict()
        settings_cache.add_invalidation_listener(self.clear)

    async def get_limiter(self, category: RateLimitCategory) -> FixedWindowRateLimiter:
        rule = await self._settings_cache.get_rate_limit(category)
        key: LimiterKey = (category.value, rule.window_ms, rule.max_requests)
        limiter = self._limiters.get(key)
        if limiter is not None:
            return limiter

        limiter = FixedWindowRateLimiter(rule, clock=self._clock)
        self._limiters[key] = limiter
        while len(self._limiters) > self._max_instances:
            evicted, _ = self._limiters.popitem(last=False)
            logger.debug("Evicted rate limiter %s", evicted)
        return limiter

    def clear(self) -> None:
        self._limiters.clear()
        logger.info("Rate limiter cache cleared")

    def __len__(self) -> int:
        return len(self._limiters)
