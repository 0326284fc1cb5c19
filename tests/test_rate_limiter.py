from __future__ import annotations

import asyncio

import pytest

from image_jobs.models import RateLimitCategory, RateLimitRule, SystemSettings
from image_jobs.services.errors import RateLimitExceededError
from image_jobs.services.rate_limiter import FixedWindowRateLimiter, RateLimiterFactory
from image_jobs.services.settings_store import SettingsCache


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_limiter_trips_after_max_requests() -> None:
    clock = FakeClock()
    rule = RateLimitRule(RateLimitCategory.IMAGE_PROCESSING, window_ms=300_000, max_requests=2)
    limiter = FixedWindowRateLimiter(rule, clock=clock)

    assert limiter.hit("10.0.0.1") == 1
    assert limiter.hit("10.0.0.1") == 0
    with pytest.raises(RateLimitExceededError) as excinfo:
        limiter.hit("10.0.0.1")

    assert str(excinfo.value) == "Too many image processing requests. Limit: 2 requests per 5 minutes."
    assert excinfo.value.retry_after == 300
    # Other clients have their own budget.
    assert limiter.hit("10.0.0.2") == 1


def test_limiter_window_resets() -> None:
    clock = FakeClock()
    rule = RateLimitRule(RateLimitCategory.API, window_ms=60_000, max_requests=1)
    limiter = FixedWindowRateLimiter(rule, clock=clock)
    limiter.hit("client")

    clock.now += 60
    assert limiter.hit("client") == 0


def test_factory_reuses_limiter_for_same_rule(provider) -> None:
    cache = SettingsCache(provider, SystemSettings())
    factory = RateLimiterFactory(cache)

    first = asyncio.run(factory.get_limiter(RateLimitCategory.IMAGE_PROCESSING))
    second = asyncio.run(factory.get_limiter(RateLimitCategory.IMAGE_PROCESSING))
    other = asyncio.run(factory.get_limiter(RateLimitCategory.BATCH_OPERATION))

    assert first is second
    assert other is not first
    assert len(factory) == 2


def test_factory_evicts_oldest_when_full(provider) -> None:
    cache = SettingsCache(provider, SystemSettings())
    factory = RateLimiterFactory(cache, max_instances=2)

    oldest = asyncio.run(factory.get_limiter(RateLimitCategory.IMAGE_PROCESSING))
    asyncio.run(factory.get_limiter(RateLimitCategory.BATCH_OPERATION))
    asyncio.run(factory.get_limiter(RateLimitCategory.API))

    assert len(factory) == 2
    assert asyncio.run(factory.get_limiter(RateLimitCategory.IMAGE_PROCESSING)) is not oldest


def test_settings_change_yields_new_limiter(provider) -> None:
    cache = SettingsCache(provider, SystemSettings())
    factory = RateLimiterFactory(cache)
    before = asyncio.run(factory.get_limiter(RateLimitCategory.IMAGE_PROCESSING))

    asyncio.run(cache.update({"imageProcessingMaxRequests": 3}))
    after = asyncio.run(factory.get_limiter(RateLimitCategory.IMAGE_PROCESSING))

    assert after is not before
    assert after.rule.max_requests == 3
    assert len(factory) == 1
