"""Fixed-window rate limiter tests."""

import asyncio

import pytest

from shortener import keys
from shortener.rate_limiter import RateLimiter


@pytest.mark.asyncio
async def test_allows_exactly_max_requests(redis_client) -> None:
    limiter = RateLimiter(redis_client, max_requests=3, window_seconds=60, timeout=1.0)

    results = [await limiter.allow("10.0.0.1") for _ in range(4)]
    assert results == [True, True, True, False]


@pytest.mark.asyncio
async def test_clients_are_limited_independently(redis_client) -> None:
    limiter = RateLimiter(redis_client, max_requests=1, window_seconds=60, timeout=1.0)

    assert await limiter.allow("10.0.0.1") is True
    assert await limiter.allow("10.0.0.1") is False
    assert await limiter.allow("10.0.0.2") is True


@pytest.mark.asyncio
async def test_window_ttl_is_set_on_first_request(redis_client) -> None:
    limiter = RateLimiter(redis_client, max_requests=5, window_seconds=60, timeout=1.0)
    await limiter.allow("10.0.0.1")

    ttl = await redis_client.ttl(keys.rate_limit_key("10.0.0.1"))
    assert 0 < ttl <= 60


@pytest.mark.asyncio
async def test_counter_resets_after_window(redis_client) -> None:
    limiter = RateLimiter(redis_client, max_requests=2, window_seconds=1, timeout=1.0)

    assert await limiter.allow("10.0.0.1") is True
    assert await limiter.allow("10.0.0.1") is True
    assert await limiter.allow("10.0.0.1") is False

    await asyncio.sleep(1.2)
    assert await limiter.allow("10.0.0.1") is True


@pytest.mark.asyncio
async def test_fails_open_when_redis_is_down(redis_client, fake_server) -> None:
    limiter = RateLimiter(redis_client, max_requests=1, window_seconds=60, timeout=1.0)
    fake_server.connected = False

    assert await limiter.allow("10.0.0.1") is True
    assert await limiter.allow("10.0.0.1") is True


@pytest.mark.asyncio
async def test_disabled_limiter_allows_everything(redis_client) -> None:
    limiter = RateLimiter(redis_client, max_requests=1, window_seconds=60, timeout=1.0, enabled=False)

    assert all([await limiter.allow("10.0.0.1") for _ in range(5)])
    assert await redis_client.exists(keys.rate_limit_key("10.0.0.1")) == 0
