"""Shorten endpoint behavior tests."""

from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient

from shortener.exceptions import AllocationError
from shortener.rate_limiter import RateLimiter


@pytest.mark.asyncio
async def test_shorten_valid_url(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"url": "https://www.google.com"})
    assert response.status_code == 201
    data = response.json()
    assert data["original_url"] == "https://www.google.com"
    assert data["short_code"] == "0"
    assert data["short_url"] == "http://test/0"
    assert "expiry_date" in data


@pytest.mark.asyncio
async def test_shorten_invalid_url(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"url": "not-a-url"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_shorten_empty_url(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"url": ""})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_shorten_same_url_twice(client: AsyncClient) -> None:
    first = await client.post("/api/shorten", json={"url": "https://www.github.com"})
    second = await client.post("/api/shorten", json={"url": "https://www.github.com"})
    assert first.status_code == second.status_code == 201
    assert first.json()["short_code"] == second.json()["short_code"]


@pytest.mark.asyncio
async def test_shorten_distinct_urls_get_distinct_codes(client: AsyncClient) -> None:
    codes = set()
    for index in range(5):
        response = await client.post("/api/shorten", json={"url": f"https://example.com/{index}"})
        codes.add(response.json()["short_code"])
    assert len(codes) == 5


@pytest.mark.asyncio
async def test_shorten_allocation_failure_returns_503(client: AsyncClient, manager) -> None:
    manager.allocator.next_id = AsyncMock(side_effect=AllocationError("no range"))

    response = await client.post("/api/shorten", json={"url": "https://www.python.org"})
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_shorten_is_rate_limited(client: AsyncClient, manager, redis_client) -> None:
    manager.rate_limiter = RateLimiter(redis_client, max_requests=2, window_seconds=60, timeout=1.0)

    statuses = [
        (await client.post("/api/shorten", json={"url": f"https://example.com/{index}"})).status_code
        for index in range(3)
    ]
    assert statuses == [201, 201, 429]
