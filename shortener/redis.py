"""Redis client management for the fast store.

This module provides a lazily created, process-wide Redis client used for the
hot-path click counters, the dirty set, rate-limit windows and the link
metadata cache.

Flow Diagram — Redis Operations
=============================
::
    ┌─────────────┐
    │  Component  │
    │  request    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ get_redis() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check global │
    │ client var   │
    └──────┬──────┘
    EXISTS?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Redis   │  │ existing│
│ client  │  │ client  │
└─────────┘  └─────────┘

Key Behaviours
===============
- Redis client is created lazily on first access.
- Socket and connect timeouts bound every call; a hung server surfaces as
  redis.exceptions.TimeoutError instead of blocking the event loop task.
- UTF-8 encoding with decode_responses for string operations.

Functions:
    create_redis():  Build a new client from settings.
    get_redis():  Shared client accessor.
    close_redis():  Cleanup function for shutdown.
"""

import redis.asyncio as redis

from shortener.config import Settings, get_settings

__all__ = ["close_redis", "create_redis", "get_redis"]

settings = get_settings()

redis_client: redis.Redis | None = None


def create_redis(settings: Settings) -> redis.Redis:
    return redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        socket_timeout=settings.FAST_STORE_TIMEOUT_SECONDS,
        socket_connect_timeout=settings.FAST_STORE_TIMEOUT_SECONDS,
    )


async def get_redis() -> redis.Redis:
    global redis_client
    if redis_client is None:
        redis_client = create_redis(settings)
    return redis_client


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
