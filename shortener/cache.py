"""Read-through cache for immutable link metadata.

Flow Diagram — get_by_short_code()
==================================
::
    ┌─────────────┐
    │ lookup code │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Redis GET    │
    │ link:code:*  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Query   │  │ Return  │
│ database│  │ cached  │
└────┬────┘  └─────────┘
     ▼
  found? ── no ──► return None (nothing cached)
     │ yes
     ▼
┌─────────┐
│ Cache   │
│ (TTL)   │
└─────────┘

Key Behaviours
===============
- Absence is never cached, so a link created right after a failed lookup is
  visible on the very next call.
- Cached payloads carry immutable fields only. There is no click count in the
  cache, and the cached expiry is only ever used to seed the hot path keys.
- Links are never renamed or un-minted, so entries need no invalidation beyond
  their TTL.
- A Redis failure degrades to a direct database lookup; it is never fatal here.

Classes:
    ReadThroughCache:  Cache-aside lookups by short code and by original URL.
"""

import logging

import redis.asyncio as redis
from prometheus_client import Counter
from pydantic import ValidationError
from redis.exceptions import RedisError

from shortener import keys
from shortener.enums import CacheStatus
from shortener.models import Link
from shortener.repository import LinkRepository
from shortener.schemas import CachedLink

__all__ = ["ReadThroughCache"]

logger = logging.getLogger(__name__)

LINK_CACHE_LOOKUPS_TOTAL = Counter(
    "link_cache_lookups_total",
    "Link metadata cache lookups",
    ["cache_hit"],
)


class ReadThroughCache:
    def __init__(self, cache: redis.Redis, repository: LinkRepository, ttl_seconds: int):
        self._cache = cache
        self._repository = repository
        self._ttl_seconds = ttl_seconds

    async def get_by_short_code(self, short_code: str) -> CachedLink | None:
        cached = await self._read(keys.link_by_code_key(short_code))
        if cached is not None:
            return cached

        link = await self._repository.get_by_short_code(short_code)
        if link is None:
            return None
        return await self.put(link)

    async def get_by_original_url(self, original_url: str) -> CachedLink | None:
        cached = await self._read(keys.link_by_url_key(original_url))
        if cached is not None:
            return cached

        link = await self._repository.get_by_original_url(original_url)
        if link is None:
            return None
        return await self.put(link)

    async def put(self, link: Link | CachedLink) -> CachedLink:
        payload = link if isinstance(link, CachedLink) else CachedLink.model_validate(link)
        data = payload.model_dump_json()
        try:
            pipe = self._cache.pipeline(transaction=False)
            pipe.set(keys.link_by_code_key(payload.short_code), data, ex=self._ttl_seconds)
            pipe.set(keys.link_by_url_key(payload.original_url), data, ex=self._ttl_seconds)
            await pipe.execute()
        except (RedisError, OSError) as exc:
            logger.warning(f"Link cache write failed for {payload.short_code}: {exc}")
        return payload

    async def _read(self, cache_key: str) -> CachedLink | None:
        try:
            raw = await self._cache.get(cache_key)
        except (RedisError, OSError) as exc:
            logger.warning(f"Link cache read failed for {cache_key}: {exc}")
            LINK_CACHE_LOOKUPS_TOTAL.labels(cache_hit=CacheStatus.MISS).inc()
            return None

        if raw is None:
            LINK_CACHE_LOOKUPS_TOTAL.labels(cache_hit=CacheStatus.MISS).inc()
            return None

        try:
            cached = CachedLink.model_validate_json(raw)
        except ValidationError as exc:
            logger.error(f"Cache deserialization error for {cache_key}: {exc}")
            LINK_CACHE_LOOKUPS_TOTAL.labels(cache_hit=CacheStatus.MISS).inc()
            return None

        LINK_CACHE_LOOKUPS_TOTAL.labels(cache_hit=CacheStatus.HIT).inc()
        return cached
