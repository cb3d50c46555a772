"""URL Shortener Service Layer - Core Business Logic

This module ties the allocator, the metadata cache, the hot-path tracker and
the rate limiter together into the operations the HTTP layer exposes.

Architecture Overview
==================
::
    ┌──────────────────────────────────────────────────────────────┐
    │                    URLShorteningService                      │
    │  shorten_url()   resolve()   stats()   allow_request()       │
    └───────┬──────────────┬───────────┬───────────────┬──────────┘
            │              │           │               │
            ▼              ▼           ▼               ▼
    ┌──────────────┐ ┌───────────┐ ┌───────────┐ ┌─────────────┐
    │  Sequence    │ │ ReadThrough│ │ HotPath   │ │ RateLimiter │
    │  Allocator   │ │ Cache      │ │ Tracker   │ │             │
    └──────┬───────┘ └─────┬─────┘ └─────┬─────┘ └──────┬──────┘
           ▼               ▼             ▼              ▼
    ┌─────────────────────────┐   ┌─────────────────────────────┐
    │  PostgreSQL (durable)   │   │  Redis (fast store)         │
    └─────────────────────────┘   └─────────────────────────────┘

Request Flow Diagrams
=====================

URL Creation Flow
-----------------
::
    ┌─────────────┐
    │ shorten_url │
    └──────┬──────┘
           ▼
    ┌─────────────┐  found   ┌─────────────┐
    │ cache by    │ ───────► │ reuse code  │
    │ original URL│          └─────────────┘
    └──────┬──────┘
           ▼ miss
    ┌─────────────┐
    │ next_id()   │  AllocationError propagates
    │ + base62    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ insert link │  unique URL: a concurrent twin reuses the winner
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ cache + seed│  best effort
    │ hot keys    │
    └─────────────┘

Redirect Flow
-------------
::
    ┌─────────────┐
    │  resolve    │
    └──────┬──────┘
           ▼
    ┌─────────────┐  miss   ┌──────────────┐
    │ metadata    │ ──────► │ NotFound     │
    │ (cache)     │         └──────────────┘
    └──────┬──────┘
           ▼
    ┌─────────────┐  Redis down  ┌────────────────────────┐
    │ touch()     │ ───────────► │ durable expiry check + │
    │ (Lua)       │              │ durable click += 1     │
    └──────┬──────┘              └────────────────────────┘
           ▼
    EXPIRED ──► Expired       SEED_REQUIRED ──► load durable count, touch again
           ▼
      clicks

Key Behaviours
==============
- Click counts and expiry used for live decisions always come from Redis
  (or, during an outage, from a fresh database read), never from the cache.
- The cached copy only seeds Redis expiry; click seeds come from the database.
- Redis outages degrade; database failures during allocation propagate.
- A degraded redirect writes its click to the database directly. If Redis kept
  the code's counter through the outage, the next sync overwrites that click
  with the Redis value.
- Codes outside the base-62 alphabet are reported missing without a lookup.

Usage Examples
=============
```python
service = URLShorteningService.from_context(ctx)
link = await service.shorten_url("https://example.com")
resolved = await service.resolve(link.short_code)
stats = await service.stats(link.short_code)
```
"""

import datetime
import logging
import time

from prometheus_client import Counter, Histogram

from shortener.cache import ReadThroughCache
from shortener.config import Settings
from shortener.enums import RequestStatus, TouchResult
from shortener.exceptions import LinkExpiredError, LinkNotFoundError, TransientStoreError
from shortener.rate_limiter import RateLimiter
from shortener.repository import LinkRepository
from shortener.schemas import CachedLink, LinkStats, ResolvedLink
from shortener.sequence import SequenceAllocator, decode_base62, encode_base62
from shortener.timeutils import ensure_utc, utcnow
from shortener.tracker import HotPathTracker, HotState

__all__ = ["URLShorteningService"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

URL_CREATION_REQUESTS_TOTAL = Counter(
    "url_shortener_creation_requests_total",
    "Total URL creation requests",
    ["status"],
)
URL_REDIRECT_REQUESTS_TOTAL = Counter(
    "url_shortener_redirect_requests_total",
    "Total URL redirect requests",
    ["status"],
)
URL_STATS_REQUESTS_TOTAL = Counter(
    "url_shortener_stats_requests_total",
    "Total URL stats requests",
    ["status"],
)
URL_CREATION_DURATION = Histogram(
    "url_shortener_creation_duration_seconds",
    "Time taken to create short URLs",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)
URL_REDIRECT_DURATION = Histogram(
    "url_shortener_redirect_duration_seconds",
    "Time taken to resolve a short code",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)


# ============================================================================
# CORE SERVICE CLASS
# ============================================================================


class URLShorteningService:
    """Core service class for URL shortening operations.

    Example:
        >>> service = URLShorteningService.from_context(ctx)
        >>> link = await service.shorten_url("https://example.com")
        >>> print(f"Shortened: {link.short_code}")
    """

    def __init__(
        self,
        settings: Settings,
        repository: LinkRepository,
        link_cache: ReadThroughCache,
        allocator: SequenceAllocator,
        tracker: HotPathTracker,
        rate_limiter: RateLimiter,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._settings = settings
        self._repository = repository
        self._link_cache = link_cache
        self._allocator = allocator
        self._tracker = tracker
        self._rate_limiter = rate_limiter
        self._logger = logger or logging.getLogger("urlshortener")

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "URLShorteningService":  # noqa: F821
        """Build a service bound to the shared components and the request logger."""
        manager = ctx.service_manager
        return cls(
            settings=manager.settings,
            repository=manager.repository,
            link_cache=manager.link_cache,
            allocator=manager.allocator,
            tracker=manager.tracker,
            rate_limiter=manager.rate_limiter,
            logger=ctx.logger,
        )

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def allow_request(self, client_id: str) -> bool:
        return await self._rate_limiter.allow(client_id)

    async def shorten_url(self, original_url: str) -> CachedLink:
        """Return the short code for `original_url`, minting one if needed.

        Shortening the same URL twice returns the same code.

        Raises:
            AllocationError: The id range could not be reserved.
        """
        start_time = time.perf_counter()
        try:
            existing = await self._link_cache.get_by_original_url(original_url)
            if existing is not None:
                self._logger.info(f"Reusing short code {existing.short_code} for {original_url}")
                URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
                return existing

            new_id = await self._allocator.next_id(self._settings.ID_SEQUENCE_NAME)
            short_code = encode_base62(new_id)
            expiry_date = utcnow() + datetime.timedelta(days=self._settings.LINK_TTL_DAYS)

            link = await self._repository.create(short_code, original_url, expiry_date)
            cached = await self._link_cache.put(link)
            if link.short_code == short_code:
                await self._seed_hot_state(cached)

            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
            self._logger.info(f"URL created successfully: {cached.short_code} in {time.perf_counter() - start_time:.3f}s")
            return cached
        except Exception:
            URL_CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR).inc()
            raise
        finally:
            URL_CREATION_DURATION.observe(time.perf_counter() - start_time)

    async def resolve(self, short_code: str, now: datetime.datetime | None = None) -> ResolvedLink:
        """Resolve a code for redirect and record the click.

        Raises:
            LinkNotFoundError: The code was never minted (or was cleaned up).
            LinkExpiredError: The code exists but is past its expiry.
        """
        now = now or utcnow()
        with URL_REDIRECT_DURATION.time():
            link = await self._lookup(short_code)
            if link is None:
                URL_REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
                raise LinkNotFoundError(short_code)

            try:
                result = await self._touch(link, now)
            except TransientStoreError as exc:
                self._logger.warning(f"Redis failed, falling back to DB for short_code={short_code}: {exc}")
                return await self._resolve_degraded(link, now)

            if result is TouchResult.EXPIRED:
                URL_REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.EXPIRED).inc()
                raise LinkExpiredError(short_code)

            URL_REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
            return ResolvedLink(short_code=short_code, original_url=link.original_url, clicks=result)

    async def stats(self, short_code: str) -> LinkStats:
        """Live statistics for a code. Falls back to durable values when Redis has none.

        Raises:
            LinkNotFoundError: The code does not exist.
        """
        link = await self._lookup(short_code)
        if link is None:
            URL_STATS_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
            raise LinkNotFoundError(short_code)

        try:
            hot = await self._tracker.peek(short_code)
        except TransientStoreError as exc:
            self._logger.warning(f"Redis failed reading stats for short_code={short_code}, falling back to DB: {exc}")
            hot = HotState(clicks=None, expiry_date=None)

        clicks = hot.clicks
        expiry_date = hot.expiry_date
        if clicks is None or expiry_date is None:
            durable = await self._repository.get_by_short_code(short_code)
            if durable is None:
                URL_STATS_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
                raise LinkNotFoundError(short_code)
            if clicks is None:
                clicks = durable.click_count
            if expiry_date is None:
                expiry_date = durable.expiry_date

        URL_STATS_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
        return LinkStats(
            original_url=link.original_url,
            short_code=link.short_code,
            clicks=clicks,
            created_at=link.created_at,
            expiry_date=ensure_utc(expiry_date),
        )

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    async def _lookup(self, short_code: str) -> CachedLink | None:
        try:
            decode_base62(short_code)
        except ValueError:
            # Never minted by the allocator; skip both stores.
            return None
        return await self._link_cache.get_by_short_code(short_code)

    async def _touch(self, link: CachedLink, now: datetime.datetime) -> int | TouchResult:
        result = await self._tracker.touch(link.short_code, None, link.expiry_date, now)
        if result is not TouchResult.SEED_REQUIRED:
            return result

        # Redis lost the counter (cold start or eviction): seed it from the database, not the cache.
        durable = await self._repository.get_by_short_code(link.short_code)
        if durable is None:
            raise LinkNotFoundError(link.short_code)
        self._logger.info(f"Seeding hot state for {link.short_code} from durable click_count={durable.click_count}")
        return await self._tracker.touch(link.short_code, durable.click_count, durable.expiry_date, now)

    async def _resolve_degraded(self, link: CachedLink, now: datetime.datetime) -> ResolvedLink:
        durable = await self._repository.get_by_short_code(link.short_code)
        if durable is None:
            URL_REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
            raise LinkNotFoundError(link.short_code)

        if ensure_utc(durable.expiry_date) < ensure_utc(now):
            URL_REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.EXPIRED).inc()
            raise LinkExpiredError(link.short_code)

        clicks = await self._repository.increment_click_count(link.short_code)
        if clicks is None:
            URL_REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.NOT_FOUND).inc()
            raise LinkNotFoundError(link.short_code)

        URL_REDIRECT_REQUESTS_TOTAL.labels(status=RequestStatus.DEGRADED).inc()
        return ResolvedLink(short_code=link.short_code, original_url=link.original_url, clicks=clicks, degraded=True)

    async def _seed_hot_state(self, link: CachedLink) -> None:
        ttl_seconds = max(int((link.expiry_date - utcnow()).total_seconds()), 1)
        try:
            await self._tracker.seed(link.short_code, 0, link.expiry_date, ttl_seconds)
        except TransientStoreError as exc:
            # The redirect script seeds missing keys on first use.
            self._logger.warning(f"Could not seed hot state for {link.short_code}: {exc}")
