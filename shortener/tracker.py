"""Hot-path click tracking against the fast store.

Flow Diagram — touch()
======================
::
    ┌───────────────┐
    │ touch(code,   │
    │ fallbacks,now)│
    └───────┬───────┘
            ▼  one EVALSHA round trip
    ┌───────────────────────────────────┐
    │ clicks key missing? seed fallback │
    │ expiry key missing? seed fallback │
    │ expiry < now?  ──► return -1      │
    │ INCR clicks                        │
    │ SADD dirty_urls code               │
    └───────┬───────────────────────────┘
            ▼
      new click count | EXPIRED | SEED_REQUIRED

Key Behaviours
===============
- The four steps run inside one Lua script, so two concurrent redirects, or a
  redirect and the sync worker, never interleave between them.
- Expired codes are never incremented and never marked dirty.
- Expiry is fixed at creation; traffic never extends it.
- Keys the script seeds expire at the link expiry, so cold-start seeding
  never leaves keys behind for links that are gone.
- Every call is bounded by the fast-store timeout. Redis errors and timeouts
  are raised as TransientStoreError for the caller to degrade on.

Classes:
    HotState:  Snapshot of a code's live clicks and expiry.
    HotPathTracker:  touch / peek / seed over the url:<code>:* keys.
"""

import asyncio
import datetime
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar

import redis.asyncio as redis
from prometheus_client import Counter
from redis.exceptions import RedisError

from shortener import keys
from shortener.enums import TouchResult
from shortener.exceptions import TransientStoreError
from shortener.lua_scripts import REDIRECT_SCRIPT
from shortener.timeutils import from_iso, to_epoch, to_iso

__all__ = ["HotPathTracker", "HotState"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

HOT_PATH_TOUCHES_TOTAL = Counter(
    "hot_path_touches_total",
    "Redirect script executions by outcome",
    ["outcome"],
)
HOT_PATH_FAILURES_TOTAL = Counter(
    "hot_path_failures_total",
    "Fast-store failures seen by the hot path tracker",
)


@dataclass(frozen=True)
class HotState:
    clicks: int | None
    expiry_date: datetime.datetime | None


class HotPathTracker:
    def __init__(self, cache: redis.Redis, timeout: float):
        self._cache = cache
        self._timeout = timeout
        self._redirect_script = cache.register_script(REDIRECT_SCRIPT)

    async def _call(self, operation: Awaitable[T], short_code: str) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=self._timeout)
        except (RedisError, OSError, TimeoutError) as exc:
            HOT_PATH_FAILURES_TOTAL.inc()
            raise TransientStoreError(f"Fast store unavailable for '{short_code}': {exc!r}") from exc

    async def touch(
        self,
        short_code: str,
        fallback_clicks: int | None,
        fallback_expiry: datetime.datetime,
        now: datetime.datetime,
    ) -> int | TouchResult:
        """Validate expiry, count a click and mark the code dirty, atomically.

        Args:
            short_code: Code being redirected.
            fallback_clicks: Seed for the click key if Redis has none. Pass None
                to get TouchResult.SEED_REQUIRED back instead of seeding, when the
                caller has no authoritative count at hand.
            fallback_expiry: Seed for the expiry key if Redis has none.
            now: Current time.

        Returns:
            The new click count, TouchResult.EXPIRED, or TouchResult.SEED_REQUIRED.

        Raises:
            TransientStoreError: Redis failed or timed out.
        """
        result = await self._call(
            self._redirect_script(
                keys=[keys.click_key(short_code), keys.expiry_key(short_code), keys.DIRTY_SET_KEY],
                args=[
                    "" if fallback_clicks is None else str(fallback_clicks),
                    to_iso(fallback_expiry),
                    to_iso(now),
                    short_code,
                    str(to_epoch(fallback_expiry)),
                ],
            ),
            short_code,
        )
        result = int(result)
        if result == TouchResult.EXPIRED:
            HOT_PATH_TOUCHES_TOTAL.labels(outcome="expired").inc()
            return TouchResult.EXPIRED
        if result == TouchResult.SEED_REQUIRED:
            HOT_PATH_TOUCHES_TOTAL.labels(outcome="seed_required").inc()
            return TouchResult.SEED_REQUIRED
        HOT_PATH_TOUCHES_TOTAL.labels(outcome="counted").inc()
        return result

    async def peek(self, short_code: str) -> HotState:
        """Read live clicks and expiry without mutating anything."""
        clicks, expiry = await self._call(
            self._cache.mget(keys.click_key(short_code), keys.expiry_key(short_code)),
            short_code,
        )
        return HotState(
            clicks=int(clicks) if clicks is not None else None,
            expiry_date=from_iso(expiry) if expiry is not None else None,
        )

    async def seed(self, short_code: str, clicks: int, expiry_date: datetime.datetime, ttl_seconds: int) -> None:
        """Create the hot keys for a fresh link. Existing keys are left alone."""
        pipe = self._cache.pipeline(transaction=True)
        pipe.set(keys.click_key(short_code), str(clicks), ex=ttl_seconds, nx=True)
        pipe.set(keys.expiry_key(short_code), to_iso(expiry_date), ex=ttl_seconds, nx=True)
        await self._call(pipe.execute(), short_code)
