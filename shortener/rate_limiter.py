"""Fixed-window request rate limiting per client.

The counter for a client is incremented and, on the first request of a window,
given a TTL equal to the window length, in a single Lua script. Doing the INCR
and EXPIRE separately would let two first-requests race so that neither sets
the TTL, leaving a counter that never resets.

Availability wins over strict limiting: if Redis fails or times out the
request is allowed and the failure is logged and counted.
"""

import asyncio
import logging

import redis.asyncio as redis
from prometheus_client import Counter
from redis.exceptions import RedisError

from shortener import keys
from shortener.lua_scripts import RATE_LIMIT_SCRIPT

__all__ = ["RateLimiter"]

logger = logging.getLogger(__name__)

RATE_LIMITER_REJECTIONS_TOTAL = Counter(
    "rate_limiter_rejections_total",
    "Requests rejected by the rate limiter",
)
RATE_LIMITER_FAIL_OPEN_TOTAL = Counter(
    "rate_limiter_fail_open_total",
    "Requests allowed because the rate limiter could not reach Redis",
)


class RateLimiter:
    def __init__(
        self,
        cache: redis.Redis,
        max_requests: int,
        window_seconds: int,
        timeout: float,
        enabled: bool = True,
    ):
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._timeout = timeout
        self._enabled = enabled
        self._script = cache.register_script(RATE_LIMIT_SCRIPT)

    async def allow(self, client_id: str) -> bool:
        if not self._enabled:
            return True

        try:
            count = await asyncio.wait_for(
                self._script(keys=[keys.rate_limit_key(client_id)], args=[self._window_seconds]),
                timeout=self._timeout,
            )
        except (RedisError, OSError, TimeoutError):
            RATE_LIMITER_FAIL_OPEN_TOTAL.inc()
            logger.error(f"Redis rate limit failed for client={client_id}, failing open", exc_info=True)
            return True

        if count is None:
            return True

        allowed = int(count) <= self._max_requests
        if not allowed:
            RATE_LIMITER_REJECTIONS_TOTAL.inc()
            logger.debug(f"Rate limit exceeded for client={client_id} ({count}/{self._max_requests})")
        return allowed
