"""Background reconciliation of hot-path click counts into the durable store.

Redis owns live click counts. Every redirect marks its code dirty; this worker
periodically claims the dirty set, copies the current Redis count of each
claimed code onto its Link row, and deletes links past their expiry.

Flow Diagram — run_once()
=========================
::
    ┌──────────────────────────┐
    │ RENAMENX dirty_urls      │
    │   dirty_urls:processing  │
    └────────────┬─────────────┘
     renamed     │  dest exists         no such key
       │         ▼                          │
       │   ┌───────────────┐                │
       │   │ merge active  │                │
       │   │ into leftover │                │
       │   └───────┬───────┘                │
       ▼           ▼                        ▼
    ┌──────────────────────────┐   leftover processing set?
    │ SMEMBERS processing      │ ◄── yes ───┘  (no: empty report)
    └────────────┬─────────────┘
                 ▼  sorted, stop checked between codes
    ┌──────────────────────────┐
    │ GET url:<code>:clicks    │
    │ UPDATE links SET         │  own transaction per code,
    │   click_count = <value>  │  absolute value (idempotent)
    └────────────┬─────────────┘
                 ▼
    ┌──────────────────────────┐
    │ DEL processing           │  skipped when aborted
    └────────────┬─────────────┘
                 ▼
    ┌──────────────────────────┐
    │ DELETE expired links     │  also after a failed claim,
    │ DEL their hot keys       │  so outages never stall it
    └──────────────────────────┘

Key Behaviours
===============
- The rename is the ordering boundary: a touch that lands after it creates a
  fresh dirty set and is picked up by the next cycle.
- A failing code is logged and counted; the rest of the batch still runs.
  Codes that failed on a transient error are put back into the dirty set.
- An interrupted cycle leaves the processing set behind. The next cycle merges
  the active set into it and drains both.
- One unexpected cycle failure never stops the loop.

How to Use
===========
**Embedded (FastAPI lifespan)**::
    worker = SyncWorker(cache, repository, interval_seconds=30.0, timeout=0.5)
    worker.start()
    ...
    await worker.stop()

**Standalone process**::
    python -m shortener.sync_worker
"""

import asyncio
import datetime
import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar

import redis.asyncio as redis
from prometheus_client import Counter, Histogram, start_http_server
from redis.exceptions import RedisError, ResponseError
from sqlalchemy.exc import SQLAlchemyError

from shortener import keys
from shortener.config import get_settings
from shortener.exceptions import SyncEntryError
from shortener.lua_scripts import MERGE_DIRTY_SCRIPT
from shortener.repository import LinkRepository
from shortener.timeutils import utcnow

__all__ = ["SyncReport", "SyncWorker", "run"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

SYNC_CODES_SYNCED_TOTAL = Counter(
    "sync_codes_synced_total",
    "Short codes whose click count was written to the durable store",
)
SYNC_CODES_FAILED_TOTAL = Counter(
    "sync_codes_failed_total",
    "Short codes that could not be reconciled during a sync cycle",
)
SYNC_EXPIRED_LINKS_DELETED_TOTAL = Counter(
    "sync_expired_links_deleted_total",
    "Expired links removed from the durable store",
)
SYNC_CYCLE_DURATION = Histogram(
    "sync_cycle_duration_seconds",
    "Time taken by one sync cycle",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0],
)


@dataclass
class SyncReport:
    claimed: int = 0
    synced: int = 0
    skipped: int = 0
    failed: int = 0
    expired_deleted: int = 0
    aborted: bool = False
    duration_seconds: float = 0.0


class SyncWorker:
    def __init__(
        self,
        cache: redis.Redis,
        repository: LinkRepository,
        interval_seconds: float,
        timeout: float,
    ):
        self._cache = cache
        self._repository = repository
        self._interval_seconds = interval_seconds
        self._timeout = timeout
        self._merge_script = cache.register_script(MERGE_DIRTY_SCRIPT)
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop(), name="sync-worker")
        logger.info(f"Sync worker started (interval={self._interval_seconds}s)")

    async def stop(self) -> None:
        """Request shutdown and wait for the loop to finish its current code."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Sync worker stopped")

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.error("Sync cycle failed", exc_info=True)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval_seconds)
            except TimeoutError:
                pass

    async def _bounded(self, operation: Awaitable[T]) -> T:
        return await asyncio.wait_for(operation, timeout=self._timeout)

    async def run_once(self, now: datetime.datetime | None = None) -> SyncReport:
        """Run one reconciliation pass and return what it did.

        Expired-link cleanup runs even when the Redis part of the cycle fails.
        """
        start_time = time.perf_counter()
        report = SyncReport()
        try:
            codes = await self._claim()
            report.claimed = len(codes)
            if codes:
                retry = await self._sync_codes(codes, report)
                await self._finish(retry, report)
        finally:
            report.expired_deleted = await self._delete_expired(now or utcnow())
            report.duration_seconds = time.perf_counter() - start_time
            SYNC_CYCLE_DURATION.observe(report.duration_seconds)

        if report.claimed or report.expired_deleted:
            logger.info(
                f"Sync cycle done: claimed={report.claimed} synced={report.synced} "
                f"skipped={report.skipped} failed={report.failed} "
                f"expired_deleted={report.expired_deleted} aborted={report.aborted}"
            )
        return report

    async def _claim(self) -> list[str]:
        try:
            renamed = await self._bounded(self._cache.renamenx(keys.DIRTY_SET_KEY, keys.PROCESSING_SET_KEY))
        except ResponseError as exc:
            if "no such key" not in str(exc).lower():
                raise
            # Nothing new since the last cycle; a leftover processing set may still need draining.
            renamed = True

        if not renamed:
            logger.warning(f"Leftover {keys.PROCESSING_SET_KEY} found, merging {keys.DIRTY_SET_KEY} into it")
            await self._bounded(self._merge_script(keys=[keys.DIRTY_SET_KEY, keys.PROCESSING_SET_KEY]))

        members = await self._bounded(self._cache.smembers(keys.PROCESSING_SET_KEY))
        if not members:
            await self._bounded(self._cache.delete(keys.PROCESSING_SET_KEY))
            return []
        return sorted(members)

    async def _sync_codes(self, codes: list[str], report: SyncReport) -> list[str]:
        """Write each code's Redis count to its Link. Returns codes worth retrying."""
        retry: list[str] = []
        for short_code in codes:
            if self._stop_event.is_set():
                report.aborted = True
                logger.info(f"Sync aborted by shutdown, {report.claimed - report.synced - report.skipped - report.failed} codes left")
                break
            try:
                if await self._sync_code(short_code):
                    report.synced += 1
                    SYNC_CODES_SYNCED_TOTAL.inc()
                else:
                    report.skipped += 1
            except SyncEntryError as exc:
                report.failed += 1
                SYNC_CODES_FAILED_TOTAL.inc()
                logger.warning(str(exc))
            except (RedisError, OSError, TimeoutError, SQLAlchemyError):
                report.failed += 1
                SYNC_CODES_FAILED_TOTAL.inc()
                retry.append(short_code)
                logger.error(f"Sync failed for '{short_code}'", exc_info=True)
        return retry

    async def _sync_code(self, short_code: str) -> bool:
        clicks = await self._bounded(self._cache.get(keys.click_key(short_code)))
        if clicks is None:
            return False
        if not await self._repository.set_click_count(short_code, int(clicks)):
            raise SyncEntryError(short_code, "link no longer exists")
        return True

    async def _finish(self, retry: list[str], report: SyncReport) -> None:
        if report.aborted:
            return
        pipe = self._cache.pipeline(transaction=True)
        if retry:
            pipe.sadd(keys.DIRTY_SET_KEY, *retry)
        pipe.delete(keys.PROCESSING_SET_KEY)
        await self._bounded(pipe.execute())

    async def _delete_expired(self, now: datetime.datetime) -> int:
        try:
            deleted = await self._repository.delete_expired(now)
        except (SQLAlchemyError, OSError, TimeoutError):
            logger.error("Expired link cleanup failed", exc_info=True)
            return 0
        if not deleted:
            return 0

        SYNC_EXPIRED_LINKS_DELETED_TOTAL.inc(len(deleted))
        logger.info(f"Deleted {len(deleted)} expired links")
        hot_keys = [key for code in deleted for key in (keys.click_key(code), keys.expiry_key(code))]
        try:
            await self._bounded(self._cache.delete(*hot_keys))
        except (RedisError, OSError, TimeoutError):
            # Seeded keys carry the link expiry as TTL and lapse on their own.
            logger.warning(f"Could not drop hot keys of {len(deleted)} deleted links", exc_info=True)
        return len(deleted)


async def run() -> None:
    from shortener.database import async_session, init_db
    from shortener.redis import close_redis, get_redis

    settings = get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    start_http_server(settings.SYNC_METRICS_PORT)

    await init_db()
    client = await get_redis()
    repository = LinkRepository(async_session, settings.DURABLE_STORE_TIMEOUT_SECONDS)
    worker = SyncWorker(
        client,
        repository,
        interval_seconds=settings.SYNC_INTERVAL_SECONDS,
        timeout=settings.FAST_STORE_TIMEOUT_SECONDS,
    )
    worker.start()
    try:
        await asyncio.Event().wait()
    finally:
        await worker.stop()
        await close_redis()


if __name__ == "__main__":
    asyncio.run(run())
