"""Dirty-set sync worker tests."""

import asyncio
import datetime

import pytest
from redis.exceptions import RedisError
from sqlalchemy.exc import OperationalError

from shortener import keys
from shortener.sync_worker import SyncWorker
from shortener.timeutils import utcnow


@pytest.fixture
def worker(redis_client, repository) -> SyncWorker:
    return SyncWorker(redis_client, repository, interval_seconds=0.05, timeout=1.0)


@pytest.fixture
def now() -> datetime.datetime:
    return utcnow()


@pytest.fixture
def expiry(now) -> datetime.datetime:
    return now + datetime.timedelta(days=30)


async def _create_links(repository, codes, expiry) -> None:
    for code in codes:
        await repository.create(code, f"https://example.com/{code}", expiry)


@pytest.mark.asyncio
async def test_empty_cycle(worker) -> None:
    report = await worker.run_once()

    assert report.claimed == 0
    assert report.synced == 0
    assert report.aborted is False


@pytest.mark.asyncio
async def test_cycle_writes_redis_counts_to_database(worker, tracker, repository, redis_client, now, expiry) -> None:
    await _create_links(repository, ["a", "b"], expiry)
    for _ in range(3):
        await tracker.touch("a", 0, expiry, now)
    await tracker.touch("b", 0, expiry, now)

    report = await worker.run_once()

    assert report.claimed == 2
    assert report.synced == 2
    assert (await repository.get_by_short_code("a")).click_count == 3
    assert (await repository.get_by_short_code("b")).click_count == 1
    assert await redis_client.exists(keys.DIRTY_SET_KEY) == 0
    assert await redis_client.exists(keys.PROCESSING_SET_KEY) == 0


@pytest.mark.asyncio
async def test_repeated_cycles_are_idempotent(worker, tracker, repository, redis_client, now, expiry) -> None:
    await _create_links(repository, ["a"], expiry)
    await tracker.touch("a", 0, expiry, now)
    await worker.run_once()

    # Re-marking the code without new clicks writes the same absolute value.
    await redis_client.sadd(keys.DIRTY_SET_KEY, "a")
    await worker.run_once()

    assert (await repository.get_by_short_code("a")).click_count == 1


@pytest.mark.asyncio
async def test_touch_after_claim_lands_in_next_cycle(
    worker, tracker, repository, redis_client, monkeypatch, now, expiry
) -> None:
    await _create_links(repository, ["a", "b"], expiry)
    await tracker.touch("a", 0, expiry, now)

    original = repository.set_click_count

    async def set_and_touch(short_code: str, clicks: int) -> bool:
        if short_code == "a":
            await tracker.touch("b", 0, expiry, now)
        return await original(short_code, clicks)

    monkeypatch.setattr(repository, "set_click_count", set_and_touch)
    first = await worker.run_once()

    assert first.claimed == 1
    assert await redis_client.smembers(keys.DIRTY_SET_KEY) == {"b"}

    second = await worker.run_once()
    assert second.claimed == 1
    assert (await repository.get_by_short_code("b")).click_count == 1


@pytest.mark.asyncio
async def test_leftover_processing_set_is_merged(worker, tracker, repository, redis_client, now, expiry) -> None:
    await _create_links(repository, ["a", "b"], expiry)
    await tracker.touch("a", 0, expiry, now)
    await tracker.touch("b", 0, expiry, now)
    await redis_client.delete(keys.DIRTY_SET_KEY)
    await redis_client.sadd(keys.PROCESSING_SET_KEY, "a")
    await redis_client.sadd(keys.DIRTY_SET_KEY, "b")

    report = await worker.run_once()

    assert report.claimed == 2
    assert report.synced == 2
    assert await redis_client.exists(keys.PROCESSING_SET_KEY) == 0
    assert await redis_client.exists(keys.DIRTY_SET_KEY) == 0


@pytest.mark.asyncio
async def test_leftover_processing_set_without_new_dirty_codes(worker, tracker, repository, redis_client, now, expiry) -> None:
    await _create_links(repository, ["a"], expiry)
    await tracker.touch("a", 4, expiry, now)
    await redis_client.rename(keys.DIRTY_SET_KEY, keys.PROCESSING_SET_KEY)

    report = await worker.run_once()

    assert report.synced == 1
    assert (await repository.get_by_short_code("a")).click_count == 5
    assert await redis_client.exists(keys.PROCESSING_SET_KEY) == 0


@pytest.mark.asyncio
async def test_shutdown_between_codes_leaves_rest_for_next_cycle(
    worker, tracker, repository, redis_client, monkeypatch, now, expiry
) -> None:
    await _create_links(repository, ["a", "b", "c"], expiry)
    for code in ("a", "b", "c"):
        await tracker.touch(code, 0, expiry, now)

    original = repository.set_click_count

    async def set_then_stop(short_code: str, clicks: int) -> bool:
        result = await original(short_code, clicks)
        await worker.stop()
        return result

    monkeypatch.setattr(repository, "set_click_count", set_then_stop)
    report = await worker.run_once()

    assert report.aborted is True
    assert report.synced == 1
    assert await redis_client.smembers(keys.PROCESSING_SET_KEY) == {"a", "b", "c"}

    monkeypatch.setattr(repository, "set_click_count", original)
    next_worker = SyncWorker(redis_client, repository, interval_seconds=0.05, timeout=1.0)
    follow_up = await next_worker.run_once()

    assert follow_up.synced == 3
    assert (await repository.get_by_short_code("c")).click_count == 1
    assert await redis_client.exists(keys.PROCESSING_SET_KEY) == 0


@pytest.mark.asyncio
async def test_missing_link_is_counted_and_not_retried(worker, tracker, repository, redis_client, now, expiry) -> None:
    await _create_links(repository, ["a"], expiry)
    await tracker.touch("a", 0, expiry, now)
    await tracker.touch("ghost", 0, expiry, now)

    report = await worker.run_once()

    assert report.synced == 1
    assert report.failed == 1
    assert await redis_client.exists(keys.DIRTY_SET_KEY) == 0


@pytest.mark.asyncio
async def test_transient_failure_requeues_code(worker, tracker, repository, redis_client, monkeypatch, now, expiry) -> None:
    await _create_links(repository, ["a", "b"], expiry)
    await tracker.touch("a", 0, expiry, now)
    await tracker.touch("b", 0, expiry, now)

    original = repository.set_click_count

    async def flaky(short_code: str, clicks: int) -> bool:
        if short_code == "a":
            raise OperationalError("UPDATE", {}, Exception("connection reset"))
        return await original(short_code, clicks)

    monkeypatch.setattr(repository, "set_click_count", flaky)
    report = await worker.run_once()

    assert report.failed == 1
    assert report.synced == 1
    assert await redis_client.smembers(keys.DIRTY_SET_KEY) == {"a"}
    assert await redis_client.exists(keys.PROCESSING_SET_KEY) == 0


@pytest.mark.asyncio
async def test_codes_without_click_key_are_skipped(worker, repository, redis_client, expiry) -> None:
    await _create_links(repository, ["a"], expiry)
    await redis_client.sadd(keys.DIRTY_SET_KEY, "a")

    report = await worker.run_once()

    assert report.skipped == 1
    assert report.synced == 0


@pytest.mark.asyncio
async def test_expired_links_are_deleted(worker, repository, now) -> None:
    await repository.create("old", "https://old.example.com", now - datetime.timedelta(seconds=1))
    await repository.create("new", "https://new.example.com", now + datetime.timedelta(days=1))

    report = await worker.run_once(now=now)

    assert report.expired_deleted == 1
    assert await repository.get_by_short_code("old") is None
    assert await repository.get_by_short_code("new") is not None


@pytest.mark.asyncio
async def test_redis_outage_fails_the_cycle_without_losing_codes(worker, tracker, repository, redis_client, fake_server, now, expiry) -> None:
    await _create_links(repository, ["a"], expiry)
    await tracker.touch("a", 0, expiry, now)
    fake_server.connected = False

    with pytest.raises(RedisError):
        await worker.run_once()

    fake_server.connected = True
    assert await redis_client.smembers(keys.DIRTY_SET_KEY) == {"a"}


@pytest.mark.asyncio
async def test_background_loop_syncs_and_stops(worker, tracker, repository, redis_client, now, expiry) -> None:
    await _create_links(repository, ["a"], expiry)
    await tracker.touch("a", 0, expiry, now)

    worker.start()
    assert worker.running is True
    try:
        for _ in range(40):
            pending = await redis_client.exists(keys.DIRTY_SET_KEY, keys.PROCESSING_SET_KEY)
            if pending == 0:
                break
            await asyncio.sleep(0.05)
    finally:
        await worker.stop()

    assert worker.running is False
    assert (await repository.get_by_short_code("a")).click_count == 1


@pytest.mark.asyncio
async def test_expired_links_lose_their_hot_keys(worker, tracker, repository, redis_client, now, expiry) -> None:
    await _create_links(repository, ["a"], expiry)
    await tracker.touch("a", 0, expiry, now)
    await worker.run_once(now=now)

    report = await worker.run_once(now=expiry + datetime.timedelta(days=1))

    assert report.expired_deleted == 1
    assert await repository.get_by_short_code("a") is None
    assert await redis_client.exists(keys.click_key("a"), keys.expiry_key("a")) == 0


@pytest.mark.asyncio
async def test_redis_outage_still_deletes_expired_links(worker, repository, fake_server, now) -> None:
    await repository.create("old", "https://old.example.com", now - datetime.timedelta(seconds=1))
    fake_server.connected = False

    with pytest.raises(RedisError):
        await worker.run_once(now=now)

    fake_server.connected = True
    assert await repository.get_by_short_code("old") is None
