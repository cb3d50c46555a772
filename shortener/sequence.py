"""Range-based unique id allocation and base-62 short codes.

Architecture Overview
=====================
::
    next_id("url_sequence")
           │
           ▼
    ┌──────────────────┐   current < max   ┌──────────────┐
    │ asyncio.Lock for │ ────────────────► │ return        │
    │ the counter name │                   │ current++     │
    └────────┬─────────┘                   └──────────────┘
             │ current >= max
             ▼
    ┌──────────────────┐
    │ UPDATE counters  │  one durable round trip
    │ SET seq = seq+R  │  serves the next R ids
    │ RETURNING seq    │
    └────────┬─────────┘
             ▼
      max = seq, current = seq - R

Key Behaviours
===============
- Ids are unique for any number of concurrent callers in the process: the
  bounds check, the refill and the increment all run under one lock per name.
- A crash after a refill skips the rest of that range forever. Ids are unique,
  not dense.
- A durable failure during refill raises AllocationError and leaves the bounds
  untouched, so the next call retries the refill.

Functions:
    encode_base62():  Encode a non-negative integer as a short code.
    decode_base62():  Inverse of encode_base62().

Classes:
    SequenceAllocator:  Per-counter in-memory range allocator.
"""

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.exceptions import AllocationError
from shortener.models import SequenceCounter

__all__ = ["BASE62_ALPHABET", "SequenceAllocator", "decode_base62", "encode_base62"]

logger = logging.getLogger(__name__)

BASE62_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
_BASE62_INDEX = {char: index for index, char in enumerate(BASE62_ALPHABET)}


def encode_base62(number: int) -> str:
    """Encode a number to base62 string.

    Example:
        >>> encode_base62(12345)
        '3d7'
    """
    if number < 0:
        raise ValueError("Number must be non-negative")

    if number == 0:
        return BASE62_ALPHABET[0]

    base = len(BASE62_ALPHABET)
    result = []

    while number > 0:
        number, remainder = divmod(number, base)
        result.append(BASE62_ALPHABET[remainder])

    return "".join(result[::-1])


def decode_base62(code: str) -> int:
    if not code:
        raise ValueError("Code must be non-empty")

    number = 0
    for char in code:
        try:
            number = number * len(BASE62_ALPHABET) + _BASE62_INDEX[char]
        except KeyError:
            raise ValueError(f"Invalid base62 character {char!r}") from None
    return number


@dataclass
class _Range:
    current: int = 0
    max: int = 0


class SequenceAllocator:
    """Hands out unique ids from ranges reserved in the durable store.

    Example:
        >>> allocator = SequenceAllocator(async_session, range_size=100, timeout=5.0)
        >>> await allocator.next_id("url_sequence")
        0
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], range_size: int, timeout: float):
        if range_size <= 0:
            raise ValueError("range_size must be positive")
        self._session_factory = session_factory
        self._range_size = range_size
        self._timeout = timeout
        self._ranges: dict[str, _Range] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self.refills = 0

    @property
    def range_size(self) -> int:
        return self._range_size

    def _lock_for(self, counter_name: str) -> asyncio.Lock:
        # setdefault is atomic with respect to other tasks on the same loop.
        return self._locks.setdefault(counter_name, asyncio.Lock())

    async def next_id(self, counter_name: str) -> int:
        async with self._lock_for(counter_name):
            bounds = self._ranges.setdefault(counter_name, _Range())
            if bounds.current >= bounds.max:
                new_max = await self._reserve_range(counter_name)
                bounds.max = new_max
                bounds.current = new_max - self._range_size
            allocated = bounds.current
            bounds.current += 1
            return allocated

    async def _reserve_range(self, counter_name: str) -> int:
        try:
            new_max = await asyncio.wait_for(self._increment(counter_name), timeout=self._timeout)
        except (SQLAlchemyError, OSError, TimeoutError) as exc:
            logger.error(f"Id range allocation failed for {counter_name}: {exc}")
            raise AllocationError(f"Could not reserve an id range for '{counter_name}'") from exc

        self.refills += 1
        logger.info(f"Allocated id range [{new_max - self._range_size}, {new_max}) for {counter_name}")
        return new_max

    async def _increment(self, counter_name: str) -> int:
        statement = (
            update(SequenceCounter)
            .where(SequenceCounter.name == counter_name)
            .values(seq=SequenceCounter.seq + self._range_size)
            .returning(SequenceCounter.seq)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            new_max = (await session.execute(statement)).scalar_one_or_none()
            if new_max is not None:
                await session.commit()
                return new_max

            # Counter row missing: create it already holding the first range.
            session.add(SequenceCounter(name=counter_name, seq=self._range_size))
            try:
                await session.commit()
                return self._range_size
            except IntegrityError:
                await session.rollback()

            # Another process created the row first; take the next range from it.
            new_max = (await session.execute(statement)).scalar_one()
            await session.commit()
            return new_max

    async def ensure_counter(self, counter_name: str) -> None:
        """Create the counter with seq=0 if it does not exist yet. Idempotent."""
        async with self._session_factory() as session:
            existing = await session.execute(select(SequenceCounter).where(SequenceCounter.name == counter_name))
            if existing.scalar_one_or_none() is not None:
                logger.info(f"Sequence counter {counter_name} already exists")
                return
            session.add(SequenceCounter(name=counter_name, seq=0))
            try:
                await session.commit()
                logger.info(f"Sequence counter {counter_name} initialized")
            except IntegrityError:
                await session.rollback()
