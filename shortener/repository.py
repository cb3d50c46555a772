"""Durable-store access for links.

`LinkRepository` is the narrow CRUD surface the rest of the service uses
against the `links` table. Every method opens its own short unit of work from
the session factory, so the repository can be shared by request handlers and
the sync worker without sharing a session between concurrent tasks.
"""

import asyncio
import datetime
import logging
from collections.abc import Awaitable
from typing import TypeVar

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortener.models import Link

__all__ = ["LinkRepository"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LinkRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], timeout: float):
        self._session_factory = session_factory
        self._timeout = timeout

    async def _bounded(self, operation: Awaitable[T]) -> T:
        return await asyncio.wait_for(operation, timeout=self._timeout)

    async def get_by_short_code(self, short_code: str) -> Link | None:
        return await self._bounded(self._get_one(Link.short_code == short_code))

    async def get_by_original_url(self, original_url: str) -> Link | None:
        return await self._bounded(self._get_one(Link.original_url == original_url))

    async def _get_one(self, criterion) -> Link | None:
        async with self._session_factory() as session:
            result = await session.execute(select(Link).where(criterion))
            return result.scalar_one_or_none()

    async def create(self, short_code: str, original_url: str, expiry_date: datetime.datetime) -> Link:
        """Insert a new link, or return the existing one for the same URL.

        Two concurrent shortens of one URL can both miss the dedup lookup; the
        unique constraint on original_url lets exactly one insert win and the
        loser picks up the winner's row. The loser's short code is discarded.
        """
        try:
            return await self._bounded(self._insert(short_code, original_url, expiry_date))
        except IntegrityError:
            existing = await self.get_by_original_url(original_url)
            if existing is None:
                raise
            logger.info(f"Concurrent shorten for {original_url}, reusing {existing.short_code}")
            return existing

    async def _insert(self, short_code: str, original_url: str, expiry_date: datetime.datetime) -> Link:
        async with self._session_factory() as session:
            link = Link(
                short_code=short_code,
                original_url=original_url,
                click_count=0,
                expiry_date=expiry_date,
            )
            session.add(link)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise
            await session.refresh(link)
            return link

    async def set_click_count(self, short_code: str, clicks: int) -> bool:
        """Overwrite the durable click count. Returns False if the link is gone."""
        return await self._bounded(self._update(short_code, click_count=clicks))

    async def increment_click_count(self, short_code: str, delta: int = 1) -> int | None:
        """Degraded-mode write used when the fast store cannot record the click.

        Returns the new durable count, or None if the link is gone.
        """
        return await self._bounded(self._increment(short_code, delta))

    async def _increment(self, short_code: str, delta: int) -> int | None:
        async with self._session_factory() as session:
            result = await session.execute(
                update(Link)
                .where(Link.short_code == short_code)
                .values(click_count=Link.click_count + delta)
                .returning(Link.click_count),
                execution_options={"synchronize_session": False},
            )
            new_count = result.scalar_one_or_none()
            await session.commit()
            return new_count

    async def _update(self, short_code: str, **values) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(Link).where(Link.short_code == short_code).values(**values),
                execution_options={"synchronize_session": False},
            )
            await session.commit()
            return result.rowcount > 0

    async def delete_expired(self, before: datetime.datetime) -> list[str]:
        """Delete links that expired before `before`. Returns the deleted short codes."""
        return await self._bounded(self._delete_expired(before))

    async def _delete_expired(self, before: datetime.datetime) -> list[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(Link).where(Link.expiry_date < before).returning(Link.short_code),
                execution_options={"synchronize_session": False},
            )
            deleted = list(result.scalars().all())
            await session.commit()
            return deleted
