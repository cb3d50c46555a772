"""Database configuration and session management for the URL shortener.

This module provides SQLAlchemy async engine setup, session management,
and database lifecycle operations using PostgreSQL as the durable store.

Flow Diagram — Database Operations
=================================
::
    ┌─────────────┐
    │  Component  │
    │  (repo,     │
    │  allocator) │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ async_session│
    │ factory      │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Unit of work │
    │ (commit)     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Auto-close   │
    │ (async with) │
    └─────────────┘

How to Use
===========
**Step 1 — Initialize on startup**::
    await init_db()  # Creates tables

**Step 2 — Open a unit of work**::
    async with async_session() as session:
        result = await session.execute(select(Link))

**Step 3 — Cleanup on shutdown**::
    await close_db()

Key Behaviours
===============
- Components receive the session factory, never a shared session.
- Connection pooling is configured for production workloads.
- Statement and pool timeouts bound every durable-store call.
- Engine is properly disposed on application shutdown.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    build_engine():  Creates an engine with pool and timeout settings.
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
"""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortener.config import Settings, get_settings

__all__ = ["Base", "async_session", "build_engine", "build_session_factory", "close_db", "engine", "init_db"]

settings = get_settings()


def build_engine(settings: Settings) -> AsyncEngine:
    options: dict[str, Any] = {
        "echo": False,
        "pool_pre_ping": True,
    }
    if settings.DATABASE_URL.startswith("postgresql"):
        options.update(
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_timeout=settings.DURABLE_STORE_TIMEOUT_SECONDS,
            connect_args={
                "timeout": settings.DURABLE_STORE_TIMEOUT_SECONDS,
                "command_timeout": settings.DURABLE_STORE_TIMEOUT_SECONDS,
            },
        )
    return create_async_engine(settings.DATABASE_URL, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


engine = build_engine(settings)

async_session = build_session_factory(engine)


class Base(DeclarativeBase):
    pass


async def init_db(bind: AsyncEngine | None = None) -> None:
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
