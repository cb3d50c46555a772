"""SQLAlchemy ORM models for the durable store.

Data Model Layout
=================
::
    links table
    ├─ id (SERIAL PRIMARY KEY)
    ├─ short_code (VARCHAR(20) UNIQUE, INDEXED)
    ├─ original_url (TEXT UNIQUE, INDEXED)
    ├─ click_count (BIGINT DEFAULT 0)
    ├─ created_at (TIMESTAMPTZ)
    └─ expiry_date (TIMESTAMPTZ, INDEXED)

    sequence_counters table
    ├─ name (VARCHAR(64) PRIMARY KEY)
    └─ seq (BIGINT DEFAULT 0)

How to Use
===========
**Step 1 — Create a link**::
    link = Link(short_code="1c", original_url="https://example.com", expiry_date=expiry)
    session.add(link)
    await session.commit()

**Step 2 — Query links**::
    result = await session.execute(select(Link).where(Link.short_code == "1c"))
    link = result.scalar_one_or_none()

Key Behaviours
===============
- short_code and original_url are both unique: one link per distinct URL.
- click_count is authoritative only between sync cycles; live counts are in Redis.
- expiry_date is fixed at creation and never extended.
- seq only increases; ranges handed out but never used leave gaps.

Classes:
    Link:  A shortened URL with its durable click count and expiry.
    SequenceCounter:  Named monotonically increasing counter for id ranges.
"""

import datetime

from sqlalchemy import BigInteger, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base
from shortener.timeutils import utcnow

__all__ = ["Link", "SequenceCounter"]


class Link(Base):
    __tablename__ = "links"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, unique=True, index=True, nullable=False)
    click_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    expiry_date: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), index=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Link(id={self.id}, short_code='{self.short_code}', click_count={self.click_count})>"


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    seq: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<SequenceCounter(name='{self.name}', seq={self.seq})>"
