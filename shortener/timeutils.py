"""UTC time helpers shared by the durable and fast stores.

Expiry timestamps live in two places: as timezone-aware datetimes in the
database and as strings in Redis, where the redirect Lua script compares them
with plain string comparison. Both sides therefore go through `to_iso()`, which
always emits the same fixed-width UTC layout::

    2026-10-18T09:30:00.000000

so that lexicographic order equals chronological order.
"""

import datetime

__all__ = ["ensure_utc", "from_iso", "to_epoch", "to_iso", "utcnow"]

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def ensure_utc(value: datetime.datetime) -> datetime.datetime:
    """Return `value` as an aware UTC datetime.

    Naive values (SQLite drops tzinfo on the way back) are taken to be UTC already.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.UTC)
    return value.astimezone(datetime.UTC)


def to_iso(value: datetime.datetime) -> str:
    return ensure_utc(value).strftime(ISO_FORMAT)


def from_iso(value: str) -> datetime.datetime:
    return ensure_utc(datetime.datetime.fromisoformat(value))


def to_epoch(value: datetime.datetime) -> int:
    return int(ensure_utc(value).timestamp())
