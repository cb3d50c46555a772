"""Pydantic schemas for request/response validation and cache payloads.

Schema Hierarchy
=================
::
    ShortenRequest (Input)
    └─ url: str (validated URL)

    ShortenResponse (Output)
    ├─ short_code: str
    ├─ short_url: str (computed)
    ├─ original_url: str
    └─ expiry_date: datetime

    LinkStatsResponse (Output)
    ├─ original_url: str
    ├─ short_code: str
    ├─ short_url: str (computed)
    ├─ clicks: int
    ├─ created_at: datetime
    └─ expiry_date: datetime

    CachedLink (Redis payload, immutable fields only)
    ├─ id / short_code / original_url
    ├─ created_at
    └─ expiry_date (seed value for the hot path)

Key Behaviours
===============
- URL validation uses the validators library for RFC compliance.
- CachedLink has no click count: live counts are owned by the hot path keys.
- Models are configured for ORM attribute mapping.

Classes:
    ShortenRequest:  Input schema for URL shortening requests.
    ShortenResponse:  Output schema for created (or reused) short URLs.
    LinkStats:  Service-level statistics for a short code.
    LinkStatsResponse:  Output schema for URL statistics.
    ResolvedLink:  Result of a successful redirect resolution.
    CachedLink:  Redis cache payload for link metadata.
    HealthResponse:  Output schema for health checks.
"""

import datetime

import validators
from pydantic import BaseModel, field_validator

from shortener.enums import HealthStatus
from shortener.timeutils import ensure_utc

__all__ = [
    "CachedLink",
    "HealthResponse",
    "LinkStats",
    "LinkStatsResponse",
    "ResolvedLink",
    "ShortenRequest",
    "ShortenResponse",
]


class ShortenRequest(BaseModel):
    url: str

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not validators.url(v):
            raise ValueError("Invalid URL provided")
        return v


class CachedLink(BaseModel):
    """Redis cache payload for a shortened URL."""

    id: int
    short_code: str
    original_url: str
    created_at: datetime.datetime
    expiry_date: datetime.datetime

    model_config = {"from_attributes": True, "frozen": True}

    @field_validator("created_at", "expiry_date")
    @classmethod
    def normalize_timestamp(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_utc(v)


class ShortenResponse(BaseModel):
    short_code: str
    short_url: str
    original_url: str
    expiry_date: datetime.datetime


class LinkStats(BaseModel):
    original_url: str
    short_code: str
    clicks: int
    created_at: datetime.datetime
    expiry_date: datetime.datetime


class LinkStatsResponse(LinkStats):
    short_url: str


class ResolvedLink(BaseModel):
    short_code: str
    original_url: str
    clicks: int
    degraded: bool = False


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
