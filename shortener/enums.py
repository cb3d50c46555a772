"""Shared enums for the URL shortener service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import IntEnum, StrEnum

__all__ = ["CacheStatus", "HealthStatus", "RequestStatus", "TouchResult"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    DEGRADED = "degraded"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class TouchResult(IntEnum):
    """Sentinel replies of the redirect script (real click counts are positive)."""

    EXPIRED = -1
    SEED_REQUIRED = -2
