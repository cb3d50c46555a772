"""Exceptions raised by the URL shortener core.

Classes:
    ShortenerError:
        Generic base class for service exceptions.

    LinkNotFoundError:
        Raised when a short code does not exist in the durable store.

    LinkExpiredError:
        Raised when a short code exists but its expiry date has passed.

    TransientStoreError:
        Raised when the fast store is unreachable, erroring or timed out.
        Callers recover locally (durable fallback, fail-open).

    AllocationError:
        Raised when an id range cannot be reserved from the durable store.
        Never recovered: reusing an id would break uniqueness.

    SyncEntryError:
        Raised when a single code cannot be reconciled during a sync cycle.

Example:
    >>> from shortener.exceptions import LinkExpiredError
    >>> raise LinkExpiredError("1c")
    Traceback (most recent call last):
        ...
    shortener.exceptions.LinkExpiredError: Short code '1c' has expired
"""

__all__ = [
    "AllocationError",
    "LinkExpiredError",
    "LinkNotFoundError",
    "ShortenerError",
    "SyncEntryError",
    "TransientStoreError",
]


class ShortenerError(Exception):
    """Generic base class for service exceptions."""

    pass


class LinkNotFoundError(ShortenerError):
    def __init__(self, short_code: str):
        super().__init__(f"Short code '{short_code}' not found")
        self.short_code = short_code


class LinkExpiredError(ShortenerError):
    def __init__(self, short_code: str):
        super().__init__(f"Short code '{short_code}' has expired")
        self.short_code = short_code


class TransientStoreError(ShortenerError):
    """Fast store unavailable, erroring or timed out."""

    pass


class AllocationError(ShortenerError):
    """Durable store failed while reserving an id range."""

    pass


class SyncEntryError(ShortenerError):
    def __init__(self, short_code: str, reason: str):
        super().__init__(f"Sync failed for '{short_code}': {reason}")
        self.short_code = short_code
        self.reason = reason
