"""Fast-store key schema.

::
    url:<code>:clicks        integer click counter
    url:<code>:expiry        canonical ISO-8601 UTC expiry
    dirty_urls               codes touched since the last sync
    dirty_urls:processing    set claimed by the running sync cycle
    rate_limit:<client_id>   per-client window counter (self-expiring)
    link:code:<code>         cached link metadata by short code
    link:url:<sha256>        cached link metadata by original URL
"""

import hashlib

__all__ = [
    "DIRTY_SET_KEY",
    "PROCESSING_SET_KEY",
    "click_key",
    "expiry_key",
    "link_by_code_key",
    "link_by_url_key",
    "rate_limit_key",
]

DIRTY_SET_KEY = "dirty_urls"
PROCESSING_SET_KEY = "dirty_urls:processing"


def click_key(short_code: str) -> str:
    return f"url:{short_code}:clicks"


def expiry_key(short_code: str) -> str:
    return f"url:{short_code}:expiry"


def rate_limit_key(client_id: str) -> str:
    return f"rate_limit:{client_id}"


def link_by_code_key(short_code: str) -> str:
    return f"link:code:{short_code}"


def link_by_url_key(original_url: str) -> str:
    # URLs can be long and contain arbitrary bytes; hash them into a fixed-size key.
    digest = hashlib.sha256(original_url.encode("utf-8")).hexdigest()
    return f"link:url:{digest}"
