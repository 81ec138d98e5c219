"""Fields that no single event carries."""

from __future__ import annotations


def is_expired(expiration: int, observed_time: int) -> bool:
    """Expiration status at `observed_time` (a block timestamp, never wall-clock).

    An expiration of 0 means it was never set and never expires.
    """
    return expiration > 0 and observed_time > expiration
