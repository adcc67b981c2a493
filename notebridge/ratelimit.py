"""Process-wide minimum gap between completion-service calls."""

from datetime import datetime, timedelta
from typing import Optional


def can_proceed(last_call_at: Optional[datetime], now: datetime, min_gap_ms: int) -> bool:
    if last_call_at is None:
        return True
    return now - last_call_at >= timedelta(milliseconds=min_gap_ms)


class RateLimiter:
    """Holds the single ``last_call_at`` shared by every user in the loop.

    Owned by the worker and handed to each navigation session, so all
    completion calls across accounts are spaced at least ``min_gap_ms``
    apart.
    """

    def __init__(self, min_gap_ms: int, last_call_at: Optional[datetime] = None) -> None:
        self.min_gap_ms = min_gap_ms
        self.last_call_at = last_call_at

    def can_proceed(self, now: datetime) -> bool:
        return can_proceed(self.last_call_at, now, self.min_gap_ms)

    def remaining(self, now: datetime) -> timedelta:
        if self.last_call_at is None:
            return timedelta(0)
        left = timedelta(milliseconds=self.min_gap_ms) - (now - self.last_call_at)
        return max(left, timedelta(0))

    def record_call(self, now: datetime) -> None:
        self.last_call_at = now
