"""Per-provider minimum-interval rate limiter.

Keeps one time-bounded entry per provider id recording when the provider
was last called.  Shared between the scheduler and on-demand endpoints, so
all access goes through a lock.
"""

import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 10


def _system_clock() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Entry:
    last_call: datetime
    expires_at: datetime


class RateLimiter:
    """Allows a provider call only if the previous one is at least N minutes old."""

    def __init__(
        self,
        clock: Callable[[], datetime] = _system_clock,
        default_interval_minutes: int = DEFAULT_INTERVAL_MINUTES,
    ):
        self._clock = clock
        self._default_interval = default_interval_minutes
        self._entries: dict[int, _Entry] = {}
        self._lock = threading.Lock()

    def _interval(self, interval_minutes: Optional[int]) -> timedelta:
        minutes = interval_minutes if interval_minutes is not None else self._default_interval
        return timedelta(minutes=minutes)

    def _live_entry(self, provider_id: int, now: datetime) -> Optional[_Entry]:
        entry = self._entries.get(provider_id)
        if entry is not None and now >= entry.expires_at:
            del self._entries[provider_id]
            return None
        return entry

    def check_allowed(self, provider_id: int, interval_minutes: Optional[int] = None) -> bool:
        """True if no call is recorded within the interval. No side effect on the window."""
        now = self._clock()
        with self._lock:
            entry = self._live_entry(provider_id, now)
            if entry is None:
                return True
            allowed = now - entry.last_call >= self._interval(interval_minutes)
        if not allowed:
            logger.debug("Rate limit: provider %s denied", provider_id)
        return allowed

    def record_call(self, provider_id: int, interval_minutes: Optional[int] = None) -> None:
        now = self._clock()
        with self._lock:
            self._entries[provider_id] = _Entry(
                last_call=now,
                expires_at=now + self._interval(interval_minutes),
            )

    def retry_after(self, provider_id: int, interval_minutes: Optional[int] = None) -> int:
        """Seconds until the provider may be called again (0 if allowed now)."""
        now = self._clock()
        with self._lock:
            entry = self._live_entry(provider_id, now)
            if entry is None:
                return 0
            remaining = self._interval(interval_minutes) - (now - entry.last_call)
        return max(0, math.ceil(remaining.total_seconds()))

    def reset(self, provider_id: Optional[int] = None) -> None:
        with self._lock:
            if provider_id is None:
                self._entries.clear()
            else:
                self._entries.pop(provider_id, None)

