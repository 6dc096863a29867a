"""Per-minute and per-day call budget for external analysis providers.

Daily counts reset when the calendar day changes in the provider's reference
time zone, which is when the provider itself resets its free-tier quota.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

import redis

from emergency_connect.services.counters import CounterStore

logger = logging.getLogger(__name__)

MINUTE_SECONDS = 60.0


@dataclass(frozen=True)
class QuotaUsage:
    """Current usage against the configured ceilings."""

    daily_count: int
    daily_limit: int
    minute_count: int
    minute_limit: int
    day_key: str


class QuotaGuard:
    """Tracks calls made to one provider; never raises."""

    def __init__(
        self,
        store: CounterStore,
        name: str,
        *,
        per_minute: int = 8,
        per_day: int = 200,
        timezone: str = "America/Los_Angeles",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.name = name
        self.per_minute = per_minute
        self.per_day = per_day
        self._tz = ZoneInfo(timezone)
        self._clock = clock
        self._minute_key = f"quota:{name}:minute"
        self._count_key = f"quota:{name}:count"
        self._day_key = f"quota:{name}:day"

    def day_key(self) -> str:
        """Return today's date in the reference time zone."""
        return datetime.fromtimestamp(self._clock(), tz=self._tz).strftime("%Y-%m-%d")

    def _reset_daily_if_needed(self) -> None:
        today = self.day_key()
        if self._store.get(self._day_key) != today:
            self._store.set(self._day_key, today)
            self._store.set(self._count_key, "0")

    def _prune_minute_window(self) -> list[float]:
        cutoff = self._clock() - MINUTE_SECONDS
        recent = [t for t in self._store.timestamps(self._minute_key) if t > cutoff]
        self._store.replace_timestamps(self._minute_key, recent)
        return recent

    def _daily_count(self) -> int:
        return int(self._store.get(self._count_key) or 0)

    def allowed(self) -> bool:
        """Return True if another call fits inside both budgets.

        An unreachable counter store denies the call.
        """
        try:
            self._reset_daily_if_needed()
            window = self._prune_minute_window()
            daily = self._daily_count()
        except redis.RedisError as e:
            logger.warning("Quota store unavailable for %s; denying call: %s", self.name, e)
            return False

        if daily >= self.per_day:
            logger.warning("Daily quota reached for %s (%d/%d)", self.name, daily, self.per_day)
            return False

        if len(window) >= self.per_minute:
            logger.warning(
                "Per-minute quota reached for %s (%d/%d)",
                self.name,
                len(window),
                self.per_minute,
            )
            return False

        return True

    def record(self) -> None:
        """Count one call against both budgets."""
        try:
            self._reset_daily_if_needed()
            self._store.incr(self._count_key)
            self._store.append_timestamp(self._minute_key, self._clock())
        except redis.RedisError as e:
            logger.warning("Could not record quota usage for %s: %s", self.name, e)

    def usage(self) -> QuotaUsage:
        """Return a usage snapshot for monitoring."""
        self._reset_daily_if_needed()
        window = self._prune_minute_window()
        return QuotaUsage(
            daily_count=self._daily_count(),
            daily_limit=self.per_day,
            minute_count=len(window),
            minute_limit=self.per_minute,
            day_key=self.day_key(),
        )
