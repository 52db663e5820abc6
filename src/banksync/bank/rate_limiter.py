"""Hourly API call budget for the bank API.

UP Bank allows 1000 calls per hour. Calls are counted per hour window in the
api_usage table so that every worker and process shares one budget. A safety
margin is kept back for critical calls.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from banksync.config import SyncConfig
from banksync.database.base import Database
from banksync.utils.date_parser import utcnow

logger = logging.getLogger(__name__)

HIGH_USAGE_RATIO = 0.9
USAGE_RETENTION = timedelta(hours=24)


def hour_window(moment: datetime) -> datetime:
    """Round a timestamp down to the start of its hour."""
    return moment.replace(minute=0, second=0, microsecond=0)


class ApiUsageTracker:
    """Track and query API calls made in the current hour."""

    def __init__(
        self,
        db: Database,
        config: Optional[SyncConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize usage tracker.

        Args:
            db: Database instance
            config: Supplies hourly_call_limit and safety_margin
            clock: Returns the current naive UTC time
        """
        self.db = db
        self.config = config or SyncConfig()
        self.clock = clock

    @property
    def limit(self) -> int:
        return self.config.hourly_call_limit

    def track_call(self, count: int = 1) -> int:
        """Record calls against the current hour. Returns calls used so far."""
        used = self.db.increment_api_usage(hour_window(self.clock()), count, self.limit)
        logger.debug("API calls: %d/%d this hour", used, self.limit)
        return used

    def calls_used(self) -> int:
        return self.db.get_api_usage(hour_window(self.clock()))

    def remaining_calls(self) -> int:
        """Calls left in the current hour, never negative."""
        return max(0, self.limit - self.calls_used())

    def can_make_call(self, count: int = 1) -> bool:
        """True if count calls fit in the budget while keeping the safety margin."""
        return self.remaining_calls() >= count + self.config.safety_margin

    def is_high_usage(self) -> bool:
        """True once more than 90% of the hourly budget is spent."""
        return self.calls_used() > self.limit * HIGH_USAGE_RATIO

    def usage_stats(self) -> dict:
        """Usage of the current hour window."""
        used = self.calls_used()
        return {
            "calls_used": used,
            "calls_limit": self.limit,
            "remaining": max(0, self.limit - used),
            "percent_used": round(used / self.limit * 100),
        }

    def seconds_until_reset(self) -> float:
        """Seconds until the next hour window opens."""
        now = self.clock()
        return (hour_window(now) + timedelta(hours=1) - now).total_seconds()

    def cleanup(self) -> int:
        """Delete counters older than 24 hours. Returns rows removed."""
        removed = self.db.delete_api_usage_before(self.clock() - USAGE_RETENTION)
        if removed:
            logger.info("Cleaned up %d old API usage records", removed)
        return removed
