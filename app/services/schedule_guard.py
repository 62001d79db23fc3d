"""
app/services/schedule_guard.py — Operational guard for scheduled pipeline runs.

Two checks, both bypassed by force=True:
  1. quiet hours — no scheduled runs between quiet_hours_start and quiet_hours_end
     (local time in scheduler_timezone; the window may wrap midnight)
  2. minimum interval — a tenant's last recorded run must be old enough

The guard sits in front of the scheduled-run endpoint and the CLI; the
pipeline itself never consults it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from app.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuardDecision:
    allowed: bool
    reason: Optional[str] = None
    next_allowed_at: Optional[datetime] = None


def in_quiet_hours(local_hour: int, start: int, end: int) -> bool:
    """True if local_hour falls inside [start, end). start == end disables the window."""
    if start == end:
        return False
    if start < end:
        return start <= local_hour < end
    return local_hour >= start or local_hour < end


class ScheduleGuard:
    def __init__(
        self,
        last_run_lookup: Callable[[str], Optional[datetime]] | None = None,
        quiet_hours_start: int | None = None,
        quiet_hours_end: int | None = None,
        timezone_name: str | None = None,
        min_interval_minutes: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.last_run_lookup = last_run_lookup
        self.quiet_hours_start = settings.quiet_hours_start if quiet_hours_start is None else quiet_hours_start
        self.quiet_hours_end = settings.quiet_hours_end if quiet_hours_end is None else quiet_hours_end
        self.tz = ZoneInfo(timezone_name or settings.scheduler_timezone)
        self.min_interval = timedelta(
            minutes=settings.min_run_interval_minutes if min_interval_minutes is None else min_interval_minutes
        )
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _quiet_end_after(self, local_now: datetime) -> datetime:
        end = local_now.replace(hour=self.quiet_hours_end, minute=0, second=0, microsecond=0)
        if end <= local_now:
            end += timedelta(days=1)
        return end

    def check(self, tenant: str, force: bool = False) -> GuardDecision:
        if force:
            logger.info("Schedule guard bypassed (force) for %s.", tenant)
            return GuardDecision(allowed=True)

        now = self.clock()
        local_now = now.astimezone(self.tz)

        if in_quiet_hours(local_now.hour, self.quiet_hours_start, self.quiet_hours_end):
            reason = (
                f"quiet hours {self.quiet_hours_start:02d}:00–{self.quiet_hours_end:02d}:00 "
                f"({self.tz.key})"
            )
            logger.info("Scheduled run for %s refused: %s.", tenant, reason)
            return GuardDecision(allowed=False, reason=reason, next_allowed_at=self._quiet_end_after(local_now))

        if self.last_run_lookup is not None and self.min_interval:
            last = self.last_run_lookup(tenant)
            if last is not None and now - last < self.min_interval:
                next_at = last + self.min_interval
                reason = f"last run {int((now - last).total_seconds() // 60)} min ago, minimum interval not reached"
                logger.info("Scheduled run for %s refused: %s.", tenant, reason)
                return GuardDecision(allowed=False, reason=reason, next_allowed_at=next_at)

        return GuardDecision(allowed=True)
