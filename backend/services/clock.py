"""
PROTRAIN CRM - Clock

Single source of "now" for the billing scheduler.
Every "today" / time-of-day comparison happens in the reference timezone
(config.REFERENCE_TIMEZONE), never in UTC, to avoid off-by-one-day errors
around midnight.
"""

from datetime import date, datetime, timedelta
from typing import Optional

import pytz

from config import REFERENCE_TIMEZONE


class Clock:
    """Wall clock in a fixed timezone."""

    def __init__(self, tz_name: str = REFERENCE_TIMEZONE):
        self.tz = pytz.timezone(tz_name)

    def now(self) -> datetime:
        raise NotImplementedError

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Real time, localized to the reference zone."""

    def now(self) -> datetime:
        return datetime.now(self.tz)


class FixedClock(Clock):
    """
    Frozen clock for tests and time simulation.

    Naive datetimes are interpreted as wall time in the clock's zone.
    advance() lets a test walk through a day without sleeping.
    """

    def __init__(self, current: datetime, tz_name: str = REFERENCE_TIMEZONE):
        super().__init__(tz_name)
        self._current = self._localize(current)

    def _localize(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return self.tz.localize(value)
        return value.astimezone(self.tz)

    def now(self) -> datetime:
        return self._current

    def set(self, value: datetime):
        self._current = self._localize(value)

    def advance(self, delta: Optional[timedelta] = None, **kwargs):
        self._current = self.tz.normalize(self._current + (delta or timedelta(**kwargs)))


# Instance globale
system_clock = SystemClock()
