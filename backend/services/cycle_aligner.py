"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  PROTRAIN CRM - Cycle Aligner                                                ║
║                                                                              ║
║  Pure date arithmetic for recurring billing cycles. No I/O, no clock.        ║
║                                                                              ║
║  OCCURRENCE = anchor + k * interval months (k entier, positif ou negatif)    ║
║                                                                              ║
║  align() retourne la premiere occurrence >= today:                           ║
║  - anchor < today  -> on avance jusqu'a today ou apres (rattrapage)          ║
║  - anchor > today  -> on recule tant que l'occurrence precedente >= today    ║
║  - anchor == today ou interval <= 0 -> anchor inchange                       ║
║                                                                              ║
║  DEBORDEMENT DE MOIS: clamp au dernier jour du mois cible                    ║
║  (31 janvier + 1 mois = 28/29 fevrier). Chaque candidat est calcule depuis   ║
║  l'ancre fournie, jamais en chainant les pas.                                ║
║                                                                              ║
║  anchor_day = jour du cycle (anchorDay persiste). Une ancre clampee          ║
║  (29 fevrier, anchor_day=31) redonne le 31 mars au pas suivant.              ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import date, datetime
from typing import Any, Optional

from dateutil.relativedelta import relativedelta


def add_months(value: date, months: int, day: Optional[int] = None) -> date:
    """
    Calendar month addition, day-of-month clamped to the target month.
    With `day`, the result lands on that day of the target month (clamped too).
    """
    return value + relativedelta(months=months, day=day)


def is_month_end(value: date) -> bool:
    return (value + relativedelta(days=1)).month != value.month


def cycle_day(anchor_date: date, anchor_day: Optional[int] = None) -> int:
    """
    Day-of-month the cycle bills on. A stored anchor_day is honoured only if
    anchor_date is that day, or its clamp to a shorter month; otherwise the
    anchor was edited upstream and its own day wins.
    """
    if anchor_day and 1 <= anchor_day <= 31:
        if anchor_day == anchor_date.day:
            return anchor_day
        if anchor_day > anchor_date.day and is_month_end(anchor_date):
            return anchor_day
    return anchor_date.day


def parse_date(value: Any) -> date:
    """
    Accepts a date, a datetime or an ISO string ("2024-01-15" or
    "2024-01-15T00:00:00"). Time-of-day is dropped.
    Raises ValueError for anything else.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        head = value.strip().split("T")[0].split(" ")[0]
        return date.fromisoformat(head)
    raise ValueError(f"Not a calendar date: {value!r}")


def parse_interval(value: Any) -> int:
    """Interval in months; absent/empty means one-off (0). Negative is invalid."""
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValueError(f"Invalid interval: {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"Invalid interval: {value!r}")
        value = int(value)
    try:
        months = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid interval: {value!r}")
    if months < 0:
        raise ValueError(f"Invalid interval: {value!r}")
    return months


def align(anchor_date: date, interval_months: int, today: date, anchor_day: Optional[int] = None) -> date:
    """
    Occurrence of the cycle the scheduler must look at for `today`.

    The step count is estimated from the month distance so that an anchor
    several years old does not replay every cycle.
    """
    if not interval_months or interval_months <= 0:
        return anchor_date
    if anchor_date == today:
        return anchor_date

    day = cycle_day(anchor_date, anchor_day)
    months_apart = (today.year - anchor_date.year) * 12 + (today.month - anchor_date.month)
    steps = months_apart // interval_months
    candidate = add_months(anchor_date, steps * interval_months, day)

    while candidate < today:
        steps += 1
        candidate = add_months(anchor_date, steps * interval_months, day)

    while True:
        previous = add_months(anchor_date, (steps - 1) * interval_months, day)
        if previous < today:
            return candidate
        steps -= 1
        candidate = previous


def days_until(occurrence: date, today: date) -> int:
    return (occurrence - today).days


def describe_cycle(interval_months: int) -> str:
    if not interval_months or interval_months <= 0:
        return "One-off"
    if interval_months == 1:
        return "Monthly"
    if interval_months == 12:
        return "Yearly"
    return f"Every {interval_months} months"
