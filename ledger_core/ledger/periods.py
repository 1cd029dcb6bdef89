from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from ledger_core.models.finance import BudgetPeriod, DateRange


def period_window(period: BudgetPeriod, today: date) -> DateRange:
    """
    Window of `period` that contains `today`.

    weekly  -> ISO week, Monday to Sunday
    monthly -> calendar month
    yearly  -> calendar year
    """
    if period == BudgetPeriod.WEEKLY:
        start = today - timedelta(days=today.isoweekday() - 1)
        return DateRange(start=start, end=start + timedelta(days=6))
    if period == BudgetPeriod.YEARLY:
        return DateRange(start=date(today.year, 1, 1), end=date(today.year, 12, 31))

    first = today.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return DateRange(start=first, end=next_month - date.resolution)


def local_today(now: datetime, timezone_name: Optional[str] = None) -> date:
    """Calendar date of `now` in the given timezone (naive datetimes are taken as-is)."""
    if now.tzinfo is None:
        return now.date()
    if not timezone_name or timezone_name == "UTC":
        return now.astimezone(timezone.utc).date()
    return now.astimezone(ZoneInfo(timezone_name)).date()
