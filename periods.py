from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from models import TransactionType


@dataclass(frozen=True)
class Period:
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


@dataclass(frozen=True)
class FinanceFilters:
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    tipo: Optional[TransactionType] = None
    categoria: Optional[str] = None

    @property
    def has_date_range(self) -> bool:
        return self.start_date is not None and self.end_date is not None

    def as_strings(self) -> dict[str, Optional[str]]:
        return {
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }


def parse_filters(
    start: Optional[str] = None,
    end: Optional[str] = None,
    tipo: Optional[str] = None,
    categoria: Optional[str] = None,
) -> FinanceFilters:
    start_date = date.fromisoformat(start) if start else None
    end_date = date.fromisoformat(end) if end else None
    if start_date and end_date and start_date > end_date:
        raise ValueError("Start date must be before end date")
    return FinanceFilters(
        start_date=start_date,
        end_date=end_date,
        tipo=TransactionType(tipo) if tipo else None,
        categoria=categoria or None,
    )


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def shift_months(base: date, months: int) -> date:
    """Move ``months`` calendar months, snapping to the last day when needed."""
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(base.day, days_in_month(year, month)))


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    first = month_start(d)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def add_months(d: date, count: int) -> date:
    """First day of the month ``count`` months away from ``d``."""
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_period(d: date) -> Period:
    return Period(month_start(d), month_end(d))


def comparison_periods(filters: FinanceFilters, today: date) -> tuple[Period, Period]:
    """Return (current, previous) windows used for period-over-period variance.

    With an explicit start/end the previous window is the span of the same
    number of days ending the day before the current start. Otherwise this
    calendar month is compared to the last one.
    """
    if filters.has_date_range:
        current = Period(filters.start_date, filters.end_date)
        span = filters.end_date - filters.start_date
        prev_end = filters.start_date - timedelta(days=1)
        return current, Period(prev_end - span, prev_end)

    current = month_period(today)
    return current, month_period(add_months(today, -1))
