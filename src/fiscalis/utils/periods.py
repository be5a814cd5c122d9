"""Calendar arithmetic for obligation windows and deadlines."""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


@dataclass(frozen=True)
class Period:
    index: int
    label: str
    start: date
    end: date
    deadline: date


def last_day_of_month(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def add_months(day: date, months: int) -> date:
    """Shift a date by whole months, clamping the day to the target month's length."""
    total = day.year * 12 + (day.month - 1) + months
    year, month0 = divmod(total, 12)
    month = month0 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def add_years(day: date, years: int) -> date:
    return add_months(day, 12 * years)


def parse_year_month(value: str | date) -> tuple[int, int]:
    """Accept a date or a 'YYYY-MM' / 'YYYY-MM-DD' string and return (year, month)."""
    if isinstance(value, date):
        return value.year, value.month
    year, month = str(value).split("-")[:2]
    return int(year), int(month)


def quarter_periods(year: int) -> list[Period]:
    """The 4 calendar quarters, each due the last day of the month following its end.

    Q4 is due on January 31st of the next year.
    """
    periods = []
    for q in range(1, 5):
        first_month = 3 * (q - 1) + 1
        start = date(year, first_month, 1)
        end = last_day_of_month(year, first_month + 2)
        due = add_months(date(year, first_month + 2, 1), 1)
        deadline = last_day_of_month(due.year, due.month)
        periods.append(Period(q, f"Q{q} {year}", start, end, deadline))
    return periods


def month_periods(year: int) -> list[Period]:
    """The 12 months of a year, each due its own last calendar day."""
    periods = []
    for m in range(1, 13):
        end = last_day_of_month(year, m)
        periods.append(Period(m, f"{MONTH_NAMES[m - 1]} {year}", date(year, m, 1), end, end))
    return periods
