"""
Period engine: canonical sub-periods and run-rate math.

All functions are pure. Windows are inclusive on both ends.

    >>> w = compute_windows(date(2025, 3, 31))
    >>> w.mtd.as_str_tuple()
    ('2025-03-01', '2025-03-31')
    >>> w.prev_month_mtd.as_str_tuple()
    ('2025-02-01', '2025-02-28')
"""
import calendar
import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterator, Optional, Tuple


def days_in_month(day: date) -> int:
    """Number of days in the month containing ``day``."""
    return calendar.monthrange(day.year, day.month)[1]


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    return day.replace(day=days_in_month(day))


def shift_months(day: date, months: int) -> date:
    """Shift by whole calendar months, clipping the day to the target month length."""
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def shift_years(day: date, years: int) -> date:
    """Shift by whole years; Feb 29 becomes Feb 28 in non-leap years."""
    return shift_months(day, years * 12)


@dataclass(frozen=True)
class PeriodWindow:
    """Inclusive date interval."""
    start: date
    end: date

    @property
    def days(self) -> int:
        """Number of calendar days covered (0 for an inverted window)."""
        return max((self.end - self.start).days + 1, 0)

    @property
    def start_str(self) -> str:
        """Start date as YYYY-MM-DD string."""
        return self.start.strftime("%Y-%m-%d")

    @property
    def end_str(self) -> str:
        """End date as YYYY-MM-DD string."""
        return self.end.strftime("%Y-%m-%d")

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def iter_days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    def as_tuple(self) -> Tuple[date, date]:
        return (self.start, self.end)

    def as_str_tuple(self) -> Tuple[str, str]:
        return (self.start_str, self.end_str)


@dataclass(frozen=True)
class PeriodWindows:
    """The comparison windows every period metric is derived from."""
    as_of: date
    mtd: PeriodWindow
    prev_month_mtd: PeriodWindow
    prev_month_full: PeriodWindow
    ytd: PeriodWindow
    last_year_same_window: PeriodWindow
    last_year_ytd: PeriodWindow
    last_year_full: PeriodWindow

    @property
    def days_in_month(self) -> int:
        return days_in_month(self.as_of)

    @property
    def elapsed_days(self) -> int:
        """Elapsed days of the current month, never zero."""
        return elapsed_days(self.mtd.start, self.mtd.end)

    @property
    def prev_elapsed_days(self) -> int:
        return elapsed_days(self.prev_month_mtd.start, self.prev_month_mtd.end)

    def named(self) -> Dict[str, PeriodWindow]:
        """Windows by name, in a stable order."""
        return {
            "mtd": self.mtd,
            "prev_month_mtd": self.prev_month_mtd,
            "prev_month_full": self.prev_month_full,
            "ytd": self.ytd,
            "last_year_same_window": self.last_year_same_window,
            "last_year_ytd": self.last_year_ytd,
            "last_year_full": self.last_year_full,
        }

    @property
    def span(self) -> PeriodWindow:
        """Smallest window covering every named window."""
        windows = self.named().values()
        return PeriodWindow(
            min(w.start for w in windows),
            max(w.end for w in windows),
        )


def compute_windows(as_of: date) -> PeriodWindows:
    """
    Compute the canonical windows for an as-of date.

    - mtd: 1st of the month through ``as_of``
    - prev_month_mtd: same day range one month back, clipped to that month
    - prev_month_full: the whole previous month
    - ytd: Jan 1 through ``as_of``
    - last_year_same_window: mtd shifted back one year
    - last_year_ytd: ytd shifted back one year
    - last_year_full: Jan 1 - Dec 31 of the previous year
    """
    prev_month_day = shift_months(as_of, -1)
    last_year_day = shift_years(as_of, -1)

    return PeriodWindows(
        as_of=as_of,
        mtd=PeriodWindow(month_start(as_of), as_of),
        prev_month_mtd=PeriodWindow(month_start(prev_month_day), prev_month_day),
        prev_month_full=PeriodWindow(month_start(prev_month_day), month_end(prev_month_day)),
        ytd=PeriodWindow(date(as_of.year, 1, 1), as_of),
        last_year_same_window=PeriodWindow(month_start(last_year_day), last_year_day),
        last_year_ytd=PeriodWindow(date(last_year_day.year, 1, 1), last_year_day),
        last_year_full=PeriodWindow(date(as_of.year - 1, 1, 1), date(as_of.year - 1, 12, 31)),
    )


def elapsed_days(window_start: date, window_end: date) -> int:
    """Inclusive day count of a window, floored at 1."""
    return max((window_end - window_start).days + 1, 1)


def drr(value: float, window_start: date, window_end: date) -> float:
    """Daily run rate: total over the window divided by its elapsed days."""
    return (value or 0.0) / elapsed_days(window_start, window_end)


def projected(drr_value: float, month_days: int) -> float:
    """
    Month-end projection as a straight-line extrapolation of the run rate.

    No seasonality or weekday adjustment is applied.
    """
    return (drr_value or 0.0) * month_days


def delta_percent(current: Optional[float], baseline: Optional[float]) -> Optional[float]:
    """
    Percentage change of ``current`` against ``baseline``.

    Returns None when the baseline is None, zero or NaN.
    """
    if baseline is None or baseline == 0 or math.isnan(baseline):
        return None
    return ((current or 0.0) - baseline) * 100 / baseline
