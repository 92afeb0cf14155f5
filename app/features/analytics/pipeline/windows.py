"""
Window builder.

Turns a named period and a reference instant into the current and previous
comparison windows plus the sub-intervals used for charts. Everything is UTC.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from app.features.analytics.domain.models import (
    ActivityWindow,
    Period,
    SubInterval,
    WindowSet,
    ensure_utc,
)

ONE_MS = timedelta(milliseconds=1)

# period -> (step, count, label format)
_ROLLING_LAYOUTS: dict[Period, tuple[timedelta, int, str]] = {
    Period.LAST_24_HOURS: (timedelta(hours=1), 24, "hourly"),
    Period.LAST_7_DAYS: (timedelta(days=1), 7, "daily"),
    Period.LAST_30_DAYS: (timedelta(days=1), 30, "daily"),
    Period.LAST_3_MONTHS: (timedelta(days=7), 13, "weekly"),
    Period.ALL_TIME: (timedelta(days=1), 30, "daily"),
}

MONTHLY_BUCKETS = 12


def shift_months(ts: datetime, months: int) -> datetime:
    """Move ``ts`` by whole calendar months, clamping the day to the target month."""
    month_index = ts.year * 12 + (ts.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(ts.day, calendar.monthrange(year, month)[1])
    return ts.replace(year=year, month=month, day=day)


def month_start(ts: datetime) -> datetime:
    return ts.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def current_window(period: Period, reference: datetime) -> ActivityWindow:
    reference = ensure_utc(reference)
    if period == Period.LAST_24_HOURS:
        start = reference - timedelta(hours=24)
    elif period == Period.LAST_7_DAYS:
        start = reference - timedelta(days=7)
    elif period == Period.LAST_30_DAYS:
        start = reference - timedelta(days=30)
    elif period == Period.LAST_3_MONTHS:
        start = shift_months(reference, -3)
    elif period == Period.LAST_12_MONTHS:
        start = shift_months(reference, -12)
    else:
        start = None
    return ActivityWindow(start=start, end=reference)


def previous_window(current: ActivityWindow) -> ActivityWindow | None:
    """Window of equal length immediately before ``current``, ending 1ms before it starts."""
    if current.start is None:
        return None
    length = current.end - current.start
    return ActivityWindow(start=current.start - length, end=current.start - ONE_MS)


def trailing_window(period: Period, end: datetime) -> ActivityWindow:
    """A window of ``period``'s length ending at ``end``; All Time stays unbounded."""
    return current_window(period, end)


def format_label(style: str, start: datetime, end: datetime) -> str:
    if style == "hourly":
        return end.strftime("%H:%M")
    if style == "daily":
        return f"{start.strftime('%b')} {start.day}"
    if style == "weekly":
        return f"Week of {start.strftime('%b')} {start.day}"
    return start.strftime("%b %Y")


def build_subintervals(period: Period, reference: datetime) -> tuple[SubInterval, ...]:
    reference = ensure_utc(reference)

    if period == Period.LAST_12_MONTHS:
        # Calendar months; the newest bucket runs from the start of the
        # reference month up to the reference instant.
        anchor = month_start(reference)
        starts = [shift_months(anchor, -offset) for offset in range(MONTHLY_BUCKETS - 1, -1, -1)]
        ends = starts[1:] + [reference]
        return tuple(
            SubInterval(
                window=ActivityWindow(start=start, end=end, end_inclusive=False),
                label=format_label("monthly", start, end),
            )
            for start, end in zip(starts, ends)
        )

    step, count, style = _ROLLING_LAYOUTS[period]
    intervals = []
    for index in range(count, 0, -1):
        start = reference - step * index
        end = start + step
        intervals.append(
            SubInterval(
                window=ActivityWindow(start=start, end=end, end_inclusive=False),
                label=format_label(style, start, end),
            )
        )
    return tuple(intervals)


def build_windows(period: Period | str | None, reference: datetime) -> WindowSet:
    """
    Build the comparison pair and chart sub-intervals for ``period``.

    Unknown period names resolve to the default period.
    """
    if not isinstance(period, Period):
        period, _ = Period.parse(period)
    reference = ensure_utc(reference)
    current = current_window(period, reference)
    return WindowSet(
        period=period,
        reference=reference,
        current=current,
        previous=previous_window(current),
        subintervals=build_subintervals(period, reference),
    )
