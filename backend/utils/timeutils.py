"""Naive-UTC calendar helpers shared by the analytics services."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pandas as pd


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(value: datetime) -> datetime:
    return datetime(value.year, value.month, value.day)


def start_of_month(value: datetime) -> datetime:
    return datetime(value.year, value.month, 1)


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic; day-of-month is clipped to the target month."""
    return (pd.Timestamp(value) + pd.DateOffset(months=months)).to_pydatetime()


def add_years(value: datetime, years: int) -> datetime:
    return (pd.Timestamp(value) + pd.DateOffset(years=years)).to_pydatetime()


def month_windows(anchor: datetime, months: int) -> list[tuple[datetime, datetime]]:
    """Return ``months`` calendar months ending with the month containing ``anchor``.

    Each window runs from the 1st at 00:00 to one microsecond before the next
    month starts. Oldest month first.
    """
    last_month = start_of_month(anchor)
    windows: list[tuple[datetime, datetime]] = []
    for offset in range(months - 1, -1, -1):
        month_start = add_months(last_month, -offset)
        month_end = add_months(month_start, 1) - timedelta(microseconds=1)
        windows.append((month_start, month_end))
    return windows
