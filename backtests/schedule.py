"""Evaluation and rebalance date schedules built from a trading calendar."""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, List, Optional

import pandas as pd

from backtests.core import to_timestamp
from backtests.errors import InvalidSchedule


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


_PERIOD_CODES = {
    Frequency.WEEKLY: "W",
    Frequency.MONTHLY: "M",
    Frequency.QUARTERLY: "Q",
}

PERIODS_PER_YEAR = {
    Frequency.DAILY: 252,
    Frequency.WEEKLY: 52,
    Frequency.MONTHLY: 12,
    Frequency.QUARTERLY: 4,
}


def build_schedule(
    calendar: pd.DatetimeIndex,
    frequency: Frequency | str = Frequency.MONTHLY,
    *,
    start: Optional[Any] = None,
    end: Optional[Any] = None,
    step: int = 1,
) -> pd.DatetimeIndex:
    """Pick evaluation dates from a trading calendar.

    Daily keeps every trading day; coarser frequencies keep the last trading
    day of each week/month/quarter. ``step`` then keeps every Nth date.
    """
    if step < 1:
        raise ValueError("step must be >= 1")
    freq = Frequency(frequency)
    cal = pd.DatetimeIndex(calendar).sort_values().unique()
    if start is not None:
        cal = cal[cal >= to_timestamp(start)]
    if end is not None:
        cal = cal[cal <= to_timestamp(end)]
    if len(cal) == 0:
        return pd.DatetimeIndex([])

    if freq is Frequency.DAILY:
        picked = cal
    else:
        s = pd.Series(cal, index=cal)
        picked = pd.DatetimeIndex(s.groupby(cal.to_period(_PERIOD_CODES[freq])).max().values)
    return picked[::step]


def validate_schedule(dates: Iterable[Any]) -> pd.DatetimeIndex:
    """Rebalance schedules must be non-empty and strictly increasing."""
    idx = pd.DatetimeIndex([to_timestamp(d) for d in dates])
    if len(idx) == 0:
        raise InvalidSchedule("rebalance schedule is empty")
    diffs = idx[1:] - idx[:-1]
    bad: List[pd.Timestamp] = [idx[i + 1] for i, d in enumerate(diffs) if d <= pd.Timedelta(0)]
    if bad:
        raise InvalidSchedule("rebalance schedule must be strictly increasing", date=bad[0])
    return idx
