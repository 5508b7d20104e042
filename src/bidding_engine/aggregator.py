"""
Metric Aggregator

Rolls daily PerformanceRows up into per-target sums for the four trailing
windows used by bid optimization: T0 (since last bid change), D30, D365 and
Lifetime.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .ingestion import PerformanceRow, TargetKey
from .utils.units import ZERO


class Window(str, Enum):
    """Trailing aggregation windows, in blending order"""
    T0 = 't0'
    D30 = 'd30'
    D365 = 'd365'
    LIFETIME = 'lifetime'


WINDOW_DAYS = {
    Window.D30: 30,
    Window.D365: 365,
}


@dataclass(frozen=True)
class WindowMetrics:
    """Summed metrics for one target over one window"""
    window: Window
    clicks: int = 0
    cost: Decimal = ZERO
    sales: Decimal = ZERO
    orders: int = 0

    @property
    def is_empty(self) -> bool:
        return self.clicks == 0 and self.cost == ZERO and self.sales == ZERO and self.orders == 0


def sum_rows(window: Window, rows: Iterable[PerformanceRow]) -> WindowMetrics:
    clicks = 0
    cost = ZERO
    sales = ZERO
    orders = 0
    for row in rows:
        clicks += row.clicks
        cost += row.cost
        sales += row.sales
        orders += row.orders
    return WindowMetrics(window, clicks, cost, sales, orders)


def aggregate_windows(rows: Iterable[PerformanceRow], today: date,
                      last_change_date: Optional[date] = None) -> Dict[Window, WindowMetrics]:
    """
    Aggregate one target's rows into the four trailing windows

    Args:
        rows: Daily rows for a single target
        today: Reference date for the trailing windows
        last_change_date: Date of the target's most recent bid change, if any

    Returns:
        Ordered mapping of Window -> WindowMetrics. With no recorded change,
        T0 covers the whole history and equals Lifetime.
    """
    rows = list(rows)
    windows: Dict[Window, WindowMetrics] = OrderedDict()

    if last_change_date is None:
        t0_rows = rows
    else:
        t0_rows = [r for r in rows if r.date >= last_change_date]
    windows[Window.T0] = sum_rows(Window.T0, t0_rows)

    for window, days in WINDOW_DAYS.items():
        cutoff = today - timedelta(days=days)
        windows[window] = sum_rows(window, (r for r in rows if r.date >= cutoff))

    windows[Window.LIFETIME] = sum_rows(Window.LIFETIME, rows)
    return windows


def combine_window(rows: Iterable[PerformanceRow]) -> WindowMetrics:
    """Single combined window over every row given (search-term and placement variants)"""
    return sum_rows(Window.LIFETIME, rows)


def group_rows_by_target(rows: Iterable[PerformanceRow]) -> Dict[TargetKey, List[PerformanceRow]]:
    """Group rows by target, each group sorted by date"""
    groups: Dict[TargetKey, List[PerformanceRow]] = {}
    for row in rows:
        groups.setdefault(row.key, []).append(row)
    for group in groups.values():
        group.sort(key=lambda r: r.date)
    return groups


def latest_bid(rows: List[PerformanceRow]) -> Optional[Decimal]:
    """Most recent non-null bid snapshot in a date-sorted group"""
    for row in reversed(rows):
        if row.current_bid is not None:
            return row.current_bid
    return None
