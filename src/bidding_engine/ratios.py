"""
Ratio Calculator

Derives ACOS (cost / sales), CPC, CVR and ROAS from window sums and the
click-volume confidence tier.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Dict, Mapping, Optional

from .aggregator import Window, WindowMetrics
from .utils.units import HUNDRED, ZERO

MIN_CLICKS_FOR_RATIO = 30


class ConfidenceTier(IntEnum):
    """Statistical reliability of a target, ordered by lifetime click volume"""
    LOW = 0
    OK = 1
    GOOD = 2
    HIGH = 3
    EXTREME = 4

    @classmethod
    def from_clicks(cls, clicks: int) -> 'ConfidenceTier':
        if clicks >= 1000:
            return cls.EXTREME
        if clicks >= 300:
            return cls.HIGH
        if clicks >= 100:
            return cls.GOOD
        if clicks >= 30:
            return cls.OK
        return cls.LOW

    @property
    def label(self) -> str:
        return 'OK' if self is ConfidenceTier.OK else self.name.capitalize()


class RatioStatus(str, Enum):
    DEFINED = 'defined'
    # Material clicks and no sales: excluded from blending, drives no-sales handling
    UNBOUNDED_HIGH = 'unbounded_high'
    UNDEFINED = 'undefined'


@dataclass(frozen=True)
class WindowRatio:
    """Ratios for one window"""
    window: Window
    status: RatioStatus
    value: Optional[Decimal]
    clicks: int
    cost: Decimal
    sales: Decimal
    orders: int
    cpc: Decimal
    cvr: Decimal
    roas: Decimal

    @property
    def usable(self) -> bool:
        return self.status is RatioStatus.DEFINED

    @property
    def is_unbounded(self) -> bool:
        return self.status is RatioStatus.UNBOUNDED_HIGH


def calculate_cpc(cost: Decimal, clicks: int) -> Decimal:
    if clicks == 0:
        return ZERO
    return cost / clicks


def calculate_cvr(orders: int, clicks: int) -> Decimal:
    if clicks == 0:
        return ZERO
    return Decimal(orders) / clicks * HUNDRED


def calculate_roas(sales: Decimal, cost: Decimal) -> Decimal:
    if cost == 0:
        return ZERO
    return sales / cost


def calculate_ratio(metrics: WindowMetrics,
                    min_clicks: int = MIN_CLICKS_FOR_RATIO) -> WindowRatio:
    """
    Calculate the cost-to-sales ratio for a window

    Below ``min_clicks`` the window carries no signal at all, even with sales.
    """
    if metrics.clicks < min_clicks:
        status, value = RatioStatus.UNDEFINED, None
    elif metrics.sales > 0:
        status, value = RatioStatus.DEFINED, metrics.cost / metrics.sales
    else:
        status, value = RatioStatus.UNBOUNDED_HIGH, None

    return WindowRatio(
        window=metrics.window,
        status=status,
        value=value,
        clicks=metrics.clicks,
        cost=metrics.cost,
        sales=metrics.sales,
        orders=metrics.orders,
        cpc=calculate_cpc(metrics.cost, metrics.clicks),
        cvr=calculate_cvr(metrics.orders, metrics.clicks),
        roas=calculate_roas(metrics.sales, metrics.cost),
    )


def calculate_window_ratios(windows: Mapping[Window, WindowMetrics],
                            min_clicks: int = MIN_CLICKS_FOR_RATIO) -> Dict[Window, WindowRatio]:
    return {window: calculate_ratio(metrics, min_clicks) for window, metrics in windows.items()}


def confidence_for(windows: Mapping[Window, WindowMetrics]) -> ConfidenceTier:
    """Confidence comes from lifetime clicks only"""
    lifetime = windows.get(Window.LIFETIME)
    return ConfidenceTier.from_clicks(lifetime.clicks if lifetime else 0)
