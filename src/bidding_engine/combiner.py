"""
Weighted Signal Combiner

Blends per-window ratios into one signal. Only windows with a defined ratio
contribute, and the result is renormalized by the weight actually used.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional, Tuple

from .aggregator import Window
from .ratios import WindowRatio
from .utils.units import ZERO
from .weights import WeightSet


@dataclass(frozen=True)
class BlendResult:
    blended_ratio: Decimal
    total_weight: Decimal
    windows_used: Tuple[Window, ...]


def blend_ratios(window_ratios: Mapping[Window, WindowRatio], weights: WeightSet) -> Optional[BlendResult]:
    """
    Weighted average of the usable window ratios

    Returns None when no usable window carries weight.
    """
    weighted_sum = ZERO
    total_weight = ZERO
    used = []

    for window in Window:
        ratio = window_ratios.get(window)
        if ratio is None or not ratio.usable:
            continue
        weight = weights.for_window(window)
        if weight <= 0:
            continue
        weighted_sum += weight * ratio.value
        total_weight += weight
        used.append(window)

    if total_weight == 0:
        return None

    return BlendResult(
        blended_ratio=weighted_sum / total_weight,
        total_weight=total_weight,
        windows_used=tuple(used),
    )
