"""
Weight Configuration Store

Operator-configured blending weights per market, with the global "ALL" row
as the fallback. Weights are never fitted and never defaulted in code: the
seed row is written by the schema setup only.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .aggregator import Window
from .errors import ConfigurationError
from .utils.units import to_decimal

GLOBAL_MARKET = 'ALL'
WEIGHT_SUM_TOLERANCE = Decimal('0.01')

# Values written to the global row by schema setup
SEED_WEIGHTS = {
    't0': Decimal('0.35'),
    'd30': Decimal('0.25'),
    'd365': Decimal('0.25'),
    'lifetime': Decimal('0.15'),
}


@dataclass(frozen=True)
class WeightSet:
    """Blending weights for the four windows"""
    t0: Decimal
    d30: Decimal
    d365: Decimal
    lifetime: Decimal

    @classmethod
    def from_values(cls, t0: Any, d30: Any, d365: Any, lifetime: Any) -> 'WeightSet':
        return cls(to_decimal(t0), to_decimal(d30), to_decimal(d365), to_decimal(lifetime))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WeightSet':
        try:
            return cls.from_values(data['t0'], data['d30'], data['d365'], data['lifetime'])
        except KeyError as e:
            raise ConfigurationError(f"Weight set is missing {e.args[0]}") from e

    @classmethod
    def seed(cls) -> 'WeightSet':
        return cls(**SEED_WEIGHTS)

    @property
    def total(self) -> Decimal:
        return self.t0 + self.d30 + self.d365 + self.lifetime

    def for_window(self, window: Window) -> Decimal:
        return getattr(self, window.value)

    def validate(self, tolerance: Decimal = WEIGHT_SUM_TOLERANCE) -> bool:
        """Raise ConfigurationError unless every weight is in [0, 1] and they sum to 1"""
        errors = []
        for name, value in self.as_dict().items():
            if value < 0 or value > 1:
                errors.append(f"{name} weight must be between 0 and 1 (got {value})")

        if abs(self.total - 1) > tolerance:
            errors.append(f"Weights must sum to 1.0 (currently {self.total:.2f})")

        if errors:
            raise ConfigurationError(f"Invalid weight set: {'; '.join(errors)}")
        return True

    def as_dict(self) -> Dict[str, Decimal]:
        return {
            't0': self.t0,
            'd30': self.d30,
            'd365': self.d365,
            'lifetime': self.lifetime,
        }


class InMemoryWeightStore:
    """Weight rows keyed by market code"""

    def __init__(self, rows: Optional[Dict[str, WeightSet]] = None):
        self._rows: Dict[str, WeightSet] = dict(rows or {})

    def get_weights(self, market: str) -> Optional[WeightSet]:
        return self._rows.get(market)

    def set_weights(self, market: str, weights: WeightSet) -> None:
        self._rows[market] = weights

    def list_weights(self) -> Dict[str, WeightSet]:
        return dict(sorted(self._rows.items()))


class WeightConfigStore:
    """
    Resolves and updates weight sets on top of a backing store

    The backing store answers exact-market lookups only. Resolution falls back
    from the market to the global row, and an update is validated before the
    backing store is touched so a rejected set leaves the prior row intact.
    """

    def __init__(self, store, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.store = store
        self.logger = logging.getLogger(__name__)
        self.tolerance = to_decimal(config.get('weight_tolerance', WEIGHT_SUM_TOLERANCE))

    def get_weights(self, market: Optional[str]) -> WeightSet:
        """
        Weights for a market, falling back to the global row

        Raises:
            ConfigurationError: if neither the market nor the global row exists
        """
        candidates = [market, GLOBAL_MARKET] if market and market != GLOBAL_MARKET else [GLOBAL_MARKET]
        for candidate in candidates:
            weights = self.store.get_weights(candidate)
            if weights is not None:
                if candidate != market:
                    self.logger.debug(f"No weights for market {market}, using {GLOBAL_MARKET}")
                return weights

        raise ConfigurationError(
            f"No weight configuration for market {market or GLOBAL_MARKET} and no {GLOBAL_MARKET} default"
        )

    def set_weights(self, market: str, weights: WeightSet) -> WeightSet:
        weights.validate(self.tolerance)
        self.store.set_weights(market or GLOBAL_MARKET, weights)
        self.logger.info(
            f"Weights for {market or GLOBAL_MARKET} set to "
            f"t0={weights.t0} d30={weights.d30} d365={weights.d365} lifetime={weights.lifetime}"
        )
        return weights

    def list_weights(self) -> Dict[str, WeightSet]:
        return self.store.list_weights()

    def describe(self) -> List[Dict[str, Any]]:
        """Rows for display, global row first"""
        rows = self.list_weights()
        ordered = sorted(rows.items(), key=lambda item: (item[0] != GLOBAL_MARKET, item[0]))
        return [dict(market=market, total=weights.total, **weights.as_dict()) for market, weights in ordered]
