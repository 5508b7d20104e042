"""
In-memory implementation of the performance store, for tests and local runs
"""

import itertools
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .change_history import InMemoryChangeStore
from .ingestion import DateRange, PerformanceRow, ScopeFilter
from .recommendations import Recommendation
from .utils.units import to_decimal
from .weights import InMemoryWeightStore, WeightSet


class InMemoryPerformanceStore(InMemoryChangeStore, InMemoryWeightStore):
    """Holds rows, change history, weights, goals and saved recommendations in memory"""

    def __init__(self, rows: Iterable[PerformanceRow] = (),
                 placement_rows: Iterable[PerformanceRow] = (),
                 goals: Optional[Dict[str, object]] = None,
                 weights: Optional[Dict[str, WeightSet]] = None,
                 placement_modifiers: Optional[Dict[Tuple[str, str], object]] = None):
        InMemoryChangeStore.__init__(self)
        InMemoryWeightStore.__init__(self, weights)
        self.rows: List[PerformanceRow] = list(rows)
        self.placement_rows: List[PerformanceRow] = list(placement_rows)
        self.goals: Dict[str, Decimal] = {k: to_decimal(v) for k, v in (goals or {}).items()}
        self.placement_modifiers: Dict[Tuple[str, str], Decimal] = {
            k: to_decimal(v) for k, v in (placement_modifiers or {}).items()
        }
        self.saved: List[Recommendation] = []
        self._ids = itertools.count(1)

    @staticmethod
    def _select(rows: List[PerformanceRow], scope_filter: Optional[ScopeFilter],
                date_range: Optional[DateRange]) -> List[PerformanceRow]:
        return [
            row for row in rows
            if (scope_filter is None or scope_filter.matches(row))
            and (date_range is None or date_range.contains(row.date))
        ]

    def fetch_performance_rows(self, scope_filter: Optional[ScopeFilter] = None,
                               date_range: Optional[DateRange] = None) -> List[PerformanceRow]:
        return self._select(self.rows, scope_filter, date_range)

    def fetch_placement_rows(self, scope_filter: Optional[ScopeFilter] = None,
                             date_range: Optional[DateRange] = None) -> List[PerformanceRow]:
        return self._select(self.placement_rows, scope_filter, date_range)

    def fetch_placement_modifiers(self, scope_filter: Optional[ScopeFilter] = None) -> Dict[Tuple[str, str], Decimal]:
        if scope_filter is None or not scope_filter.campaign_ids:
            return dict(self.placement_modifiers)
        return {k: v for k, v in self.placement_modifiers.items() if k[0] in scope_filter.campaign_ids}

    def get_goal_ratio(self, campaign_id: str) -> Optional[Decimal]:
        return self.goals.get(str(campaign_id))

    def get_goal_ratios(self, scope_filter: Optional[ScopeFilter] = None) -> Dict[str, Decimal]:
        if scope_filter is None or not scope_filter.campaign_ids:
            return dict(self.goals)
        return {k: v for k, v in self.goals.items() if k in scope_filter.campaign_ids}

    def set_goal_ratio(self, campaign_id: str, market: str, goal_ratio: Decimal,
                       campaign_name: Optional[str] = None) -> None:
        self.goals[str(campaign_id)] = to_decimal(goal_ratio)

    def save_recommendation(self, recommendation: Recommendation) -> int:
        self.saved.append(recommendation)
        return next(self._ids)
