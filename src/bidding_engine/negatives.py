"""
Negative-Target Detector

Flags targets that spent material clicks without a single sale. Targets
whose words, ignoring order, match another wasteful target are proposed as
phrase negatives so the whole cluster is covered.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from .aggregator import combine_window, group_rows_by_target
from .ingestion import PerformanceRow, TargetKey
from .ratios import calculate_cpc
from .utils.units import round_money

PRIORITY_HIGH = 'High'
PRIORITY_MEDIUM = 'Medium'
PRIORITY_LOW = 'Low'

NEGATIVE_EXACT = 'Exact'
NEGATIVE_PHRASE = 'Phrase'


@dataclass
class NegativeCandidate:
    """A target proposed for negative targeting"""
    target_id: str
    campaign_id: str
    ad_group_id: Optional[str]
    clicks: int
    cost: Decimal
    cpc: Decimal
    priority: str
    negative_type: str
    rationale: str
    market: Optional[str] = None

    @property
    def key(self) -> TargetKey:
        return TargetKey(self.campaign_id, self.ad_group_id, self.target_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'target_id': self.target_id,
            'campaign_id': self.campaign_id,
            'ad_group_id': self.ad_group_id,
            'market': self.market,
            'clicks': self.clicks,
            'cost': str(self.cost),
            'cpc': str(self.cpc),
            'priority': self.priority,
            'negative_type': self.negative_type,
            'rationale': self.rationale,
        }


def token_signature(text: str) -> str:
    """Lower-cased words in sorted order"""
    return ' '.join(sorted(text.lower().split()))


def priority_for(clicks: int, cost: Decimal) -> str:
    if clicks >= 100 or cost >= 50:
        return PRIORITY_HIGH
    if clicks >= 50 or cost >= 20:
        return PRIORITY_MEDIUM
    return PRIORITY_LOW


class NegativeTargetDetector:
    """Detects zero-sale targets with enough clicks to be conclusive"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.logger = logging.getLogger(__name__)
        self.min_clicks = int(config.get('negative_min_clicks', 20))

    def detect(self, rows: Iterable[PerformanceRow]) -> List[NegativeCandidate]:
        """
        Detect negative candidates over the given rows

        Args:
            rows: Performance rows for the queried window, any number of targets

        Returns:
            Candidates sorted by cost descending, then clicks descending
        """
        wasteful = []
        for key, group in group_rows_by_target(rows).items():
            metrics = combine_window(group)
            if metrics.clicks >= self.min_clicks and metrics.sales == 0:
                wasteful.append((key, group[-1].market, metrics))

        clusters: Dict[str, List] = {}
        for key, market, metrics in wasteful:
            clusters.setdefault(token_signature(key.target_id), []).append(metrics)

        candidates = []
        for key, market, metrics in wasteful:
            cluster = clusters[token_signature(key.target_id)]
            cost = round_money(metrics.cost)
            if len(cluster) > 1:
                negative_type = NEGATIVE_PHRASE
                cluster_clicks = sum(m.clicks for m in cluster)
                cluster_cost = round_money(sum(m.cost for m in cluster))
                rationale = (f"Part of cluster with {len(cluster)} related terms. "
                             f"Total: {cluster_clicks} clicks, {cluster_cost} spent with no sales")
            else:
                negative_type = NEGATIVE_EXACT
                rationale = f"{metrics.clicks} clicks with no sales, costing {cost}"

            candidates.append(NegativeCandidate(
                target_id=key.target_id,
                campaign_id=key.campaign_id,
                ad_group_id=key.ad_group_id,
                clicks=metrics.clicks,
                cost=cost,
                cpc=round_money(calculate_cpc(metrics.cost, metrics.clicks)),
                priority=priority_for(metrics.clicks, metrics.cost),
                negative_type=negative_type,
                rationale=rationale,
                market=market,
            ))

        candidates.sort(key=lambda c: (-c.cost, -c.clicks))
        self.logger.info(f"Detected {len(candidates)} negative candidates "
                         f"({sum(1 for c in candidates if c.priority == PRIORITY_HIGH)} high priority)")
        return candidates
