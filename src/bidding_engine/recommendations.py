"""
Bid Recommendation Generator

Turns blended ratios into bounded bid changes. Three policies share the same
Recommendation record:

- KeywordBidPolicy: absolute keyword bids from the multi-window blend
- SearchTermFallbackPolicy: tiered rules over a single combined window
- PlacementModifierPolicy: percentage-point placement bid modifiers
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from .aggregator import Window, WindowMetrics
from .change_history import CooldownCheck
from .combiner import blend_ratios
from .ingestion import TargetKey
from .ratios import MIN_CLICKS_FOR_RATIO, ConfidenceTier, WindowRatio, calculate_cpc
from .utils.units import HUNDRED, ZERO, clamp, format_percent, round_money, round_whole, to_decimal
from .weights import WeightSet

TYPE_KEYWORD_BID = 'keyword_bid'
TYPE_SEARCH_TERM_BID = 'search_term_bid'
TYPE_PLACEMENT_MODIFIER = 'placement_modifier'

DIRECTION_INCREASE = 'increase'
DIRECTION_DECREASE = 'decrease'
DIRECTION_MAINTAIN = 'maintain'

# Skip reasons reported in run summaries
SKIP_LOW_CONFIDENCE = 'low_confidence'
SKIP_COOLDOWN = 'cooldown'
SKIP_NO_CURRENT_BID = 'no_current_bid'
SKIP_NO_SIGNAL = 'no_signal'
SKIP_INSUFFICIENT_CLICKS = 'insufficient_clicks'
SKIP_WITHIN_BAND = 'within_band'
SKIP_NO_BASE_BID = 'no_base_bid'


@dataclass
class Recommendation:
    """A bid or placement modifier recommendation for one target"""
    target_id: str
    campaign_id: str
    ad_group_id: Optional[str]
    market: Optional[str]
    recommendation_type: str  # keyword_bid | search_term_bid | placement_modifier
    current_value: Decimal
    recommended_value: Decimal
    change_percent: Decimal  # Percent for bids, percentage points for placement modifiers
    direction: str  # increase | decrease | maintain
    goal_ratio: Decimal
    blended_ratio: Optional[Decimal]
    confidence_tier: ConfidenceTier
    rationale: str
    per_window_ratios: Dict[str, Optional[Decimal]] = field(default_factory=dict)
    per_window_clicks: Dict[str, int] = field(default_factory=dict)
    days_since_last_change: Optional[int] = None
    match_type: Optional[str] = None
    campaign_name: Optional[str] = None
    ad_group_name: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def key(self) -> TargetKey:
        return TargetKey(self.campaign_id, self.ad_group_id, self.target_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'target_id': self.target_id,
            'campaign_id': self.campaign_id,
            'ad_group_id': self.ad_group_id,
            'market': self.market,
            'recommendation_type': self.recommendation_type,
            'current_value': str(self.current_value),
            'recommended_value': str(self.recommended_value),
            'change_percent': str(self.change_percent),
            'direction': self.direction,
            'goal_ratio': str(self.goal_ratio),
            'blended_ratio': None if self.blended_ratio is None else str(self.blended_ratio),
            'confidence': self.confidence_tier.label,
            'rationale': self.rationale,
            'per_window_ratios': {
                k: None if v is None else str(v) for k, v in self.per_window_ratios.items()
            },
            'per_window_clicks': dict(self.per_window_clicks),
            'days_since_last_change': self.days_since_last_change,
            'match_type': self.match_type,
            'campaign_name': self.campaign_name,
            'ad_group_name': self.ad_group_name,
            'created_at': self.created_at.isoformat(),
        }


@dataclass
class TargetSignal:
    """Everything a policy needs to judge one target"""
    key: TargetKey
    goal_ratio: Decimal
    confidence: ConfidenceTier
    window_ratios: Dict[Window, WindowRatio] = field(default_factory=dict)
    current_bid: Optional[Decimal] = None
    market: Optional[str] = None
    days_since_last_change: Optional[int] = None
    match_type: Optional[str] = None
    campaign_name: Optional[str] = None
    ad_group_name: Optional[str] = None


@dataclass
class PolicyOutcome:
    """A recommendation, or the reason none was produced"""
    recommendation: Optional[Recommendation] = None
    skip_reason: Optional[str] = None

    @classmethod
    def skip(cls, reason: str) -> 'PolicyOutcome':
        return cls(skip_reason=reason)


def percent_change(current: Decimal, new: Decimal) -> Decimal:
    if current == 0:
        return ZERO
    return round_money((new - current) / current * HUNDRED)


def direction_of(current: Decimal, new: Decimal) -> str:
    if new > current:
        return DIRECTION_INCREASE
    if new < current:
        return DIRECTION_DECREASE
    return DIRECTION_MAINTAIN


def _build(signal: TargetSignal, recommendation_type: str, current: Decimal, new: Decimal,
           change: Decimal, rationale: str, blended: Optional[Decimal] = None,
           **metadata) -> Recommendation:
    return Recommendation(
        target_id=signal.key.target_id,
        campaign_id=signal.key.campaign_id,
        ad_group_id=signal.key.ad_group_id,
        market=signal.market,
        recommendation_type=recommendation_type,
        current_value=current,
        recommended_value=new,
        change_percent=change,
        direction=direction_of(current, new),
        goal_ratio=signal.goal_ratio,
        blended_ratio=blended,
        confidence_tier=signal.confidence,
        rationale=rationale,
        per_window_ratios={w.value: r.value for w, r in signal.window_ratios.items()},
        per_window_clicks={w.value: r.clicks for w, r in signal.window_ratios.items()},
        days_since_last_change=signal.days_since_last_change,
        match_type=signal.match_type,
        campaign_name=signal.campaign_name,
        ad_group_name=signal.ad_group_name,
        metadata=metadata,
    )


class KeywordBidPolicy:
    """
    Absolute keyword bid from the blended multi-window ratio

    The blended ratio is compared with the goal. Inside the +/- window the bid
    is kept. Outside it the bid is scaled by goal / blended, clamped to the
    multiplier bounds and rounded to cents.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.logger = logging.getLogger(__name__)
        self.acos_window = to_decimal(config.get('acos_window', 0.03))
        self.min_multiplier = to_decimal(config.get('min_multiplier', 0.5))
        self.max_multiplier = to_decimal(config.get('max_multiplier', 1.5))
        self.no_sales_flat_cut = config.get('no_sales_flat_cut', True)
        self.no_sales_high_clicks = int(config.get('no_sales_high_click_threshold', 100))
        self.no_sales_cut_high = to_decimal(config.get('no_sales_cut_high', 0.30))
        self.no_sales_cut_low = to_decimal(config.get('no_sales_cut_low', 0.15))

    def evaluate(self, signal: TargetSignal, weights: WeightSet,
                 cooldown: Optional[CooldownCheck] = None) -> PolicyOutcome:
        """
        Evaluate one target

        Args:
            signal: Window ratios, confidence and current bid for the target
            weights: Blending weights for the target's market
            cooldown: Result of the ledger's cooldown check, if any

        Returns:
            PolicyOutcome holding either a Recommendation (possibly a maintain)
            or a skip reason
        """
        if signal.confidence is ConfidenceTier.LOW:
            return PolicyOutcome.skip(SKIP_LOW_CONFIDENCE)

        if cooldown is not None and not cooldown.allowed:
            self.logger.debug(f"{signal.key}: {cooldown.reason}")
            return PolicyOutcome.skip(SKIP_COOLDOWN)

        current = signal.current_bid
        if current is None or current <= 0:
            return PolicyOutcome.skip(SKIP_NO_CURRENT_BID)

        blend = blend_ratios(signal.window_ratios, weights)
        if blend is None:
            lifetime = signal.window_ratios.get(Window.LIFETIME)
            if self.no_sales_flat_cut and lifetime is not None and lifetime.is_unbounded:
                return PolicyOutcome(self._no_sales_cut(signal, current, lifetime))
            return PolicyOutcome.skip(SKIP_NO_SIGNAL)

        goal = signal.goal_ratio
        blended = blend.blended_ratio
        windows = ', '.join(w.value for w in blend.windows_used)

        if abs(blended - goal) <= self.acos_window:
            rationale = (f"Weighted ACOS ({format_percent(blended)}) is within "
                         f"{format_percent(self.acos_window)} of target ({format_percent(goal)})")
            return PolicyOutcome(_build(signal, TYPE_KEYWORD_BID, current, current, ZERO,
                                        rationale, blended, windows_used=windows))

        if blended == 0:
            multiplier = self.max_multiplier
        else:
            multiplier = clamp(goal / blended, self.min_multiplier, self.max_multiplier)
        new_bid = round_money(current * multiplier)

        relation = 'above' if blended > goal else 'below'
        rationale = (f"Weighted ACOS ({format_percent(blended)}) is {relation} target "
                     f"({format_percent(goal)}) over {windows}; bid x{multiplier:.2f}")
        recommendation = _build(signal, TYPE_KEYWORD_BID, current, new_bid,
                                percent_change(current, new_bid), rationale, blended,
                                multiplier=str(multiplier), windows_used=windows,
                                total_weight=str(blend.total_weight))
        return PolicyOutcome(recommendation)

    def _no_sales_cut(self, signal: TargetSignal, current: Decimal, lifetime: WindowRatio) -> Recommendation:
        cut = self.no_sales_cut_high if lifetime.clicks >= self.no_sales_high_clicks else self.no_sales_cut_low
        multiplier = clamp(1 - cut, self.min_multiplier, self.max_multiplier)
        new_bid = round_money(current * multiplier)
        rationale = (f"No sales with {lifetime.clicks} clicks and {round_money(lifetime.cost)} spend. "
                     f"Reducing bid {format_percent(1 - multiplier)} to minimize waste")
        return _build(signal, TYPE_KEYWORD_BID, current, new_bid, percent_change(current, new_bid),
                      rationale, None, multiplier=str(multiplier), no_sales=True)


class SearchTermFallbackPolicy:
    """Tiered bid rules over a single combined window, for targets without keyword history"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.logger = logging.getLogger(__name__)
        self.min_clicks = int(config.get('min_clicks', MIN_CLICKS_FOR_RATIO))
        self.min_factor = to_decimal(config.get('fallback_min_factor', 0.20))
        self.max_factor = to_decimal(config.get('fallback_max_factor', 1.50))
        self.band_lower = to_decimal(config.get('fallback_band_lower', 0.9))
        self.band_upper = to_decimal(config.get('fallback_band_upper', 1.1))
        self.increase_threshold = to_decimal(config.get('fallback_increase_threshold', 0.8))

    def evaluate(self, signal: TargetSignal, metrics: WindowMetrics) -> PolicyOutcome:
        if metrics.clicks < self.min_clicks:
            return PolicyOutcome.skip(SKIP_INSUFFICIENT_CLICKS)

        cpc = calculate_cpc(metrics.cost, metrics.clicks)
        if signal.current_bid is not None and signal.current_bid > 0:
            base = signal.current_bid
        elif cpc > 0:
            base = cpc
        else:
            return PolicyOutcome.skip(SKIP_NO_BASE_BID)

        goal = signal.goal_ratio
        ratio = None
        if metrics.sales == 0:
            factor = Decimal('0.70') if metrics.clicks >= 100 else Decimal('0.85')
            proposed = base * factor
            rationale = (f"No sales with {metrics.clicks} clicks. "
                         f"Reducing bid {format_percent(1 - factor)} to minimize waste")
        else:
            ratio = metrics.cost / metrics.sales
            if ratio == 0:
                return PolicyOutcome.skip(SKIP_NO_SIGNAL)
            if ratio <= goal * self.increase_threshold:
                if metrics.clicks >= 300:
                    factor = Decimal('1.20')
                elif metrics.clicks >= 100:
                    factor = Decimal('1.15')
                else:
                    factor = Decimal('1.10')
                proposed = base * factor
                rationale = (f"ACOS {format_percent(ratio)} well below target {format_percent(goal)}. "
                             f"Increasing bid {format_percent(factor - 1)} to capture profitable volume")
            elif goal * self.band_lower <= ratio <= goal * self.band_upper:
                return PolicyOutcome.skip(SKIP_WITHIN_BAND)
            else:
                proposed = base * goal / ratio
                relation = 'exceeds' if ratio > goal else 'is below'
                rationale = (f"ACOS {format_percent(ratio)} {relation} target {format_percent(goal)}. "
                             f"Scaling bid {round_money(base)} by target / ACOS")

        new_bid = round_money(clamp(proposed, base * self.min_factor, base * self.max_factor))
        return PolicyOutcome(_build(signal, TYPE_SEARCH_TERM_BID, base, new_bid,
                                    percent_change(base, new_bid), rationale, ratio,
                                    base_bid=str(base), cpc=str(round_money(cpc))))


# Report and bid-adjustment placement names -> display names
PLACEMENT_NAMES = {
    'Top of Search on-Amazon': 'Top of search (first page)',
    'PLACEMENT_TOP': 'Top of search (first page)',
    'Detail Page on-Amazon': 'Product pages',
    'PLACEMENT_PRODUCT_PAGE': 'Product pages',
    'Other on-Amazon': 'Rest of search',
    'PLACEMENT_REST_OF_SEARCH': 'Rest of search',
    'Off Amazon': 'Off Amazon',
    'UNKNOWN': 'Unknown',
}


def normalize_placement(placement: Optional[str]) -> str:
    if not placement:
        return 'Unknown'
    return PLACEMENT_NAMES.get(placement, placement)


class PlacementModifierPolicy:
    """Percentage-point placement bid modifiers from a combined placement window"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.logger = logging.getLogger(__name__)
        self.min_clicks = int(config.get('min_clicks', MIN_CLICKS_FOR_RATIO))
        self.increase_threshold = to_decimal(config.get('fallback_increase_threshold', 0.8))
        self.max_modifier = to_decimal(config.get('max_modifier', 900))
        self.no_sales_cut = to_decimal(config.get('placement_no_sales_cut', 25))

    def modifier_delta(self, metrics: WindowMetrics, goal: Decimal) -> Optional[Decimal]:
        """Change in percentage points, or None below the click threshold"""
        if metrics.clicks < self.min_clicks:
            return None
        if metrics.sales == 0:
            return -self.no_sales_cut

        ratio = metrics.cost / metrics.sales
        if ratio <= goal * self.increase_threshold:
            if metrics.clicks >= 1000:
                return Decimal('20')
            if metrics.clicks >= 300:
                return Decimal('15')
            return Decimal('10')

        change = (goal / ratio - 1) * HUNDRED
        if ratio > goal:
            return clamp(change, Decimal('-50'), ZERO)
        return clamp(change, Decimal('-10'), Decimal('10'))

    def evaluate(self, signal: TargetSignal, metrics: WindowMetrics,
                 current_modifier: Optional[Decimal]) -> PolicyOutcome:
        delta = self.modifier_delta(metrics, signal.goal_ratio)
        if delta is None:
            return PolicyOutcome.skip(SKIP_INSUFFICIENT_CLICKS)

        current = current_modifier if current_modifier is not None else ZERO
        target = round_whole(clamp(current + delta, ZERO, self.max_modifier))
        ratio = metrics.cost / metrics.sales if metrics.sales > 0 else None

        if ratio is None:
            rationale = f"No sales with {metrics.clicks} clicks. Lowering modifier {abs(delta)} points"
        else:
            rationale = (f"Placement ACOS {format_percent(ratio)} vs target {format_percent(signal.goal_ratio)}. "
                         f"Modifier {current}% -> {target}%")

        return PolicyOutcome(_build(signal, TYPE_PLACEMENT_MODIFIER, current, target,
                                    target - current, rationale, ratio,
                                    delta=str(round_money(delta))))


def summarize(recommendations: List[Recommendation], skips: Mapping[str, int],
              targets_analyzed: int, maintained: int = 0) -> Dict[str, Any]:
    """Run summary: counts by direction and type plus skip reasons"""
    by_direction = Counter(r.direction for r in recommendations)
    by_type = Counter(r.recommendation_type for r in recommendations)
    by_confidence = Counter(r.confidence_tier.label for r in recommendations)
    changes = [r.change_percent for r in recommendations if r.direction != DIRECTION_MAINTAIN]

    return {
        'targets_analyzed': targets_analyzed,
        'recommendations_produced': len(recommendations),
        'increase': by_direction.get(DIRECTION_INCREASE, 0),
        'decrease': by_direction.get(DIRECTION_DECREASE, 0),
        'maintain': maintained,
        'by_type': dict(by_type),
        'by_confidence': dict(by_confidence),
        'average_change_percent': round_money(sum(changes, ZERO) / len(changes)) if changes else ZERO,
        'skipped': dict(skips),
    }
