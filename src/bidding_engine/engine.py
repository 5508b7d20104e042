"""
Bid Optimization Engine

Facade over the aggregator, ratio calculator, change ledger, combiner and
policies. The engine is synchronous and keeps no state between calls: every
run fetches its rows from the store and produces fresh recommendations.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .aggregator import Window, aggregate_windows, combine_window, group_rows_by_target, latest_bid
from .change_history import ChangeDetectionResult, ChangeHistoryLedger
from .config import EngineConfig
from .errors import ConfigurationError, TransientFetchError
from .ingestion import DateRange, PerformanceRow, ScopeFilter, TargetKey
from .negatives import NegativeCandidate, NegativeTargetDetector
from .ratios import ConfidenceTier, calculate_ratio, calculate_window_ratios, confidence_for
from .recommendations import (
    DIRECTION_MAINTAIN,
    SKIP_LOW_CONFIDENCE,
    KeywordBidPolicy,
    PlacementModifierPolicy,
    PolicyOutcome,
    Recommendation,
    SearchTermFallbackPolicy,
    TargetSignal,
    normalize_placement,
    summarize,
)
from .telemetry import TelemetryClient
from .weights import WeightConfigStore

SKIP_TARGET_CAP = 'target_cap'


@dataclass
class RecommendationRun:
    """Recommendations from one run plus its summary"""
    recommendations: List[Recommendation] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        summary = {k: (str(v) if isinstance(v, Decimal) else v) for k, v in self.summary.items()}
        return {
            'summary': summary,
            'recommendations': [r.to_dict() for r in self.recommendations],
        }


class BidOptimizationEngine:
    """Computes bid recommendations, negative candidates and bid change history"""

    def __init__(self, config: EngineConfig, store, telemetry: Optional[TelemetryClient] = None):
        """
        Initialize the Bid Optimization Engine

        Args:
            config: Engine configuration
            store: Performance store (DatabaseConnector or InMemoryPerformanceStore)
            telemetry: Telemetry client (created from config if omitted)
        """
        config.validate()
        settings = config.to_dict()
        self.config = config
        self.store = store
        self.logger = logging.getLogger(__name__)

        self.ledger = ChangeHistoryLedger(store, settings)
        self.weights = WeightConfigStore(store, settings)
        self.keyword_policy = KeywordBidPolicy(settings)
        self.fallback_policy = SearchTermFallbackPolicy(settings)
        self.placement_policy = PlacementModifierPolicy(settings)
        self.negative_detector = NegativeTargetDetector(settings)
        self.telemetry = telemetry or TelemetryClient(settings)

    # ------------------------------------------------------------------ #
    # Shared helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _resolve_today(today: Optional[date], date_range: Optional[DateRange]) -> date:
        if today is not None:
            return today
        if date_range is not None and date_range.end is not None:
            return date_range.end
        return date.today()

    def _rank_targets(self, groups: Dict[TargetKey, List[PerformanceRow]],
                      skips: Counter) -> List[Tuple[TargetKey, List[PerformanceRow]]]:
        """Targets with enough clicks, by lifetime cost descending, capped per run"""
        eligible = []
        for key, group in groups.items():
            lifetime = combine_window(group)
            if ConfidenceTier.from_clicks(lifetime.clicks) is ConfidenceTier.LOW:
                skips[SKIP_LOW_CONFIDENCE] += 1
                continue
            eligible.append((lifetime.cost, lifetime.clicks, key, group))

        eligible.sort(key=lambda item: (-item[0], -item[1], str(item[2])))
        cap = self.config.max_targets_per_run
        if len(eligible) > cap:
            skips[SKIP_TARGET_CAP] += len(eligible) - cap
            self.logger.info(f"Capping run at {cap} of {len(eligible)} eligible targets")
        return [(key, group) for _, _, key, group in eligible[:cap]]

    @staticmethod
    def _goal_for(campaign_id: str, goals: Dict[str, Decimal]) -> Decimal:
        goal = goals.get(campaign_id)
        if goal is None:
            raise ConfigurationError(f"No goal ratio configured for campaign {campaign_id}")
        if goal <= 0:
            raise ConfigurationError(f"Goal ratio for campaign {campaign_id} must be positive (got {goal})")
        return goal

    def _collect(self, outcome: PolicyOutcome, key: TargetKey, recommendations: List[Recommendation],
                 skips: Counter) -> int:
        """File a policy outcome; returns 1 when it was a maintain"""
        if outcome.skip_reason:
            skips[outcome.skip_reason] += 1
            self.logger.debug(f"{key}: skipped ({outcome.skip_reason})")
            return 0

        recommendation = outcome.recommendation
        if recommendation.direction == DIRECTION_MAINTAIN:
            if self.config.include_maintain:
                recommendations.append(recommendation)
            return 1

        recommendations.append(recommendation)
        self.telemetry.record_bid_change_magnitude(recommendation.recommendation_type,
                                                   float(recommendation.change_percent))
        return 0

    def _finish(self, run_type: str, market: Optional[str], recommendations: List[Recommendation],
                skips: Counter, targets_analyzed: int, maintained: int) -> RecommendationRun:
        summary = summarize(recommendations, skips, targets_analyzed, maintained)
        summary['market'] = market
        summary['run_type'] = run_type
        self.telemetry.record_run(run_type, market, summary)
        self.logger.info(
            f"{run_type} run for {market or 'all markets'}: {summary['recommendations_produced']} recommendations "
            f"from {targets_analyzed} targets ({summary['increase']} increase, {summary['decrease']} decrease, "
            f"{maintained} maintain)"
        )
        return RecommendationRun(recommendations, summary)

    # ------------------------------------------------------------------ #
    # Exposed operations
    # ------------------------------------------------------------------ #

    def compute_recommendations(self, scope_filter: Optional[ScopeFilter] = None,
                                date_range: Optional[DateRange] = None,
                                market: Optional[str] = None,
                                today: Optional[date] = None) -> RecommendationRun:
        """
        Keyword bid recommendations from the multi-window blend

        Args:
            scope_filter: Restricts the targets considered
            date_range: Restricts the rows fetched
            market: Market whose weights apply (defaults to the filter's market)
            today: Reference date for trailing windows and cooldown

        Returns:
            RecommendationRun with recommendations and a summary of skips

        Raises:
            ConfigurationError: missing weights or a missing goal ratio
            TransientFetchError: store failure
        """
        market = market or (scope_filter.market if scope_filter else None)
        scope_filter = scope_filter or ScopeFilter(market=market)
        today = self._resolve_today(today, date_range)
        weights = self.weights.get_weights(market)

        rows = self.store.fetch_performance_rows(scope_filter, date_range)
        groups = group_rows_by_target(rows)
        goals = self.store.get_goal_ratios(scope_filter)
        last_changes = self.store.fetch_last_changes(scope_filter)

        skips: Counter = Counter()
        recommendations: List[Recommendation] = []
        maintained = 0

        for key, group in self._rank_targets(groups, skips):
            goal = self._goal_for(key.campaign_id, goals)
            last_change = last_changes.get(key)
            windows = aggregate_windows(group, today, last_change)
            cooldown = self.ledger.check_cooldown(last_change, today)
            latest = group[-1]

            signal = TargetSignal(
                key=key,
                goal_ratio=goal,
                confidence=confidence_for(windows),
                window_ratios=calculate_window_ratios(windows, self.config.min_clicks),
                current_bid=latest_bid(group),
                market=latest.market or market,
                days_since_last_change=cooldown.days_since_last_change,
                match_type=latest.match_type,
                campaign_name=latest.campaign_name,
                ad_group_name=latest.ad_group_name,
            )
            outcome = self.keyword_policy.evaluate(signal, weights, cooldown)
            maintained += self._collect(outcome, key, recommendations, skips)

        return self._finish('keyword', market, recommendations, skips, len(groups), maintained)

    def compute_search_term_recommendations(self, scope_filter: Optional[ScopeFilter] = None,
                                            date_range: Optional[DateRange] = None,
                                            market: Optional[str] = None,
                                            today: Optional[date] = None) -> RecommendationRun:
        """Tiered recommendations over one combined window per search term"""
        market = market or (scope_filter.market if scope_filter else None)
        scope_filter = scope_filter or ScopeFilter(market=market)
        today = self._resolve_today(today, date_range)

        rows = self.store.fetch_performance_rows(scope_filter, date_range)
        groups = group_rows_by_target(rows)
        goals = self.store.get_goal_ratios(scope_filter)
        last_changes = self.store.fetch_last_changes(scope_filter)

        skips: Counter = Counter()
        recommendations: List[Recommendation] = []
        maintained = 0

        for key, group in self._rank_targets(groups, skips):
            goal = self._goal_for(key.campaign_id, goals)
            metrics = combine_window(group)
            last_change = last_changes.get(key)
            latest = group[-1]

            signal = TargetSignal(
                key=key,
                goal_ratio=goal,
                confidence=ConfidenceTier.from_clicks(metrics.clicks),
                window_ratios={Window.LIFETIME: calculate_ratio(metrics, self.config.min_clicks)},
                current_bid=latest_bid(group),
                market=latest.market or market,
                days_since_last_change=(today - last_change).days if last_change else None,
                match_type=latest.match_type,
                campaign_name=latest.campaign_name,
                ad_group_name=latest.ad_group_name,
            )
            outcome = self.fallback_policy.evaluate(signal, metrics)
            maintained += self._collect(outcome, key, recommendations, skips)

        return self._finish('search_term', market, recommendations, skips, len(groups), maintained)

    def compute_placement_recommendations(self, scope_filter: Optional[ScopeFilter] = None,
                                          date_range: Optional[DateRange] = None,
                                          market: Optional[str] = None) -> RecommendationRun:
        """Placement modifier recommendations per (campaign, placement)"""
        market = market or (scope_filter.market if scope_filter else None)
        scope_filter = scope_filter or ScopeFilter(market=market)

        rows = self.store.fetch_placement_rows(scope_filter, date_range)
        goals = self.store.get_goal_ratios(scope_filter)
        modifiers = {
            (campaign_id, normalize_placement(placement)): value
            for (campaign_id, placement), value in self.store.fetch_placement_modifiers(scope_filter).items()
        }

        groups: Dict[TargetKey, List[PerformanceRow]] = {}
        for row in rows:
            key = TargetKey(row.campaign_id, None, normalize_placement(row.target_id))
            groups.setdefault(key, []).append(row)

        skips: Counter = Counter()
        recommendations: List[Recommendation] = []
        maintained = 0

        for key, group in self._rank_targets(groups, skips):
            goal = self._goal_for(key.campaign_id, goals)
            metrics = combine_window(group)
            latest = group[-1]

            signal = TargetSignal(
                key=key,
                goal_ratio=goal,
                confidence=ConfidenceTier.from_clicks(metrics.clicks),
                window_ratios={Window.LIFETIME: calculate_ratio(metrics, self.config.min_clicks)},
                market=latest.market or market,
                campaign_name=latest.campaign_name,
            )
            outcome = self.placement_policy.evaluate(signal, metrics, modifiers.get((key.campaign_id, key.target_id)))
            maintained += self._collect(outcome, key, recommendations, skips)

        return self._finish('placement', market, recommendations, skips, len(groups), maintained)

    def detect_negative_targets(self, scope_filter: Optional[ScopeFilter] = None,
                                date_range: Optional[DateRange] = None) -> List[NegativeCandidate]:
        """Zero-sale targets with enough clicks over the queried window"""
        rows = self.store.fetch_performance_rows(scope_filter, date_range)
        return self.negative_detector.detect(rows)

    def run_change_detection(self, scope_filter: Optional[ScopeFilter] = None,
                             date_range: Optional[DateRange] = None) -> ChangeDetectionResult:
        """Detect bid changes from daily snapshots of every configured source and record them"""
        base = scope_filter or ScopeFilter()
        rows_by_source = {}
        for source in self.ledger.change_sources:
            source_filter = ScopeFilter(
                market=base.market,
                campaign_ids=base.campaign_ids,
                ad_group_ids=base.ad_group_ids,
                target_ids=base.target_ids,
                source=source,
            )
            rows_by_source[source] = self.store.fetch_performance_rows(source_filter, date_range)

        result = self.ledger.run_change_detection(rows_by_source)
        for source, count in result.by_source.items():
            self.telemetry.record_changes_detected(source, count)
        return result

    def generate_daily_recommendations(self, markets: Optional[Sequence[str]] = None,
                                       today: Optional[date] = None) -> Dict[str, Any]:
        """
        Compute and persist keyword and placement recommendations for every market

        A store failure or a configuration gap (missing goal or weights) in one
        market is logged and the job moves on to the next. Every skipped market
        lands in 'failed_markets'; the configuration failures are also listed
        in 'config_errors' with their message.

        Returns:
            Totals: {'total', 'markets', 'keywords', 'placements', 'failed_markets', 'config_errors'}
        """
        markets = list(markets or self.config.markets)
        today = today or date.today()
        date_range = DateRange(start=None, end=today)
        results = {'total': 0, 'markets': 0, 'keywords': 0, 'placements': 0,
                   'failed_markets': [], 'config_errors': []}

        for market in markets:
            scope_filter = ScopeFilter(market=market)
            try:
                keyword_run = self.compute_recommendations(scope_filter, date_range, market, today)
                placement_run = self.compute_placement_recommendations(
                    scope_filter, DateRange.trailing(self.config.lookback_days, today), market
                )
                saved = self._persist(keyword_run.recommendations + placement_run.recommendations)
            except TransientFetchError as e:
                self.logger.warning(f"Skipping market {market}: {e}")
                results['failed_markets'].append(market)
                continue
            except ConfigurationError as e:
                self.logger.error(f"Skipping market {market}, configuration incomplete: {e}")
                results['failed_markets'].append(market)
                results['config_errors'].append({'market': market, 'error': str(e)})
                continue

            results['markets'] += 1
            results['keywords'] += len(keyword_run.recommendations)
            results['placements'] += len(placement_run.recommendations)
            results['total'] += saved

        self.logger.info(
            f"Daily recommendations: {results['total']} saved across {results['markets']} markets "
            f"({results['keywords']} keywords, {results['placements']} placements)"
        )
        return results

    def _persist(self, recommendations: Iterable[Recommendation]) -> int:
        saved = 0
        for recommendation in recommendations:
            self.store.save_recommendation(recommendation)
            saved += 1
        return saved
