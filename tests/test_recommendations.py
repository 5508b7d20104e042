from decimal import Decimal

import pytest

from bidding_engine.aggregator import Window, WindowMetrics
from bidding_engine.change_history import CooldownCheck
from bidding_engine.ingestion import TargetKey
from bidding_engine.ratios import ConfidenceTier, calculate_window_ratios
from bidding_engine.recommendations import (
    DIRECTION_DECREASE,
    DIRECTION_INCREASE,
    DIRECTION_MAINTAIN,
    SKIP_COOLDOWN,
    SKIP_INSUFFICIENT_CLICKS,
    SKIP_LOW_CONFIDENCE,
    SKIP_NO_BASE_BID,
    SKIP_NO_CURRENT_BID,
    SKIP_NO_SIGNAL,
    SKIP_WITHIN_BAND,
    KeywordBidPolicy,
    PlacementModifierPolicy,
    SearchTermFallbackPolicy,
    TargetSignal,
    normalize_placement,
    summarize,
)

KEY = TargetKey('C1', 'AG1', 'running shoes')
GOAL = Decimal('0.20')


def _metrics(clicks, cost, sales, window=Window.LIFETIME):
    return WindowMetrics(window, clicks=clicks, cost=Decimal(cost), sales=Decimal(sales))


def _signal(clicks, cost, sales, current_bid='1.00', goal=GOAL):
    """Signal whose four windows all carry the same sums"""
    windows = {window: _metrics(clicks, cost, sales, window) for window in Window}
    return TargetSignal(
        key=KEY,
        goal_ratio=goal,
        confidence=ConfidenceTier.from_clicks(clicks),
        window_ratios=calculate_window_ratios(windows),
        current_bid=Decimal(current_bid) if current_bid is not None else None,
        market='DE',
    )


@pytest.fixture
def keyword_policy():
    return KeywordBidPolicy()


class TestKeywordBidPolicy:

    def test_ratio_above_goal_scales_bid_down(self, keyword_policy, t0_only_weights):
        outcome = keyword_policy.evaluate(_signal(500, '100', '400'), t0_only_weights)

        rec = outcome.recommendation
        assert rec.recommended_value == Decimal('0.80')
        assert rec.change_percent == Decimal('-20.00')
        assert rec.direction == DIRECTION_DECREASE
        assert rec.blended_ratio == Decimal('0.25')
        assert rec.confidence_tier is ConfidenceTier.HIGH
        assert rec.metadata['multiplier'] == '0.8'
        assert 'above target' in rec.rationale

    def test_multiplier_clamped_low(self, keyword_policy, seed_weights):
        rec = keyword_policy.evaluate(_signal(200, '100', '100'), seed_weights).recommendation

        assert rec.recommended_value == Decimal('0.50')

    def test_multiplier_clamped_high(self, keyword_policy, seed_weights):
        rec = keyword_policy.evaluate(_signal(200, '5', '100'), seed_weights).recommendation

        assert rec.recommended_value == Decimal('1.50')
        assert rec.direction == DIRECTION_INCREASE
        assert 'below target' in rec.rationale

    def test_within_window_is_maintain(self, keyword_policy, seed_weights):
        rec = keyword_policy.evaluate(_signal(200, '22', '100'), seed_weights).recommendation

        assert rec.direction == DIRECTION_MAINTAIN
        assert rec.recommended_value == rec.current_value
        assert rec.change_percent == 0

    def test_recommended_bid_rounded_to_cents(self, keyword_policy, seed_weights):
        # goal / blended = 0.20 / 0.30, 0.33 * 0.6667 = 0.22
        rec = keyword_policy.evaluate(_signal(200, '30', '100', current_bid='0.33'), seed_weights).recommendation

        assert rec.recommended_value == Decimal('0.22')

    def test_rounding_back_to_current_bid_is_maintain(self, keyword_policy, seed_weights):
        # 0.01 * (0.20 / 0.24) rounds back to 0.01
        rec = keyword_policy.evaluate(_signal(200, '24', '100', current_bid='0.01'), seed_weights).recommendation

        assert rec.recommended_value == Decimal('0.01')
        assert rec.direction == DIRECTION_MAINTAIN
        assert rec.change_percent == 0

    def test_low_confidence_skipped(self, keyword_policy, seed_weights):
        outcome = keyword_policy.evaluate(_signal(29, '100', '400'), seed_weights)

        assert outcome.recommendation is None
        assert outcome.skip_reason == SKIP_LOW_CONFIDENCE

    def test_cooldown_skipped(self, keyword_policy, seed_weights):
        cooldown = CooldownCheck(allowed=False, reason='In cooldown period (3/14 days)')

        outcome = keyword_policy.evaluate(_signal(500, '100', '400'), seed_weights, cooldown)

        assert outcome.skip_reason == SKIP_COOLDOWN

    def test_missing_bid_skipped(self, keyword_policy, seed_weights):
        outcome = keyword_policy.evaluate(_signal(500, '100', '400', current_bid=None), seed_weights)

        assert outcome.skip_reason == SKIP_NO_CURRENT_BID

    def test_no_sales_flat_cut(self, keyword_policy, seed_weights):
        rec = keyword_policy.evaluate(_signal(50, '80', '0'), seed_weights).recommendation

        assert rec.recommended_value == Decimal('0.85')
        assert rec.change_percent == Decimal('-15.00')
        assert rec.direction == DIRECTION_DECREASE
        assert rec.blended_ratio is None
        assert rec.metadata['no_sales'] is True

    def test_no_sales_with_high_clicks_cuts_deeper(self, keyword_policy, seed_weights):
        rec = keyword_policy.evaluate(_signal(150, '120', '0'), seed_weights).recommendation

        assert rec.recommended_value == Decimal('0.70')

    def test_no_sales_without_flat_cut_has_no_signal(self, seed_weights):
        policy = KeywordBidPolicy({'no_sales_flat_cut': False})

        outcome = policy.evaluate(_signal(50, '80', '0'), seed_weights)

        assert outcome.skip_reason == SKIP_NO_SIGNAL


@pytest.fixture
def fallback_policy():
    return SearchTermFallbackPolicy()


class TestSearchTermFallbackPolicy:

    def test_insufficient_clicks(self, fallback_policy):
        outcome = fallback_policy.evaluate(_signal(20, '10', '50'), _metrics(20, '10', '50'))

        assert outcome.skip_reason == SKIP_INSUFFICIENT_CLICKS

    @pytest.mark.parametrize('clicks, expected', [(120, '0.70'), (40, '0.85')])
    def test_zero_sales_reduction(self, fallback_policy, clicks, expected):
        rec = fallback_policy.evaluate(_signal(clicks, '60', '0'), _metrics(clicks, '60', '0')).recommendation

        assert rec.recommended_value == Decimal(expected)

    @pytest.mark.parametrize('clicks, expected', [(350, '1.20'), (150, '1.15'), (40, '1.10')])
    def test_low_ratio_tiered_increase(self, fallback_policy, clicks, expected):
        rec = fallback_policy.evaluate(_signal(clicks, '10', '100'), _metrics(clicks, '10', '100')).recommendation

        assert rec.recommended_value == Decimal(expected)
        assert rec.direction == DIRECTION_INCREASE

    def test_within_band_skipped(self, fallback_policy):
        outcome = fallback_policy.evaluate(_signal(100, '21', '100'), _metrics(100, '21', '100'))

        assert outcome.skip_reason == SKIP_WITHIN_BAND

    def test_high_ratio_scales_by_goal(self, fallback_policy):
        rec = fallback_policy.evaluate(_signal(100, '40', '100'), _metrics(100, '40', '100')).recommendation

        assert rec.recommended_value == Decimal('0.50')
        assert rec.direction == DIRECTION_DECREASE

    def test_result_clamped_to_floor(self, fallback_policy):
        rec = fallback_policy.evaluate(_signal(100, '200', '100'), _metrics(100, '200', '100')).recommendation

        assert rec.recommended_value == Decimal('0.20')

    def test_cpc_used_when_no_bid(self, fallback_policy):
        signal = _signal(40, '60', '0', current_bid=None)

        rec = fallback_policy.evaluate(signal, _metrics(40, '60', '0')).recommendation

        # base = 60 / 40 = 1.50, cut 15%
        assert rec.current_value == Decimal('1.5')
        assert rec.recommended_value == Decimal('1.28')

    def test_no_base_bid_skipped(self, fallback_policy):
        signal = _signal(40, '0', '0', current_bid=None)

        outcome = fallback_policy.evaluate(signal, _metrics(40, '0', '0'))

        assert outcome.skip_reason == SKIP_NO_BASE_BID


@pytest.fixture
def placement_policy():
    return PlacementModifierPolicy()


class TestPlacementModifierPolicy:

    @pytest.mark.parametrize('clicks, delta', [(1200, 20), (400, 15), (50, 10)])
    def test_low_ratio_step_increase(self, placement_policy, clicks, delta):
        assert placement_policy.modifier_delta(_metrics(clicks, '10', '100'), GOAL) == Decimal(delta)

    def test_no_sales_cut(self, placement_policy):
        assert placement_policy.modifier_delta(_metrics(60, '40', '0'), GOAL) == Decimal('-25')

    def test_high_ratio_decrease_bounded(self, placement_policy):
        assert placement_policy.modifier_delta(_metrics(60, '25', '100'), GOAL) == Decimal('-20')
        assert placement_policy.modifier_delta(_metrics(60, '80', '100'), GOAL) == Decimal('-50')

    def test_near_goal_adjustment_bounded(self, placement_policy):
        assert placement_policy.modifier_delta(_metrics(60, '18', '100'), GOAL) == Decimal('10')

    def test_below_min_clicks(self, placement_policy):
        assert placement_policy.modifier_delta(_metrics(10, '1', '100'), GOAL) is None

    def test_modifier_applied_to_current(self, placement_policy):
        signal = _signal(60, '25', '100')

        rec = placement_policy.evaluate(signal, _metrics(60, '25', '100'), Decimal('100')).recommendation

        assert rec.current_value == Decimal('100')
        assert rec.recommended_value == Decimal('80')
        assert rec.change_percent == Decimal('-20')
        assert rec.direction == DIRECTION_DECREASE

    def test_modifier_clamped_to_zero(self, placement_policy):
        rec = placement_policy.evaluate(_signal(60, '40', '0'), _metrics(60, '40', '0'), Decimal('10')).recommendation

        assert rec.recommended_value == Decimal('0')

    def test_modifier_clamped_to_max(self, placement_policy):
        metrics = _metrics(1200, '10', '100')

        rec = placement_policy.evaluate(_signal(1200, '10', '100'), metrics, Decimal('895')).recommendation

        assert rec.recommended_value == Decimal('900')

    def test_missing_modifier_starts_at_zero(self, placement_policy):
        rec = placement_policy.evaluate(_signal(50, '10', '100'), _metrics(50, '10', '100'), None).recommendation

        assert rec.current_value == 0
        assert rec.recommended_value == Decimal('10')


def test_placement_names_normalized():
    assert normalize_placement('Top of Search on-Amazon') == normalize_placement('PLACEMENT_TOP')
    assert normalize_placement(None) == 'Unknown'
    assert normalize_placement('Something new') == 'Something new'


def test_summarize_counts(keyword_policy, seed_weights):
    decrease = keyword_policy.evaluate(_signal(500, '100', '200'), seed_weights).recommendation
    increase = keyword_policy.evaluate(_signal(500, '10', '100'), seed_weights).recommendation

    summary = summarize([decrease, increase], {SKIP_COOLDOWN: 2}, targets_analyzed=5, maintained=1)

    assert summary['recommendations_produced'] == 2
    assert summary['increase'] == 1
    assert summary['decrease'] == 1
    assert summary['maintain'] == 1
    assert summary['by_type'] == {'keyword_bid': 2}
    assert summary['skipped'] == {SKIP_COOLDOWN: 2}
