from decimal import Decimal

from bidding_engine.aggregator import Window, WindowMetrics
from bidding_engine.combiner import blend_ratios
from bidding_engine.ratios import calculate_ratio
from bidding_engine.weights import WeightSet


def _ratio(window, clicks, cost, sales):
    return calculate_ratio(WindowMetrics(window, clicks=clicks, cost=Decimal(cost), sales=Decimal(sales)))


def test_blend_renormalizes_over_usable_windows(seed_weights):
    ratios = {
        Window.T0: _ratio(Window.T0, 40, '20', '100'),  # 0.20
        Window.D30: _ratio(Window.D30, 60, '30', '100'),  # 0.30
        Window.D365: _ratio(Window.D365, 10, '5', '10'),  # too few clicks
        Window.LIFETIME: _ratio(Window.LIFETIME, 200, '40', '100'),  # 0.40
    }

    blend = blend_ratios(ratios, seed_weights)

    assert blend.windows_used == (Window.T0, Window.D30, Window.LIFETIME)
    assert blend.total_weight == Decimal('0.75')
    assert blend.blended_ratio == Decimal('0.205') / Decimal('0.75')
    assert Decimal('0.20') <= blend.blended_ratio <= Decimal('0.40')


def test_unbounded_windows_excluded(seed_weights):
    ratios = {
        Window.T0: _ratio(Window.T0, 40, '30', '0'),
        Window.LIFETIME: _ratio(Window.LIFETIME, 200, '50', '200'),
    }

    blend = blend_ratios(ratios, seed_weights)

    assert blend.windows_used == (Window.LIFETIME,)
    assert blend.blended_ratio == Decimal('0.25')


def test_no_usable_window_returns_none(seed_weights):
    ratios = {
        Window.T0: _ratio(Window.T0, 10, '5', '10'),
        Window.LIFETIME: _ratio(Window.LIFETIME, 50, '80', '0'),
    }

    assert blend_ratios(ratios, seed_weights) is None


def test_zero_weight_window_is_ignored():
    weights = WeightSet.from_values('1', '0', '0', '0')
    ratios = {
        Window.T0: _ratio(Window.T0, 500, '100', '400'),
        Window.D30: _ratio(Window.D30, 500, '100', '100'),
    }

    blend = blend_ratios(ratios, weights)

    assert blend.windows_used == (Window.T0,)
    assert blend.blended_ratio == Decimal('0.25')
