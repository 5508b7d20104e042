from datetime import timedelta
from decimal import Decimal

import pytest

from bidding_engine.change_history import BidChangeRecord
from bidding_engine.engine import SKIP_TARGET_CAP
from bidding_engine.errors import ConfigurationError, TransientFetchError
from bidding_engine.ingestion import ScopeFilter
from bidding_engine.memory_store import InMemoryPerformanceStore
from bidding_engine.recommendations import (
    DIRECTION_DECREASE,
    DIRECTION_MAINTAIN,
    SKIP_COOLDOWN,
    SKIP_LOW_CONFIDENCE,
    TYPE_PLACEMENT_MODIFIER,
    TYPE_SEARCH_TERM_BID,
)
from bidding_engine.weights import GLOBAL_MARKET

DE = ScopeFilter(market='DE')


@pytest.fixture
def t0_store(t0_only_weights):
    return InMemoryPerformanceStore(goals={'C1': '0.20'}, weights={GLOBAL_MARKET: t0_only_weights})


class TestKeywordRecommendations:

    def test_bid_scaled_toward_goal(self, make_engine, t0_store, make_row, today):
        t0_store.rows = [make_row(clicks=500, cost='100', sales='400')]

        run = make_engine(t0_store).compute_recommendations(DE, today=today)

        assert len(run.recommendations) == 1
        rec = run.recommendations[0]
        assert rec.recommended_value == Decimal('0.80')
        assert rec.direction == DIRECTION_DECREASE
        assert run.summary['targets_analyzed'] == 1
        assert run.summary['market'] == 'DE'
        assert run.summary['run_type'] == 'keyword'

    def test_t0_window_starts_at_last_change(self, make_engine, t0_store, make_row, today):
        t0_store.rows = [
            make_row(days_ago=100, clicks=500, cost='100', sales='400'),
            make_row(days_ago=10, clicks=100, cost='10', sales='100'),
        ]
        t0_store.append_change(BidChangeRecord('running shoes', 'C1', 'AG1', Decimal('0.90'), Decimal('1.00'),
                                               today - timedelta(days=20)))

        rec = make_engine(t0_store).compute_recommendations(DE, today=today).recommendations[0]

        assert rec.blended_ratio == Decimal('0.1')
        assert rec.recommended_value == Decimal('1.50')
        assert rec.days_since_last_change == 20
        assert rec.per_window_clicks['t0'] == 100
        assert rec.per_window_clicks['lifetime'] == 600

    def test_29_lifetime_clicks_is_low_confidence(self, make_engine, t0_store, make_row, today):
        t0_store.rows = [make_row(clicks=29, cost='10', sales='40')]

        run = make_engine(t0_store).compute_recommendations(DE, today=today)

        assert run.recommendations == []
        assert run.summary['skipped'] == {SKIP_LOW_CONFIDENCE: 1}

    def test_30_lifetime_clicks_is_enough(self, make_engine, t0_store, make_row, today):
        t0_store.rows = [make_row(clicks=30, cost='10', sales='40')]

        run = make_engine(t0_store).compute_recommendations(DE, today=today)

        assert [rec.recommended_value for rec in run.recommendations] == [Decimal('0.80')]
        assert run.recommendations[0].confidence_tier.label == 'OK'

    def test_missing_goal_fails_the_run(self, make_engine, store, make_row, today):
        store.rows = [make_row(campaign_id='C2', clicks=500, cost='100', sales='400')]

        with pytest.raises(ConfigurationError, match='C2'):
            make_engine(store).compute_recommendations(DE, today=today)

    def test_goal_set_on_store_is_applied(self, make_engine, store, make_row, today):
        store.rows = [make_row(campaign_id='C2', clicks=500, cost='100', sales='400')]
        store.set_goal_ratio('C2', 'DE', '0.50', campaign_name='Shoes')

        run = make_engine(store).compute_recommendations(DE, today=today)

        assert store.get_goal_ratio('C2') == Decimal('0.50')
        assert run.recommendations[0].goal_ratio == Decimal('0.50')
        assert run.recommendations[0].recommended_value == Decimal('1.50')

    def test_non_positive_goal_fails_the_run(self, make_engine, store, make_row, today):
        store.goals['C1'] = Decimal('0')
        store.rows = [make_row(clicks=500, cost='100', sales='400')]

        with pytest.raises(ConfigurationError):
            make_engine(store).compute_recommendations(DE, today=today)

    def test_missing_weights_fail_the_run(self, make_engine, make_row, today):
        store = InMemoryPerformanceStore(rows=[make_row(clicks=500, cost='100', sales='400')], goals={'C1': '0.2'})

        with pytest.raises(ConfigurationError):
            make_engine(store).compute_recommendations(DE, today=today)

    def test_recent_change_is_in_cooldown(self, make_engine, store, make_row, today):
        store.rows = [make_row(clicks=500, cost='100', sales='400')]
        store.append_change(BidChangeRecord('running shoes', 'C1', 'AG1', Decimal('0.90'), Decimal('1.00'),
                                            today - timedelta(days=5)))

        run = make_engine(store).compute_recommendations(DE, today=today)

        assert run.recommendations == []
        assert run.summary['skipped'] == {SKIP_COOLDOWN: 1}

    def test_maintain_counted_not_emitted(self, make_engine, store, make_row, today):
        store.rows = [make_row(clicks=200, cost='21', sales='100')]

        run = make_engine(store).compute_recommendations(DE, today=today)

        assert run.recommendations == []
        assert run.summary['maintain'] == 1

    def test_maintain_emitted_when_configured(self, make_engine, store, make_row, today):
        store.rows = [make_row(clicks=200, cost='21', sales='100')]

        run = make_engine(store, include_maintain=True).compute_recommendations(DE, today=today)

        assert [r.direction for r in run.recommendations] == [DIRECTION_MAINTAIN]

    def test_low_confidence_excluded(self, make_engine, store, make_row, today):
        store.rows = [make_row(clicks=10, cost='10', sales='100')]

        run = make_engine(store).compute_recommendations(DE, today=today)

        assert run.recommendations == []
        assert run.summary['skipped'] == {SKIP_LOW_CONFIDENCE: 1}

    def test_run_capped_by_cost(self, make_engine, store, make_row, today):
        store.rows = [
            make_row(target_id='cheap', clicks=500, cost='50', sales='100'),
            make_row(target_id='expensive', clicks=500, cost='100', sales='400'),
        ]

        run = make_engine(store, max_targets_per_run=1).compute_recommendations(DE, today=today)

        assert [r.target_id for r in run.recommendations] == ['expensive']
        assert run.summary['skipped'][SKIP_TARGET_CAP] == 1

    def test_no_sales_target_cut(self, make_engine, store, make_row, today):
        store.rows = [make_row(clicks=50, cost='80')]

        rec = make_engine(store).compute_recommendations(DE, today=today).recommendations[0]

        assert rec.recommended_value == Decimal('0.85')
        assert 'No sales' in rec.rationale


def test_search_term_run_falls_back_to_cpc(make_engine, store, make_row, today):
    store.rows = [make_row(clicks=40, cost='60', current_bid=None)]

    run = make_engine(store).compute_search_term_recommendations(DE, today=today)

    rec = run.recommendations[0]
    assert rec.recommendation_type == TYPE_SEARCH_TERM_BID
    assert rec.recommended_value == Decimal('1.28')
    assert run.summary['run_type'] == 'search_term'


def test_placement_run_uses_current_modifier(make_engine, make_row):
    store = InMemoryPerformanceStore(
        placement_rows=[make_row(target_id='Top of Search on-Amazon', ad_group_id=None, clicks=60,
                                 cost='25', sales='100', current_bid=None)],
        goals={'C1': '0.20'},
        placement_modifiers={('C1', 'PLACEMENT_TOP'): 100},
    )

    run = make_engine(store).compute_placement_recommendations(DE)

    rec = run.recommendations[0]
    assert rec.recommendation_type == TYPE_PLACEMENT_MODIFIER
    assert rec.target_id == 'Top of search (first page)'
    assert rec.current_value == Decimal('100')
    assert rec.recommended_value == Decimal('80')


def test_negative_targets(make_engine, store, make_row):
    store.rows = [make_row(clicks=50, cost='80'), make_row(target_id='converts', clicks=50, cost='80', sales='10')]

    candidates = make_engine(store).detect_negative_targets(DE)

    assert [c.target_id for c in candidates] == ['running shoes']
    assert candidates[0].cpc == Decimal('1.60')


def test_change_detection_then_cooldown(make_engine, store, make_row, today):
    store.rows = [
        make_row(days_ago=3, clicks=300, cost='30', sales='300', current_bid='1.00'),
        make_row(days_ago=2, clicks=300, cost='30', sales='300', current_bid='1.20'),
    ]
    engine = make_engine(store)

    first = engine.run_change_detection()
    second = engine.run_change_detection()
    run = engine.compute_recommendations(DE, today=today)

    assert first.by_source == {'products': 1, 'brands': 0}
    assert second.changes_detected == 0
    assert run.summary['skipped'] == {SKIP_COOLDOWN: 1}


class FlakyStore(InMemoryPerformanceStore):
    """Store whose FR queries fail"""

    def fetch_performance_rows(self, scope_filter=None, date_range=None):
        if scope_filter is not None and scope_filter.market == 'FR':
            raise TransientFetchError("connection reset")
        return super().fetch_performance_rows(scope_filter, date_range)


def test_daily_job_continues_past_failed_market(make_engine, seed_weights, make_row, today):
    store = FlakyStore(rows=[make_row(clicks=500, cost='100', sales='400')],
                       goals={'C1': '0.20'}, weights={GLOBAL_MARKET: seed_weights})

    result = make_engine(store).generate_daily_recommendations(['FR', 'DE'], today=today)

    assert result['failed_markets'] == ['FR']
    assert result['markets'] == 1
    assert result['keywords'] == 1
    assert result['total'] == 1
    assert len(store.saved) == 1


def test_daily_job_continues_past_market_without_goal(make_engine, store, make_row, today):
    store.rows = [
        make_row(campaign_id='C_DE', clicks=500, cost='100', sales='400', market='DE'),
        make_row(clicks=500, cost='100', sales='400', market='FR'),
    ]

    result = make_engine(store).generate_daily_recommendations(['DE', 'FR'], today=today)

    assert result['failed_markets'] == ['DE']
    assert result['config_errors'][0]['market'] == 'DE'
    assert 'C_DE' in result['config_errors'][0]['error']
    assert result['markets'] == 1
    assert result['keywords'] == 1
    assert [rec.market for rec in store.saved] == ['FR']
