from decimal import Decimal

import pytest

from bidding_engine.errors import ConfigurationError
from bidding_engine.weights import GLOBAL_MARKET, InMemoryWeightStore, WeightConfigStore, WeightSet


@pytest.fixture
def weight_store(seed_weights):
    return WeightConfigStore(InMemoryWeightStore({GLOBAL_MARKET: seed_weights}))


def test_seed_weights_are_valid(seed_weights):
    assert seed_weights.total == Decimal('1.00')
    assert seed_weights.validate()


def test_set_weights_accepts_valid_set(weight_store):
    weights = WeightSet.from_values(0.35, 0.25, 0.25, 0.15)

    weight_store.set_weights('DE', weights)

    assert weight_store.get_weights('DE') == weights


def test_sum_within_tolerance_accepted(weight_store):
    weight_store.set_weights('DE', WeightSet.from_values('0.345', '0.25', '0.25', '0.15'))

    assert weight_store.get_weights('DE').t0 == Decimal('0.345')


def test_bad_sum_rejected_and_prior_row_kept(weight_store, seed_weights):
    with pytest.raises(ConfigurationError, match='sum to 1'):
        weight_store.set_weights(GLOBAL_MARKET, WeightSet.from_values('0.5', '0.5', '0.5', '0'))

    assert weight_store.get_weights(GLOBAL_MARKET) == seed_weights


def test_out_of_range_weight_rejected(weight_store):
    with pytest.raises(ConfigurationError, match='between 0 and 1'):
        weight_store.set_weights('DE', WeightSet.from_values('1.2', '-0.2', '0', '0'))


def test_market_falls_back_to_global_row(weight_store, seed_weights):
    assert weight_store.get_weights('FR') == seed_weights


def test_market_row_preferred_over_global(weight_store, t0_only_weights):
    weight_store.set_weights('FR', t0_only_weights)

    assert weight_store.get_weights('FR') == t0_only_weights
    assert weight_store.get_weights('DE') != t0_only_weights


def test_missing_global_row_is_configuration_error():
    weight_store = WeightConfigStore(InMemoryWeightStore())

    with pytest.raises(ConfigurationError):
        weight_store.get_weights('DE')


def test_from_dict_requires_every_window():
    with pytest.raises(ConfigurationError, match='d365'):
        WeightSet.from_dict({'t0': 0.5, 'd30': 0.25, 'lifetime': 0.25})


def test_describe_lists_global_row_first(weight_store, t0_only_weights):
    weight_store.set_weights('AT', t0_only_weights)

    rows = weight_store.describe()

    assert [row['market'] for row in rows] == [GLOBAL_MARKET, 'AT']
    assert rows[1]['t0'] == Decimal('1')
