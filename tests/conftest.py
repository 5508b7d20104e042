from datetime import date, timedelta
from decimal import Decimal

import pytest

from bidding_engine.config import EngineConfig
from bidding_engine.engine import BidOptimizationEngine
from bidding_engine.ingestion import PerformanceRow
from bidding_engine.memory_store import InMemoryPerformanceStore
from bidding_engine.telemetry import TelemetryClient
from bidding_engine.weights import GLOBAL_MARKET, WeightSet

TODAY = date(2024, 6, 30)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def make_row():
    """Factory for PerformanceRows with sensible defaults"""
    def _make_row(target_id='running shoes', campaign_id='C1', ad_group_id='AG1', days_ago=5,
                  clicks=0, cost='0', sales='0', orders=0, current_bid='1.00', market='DE',
                  source='products', day=None, **extra):
        return PerformanceRow(
            target_id=target_id,
            campaign_id=campaign_id,
            ad_group_id=ad_group_id,
            date=day or TODAY - timedelta(days=days_ago),
            clicks=clicks,
            cost=Decimal(cost),
            sales=Decimal(sales),
            orders=orders,
            current_bid=Decimal(current_bid) if current_bid is not None else None,
            market=market,
            source=source,
            **extra
        )
    return _make_row


@pytest.fixture
def seed_weights():
    return WeightSet.seed()


@pytest.fixture
def t0_only_weights():
    return WeightSet.from_values('1', '0', '0', '0')


@pytest.fixture
def store(seed_weights):
    return InMemoryPerformanceStore(goals={'C1': '0.20'}, weights={GLOBAL_MARKET: seed_weights})


@pytest.fixture
def config():
    return EngineConfig(telemetry_exporter='noop')


@pytest.fixture
def make_engine(config):
    def _make_engine(store, **overrides):
        engine_config = EngineConfig(**{**config.to_dict(), **overrides})
        return BidOptimizationEngine(engine_config, store, TelemetryClient(engine_config.to_dict()))
    return _make_engine
