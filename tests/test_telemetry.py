import logging

from bidding_engine.telemetry import TelemetryClient


def test_prometheus_exporter_registers_metrics():
    client = TelemetryClient({'telemetry_exporter': 'prometheus'})

    client.record_run('keyword', 'DE', {'targets_analyzed': 4, 'recommendations_produced': 2,
                                        'skipped': {'cooldown': 1, 'no_signal': 0}})
    client.record_bid_change_magnitude('keyword_bid', -20.0)

    sample = client.registry.get_sample_value
    assert sample('bidding_engine_recommendation_runs_total', {'run_type': 'keyword', 'market': 'DE'}) == 1.0
    assert sample('bidding_engine_targets_analyzed', {'run_type': 'keyword', 'market': 'DE'}) == 4.0
    assert sample('bidding_engine_targets_skipped_total', {'run_type': 'keyword', 'reason': 'cooldown'}) == 1.0
    assert sample('bidding_engine_targets_skipped_total', {'run_type': 'keyword', 'reason': 'no_signal'}) is None
    assert sample('bidding_engine_bid_change_magnitude_count', {'recommendation_type': 'keyword_bid'}) == 1.0
    assert sample('bidding_engine_bid_change_magnitude_sum', {'recommendation_type': 'keyword_bid'}) == 20.0
    assert b'bidding_engine_recommendation_runs_total' in client.render()


def test_unlabelled_metrics():
    client = TelemetryClient({'telemetry_exporter': 'prometheus'})

    client.increment('runs_total')
    client.increment('runs_total', 2.0)
    client.gauge('markets_configured', 3.0)
    client.observe('run_seconds', 0.5)

    sample = client.registry.get_sample_value
    assert sample('bidding_engine_runs_total') == 3.0
    assert sample('bidding_engine_markets_configured') == 3.0
    assert sample('bidding_engine_run_seconds_count') == 1.0


def test_clients_do_not_share_registries():
    first = TelemetryClient()
    second = TelemetryClient()

    first.increment('runs_total')
    second.increment('runs_total')

    assert first.registry is not second.registry
    assert first.registry.get_sample_value('bidding_engine_runs_total') == 1.0
    assert second.registry.get_sample_value('bidding_engine_runs_total') == 1.0


def test_noop_exporter_logs(caplog):
    client = TelemetryClient({'telemetry_exporter': 'noop'})

    with caplog.at_level(logging.INFO, logger='bidding_engine.telemetry'):
        client.record_changes_detected('products', 3)

    assert caplog.records[0].getMessage() == 'metric_increment'
    assert caplog.records[0].metric == 'bid_changes_detected_total'
    assert client.render() == b''


def test_disabled_telemetry_is_silent(caplog):
    client = TelemetryClient({'enable_telemetry': False})

    with caplog.at_level(logging.INFO):
        client.increment('runs_total')

    assert caplog.records == []
