"""
Telemetry helper backed by prometheus_client.
The noop exporter writes metrics to the log instead.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest, start_http_server


class TelemetryClient:
    """Simple telemetry helper supporting increment/gauge/observe."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, registry: Optional[CollectorRegistry] = None):
        config = config or {}
        self.logger = logging.getLogger(__name__)
        self.enabled = config.get('enable_telemetry', True)
        self.exporter = config.get('telemetry_exporter', 'prometheus')
        self.namespace = config.get('telemetry_namespace', 'bidding_engine')
        self.registry = registry if registry is not None else CollectorRegistry()
        self._counters: Dict[Tuple[str, Tuple[str, ...]], Counter] = {}
        self._gauges: Dict[Tuple[str, Tuple[str, ...]], Gauge] = {}
        self._histograms: Dict[Tuple[str, Tuple[str, ...]], Histogram] = {}

    def _should_use_prometheus(self) -> bool:
        return self.enabled and self.exporter == 'prometheus'

    def increment(self, name: str, value: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
        if not self.enabled:
            return
        labels = labels or {}
        if self._should_use_prometheus():
            self._child(self._get_counter(name, labels), labels).inc(value)
        else:
            self.logger.info("metric_increment", extra={'metric': name, 'value': value, 'labels': labels})

    def gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        if not self.enabled:
            return
        labels = labels or {}
        if self._should_use_prometheus():
            self._child(self._get_gauge(name, labels), labels).set(value)
        else:
            self.logger.info("metric_gauge", extra={'metric': name, 'value': value, 'labels': labels})

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        if not self.enabled:
            return
        labels = labels or {}
        if self._should_use_prometheus():
            self._child(self._get_histogram(name, labels), labels).observe(value)
        else:
            self.logger.info("metric_observe", extra={'metric': name, 'value': value, 'labels': labels})

    def serve(self, port: int) -> None:
        """Expose the registry on an HTTP endpoint for scraping"""
        start_http_server(port, registry=self.registry)
        self.logger.info(f"Serving metrics on port {port}")

    def render(self) -> bytes:
        return generate_latest(self.registry)

    # ------------------------------------------------------------------ #
    # Engine metrics
    # ------------------------------------------------------------------ #

    def record_run(self, run_type: str, market: Optional[str], summary: Dict[str, Any]) -> None:
        labels = {'run_type': run_type, 'market': market or 'ALL'}
        self.increment('recommendation_runs_total', labels=labels)
        self.gauge('targets_analyzed', float(summary.get('targets_analyzed', 0)), labels)
        self.increment('recommendations_produced_total',
                       float(summary.get('recommendations_produced', 0)), labels)
        for reason, count in summary.get('skipped', {}).items():
            if count:
                self.increment('targets_skipped_total', float(count),
                               labels={'run_type': run_type, 'reason': reason})

    def record_bid_change_magnitude(self, recommendation_type: str, change_percent: float) -> None:
        self.observe('bid_change_magnitude', abs(change_percent),
                     labels={'recommendation_type': recommendation_type})

    def record_changes_detected(self, source: str, count: int) -> None:
        self.increment('bid_changes_detected_total', float(count), labels={'source': source})

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _child(metric, labels: Dict[str, str]):
        # Metrics declared without labelnames reject .labels()
        return metric.labels(**labels) if labels else metric

    def _metric_key(self, name: str, labels: Dict[str, str]) -> Tuple[str, Tuple[str, ...]]:
        return name, tuple(sorted(labels.keys()))

    def _get_counter(self, name: str, labels: Dict[str, str]) -> Counter:
        key = self._metric_key(name, labels)
        if key not in self._counters:
            self._counters[key] = Counter(name, f"{name} counter", labelnames=list(labels.keys()),
                                          namespace=self.namespace, registry=self.registry)
        return self._counters[key]

    def _get_gauge(self, name: str, labels: Dict[str, str]) -> Gauge:
        key = self._metric_key(name, labels)
        if key not in self._gauges:
            self._gauges[key] = Gauge(name, f"{name} gauge", labelnames=list(labels.keys()),
                                      namespace=self.namespace, registry=self.registry)
        return self._gauges[key]

    def _get_histogram(self, name: str, labels: Dict[str, str]) -> Histogram:
        key = self._metric_key(name, labels)
        if key not in self._histograms:
            self._histograms[key] = Histogram(name, f"{name} histogram", labelnames=list(labels.keys()),
                                              namespace=self.namespace, registry=self.registry)
        return self._histograms[key]
