#!/usr/bin/env python3
"""
Run the daily job runner in the foreground

Change detection runs at 02:00 UTC and recommendation generation at 03:00 UTC
(configurable). Stop with Ctrl+C.

Usage:
    python scripts/run_scheduler.py [--config config/bidding_engine.json] [--metrics-port 9108]
"""

import argparse
import logging
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from bidding_engine import BidOptimizationEngine, DailyJobRunner, DatabaseConnector, TelemetryClient
from bidding_engine.main import load_config, setup_logging

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description='Run the daily bid optimization jobs')
    parser.add_argument('--config', '-c', default='config/bidding_engine.json',
                        help='Configuration file path')
    parser.add_argument('--log-level', '-l', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default='INFO', help='Logging level')
    parser.add_argument('--metrics-port', type=int,
                        help='Expose Prometheus metrics on this port')
    args = parser.parse_args()

    setup_logging(args.log_level)

    config = load_config(args.config)
    config.validate()

    try:
        db = DatabaseConnector()
    except ValueError as e:
        logger.error(f"Database configuration error: {e}")
        sys.exit(1)

    telemetry = TelemetryClient(config.to_dict())
    if args.metrics_port:
        telemetry.serve(args.metrics_port)

    engine = BidOptimizationEngine(config, db, telemetry)
    runner = DailyJobRunner(engine, config.to_dict())

    def _signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, stopping...")
        runner.stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    logger.info("=" * 60)
    logger.info("Starting Scheduled Execution Mode")
    logger.info(f"Markets: {', '.join(config.markets)}")
    logger.info("Press Ctrl+C to stop")
    logger.info("=" * 60)

    runner.start(background=False)


if __name__ == '__main__':
    main()
