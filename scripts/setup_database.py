#!/usr/bin/env python3
"""
Setup script for the Bid Optimization Engine database

This script:
1. Checks database connectivity
2. Creates the change history, weight, goal and recommendation history tables
3. Seeds the global weight row
4. Provides status report

Usage:
    python scripts/setup_database.py [--dry-run]
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from bidding_engine import DatabaseConnector, EngineConfig, TransientFetchError
from bidding_engine.weights import GLOBAL_MARKET, WeightConfigStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def check_database_connection(db: DatabaseConnector) -> bool:
    """Check if database connection is working"""
    try:
        version = db.check_connection()
    except TransientFetchError as e:
        logger.error(f"✗ Database connection failed: {e}")
        return False
    logger.info("✓ Database connection successful")
    logger.info(f"  PostgreSQL version: {version}")
    return True


def report_tables(db: DatabaseConnector) -> dict:
    existing = db.existing_tables()
    for table, exists in existing.items():
        if exists:
            logger.info(f"✓ Table '{table}' already exists")
        else:
            logger.info(f"○ Table '{table}' needs to be created")
    return existing


def show_config_summary(config: EngineConfig) -> None:
    logger.info("=" * 60)
    logger.info("ENGINE CONFIGURATION")
    logger.info("=" * 60)
    logger.info(f"Cooldown Period: {config.cooldown_days} days")
    logger.info(f"Minimum Clicks: {config.min_clicks} (negatives: {config.negative_min_clicks})")
    logger.info(f"ACOS Window: +/-{config.acos_window:.0%}")
    logger.info(f"Multiplier Bounds: {config.min_multiplier} - {config.max_multiplier}")
    logger.info(f"Markets: {', '.join(config.markets)}")
    logger.info("=" * 60)


def main():
    parser = argparse.ArgumentParser(description='Setup Bid Optimization Engine database')
    parser.add_argument('--dry-run', action='store_true',
                        help='Check setup without making changes')
    parser.add_argument('--config', default='config/bidding_engine.json',
                        help='Configuration file path')
    args = parser.parse_args()

    logger.info("=" * 60)
    logger.info("BID OPTIMIZATION ENGINE SETUP")
    logger.info("=" * 60)
    logger.info(f"Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info(f"Mode: {'DRY RUN' if args.dry_run else 'LIVE'}")

    config = EngineConfig.from_file(args.config)
    show_config_summary(config)

    try:
        db = DatabaseConnector()
    except ValueError as e:
        logger.error(f"✗ Database configuration error: {e}")
        sys.exit(1)

    if not check_database_connection(db):
        sys.exit(1)

    existing = report_tables(db)

    if args.dry_run:
        missing = [table for table, exists in existing.items() if not exists]
        logger.info(f"DRY RUN: would create {len(missing)} table(s): {', '.join(missing) or 'none'}")
        return

    try:
        db.ensure_schema()
    except TransientFetchError as e:
        logger.error(f"✗ Schema setup failed: {e}")
        sys.exit(1)
    logger.info("✓ Schema created/verified")

    if all(report_tables(db).values()):
        weights = WeightConfigStore(db).get_weights(GLOBAL_MARKET)
        logger.info(f"✓ Global weights: t0={weights.t0} d30={weights.d30} "
                    f"d365={weights.d365} lifetime={weights.lifetime}")
        logger.info("Setup complete")
    else:
        logger.warning("⚠ Some tables are still missing")
        sys.exit(1)


if __name__ == '__main__':
    main()
