#!/usr/bin/env python3
"""
Main script for the Bid Optimization Engine
Usage: python -m bidding_engine.main [options]
"""

import argparse
import json
import logging
import os
import sys
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .config import EngineConfig
from .database import DatabaseConnector
from .engine import BidOptimizationEngine, RecommendationRun
from .errors import BiddingEngineError
from .ingestion import DateRange, ScopeFilter
from .telemetry import TelemetryClient

MODES = ['recommend', 'search-terms', 'placements', 'negatives', 'detect-changes', 'daily']


def setup_logging(level: str = 'INFO') -> None:
    """Setup logging configuration"""
    log_level = getattr(logging, level.upper(), logging.INFO)
    os.makedirs('logs', exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(f'logs/bidding_engine_{datetime.now().strftime("%Y%m%d")}.log')
        ]
    )


def load_config(config_path: str) -> EngineConfig:
    """Load configuration from file or create default"""
    if os.path.exists(config_path):
        return EngineConfig.from_file(config_path)
    config = EngineConfig()
    if os.path.dirname(config_path):
        os.makedirs(os.path.dirname(config_path), exist_ok=True)
    config.to_file(config_path)
    logging.getLogger(__name__).info(f"Config file {config_path} not found, created default configuration")
    return config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Bid Optimization Engine')
    parser.add_argument('--mode', choices=MODES, default='recommend',
                        help='Operation to run')
    parser.add_argument('--config', '-c', default='config/bidding_engine.json',
                        help='Configuration file path')
    parser.add_argument('--market', '-k', help='Market code (e.g. DE, US)')
    parser.add_argument('--campaigns', '-p', nargs='+',
                        help='Specific campaign IDs to analyze (default: all)')
    parser.add_argument('--start', type=date.fromisoformat, help='First date of data (YYYY-MM-DD)')
    parser.add_argument('--end', type=date.fromisoformat, help='Last date of data and reference date (YYYY-MM-DD)')
    parser.add_argument('--output', '-o', default='reports/bid_recommendations.json',
                        help='Output file path')
    parser.add_argument('--log-level', '-l', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default='INFO', help='Logging level')
    parser.add_argument('--max-recommendations', '-m', type=int, default=100,
                        help='Maximum number of recommendations to print and export')
    parser.add_argument('--dry-run', action='store_true',
                        help='Print results without writing the output file')
    return parser


def print_run(title: str, run: RecommendationRun, limit: int) -> None:
    summary = run.summary
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)
    print(f"Analysis completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"Targets analyzed: {summary['targets_analyzed']}")
    print(f"Recommendations: {summary['recommendations_produced']} "
          f"({summary['increase']} increase, {summary['decrease']} decrease, {summary['maintain']} maintain)")
    print(f"By confidence: {summary['by_confidence']}")
    print(f"Skipped: {summary['skipped']}")
    print("=" * 60)

    if run.recommendations:
        print("\nTOP RECOMMENDATIONS:")
        print("-" * 60)
        for i, rec in enumerate(run.recommendations[:limit], 1):
            print(f"{i:2d}. {rec.target_id} (campaign {rec.campaign_id}, ad group {rec.ad_group_id or '-'})")
            print(f"     {rec.recommendation_type.upper()}: {rec.current_value} -> {rec.recommended_value} "
                  f"({rec.change_percent:+}%)")
            print(f"     Confidence: {rec.confidence_tier.label}")
            print(f"     Reason: {rec.rationale}")
            print()


def write_output(payload: Dict[str, Any], output_path: str) -> None:
    if os.path.dirname(output_path):
        os.makedirs(os.path.dirname(output_path), exist_ok=True)
    with open(output_path, 'w') as f:
        json.dump(payload, f, indent=2, default=str)
    print(f"Results exported to: {output_path}")


def run_mode(engine: BidOptimizationEngine, args: argparse.Namespace) -> Dict[str, Any]:
    """Run the selected mode and return the payload to export"""
    scope_filter = ScopeFilter(market=args.market, campaign_ids=tuple(args.campaigns or ()))
    date_range = DateRange(start=args.start, end=args.end) if (args.start or args.end) else None

    if args.mode in ('recommend', 'search-terms', 'placements'):
        if args.mode == 'recommend':
            run = engine.compute_recommendations(scope_filter, date_range, args.market)
            title = "KEYWORD BID RECOMMENDATIONS"
        elif args.mode == 'search-terms':
            run = engine.compute_search_term_recommendations(scope_filter, date_range, args.market)
            title = "SEARCH TERM BID RECOMMENDATIONS"
        else:
            run = engine.compute_placement_recommendations(scope_filter, date_range, args.market)
            title = "PLACEMENT MODIFIER RECOMMENDATIONS"
        run.recommendations = run.recommendations[:args.max_recommendations]
        print_run(title, run, min(10, args.max_recommendations))
        return run.to_dict()

    if args.mode == 'negatives':
        candidates = engine.detect_negative_targets(scope_filter, date_range)[:args.max_recommendations]
        print(f"\nNegative candidates: {len(candidates)}")
        for i, candidate in enumerate(candidates[:10], 1):
            print(f"{i:2d}. [{candidate.priority}] {candidate.target_id} ({candidate.negative_type}) - "
                  f"{candidate.clicks} clicks, {candidate.cost} cost, CPC {candidate.cpc}")
        return {'negative_candidates': [c.to_dict() for c in candidates]}

    if args.mode == 'detect-changes':
        result = engine.run_change_detection(scope_filter, date_range)
        print(f"\nBid changes detected: {result.changes_detected} {result.by_source}")
        return result.to_dict()

    markets: Optional[List[str]] = [args.market] if args.market else None
    result = engine.generate_daily_recommendations(markets, today=args.end)
    print(f"\nDaily recommendations saved: {result['total']} across {result['markets']} markets")
    if result['failed_markets']:
        print(f"Skipped markets: {', '.join(result['failed_markets'])}")
    for failure in result['config_errors']:
        print(f"  {failure['market']}: {failure['error']}")
    return result


def main():
    """Main function"""
    load_dotenv()
    args = build_parser().parse_args()

    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.config)
        config.validate()
        logger.info("Configuration loaded and validated")

        try:
            db_connector = DatabaseConnector()
        except ValueError as e:
            logger.error(f"Database configuration error: {e}")
            logger.error("Please ensure DB_HOST, DB_PORT, DB_NAME, DB_USER, and DB_PASSWORD are set")
            sys.exit(1)
        logger.info("Database connector initialized")

        engine = BidOptimizationEngine(config, db_connector, TelemetryClient(config.to_dict()))
        payload = run_mode(engine, args)

        if args.dry_run:
            print("DRY RUN: No output written")
        else:
            write_output(payload, args.output)

        logger.info(f"{args.mode} completed successfully")

    except BiddingEngineError as e:
        logger.error(f"{args.mode} failed: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
