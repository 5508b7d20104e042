#!/usr/bin/env python3
"""
Show and update blending weights per market, and goal ratios per campaign

Usage:
    python scripts/manage_weights.py show
    python scripts/manage_weights.py set --market DE --t0 0.4 --d30 0.3 --d365 0.2 --lifetime 0.1
    python scripts/manage_weights.py goals show --market DE
    python scripts/manage_weights.py goals set --campaign 1234 --market DE --goal 0.25 --name "Shoes Exact"
"""

import argparse
import logging
import sys
from decimal import InvalidOperation
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from bidding_engine import BiddingEngineError, ConfigurationError, DatabaseConnector, WeightConfigStore, WeightSet
from bidding_engine.ingestion import ScopeFilter
from bidding_engine.utils.units import format_percent, to_decimal
from bidding_engine.weights import GLOBAL_MARKET

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def print_weights(store: WeightConfigStore) -> None:
    rows = store.describe()
    print("\n" + "=" * 60)
    print("WEIGHT CONFIGURATION")
    print("=" * 60)
    print(f"{'Market':<8}{'T0':>10}{'30D':>10}{'365D':>10}{'Lifetime':>10}{'Sum':>10}")
    for row in rows:
        print(f"{row['market']:<8}{row['t0']:>10}{row['d30']:>10}{row['d365']:>10}"
              f"{row['lifetime']:>10}{row['total']:>10}")
    print("=" * 60)


def print_goals(db: DatabaseConnector, market: str) -> None:
    goals = db.get_goal_ratios(ScopeFilter(market=market))
    print("\n" + "=" * 60)
    print(f"GOAL RATIOS ({market or 'all markets'})")
    print("=" * 60)
    print(f"{'Campaign':<40}{'Goal':>10}")
    for campaign_id in sorted(goals):
        print(f"{campaign_id:<40}{format_percent(goals[campaign_id]):>10}")
    print("=" * 60)


def set_goal(db: DatabaseConnector, args) -> None:
    goal = to_decimal(args.goal, default=None)
    if goal is None or goal <= 0:
        raise ConfigurationError(f"Goal ratio must be positive (got {args.goal})")
    db.set_goal_ratio(args.campaign, args.market.upper(), goal, args.name)
    stored = db.get_goal_ratio(args.campaign)
    logger.info(f"✓ Goal for campaign {args.campaign} set to {format_percent(stored)}")


def main():
    parser = argparse.ArgumentParser(description='Manage blending weights and campaign goal ratios')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('show', help='Show all weight rows')

    set_parser = subparsers.add_parser('set', help='Replace the weight row for a market')
    set_parser.add_argument('--market', default=GLOBAL_MARKET, help=f'Market code (default: {GLOBAL_MARKET})')
    set_parser.add_argument('--t0', required=True, help='Weight since last bid change')
    set_parser.add_argument('--d30', required=True, help='Weight of the trailing 30 days')
    set_parser.add_argument('--d365', required=True, help='Weight of the trailing 365 days')
    set_parser.add_argument('--lifetime', required=True, help='Weight of the full history')

    goals_parser = subparsers.add_parser('goals', help='Show or set campaign goal ratios')
    goal_commands = goals_parser.add_subparsers(dest='goal_command', required=True)
    goals_show = goal_commands.add_parser('show', help='List goal ratios')
    goals_show.add_argument('--market', help='Only campaigns in this market')
    goals_set = goal_commands.add_parser('set', help='Set the goal ratio of a campaign')
    goals_set.add_argument('--campaign', required=True, help='Campaign ID')
    goals_set.add_argument('--market', required=True, help='Market code of the campaign')
    goals_set.add_argument('--goal', required=True, help='Target cost-to-sales ratio, e.g. 0.25')
    goals_set.add_argument('--name', help='Campaign name')

    args = parser.parse_args()

    try:
        db = DatabaseConnector()
        if args.command == 'goals':
            if args.goal_command == 'set':
                set_goal(db, args)
                print_goals(db, args.market.upper())
            else:
                print_goals(db, args.market.upper() if args.market else None)
            return

        store = WeightConfigStore(db)
        if args.command == 'set':
            weights = WeightSet.from_values(args.t0, args.d30, args.d365, args.lifetime)
            store.set_weights(args.market.upper(), weights)
            logger.info(f"✓ Weights updated for {args.market.upper()}")
        print_weights(store)
    except (BiddingEngineError, ValueError, InvalidOperation) as e:
        logger.error(f"✗ {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
