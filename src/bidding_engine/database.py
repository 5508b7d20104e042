"""
Database connector for the Bid Optimization Engine
"""

import logging
import os
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

import psycopg2
import psycopg2.extras

from .change_history import BidChangeRecord
from .errors import TransientFetchError
from .ingestion import SOURCE_BRANDS, SOURCE_PRODUCTS, DateRange, PerformanceRow, ScopeFilter, TargetKey, normalize_rows
from .recommendations import Recommendation
from .utils.units import to_decimal
from .weights import GLOBAL_MARKET, SEED_WEIGHTS, WeightSet

# Report tables per source, with their column names mapped to canonical names
SOURCE_TABLES: Dict[str, Dict[str, str]] = {
    SOURCE_PRODUCTS: {
        'table': '"s_products_search_terms"',
        'target_id': 'targeting',
        'campaign_id': '"campaignId"',
        'ad_group_id': '"adGroupId"',
        'market': 'country',
        'date': 'date',
        'clicks': 'clicks',
        'cost': 'cost',
        'sales': '"sales30d"',
        'orders': '"purchases30d"',
        'current_bid': '"keywordBid"',
        'match_type': '"matchType"',
        'campaign_name': '"campaignName"',
        'ad_group_name': '"adGroupName"',
    },
    SOURCE_BRANDS: {
        'table': '"s_brand_search_terms"',
        'target_id': 'keyword_text',
        'campaign_id': 'campaign_id',
        'ad_group_id': 'ad_group_id',
        'market': 'country',
        'date': 'date',
        'clicks': 'clicks',
        'cost': 'cost',
        'sales': 'sales',
        'orders': 'purchases',
        'current_bid': 'keyword_bid',
        'match_type': 'match_type',
        'campaign_name': 'campaign_name',
        'ad_group_name': 'ad_group_name',
    },
}

PLACEMENT_TABLE: Dict[str, str] = {
    'table': '"s_products_placement"',
    'target_id': '"placementClassification"',
    'campaign_id': '"campaignId"',
    'market': 'country',
    'date': 'date',
    'clicks': 'clicks',
    'cost': 'cost',
    'sales': '"sales30d"',
    'orders': '"purchases30d"',
    'campaign_name': '"campaignName"',
}

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS bid_change_history (
        id BIGSERIAL PRIMARY KEY,
        campaign_type TEXT NOT NULL,
        targeting TEXT NOT NULL,
        campaign_id TEXT NOT NULL,
        ad_group_id TEXT,
        campaign_name TEXT,
        ad_group_name TEXT,
        country TEXT,
        date_adjusted DATE NOT NULL,
        current_bid NUMERIC NOT NULL,
        previous_bid NUMERIC NOT NULL,
        match_type TEXT,
        created_at TIMESTAMP DEFAULT NOW()
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS bid_history_unique_change_idx
    ON bid_change_history (campaign_type, targeting, campaign_id, COALESCE(ad_group_id, ''), date_adjusted)
    """,
    "CREATE INDEX IF NOT EXISTS bid_history_targeting_campaign_idx ON bid_change_history (targeting, campaign_id)",
    "CREATE INDEX IF NOT EXISTS bid_history_date_idx ON bid_change_history (date_adjusted)",
    "CREATE INDEX IF NOT EXISTS bid_history_campaign_country_idx ON bid_change_history (campaign_id, country)",
    """
    CREATE TABLE IF NOT EXISTS "s_weight_config" (
        id SERIAL PRIMARY KEY,
        country TEXT NOT NULL DEFAULT 'ALL',
        t0_weight NUMERIC NOT NULL,
        d30_weight NUMERIC NOT NULL,
        d365_weight NUMERIC NOT NULL,
        lifetime_weight NUMERIC NOT NULL,
        updated_at TIMESTAMP DEFAULT NOW(),
        UNIQUE (country)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS "ACOS_Target_Campaign" (
        campaign_id TEXT PRIMARY KEY,
        country TEXT NOT NULL,
        campaign_name TEXT,
        acos_target NUMERIC NOT NULL,
        created_at TIMESTAMP DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS "s_recommendation_history" (
        id SERIAL PRIMARY KEY,
        country TEXT,
        campaign_id TEXT NOT NULL,
        campaign_name TEXT,
        ad_group_id TEXT,
        ad_group_name TEXT,
        targeting TEXT NOT NULL,
        match_type TEXT,
        recommendation_type TEXT NOT NULL,
        direction TEXT NOT NULL,
        old_value NUMERIC,
        recommended_value NUMERIC,
        change_percent NUMERIC,
        pre_acos_t0 NUMERIC,
        pre_acos_30d NUMERIC,
        pre_acos_365d NUMERIC,
        pre_acos_lifetime NUMERIC,
        pre_clicks_t0 INTEGER,
        pre_clicks_30d INTEGER,
        pre_clicks_365d INTEGER,
        pre_clicks_lifetime INTEGER,
        weighted_acos NUMERIC,
        acos_target NUMERIC,
        confidence TEXT,
        reason TEXT,
        created_at TIMESTAMP DEFAULT NOW()
    )
    """,
    'CREATE INDEX IF NOT EXISTS idx_rec_history_country ON "s_recommendation_history" (country)',
    'CREATE INDEX IF NOT EXISTS idx_rec_history_campaign ON "s_recommendation_history" (campaign_id)',
    'CREATE INDEX IF NOT EXISTS idx_rec_history_created ON "s_recommendation_history" (created_at DESC)',
]

SCHEMA_TABLES = ['bid_change_history', 's_weight_config', 'ACOS_Target_Campaign', 's_recommendation_history']


class DatabaseConnector:
    """PostgreSQL store for performance rows, change history, weights, goals and audit history"""

    def __init__(self, connection_string: str = None):
        """
        Initialize database connector

        Args:
            connection_string: PostgreSQL connection string (optional, will use env vars if not provided)
        """
        if connection_string:
            self.connection_string = connection_string
        else:
            db_host = os.getenv('DB_HOST', 'localhost')
            db_port = os.getenv('DB_PORT', '5432')
            db_name = os.getenv('DB_NAME', 'amazon_ads')
            db_user = os.getenv('DB_USER', 'postgres')
            db_password = os.getenv('DB_PASSWORD')

            if not db_password:
                raise ValueError("DB_PASSWORD environment variable is required")

            self.connection_string = f"postgresql://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"

        self.logger = logging.getLogger(__name__)

    def get_connection(self):
        """Get database connection"""
        return psycopg2.connect(self.connection_string)

    # ------------------------------------------------------------------ #
    # Query helpers
    # ------------------------------------------------------------------ #

    def _fetch_all(self, query: str, params: Sequence[Any], what: str) -> List[Dict[str, Any]]:
        conn = None
        try:
            conn = self.get_connection()
            with conn:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                    cursor.execute(query, tuple(params))
                    return [dict(row) for row in cursor.fetchall()]
        except psycopg2.Error as e:
            self.logger.error(f"Error fetching {what}: {e}")
            raise TransientFetchError(f"Error fetching {what}: {e}") from e
        finally:
            if conn is not None:
                conn.close()

    def _execute(self, query: str, params: Sequence[Any], what: str) -> Optional[Dict[str, Any]]:
        """Run one write statement, returning the RETURNING row if any"""
        conn = None
        try:
            conn = self.get_connection()
            with conn:
                with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                    cursor.execute(query, tuple(params))
                    row = cursor.fetchone() if cursor.description else None
                    return dict(row) if row else None
        except psycopg2.Error as e:
            self.logger.error(f"Error {what}: {e}")
            raise TransientFetchError(f"Error {what}: {e}") from e
        finally:
            if conn is not None:
                conn.close()

    @staticmethod
    def _scope_clauses(columns: Dict[str, str], scope_filter: Optional[ScopeFilter],
                       date_range: Optional[DateRange] = None) -> Tuple[str, List[Any]]:
        """Translate a ScopeFilter and DateRange into a parameterized WHERE clause"""
        clauses = []
        params: List[Any] = []
        scope_filter = scope_filter or ScopeFilter()

        if scope_filter.market:
            clauses.append(f"{columns['market']} = %s")
            params.append(scope_filter.market)
        if scope_filter.campaign_ids:
            clauses.append(f"{columns['campaign_id']}::text = ANY(%s)")
            params.append(list(scope_filter.campaign_ids))
        if scope_filter.ad_group_ids and 'ad_group_id' in columns:
            clauses.append(f"{columns['ad_group_id']}::text = ANY(%s)")
            params.append(list(scope_filter.ad_group_ids))
        if scope_filter.target_ids:
            clauses.append(f"{columns['target_id']} = ANY(%s)")
            params.append(list(scope_filter.target_ids))
        if date_range is not None and date_range.start is not None:
            clauses.append(f"{columns['date']}::date >= %s")
            params.append(date_range.start)
        if date_range is not None and date_range.end is not None:
            clauses.append(f"{columns['date']}::date <= %s")
            params.append(date_range.end)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    @staticmethod
    def _select_list(columns: Dict[str, str]) -> str:
        return ',\n            '.join(
            f"{column} AS {name}" for name, column in columns.items() if name != 'table'
        )

    # ------------------------------------------------------------------ #
    # Performance data
    # ------------------------------------------------------------------ #

    def fetch_performance_rows(self, scope_filter: Optional[ScopeFilter] = None,
                               date_range: Optional[DateRange] = None) -> List[PerformanceRow]:
        """
        Get daily keyword / search-term rows for the scope

        Args:
            scope_filter: Market, campaign, ad group, target and source restrictions
            date_range: Inclusive date range (unbounded if omitted)

        Returns:
            Normalized PerformanceRows from every matching source
        """
        sources = [scope_filter.source] if scope_filter and scope_filter.source else list(SOURCE_TABLES)
        rows: List[PerformanceRow] = []
        for source in sources:
            columns = SOURCE_TABLES[source]
            where, params = self._scope_clauses(columns, scope_filter, date_range)
            query = f"""
            SELECT
            {self._select_list(columns)}
            FROM {columns['table']}
            {where}
            ORDER BY {columns['date']}
            """
            raw = self._fetch_all(query, params, f"{source} performance rows")
            rows.extend(normalize_rows(raw, source))
        return rows

    def fetch_placement_rows(self, scope_filter: Optional[ScopeFilter] = None,
                             date_range: Optional[DateRange] = None) -> List[PerformanceRow]:
        """Daily placement rows, one target per (campaign, placement)"""
        where, params = self._scope_clauses(PLACEMENT_TABLE, scope_filter, date_range)
        query = f"""
        SELECT
            {self._select_list(PLACEMENT_TABLE)}
        FROM {PLACEMENT_TABLE['table']}
        {where}
        ORDER BY {PLACEMENT_TABLE['date']}
        """
        raw = self._fetch_all(query, params, "placement rows")
        return normalize_rows(raw, SOURCE_PRODUCTS)

    def fetch_placement_modifiers(self, scope_filter: Optional[ScopeFilter] = None) -> Dict[Tuple[str, str], Decimal]:
        """Latest placement modifier (percent) per (campaign_id, placement)"""
        query = """
        SELECT DISTINCT ON ("CampaignId", placement)
            "CampaignId"::text AS campaign_id,
            placement,
            percent
        FROM "Bid_Adjustments"
        {where}
        ORDER BY "CampaignId", placement, created_at DESC
        """
        params: List[Any] = []
        where = ""
        if scope_filter is not None and scope_filter.campaign_ids:
            where = 'WHERE "CampaignId"::text = ANY(%s)'
            params.append(list(scope_filter.campaign_ids))

        rows = self._fetch_all(query.format(where=where), params, "placement modifiers")
        return {
            (row['campaign_id'], row['placement']): to_decimal(row['percent'])
            for row in rows
        }

    # ------------------------------------------------------------------ #
    # Change history
    # ------------------------------------------------------------------ #

    def append_change(self, record: BidChangeRecord) -> bool:
        """Insert a bid change; returns False when the change was already recorded"""
        query = """
        INSERT INTO bid_change_history (
            campaign_type, targeting, campaign_id, ad_group_id, campaign_name,
            ad_group_name, country, date_adjusted, current_bid, previous_bid, match_type
        ) VALUES (
            %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s
        )
        ON CONFLICT DO NOTHING
        RETURNING id
        """
        row = self._execute(query, (
            record.source, record.target_id, record.campaign_id, record.ad_group_id,
            record.campaign_name, record.ad_group_name, record.market, record.changed_at,
            record.new_bid, record.old_bid, record.match_type
        ), "recording bid change")
        return row is not None

    def fetch_last_change(self, key: TargetKey) -> Optional[date]:
        query = """
        SELECT MAX(date_adjusted) AS last_change
        FROM bid_change_history
        WHERE targeting = %s
        AND campaign_id = %s
        AND ad_group_id IS NOT DISTINCT FROM %s
        """
        rows = self._fetch_all(query, (key.target_id, key.campaign_id, key.ad_group_id), "last bid change")
        return rows[0]['last_change'] if rows else None

    def fetch_last_changes(self, scope_filter: Optional[ScopeFilter] = None) -> Dict[TargetKey, date]:
        """Most recent change date per target, in one query"""
        columns = {
            'market': 'country',
            'campaign_id': 'campaign_id',
            'ad_group_id': 'ad_group_id',
            'target_id': 'targeting',
            'date': 'date_adjusted',
        }
        where, params = self._scope_clauses(columns, scope_filter)
        query = f"""
        SELECT campaign_id, ad_group_id, targeting, MAX(date_adjusted) AS last_change
        FROM bid_change_history
        {where}
        GROUP BY campaign_id, ad_group_id, targeting
        """
        rows = self._fetch_all(query, params, "last bid changes")
        return {
            TargetKey(str(row['campaign_id']), row['ad_group_id'], row['targeting']): row['last_change']
            for row in rows
        }

    # ------------------------------------------------------------------ #
    # Weights
    # ------------------------------------------------------------------ #

    @staticmethod
    def _weight_set(row: Dict[str, Any]) -> WeightSet:
        return WeightSet.from_values(row['t0_weight'], row['d30_weight'], row['d365_weight'], row['lifetime_weight'])

    def get_weights(self, market: str) -> Optional[WeightSet]:
        query = """
        SELECT t0_weight, d30_weight, d365_weight, lifetime_weight
        FROM "s_weight_config"
        WHERE country = %s
        """
        rows = self._fetch_all(query, (market,), "weight configuration")
        return self._weight_set(rows[0]) if rows else None

    def set_weights(self, market: str, weights: WeightSet) -> None:
        query = """
        INSERT INTO "s_weight_config" (country, t0_weight, d30_weight, d365_weight, lifetime_weight, updated_at)
        VALUES (%s, %s, %s, %s, %s, NOW())
        ON CONFLICT (country)
        DO UPDATE SET
            t0_weight = EXCLUDED.t0_weight,
            d30_weight = EXCLUDED.d30_weight,
            d365_weight = EXCLUDED.d365_weight,
            lifetime_weight = EXCLUDED.lifetime_weight,
            updated_at = NOW()
        """
        self._execute(query, (market, weights.t0, weights.d30, weights.d365, weights.lifetime),
                      "saving weight configuration")

    def list_weights(self) -> Dict[str, WeightSet]:
        query = """
        SELECT country, t0_weight, d30_weight, d365_weight, lifetime_weight
        FROM "s_weight_config"
        ORDER BY country
        """
        rows = self._fetch_all(query, (), "weight configurations")
        return {row['country']: self._weight_set(row) for row in rows}

    # ------------------------------------------------------------------ #
    # Goal ratios
    # ------------------------------------------------------------------ #

    def get_goal_ratio(self, campaign_id: str) -> Optional[Decimal]:
        query = 'SELECT acos_target FROM "ACOS_Target_Campaign" WHERE campaign_id = %s'
        rows = self._fetch_all(query, (str(campaign_id),), "goal ratio")
        return to_decimal(rows[0]['acos_target'], default=None) if rows else None

    def get_goal_ratios(self, scope_filter: Optional[ScopeFilter] = None) -> Dict[str, Decimal]:
        columns = {'market': 'country', 'campaign_id': 'campaign_id', 'date': 'created_at'}
        scope = ScopeFilter(
            market=scope_filter.market if scope_filter else None,
            campaign_ids=scope_filter.campaign_ids if scope_filter else (),
        )
        where, params = self._scope_clauses(columns, scope)
        query = f'SELECT campaign_id, acos_target FROM "ACOS_Target_Campaign" {where}'
        rows = self._fetch_all(query, params, "goal ratios")
        return {str(row['campaign_id']): to_decimal(row['acos_target']) for row in rows}

    def set_goal_ratio(self, campaign_id: str, market: str, goal_ratio: Decimal,
                       campaign_name: Optional[str] = None) -> None:
        query = """
        INSERT INTO "ACOS_Target_Campaign" (campaign_id, country, campaign_name, acos_target)
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (campaign_id)
        DO UPDATE SET
            country = EXCLUDED.country,
            campaign_name = COALESCE(EXCLUDED.campaign_name, "ACOS_Target_Campaign".campaign_name),
            acos_target = EXCLUDED.acos_target
        """
        self._execute(query, (str(campaign_id), market, campaign_name, goal_ratio), "saving goal ratio")

    # ------------------------------------------------------------------ #
    # Recommendation history
    # ------------------------------------------------------------------ #

    def save_recommendation(self, recommendation: Recommendation) -> Optional[int]:
        """
        Save a recommendation to the audit history

        Returns:
            ID of the history row
        """
        ratios = recommendation.per_window_ratios
        clicks = recommendation.per_window_clicks
        query = """
        INSERT INTO "s_recommendation_history" (
            country, campaign_id, campaign_name, ad_group_id, ad_group_name, targeting,
            match_type, recommendation_type, direction, old_value, recommended_value, change_percent,
            pre_acos_t0, pre_acos_30d, pre_acos_365d, pre_acos_lifetime,
            pre_clicks_t0, pre_clicks_30d, pre_clicks_365d, pre_clicks_lifetime,
            weighted_acos, acos_target, confidence, reason
        ) VALUES (
            %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
            %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s
        )
        RETURNING id
        """
        row = self._execute(query, (
            recommendation.market, recommendation.campaign_id, recommendation.campaign_name,
            recommendation.ad_group_id, recommendation.ad_group_name, recommendation.target_id,
            recommendation.match_type, recommendation.recommendation_type, recommendation.direction,
            recommendation.current_value, recommendation.recommended_value, recommendation.change_percent,
            ratios.get('t0'), ratios.get('d30'), ratios.get('d365'), ratios.get('lifetime'),
            clicks.get('t0'), clicks.get('d30'), clicks.get('d365'), clicks.get('lifetime'),
            recommendation.blended_ratio, recommendation.goal_ratio,
            recommendation.confidence_tier.label, recommendation.rationale
        ), "saving recommendation")
        return row['id'] if row else None

    # ------------------------------------------------------------------ #
    # Schema
    # ------------------------------------------------------------------ #

    def check_connection(self) -> str:
        """Return the server version string"""
        rows = self._fetch_all("SELECT version() AS version", (), "server version")
        return rows[0]['version']

    def existing_tables(self) -> Dict[str, bool]:
        query = """
        SELECT table_name
        FROM information_schema.tables
        WHERE table_name = ANY(%s)
        """
        rows = self._fetch_all(query, (SCHEMA_TABLES,), "existing tables")
        present = {row['table_name'] for row in rows}
        return {table: table in present for table in SCHEMA_TABLES}

    def ensure_schema(self) -> None:
        """Create tables and indexes, and seed the global weight row"""
        seed = """
        INSERT INTO "s_weight_config" (country, t0_weight, d30_weight, d365_weight, lifetime_weight)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (country) DO NOTHING
        """
        conn = None
        try:
            conn = self.get_connection()
            with conn:
                with conn.cursor() as cursor:
                    for statement in SCHEMA_STATEMENTS:
                        cursor.execute(statement)
                    cursor.execute(seed, (
                        GLOBAL_MARKET, SEED_WEIGHTS['t0'], SEED_WEIGHTS['d30'],
                        SEED_WEIGHTS['d365'], SEED_WEIGHTS['lifetime']
                    ))
        except psycopg2.Error as e:
            self.logger.error(f"Error creating schema: {e}")
            raise TransientFetchError(f"Error creating schema: {e}") from e
        finally:
            if conn is not None:
                conn.close()
        self.logger.info(f"Schema verified: {', '.join(SCHEMA_TABLES)}")
