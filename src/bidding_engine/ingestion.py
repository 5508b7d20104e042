"""
Canonical ingestion boundary for performance data.

Report tables store the same metric as text in one place and as numeric in
another (sales30d as TEXT, keywordBid as NUMERIC, ...). Every raw row is
normalized here exactly once so the rest of the engine only sees ints and
Decimals.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import DataValidationError
from .utils.units import ZERO, to_decimal

logger = logging.getLogger(__name__)

SOURCE_PRODUCTS = 'products'
SOURCE_BRANDS = 'brands'

# Column aliases: canonical name -> accepted raw keys, first match wins
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    'target_id': ('target_id', 'targeting', 'keyword', 'keyword_text', 'placement', 'placementClassification'),
    'campaign_id': ('campaign_id', 'campaignId'),
    'ad_group_id': ('ad_group_id', 'adGroupId'),
    'market': ('market', 'country'),
    'date': ('date', 'report_date'),
    'clicks': ('clicks',),
    'cost': ('cost', 'spend'),
    'sales': ('sales', 'sales30d', 'attributed_sales_30d'),
    'orders': ('orders', 'purchases30d', 'attributed_conversions_30d'),
    'current_bid': ('current_bid', 'keywordBid', 'keyword_bid', 'bid'),
    'match_type': ('match_type', 'matchType'),
    'campaign_name': ('campaign_name', 'campaignName'),
    'ad_group_name': ('ad_group_name', 'adGroupName'),
}


@dataclass(frozen=True)
class TargetKey:
    """Identity of an ad target within its campaign / ad group scope"""
    campaign_id: str
    ad_group_id: Optional[str]
    target_id: str

    def __str__(self) -> str:
        return f"{self.campaign_id}/{self.ad_group_id or '-'}/{self.target_id}"


@dataclass(frozen=True)
class PerformanceRow:
    """One observation for one target on one calendar date"""
    target_id: str
    campaign_id: str
    ad_group_id: Optional[str]
    date: date
    clicks: int = 0
    cost: Decimal = ZERO
    sales: Decimal = ZERO
    orders: int = 0
    current_bid: Optional[Decimal] = None
    market: Optional[str] = None
    match_type: Optional[str] = None
    campaign_name: Optional[str] = None
    ad_group_name: Optional[str] = None
    source: str = SOURCE_PRODUCTS

    @property
    def key(self) -> TargetKey:
        return TargetKey(self.campaign_id, self.ad_group_id, self.target_id)


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar date range"""
    start: Optional[date] = None
    end: Optional[date] = None

    def contains(self, day: date) -> bool:
        if self.start is not None and day < self.start:
            return False
        if self.end is not None and day > self.end:
            return False
        return True

    @classmethod
    def trailing(cls, days: int, today: Optional[date] = None) -> 'DateRange':
        today = today or date.today()
        return cls(start=today - timedelta(days=days), end=today)


@dataclass(frozen=True)
class ScopeFilter:
    """Typed filter criteria passed to the store instead of ad hoc SQL clauses"""
    market: Optional[str] = None
    campaign_ids: Tuple[str, ...] = field(default_factory=tuple)
    ad_group_ids: Tuple[str, ...] = field(default_factory=tuple)
    target_ids: Tuple[str, ...] = field(default_factory=tuple)
    source: Optional[str] = None

    def matches(self, row: PerformanceRow) -> bool:
        if self.market and row.market and row.market != self.market:
            return False
        if self.campaign_ids and row.campaign_id not in self.campaign_ids:
            return False
        if self.ad_group_ids and row.ad_group_id not in self.ad_group_ids:
            return False
        if self.target_ids and row.target_id not in self.target_ids:
            return False
        if self.source and row.source != self.source:
            return False
        return True


def _pick(raw: Dict[str, Any], name: str) -> Any:
    for alias in FIELD_ALIASES[name]:
        if alias in raw and raw[alias] is not None:
            return raw[alias]
    return None


def _to_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        return date.fromisoformat(value.strip()[:10])
    raise DataValidationError(f"Row has no usable date: {value!r}")


def _to_count(value: Any, name: str) -> int:
    amount = to_decimal(value)
    if amount < 0:
        raise DataValidationError(f"{name} must be >= 0, got {amount}")
    # Aggregated report columns sometimes carry fractional orders
    return int(amount)


def _to_amount(value: Any, name: str) -> Decimal:
    amount = to_decimal(value)
    if amount < 0:
        raise DataValidationError(f"{name} must be >= 0, got {amount}")
    return amount


def normalize_row(raw: Dict[str, Any], source: str = SOURCE_PRODUCTS) -> PerformanceRow:
    """
    Convert a raw report row into a PerformanceRow

    Args:
        raw: Row dictionary as returned by the store (snake_case or report camelCase keys)
        source: Report family the row comes from ('products' or 'brands')

    Returns:
        Normalized, immutable PerformanceRow

    Raises:
        DataValidationError: if identity fields are missing or a metric is negative or not numeric
    """
    target_id = _to_id(_pick(raw, 'target_id'))
    campaign_id = _to_id(_pick(raw, 'campaign_id'))
    if not target_id or not campaign_id:
        raise DataValidationError(f"Row is missing target or campaign id: {raw!r}")

    try:
        bid = to_decimal(_pick(raw, 'current_bid'), default=None)
        return PerformanceRow(
            target_id=target_id,
            campaign_id=campaign_id,
            ad_group_id=_to_id(_pick(raw, 'ad_group_id')),
            date=_to_date(_pick(raw, 'date')),
            clicks=_to_count(_pick(raw, 'clicks'), 'clicks'),
            cost=_to_amount(_pick(raw, 'cost'), 'cost'),
            sales=_to_amount(_pick(raw, 'sales'), 'sales'),
            orders=_to_count(_pick(raw, 'orders'), 'orders'),
            current_bid=bid,
            market=_to_id(_pick(raw, 'market')),
            match_type=_to_id(_pick(raw, 'match_type')),
            campaign_name=_pick(raw, 'campaign_name'),
            ad_group_name=_pick(raw, 'ad_group_name'),
            source=raw.get('source') or source,
        )
    except (InvalidOperation, ValueError) as e:
        if isinstance(e, DataValidationError):
            raise
        raise DataValidationError(f"Row has a non-numeric metric: {e}") from e


def normalize_rows(raw_rows: Iterable[Dict[str, Any]], source: str = SOURCE_PRODUCTS,
                   strict: bool = False) -> List[PerformanceRow]:
    """
    Normalize a batch of raw rows

    Args:
        raw_rows: Raw row dictionaries
        source: Report family for all rows in the batch
        strict: Raise on the first malformed row instead of skipping it

    Returns:
        List of PerformanceRows (malformed rows dropped unless strict)
    """
    rows = []
    rejected = 0
    for raw in raw_rows:
        try:
            rows.append(normalize_row(raw, source))
        except DataValidationError as e:
            if strict:
                raise
            rejected += 1
            logger.debug(f"Skipping malformed {source} row: {e}")

    if rejected:
        logger.warning(f"Rejected {rejected} malformed {source} rows during ingestion")
    return rows
