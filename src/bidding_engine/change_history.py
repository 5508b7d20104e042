"""
Change History Ledger

Detects bid changes from consecutive daily bid snapshots, records them
append-only, and enforces the post-change cooldown that keeps bids from
oscillating.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .aggregator import group_rows_by_target
from .ingestion import SOURCE_BRANDS, SOURCE_PRODUCTS, PerformanceRow, ScopeFilter, TargetKey

DEFAULT_COOLDOWN_DAYS = 14


@dataclass(frozen=True)
class BidChangeRecord:
    """An observed bid change between two consecutive days"""
    target_id: str
    campaign_id: str
    ad_group_id: Optional[str]
    old_bid: Decimal
    new_bid: Decimal
    changed_at: date
    market: Optional[str] = None
    source: str = SOURCE_PRODUCTS
    match_type: Optional[str] = None
    campaign_name: Optional[str] = None
    ad_group_name: Optional[str] = None

    @property
    def key(self) -> TargetKey:
        return TargetKey(self.campaign_id, self.ad_group_id, self.target_id)

    @property
    def dedupe_key(self) -> Tuple[str, str, str, Optional[str], date]:
        return (self.source, self.target_id, self.campaign_id, self.ad_group_id, self.changed_at)


@dataclass
class CooldownCheck:
    """Result of a cooldown check"""
    allowed: bool
    reason: str
    days_since_last_change: Optional[int] = None
    days_until_eligible: Optional[int] = None
    last_change_date: Optional[date] = None


@dataclass
class ChangeDetectionResult:
    """Outcome of a change-detection run"""
    changes_detected: int = 0
    by_source: Dict[str, int] = field(default_factory=dict)
    records_seen: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'changes_detected': self.changes_detected,
            'by_source': dict(self.by_source),
            'records_seen': self.records_seen,
        }


def detect_bid_changes(rows: Iterable[PerformanceRow], source: str = SOURCE_PRODUCTS) -> List[BidChangeRecord]:
    """
    Compare consecutive calendar-day bid snapshots per target

    A change is emitted when day N and day N+1 both carry a bid and the bids
    differ. Gaps in the calendar never produce a change.
    """
    changes = []
    for key, group in group_rows_by_target(rows).items():
        previous = None
        for row in group:
            if (previous is not None
                    and row.date == previous.date + timedelta(days=1)
                    and previous.current_bid is not None
                    and row.current_bid is not None
                    and row.current_bid != previous.current_bid):
                changes.append(BidChangeRecord(
                    target_id=key.target_id,
                    campaign_id=key.campaign_id,
                    ad_group_id=key.ad_group_id,
                    old_bid=previous.current_bid,
                    new_bid=row.current_bid,
                    changed_at=row.date,
                    market=row.market,
                    source=source,
                    match_type=row.match_type,
                    campaign_name=row.campaign_name,
                    ad_group_name=row.ad_group_name,
                ))
            previous = row
    changes.sort(key=lambda c: (c.changed_at, str(c.key)))
    return changes


class InMemoryChangeStore:
    """Append-only change store keyed on the ledger's unique key"""

    def __init__(self):
        self._records: Dict[Tuple, BidChangeRecord] = {}

    def append_change(self, record: BidChangeRecord) -> bool:
        if record.dedupe_key in self._records:
            return False
        self._records[record.dedupe_key] = record
        return True

    def fetch_last_change(self, key: TargetKey) -> Optional[date]:
        dates = [r.changed_at for r in self._records.values() if r.key == key]
        return max(dates) if dates else None

    def fetch_last_changes(self, scope_filter: Optional[ScopeFilter] = None) -> Dict[TargetKey, date]:
        latest: Dict[TargetKey, date] = {}
        for record in self._records.values():
            if scope_filter is not None:
                if scope_filter.campaign_ids and record.campaign_id not in scope_filter.campaign_ids:
                    continue
                if scope_filter.market and record.market and record.market != scope_filter.market:
                    continue
            current = latest.get(record.key)
            if current is None or record.changed_at > current:
                latest[record.key] = record.changed_at
        return latest

    @property
    def records(self) -> List[BidChangeRecord]:
        return sorted(self._records.values(), key=lambda r: (r.changed_at, str(r.key)))


class ChangeHistoryLedger:
    """
    Records detected bid changes and answers cooldown questions

    The ledger only appends. A record already present under the same
    (source, target, campaign, ad group, date) key is ignored, so running
    detection twice over the same snapshots leaves the history unchanged.
    """

    def __init__(self, store, config: Optional[Dict[str, Any]] = None):
        """
        Initialize Change History Ledger

        Args:
            store: Object implementing append_change / fetch_last_change / fetch_last_changes
            config: Configuration dictionary
        """
        config = config or {}
        self.store = store
        self.logger = logging.getLogger(__name__)
        self.cooldown_days = int(config.get('cooldown_days', DEFAULT_COOLDOWN_DAYS))
        self.change_sources: Sequence[str] = tuple(
            config.get('change_sources', (SOURCE_PRODUCTS, SOURCE_BRANDS))
        )

    def record_changes(self, changes: Iterable[BidChangeRecord]) -> int:
        """Append changes, returning how many were new"""
        inserted = 0
        for change in changes:
            if self.store.append_change(change):
                inserted += 1
        return inserted

    def last_change_date(self, key: TargetKey) -> Optional[date]:
        return self.store.fetch_last_change(key)

    def days_since_last_change(self, key: TargetKey, today: Optional[date] = None) -> Optional[int]:
        last_change = self.last_change_date(key)
        if last_change is None:
            return None
        return ((today or date.today()) - last_change).days

    def check_cooldown(self, last_change: Optional[date], today: Optional[date] = None) -> CooldownCheck:
        """
        Check whether a target is out of its cooldown period

        Args:
            last_change: Date of the most recent bid change, or None
            today: Reference date (defaults to today)

        Returns:
            CooldownCheck with decision and reasoning
        """
        if last_change is None:
            return CooldownCheck(allowed=True, reason="No recorded bid change")

        days_since = ((today or date.today()) - last_change).days
        if days_since < self.cooldown_days:
            return CooldownCheck(
                allowed=False,
                reason=f"In cooldown period ({days_since}/{self.cooldown_days} days)",
                days_since_last_change=days_since,
                days_until_eligible=self.cooldown_days - days_since,
                last_change_date=last_change,
            )

        return CooldownCheck(
            allowed=True,
            reason=f"Last change {days_since} days ago",
            days_since_last_change=days_since,
            last_change_date=last_change,
        )

    def run_change_detection(self, rows_by_source: Dict[str, List[PerformanceRow]]) -> ChangeDetectionResult:
        """
        Detect and record bid changes for every configured source

        Args:
            rows_by_source: Daily snapshot rows keyed by source ('products', 'brands')

        Returns:
            ChangeDetectionResult with newly recorded changes per source
        """
        result = ChangeDetectionResult()
        for source in self.change_sources:
            rows = rows_by_source.get(source, [])
            result.records_seen += len(rows)
            detected = detect_bid_changes(rows, source)
            inserted = self.record_changes(detected)
            result.by_source[source] = inserted
            result.changes_detected += inserted
            self.logger.info(f"{source}: {len(detected)} bid changes detected, {inserted} new")

        self.logger.info(f"Change detection complete: {result.changes_detected} new changes recorded")
        return result
