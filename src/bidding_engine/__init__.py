"""
Bid Optimization Engine
=======================

Aggregates advertising performance over trailing windows, blends the window
ACOS values with operator-configured weights and turns the result into
bounded bid and placement-modifier recommendations, gated by a post-change
cooldown. Also detects bid changes and negative-targeting candidates.
"""

from .aggregator import Window, WindowMetrics, aggregate_windows
from .change_history import BidChangeRecord, ChangeDetectionResult, ChangeHistoryLedger, CooldownCheck
from .combiner import BlendResult, blend_ratios
from .config import EngineConfig
from .database import DatabaseConnector
from .engine import BidOptimizationEngine, RecommendationRun
from .errors import BiddingEngineError, ConfigurationError, DataValidationError, TransientFetchError
from .ingestion import DateRange, PerformanceRow, ScopeFilter, TargetKey, normalize_row, normalize_rows
from .memory_store import InMemoryPerformanceStore
from .negatives import NegativeCandidate, NegativeTargetDetector
from .ratios import ConfidenceTier, RatioStatus, WindowRatio, calculate_ratio
from .recommendations import (
    KeywordBidPolicy,
    PlacementModifierPolicy,
    Recommendation,
    SearchTermFallbackPolicy,
)
from .scheduler import DailyJobRunner
from .telemetry import TelemetryClient
from .weights import GLOBAL_MARKET, WeightConfigStore, WeightSet

__version__ = "1.0.0"
