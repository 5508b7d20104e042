"""
Configuration module for the Bid Optimization Engine
"""

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MARKETS = ['DE', 'FR', 'IT', 'ES', 'NL', 'BE', 'AT', 'PL', 'SE', 'UK', 'US']


@dataclass
class EngineConfig:
    """Thresholds and limits for bid optimization"""

    # Statistical gates
    min_clicks: int = 30  # Clicks before a window ratio counts
    negative_min_clicks: int = 20  # Clicks before a zero-sale target is a negative candidate
    cooldown_days: int = 14  # Days after a bid change before a target is eligible again

    # Keyword bid policy
    acos_window: float = 0.03  # +/- 3 points around goal means maintain
    min_multiplier: float = 0.5
    max_multiplier: float = 1.5
    include_maintain: bool = False  # Emit maintain records instead of only counting them
    no_sales_flat_cut: bool = True  # Flat cut when material clicks produced no sales
    no_sales_high_click_threshold: int = 100
    no_sales_cut_high: float = 0.30
    no_sales_cut_low: float = 0.15

    # Search-term fallback policy
    fallback_min_factor: float = 0.20  # Floor as a fraction of the base bid
    fallback_max_factor: float = 1.50  # Ceiling as a fraction of the base bid
    fallback_band_lower: float = 0.9  # Ratio within 90%-110% of goal needs no change
    fallback_band_upper: float = 1.1
    fallback_increase_threshold: float = 0.8  # Ratio at or below 80% of goal earns a step increase

    # Placement modifier policy
    max_modifier: int = 900  # Percentage points
    placement_no_sales_cut: int = 25

    # Run limits
    max_targets_per_run: int = 500
    lookback_days: int = 365  # Trailing data fetched for a scheduled run
    markets: List[str] = field(default_factory=lambda: list(DEFAULT_MARKETS))
    change_sources: List[str] = field(default_factory=lambda: ['products', 'brands'])

    # Weight validation
    weight_tolerance: float = 0.01

    # Scheduler (UTC)
    change_detection_hour: int = 2
    recommendation_hour: int = 3

    # Telemetry
    enable_telemetry: bool = True
    telemetry_exporter: str = 'prometheus'  # prometheus|noop
    telemetry_namespace: str = 'bidding_engine'

    @classmethod
    def from_file(cls, config_path: str) -> 'EngineConfig':
        """Load configuration from JSON file"""
        try:
            with open(config_path, 'r') as f:
                config_data = json.load(f)
        except FileNotFoundError:
            logger.warning(f"Config file {config_path} not found, using defaults")
            return cls()
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Config file {config_path} is not valid JSON: {e}") from e

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(config_data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys in {config_path}: {', '.join(unknown)}")

        config = cls(**config_data)
        config.validate()
        return config

    def to_file(self, config_path: str) -> None:
        """Save configuration to JSON file"""
        with open(config_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> bool:
        """Validate configuration values"""
        errors = []

        if self.min_clicks < 1:
            errors.append("Minimum clicks must be at least 1")

        if self.negative_min_clicks < 1:
            errors.append("Negative minimum clicks must be at least 1")

        if self.cooldown_days < 0:
            errors.append("Cooldown days must be non-negative")

        if self.acos_window < 0 or self.acos_window >= 1:
            errors.append("ACOS window must be between 0 and 1")

        if self.min_multiplier <= 0 or self.min_multiplier >= self.max_multiplier:
            errors.append("Multiplier bounds must be positive with min below max")

        if self.fallback_min_factor <= 0 or self.fallback_min_factor >= self.fallback_max_factor:
            errors.append("Fallback bounds must be positive with min below max")

        if self.fallback_band_lower >= self.fallback_band_upper:
            errors.append("Fallback band lower must be less than upper")

        if not 0 < self.fallback_increase_threshold <= self.fallback_band_lower:
            errors.append("Fallback increase threshold must be positive and at most the band lower bound")

        for name in ('no_sales_cut_high', 'no_sales_cut_low'):
            if not 0 <= getattr(self, name) < 1:
                errors.append(f"{name} must be between 0 and 1")

        if self.max_modifier < 0:
            errors.append("Max placement modifier must be non-negative")

        if self.max_targets_per_run < 1:
            errors.append("Max targets per run must be at least 1")

        if self.lookback_days < 1:
            errors.append("Lookback days must be at least 1")

        if not self.markets:
            errors.append("At least one market must be configured")

        unknown_sources = set(self.change_sources) - {'products', 'brands'}
        if unknown_sources:
            errors.append(f"Unknown change sources: {', '.join(sorted(unknown_sources))}")

        if not 0 <= self.change_detection_hour < 24 or not 0 <= self.recommendation_hour < 24:
            errors.append("Scheduler hours must be between 0 and 23")

        if self.telemetry_exporter not in ('prometheus', 'noop'):
            errors.append("Telemetry exporter must be 'prometheus' or 'noop'")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

        return True
