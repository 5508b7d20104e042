"""
Error taxonomy for the Bid Optimization Engine
"""


class BiddingEngineError(Exception):
    """Base class for all engine errors"""


class ConfigurationError(BiddingEngineError, ValueError):
    """
    Operator configuration is missing or malformed.

    Raised for a missing goal ratio, a missing weight set or a weight set
    that does not sum to 1. Never defaulted silently.
    """


class TransientFetchError(BiddingEngineError):
    """Store or network failure. The engine does not retry."""


class DataValidationError(BiddingEngineError, ValueError):
    """A performance row could not be normalized at ingestion"""
