"""Error taxonomy for the signal pipeline."""

from __future__ import annotations

from enum import Enum


class SignalTradingError(Exception):
    """Base error for every documented failure in the pipeline."""


class MarketDataError(SignalTradingError):
    """Raised when the market data source fails or returns a malformed payload."""


class InsufficientDataError(SignalTradingError):
    """Raised when a candle series is shorter than the indicator floor."""

    def __init__(self, available: int, required: int) -> None:
        super().__init__(f"insufficient_candles: {available} < {required}")
        self.available = available
        self.required = required


class RecommendationEngineError(SignalTradingError):
    """Raised when the recommendation engine cannot be reached."""


class RecommendationDecodeError(SignalTradingError):
    """Raised when model output cannot be decoded into a recommendation."""


class ValidationErrorKind(str, Enum):
    """Which business rule rejected a recommendation."""

    INVALID_DIRECTION = "invalid_direction"
    CONFIDENCE_OUT_OF_RANGE = "confidence_out_of_range"
    NON_POSITIVE_PRICE = "non_positive_price"
    INVERTED_LEVELS = "inverted_levels"
    DEGENERATE_RISK = "degenerate_risk"


class RecommendationValidationError(SignalTradingError):
    """Raised when a decoded recommendation breaks a hard rule."""

    def __init__(self, kind: ValidationErrorKind, message: str) -> None:
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind


class InsufficientRiskBudgetError(SignalTradingError):
    """Raised when no tradable size fits inside the risk budget."""


class StoreError(SignalTradingError):
    """Raised when the persistent store rejects a read or write."""


class OrphanedRecordError(SignalTradingError):
    """Raised when a signal survives a failed rollback and needs manual cleanup."""

    def __init__(self, signal_id: int, cause: str) -> None:
        super().__init__(f"orphaned_signal: id={signal_id} ({cause})")
        self.signal_id = signal_id


class VenueError(SignalTradingError):
    """Raised when the execution venue cannot be reached or rejects a read."""
