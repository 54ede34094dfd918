"""Shared domain types for the signal-to-trade pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal

OrderSide = Literal["BUY", "SELL"]


class Direction(str, Enum):
    """Recommendation direction as emitted by the model."""

    STRONG_BUY = "strong_buy"
    BUY = "buy"
    HOLD = "hold"
    SELL = "sell"
    STRONG_SELL = "strong_sell"

    @property
    def is_buy(self) -> bool:
        return self in (Direction.BUY, Direction.STRONG_BUY)

    @property
    def is_sell(self) -> bool:
        return self in (Direction.SELL, Direction.STRONG_SELL)

    @property
    def is_hold(self) -> bool:
        return self is Direction.HOLD

    @property
    def order_side(self) -> OrderSide:
        """Entry side for an actionable direction."""
        if self.is_hold:
            raise ValueError("hold_has_no_order_side")
        return "BUY" if self.is_buy else "SELL"


@dataclass(frozen=True, slots=True)
class Candle:
    """One closed or still-forming OHLCV bar."""

    symbol: str
    interval: str
    open_time: int
    close_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    trade_count: int = 0


@dataclass(frozen=True, slots=True)
class IndicatorSnapshot:
    """Indicator values for the most recent candle.

    A field that has not warmed up yet holds 0.
    """

    price: float
    sma_21: float
    sma_50: float
    sma_100: float
    ema_12: float
    ema_21: float
    ema_55: float
    rsi_14: float
    rsi_21: float
    macd_line: float
    macd_signal: float
    macd_histogram: float
    bb_upper: float
    bb_middle: float
    bb_lower: float
    atr: float
    psar_value: float
    psar_trend: int
    stoch_k: float
    stoch_d: float

    def as_dict(self) -> dict[str, float | int]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class Signal:
    """Validated outcome of one pipeline run, ready to persist."""

    symbol: str
    interval: str
    generated_at: str
    candle_open_time: int
    direction: Direction
    confidence: float
    price: float
    entry: float | None
    stop: float | None
    target: float | None
    rationale: str
    risk_reward: float | None = None

    @property
    def is_actionable(self) -> bool:
        return not self.direction.is_hold

    def as_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["direction"] = self.direction.value
        return payload


@dataclass(slots=True)
class Position:
    """Open venue position. Negative size means short."""

    symbol: str
    size: float
    entry_price: float
    unrealized_pnl: float = 0.0
    leverage: int = 1


@dataclass(slots=True)
class OrderResult:
    """Venue answer for a single order."""

    success: bool
    order_id: str | None = None
    client_order_id: str | None = None
    error: str | None = None


@dataclass(slots=True)
class BracketOrderResult:
    """Per-leg results of one bracket submission."""

    entry: OrderResult
    stop_loss: OrderResult | None = None
    take_profit: OrderResult | None = None

    @property
    def leg_errors(self) -> list[str]:
        errors: list[str] = []
        for name, leg in (("stop_loss", self.stop_loss), ("take_profit", self.take_profit)):
            if leg is None:
                errors.append(f"{name}: not_submitted")
            elif not leg.success:
                errors.append(f"{name}: {leg.error or 'rejected'}")
        return errors

    @property
    def order_ids(self) -> list[str]:
        legs = (self.entry, self.stop_loss, self.take_profit)
        return [leg.order_id for leg in legs if leg is not None and leg.order_id]


class TradeStatus(str, Enum):
    """Terminal states of the trade decision engine."""

    SKIPPED = "skipped"
    PLACED = "placed"
    FAILED = "failed"


class SkipReason(str, Enum):
    """Machine-readable reason for a skipped trade."""

    AUTO_TRADE_DISABLED = "auto_trade_disabled"
    HOLD_SIGNAL = "hold_signal"
    LOW_CONFIDENCE = "low_confidence"
    POSITION_EXISTS = "position_exists"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    INSUFFICIENT_RISK_BUDGET = "insufficient_risk_budget"


@dataclass(slots=True)
class TradeOutcome:
    """Result of evaluating one signal for execution."""

    status: TradeStatus
    reason: SkipReason | None = None
    detail: str | None = None
    order_ids: list[str] = field(default_factory=list)
    error: str | None = None
    degraded: bool = False
    leg_errors: list[str] = field(default_factory=list)
    size: float | None = None

    @property
    def executed(self) -> bool:
        return self.status is TradeStatus.PLACED

    def as_dict(self) -> dict[str, Any]:
        return {
            "executed": self.executed,
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
            "order_ids": list(self.order_ids),
            "error": self.error,
            "degraded": self.degraded,
            "leg_errors": list(self.leg_errors),
            "size": self.size,
        }


class PipelineStage(str, Enum):
    """Stages of one pipeline run, in execution order."""

    FETCH_CANDLES = "fetch_candles"
    PERSIST_CANDLES = "persist_candles"
    BUILD_INDICATORS = "build_indicators"
    RECOMMENDATION = "recommendation"
    DECODE = "decode"
    VALIDATION = "validation"
    PERSIST_SIGNAL = "persist_signal"
    PERSIST_INDICATORS = "persist_indicators"
    TRADE = "trade"
    COMPLETE = "complete"


class ErrorKind(str, Enum):
    """Error classification carried by a failed pipeline run."""

    MARKET_DATA = "market_data"
    INSUFFICIENT_DATA = "insufficient_data"
    RECOMMENDATION_UNAVAILABLE = "recommendation_unavailable"
    DECODE = "decode"
    VALIDATION = "validation"
    PERSISTENCE = "persistence"
    ROLLED_BACK = "rolled_back"
    ORPHANED_RECORD = "orphaned_record"
    UNEXPECTED = "unexpected"


@dataclass(slots=True)
class PipelineResult:
    """Aggregated outcome of one pipeline run."""

    symbol: str
    interval: str
    run_id: str = ""
    status: str = "unknown"
    stage: PipelineStage = PipelineStage.FETCH_CANDLES
    signal_id: int | None = None
    signal: Signal | None = None
    trade: TradeOutcome | None = None
    error_kind: ErrorKind | None = None
    validation_kind: str | None = None
    error: str | None = None
    orphan_id: int | None = None
    warnings: list[str] = field(default_factory=list)
    candles_analyzed: int = 0
    elapsed_ms: float = 0.0

    @property
    def degraded(self) -> bool:
        """Entry is live but at least one exit leg is missing."""
        return self.trade is not None and self.trade.executed and self.trade.degraded

    @property
    def ok(self) -> bool:
        return self.error_kind is None and not self.degraded

    def as_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "interval": self.interval,
            "run_id": self.run_id,
            "status": self.status,
            "ok": self.ok,
            "degraded": self.degraded,
            "stage": self.stage.value,
            "signal_id": self.signal_id,
            "signal": self.signal.as_dict() if self.signal else None,
            "trade": self.trade.as_dict() if self.trade else None,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "validation_kind": self.validation_kind,
            "error": self.error,
            "orphan_id": self.orphan_id,
            "warnings": list(self.warnings),
            "candles_analyzed": self.candles_analyzed,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }
