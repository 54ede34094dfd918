"""Decides whether a validated signal becomes a bracket order."""

from __future__ import annotations

from signal_trading.config import Settings
from signal_trading.errors import InsufficientRiskBudgetError, VenueError
from signal_trading.interfaces import ExecutionVenue
from signal_trading.risk.sizing import risk_amount, size_position
from signal_trading.types import (
    BracketOrderResult,
    Signal,
    SkipReason,
    TradeOutcome,
    TradeStatus,
)
from signal_trading.utils.logging import get_logger, log_order_execution, log_risk_event


class TradeDecisionEngine:
    """Evaluate, size and place one bracket per signal.

    Venue state is read fresh on every call. There are no retries here; a caller
    that wants to retry must call execute() again so the checks run from scratch.
    """

    def __init__(
        self,
        venue: ExecutionVenue,
        *,
        auto_trade_enabled: bool = True,
        min_confidence: float = 60.0,
        min_balance: float = 10.0,
        risk_fraction: float = 0.02,
        leverage: int = 1,
        size_step: float = 0.001,
        min_size: float = 0.001,
    ) -> None:
        self._venue = venue
        self.auto_trade_enabled = auto_trade_enabled
        self._min_confidence = min_confidence
        self._min_balance = min_balance
        self._risk_fraction = risk_fraction
        self._leverage = leverage
        self._size_step = size_step
        self._min_size = min_size
        self._logger = get_logger("signal_trading.exec.decision")

    @classmethod
    def from_settings(cls, settings: Settings, venue: ExecutionVenue) -> "TradeDecisionEngine":
        return cls(
            venue,
            auto_trade_enabled=settings.auto_trade_enabled,
            min_confidence=settings.min_confidence_to_trade,
            min_balance=settings.min_balance,
            risk_fraction=settings.risk_fraction,
            leverage=settings.leverage,
            size_step=settings.size_step,
            min_size=settings.min_size,
        )

    def execute(self, signal: Signal) -> TradeOutcome:
        """Run Evaluate -> Size -> Place and return the terminal outcome."""
        if not self.auto_trade_enabled:
            return self._skip(signal, SkipReason.AUTO_TRADE_DISABLED)
        if not signal.is_actionable:
            return self._skip(signal, SkipReason.HOLD_SIGNAL)
        if signal.confidence < self._min_confidence:
            return self._skip(
                signal,
                SkipReason.LOW_CONFIDENCE,
                detail=f"{signal.confidence} < {self._min_confidence}",
            )

        entry, stop, target = signal.entry, signal.stop, signal.target
        if entry is None or stop is None or target is None:
            return self._fail(signal, "actionable_signal_missing_levels")

        try:
            positions = self._venue.get_open_positions()
        except VenueError as exc:
            return self._fail(signal, f"positions_unavailable: {exc}")
        if any(p.symbol == signal.symbol and p.size != 0 for p in positions):
            return self._skip(signal, SkipReason.POSITION_EXISTS)

        try:
            balance = self._venue.get_balance()
        except VenueError as exc:
            return self._fail(signal, f"balance_unavailable: {exc}")
        if balance < self._min_balance:
            return self._skip(
                signal,
                SkipReason.INSUFFICIENT_BALANCE,
                detail=f"{balance} < {self._min_balance}",
            )

        try:
            size = size_position(
                balance * self._leverage,
                entry,
                stop,
                self._risk_fraction,
                size_step=self._size_step,
                min_size=self._min_size,
            )
        except InsufficientRiskBudgetError as exc:
            return self._skip(signal, SkipReason.INSUFFICIENT_RISK_BUDGET, detail=str(exc))

        side = signal.direction.order_side
        self._logger.info(
            "bracket_order_submitting",
            symbol=signal.symbol,
            side=side,
            size=size,
            entry=entry,
            stop=stop,
            target=target,
            balance=balance,
            risk_usd=round(risk_amount(size, entry, stop), 2),
        )
        try:
            result = self._venue.place_bracket_order(
                signal.symbol,
                side,
                size,
                entry,
                stop,
                target,
                leverage=self._leverage,
            )
        except VenueError as exc:
            return self._fail(signal, f"bracket_submission_failed: {exc}", size=size)

        return self._placed_outcome(signal, side, size, result)

    def _placed_outcome(
        self,
        signal: Signal,
        side: str,
        size: float,
        result: BracketOrderResult,
    ) -> TradeOutcome:
        if not result.entry.success:
            log_order_execution(
                self._logger,
                symbol=signal.symbol,
                side=side,
                quantity=size,
                price=signal.entry,
                status="rejected",
                error=result.entry.error,
            )
            return self._fail(
                signal,
                f"entry_order_failed: {result.entry.error or 'rejected'}",
                size=size,
            )

        log_order_execution(
            self._logger,
            symbol=signal.symbol,
            side=side,
            quantity=size,
            price=signal.entry,
            order_id=result.entry.order_id,
            status="placed",
        )
        leg_errors = result.leg_errors
        if leg_errors:
            # entry stays open unprotected; surfaced for an operator instead of unwound
            log_risk_event(
                self._logger,
                event_type="bracket_degraded",
                action="alert_operator",
                symbol=signal.symbol,
                entry_order_id=result.entry.order_id,
                leg_errors=leg_errors,
            )

        return TradeOutcome(
            status=TradeStatus.PLACED,
            order_ids=result.order_ids,
            degraded=bool(leg_errors),
            leg_errors=leg_errors,
            size=size,
        )

    def _skip(self, signal: Signal, reason: SkipReason, *, detail: str | None = None) -> TradeOutcome:
        self._logger.info(
            "trade_skipped",
            symbol=signal.symbol,
            reason=reason.value,
            detail=detail,
            direction=signal.direction.value,
            confidence=signal.confidence,
        )
        return TradeOutcome(status=TradeStatus.SKIPPED, reason=reason, detail=detail)

    def _fail(self, signal: Signal, error: str, *, size: float | None = None) -> TradeOutcome:
        self._logger.error("trade_failed", symbol=signal.symbol, error=error)
        return TradeOutcome(status=TradeStatus.FAILED, error=error, size=size)
