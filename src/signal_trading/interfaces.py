"""Collaborator interfaces injected into the pipeline and decision engine."""

from __future__ import annotations

from typing import Protocol

from signal_trading.types import (
    BracketOrderResult,
    Candle,
    IndicatorSnapshot,
    OrderResult,
    OrderSide,
    Position,
    Signal,
)


class MarketDataSource(Protocol):
    """Supplies OHLCV candles, oldest first."""

    def fetch_candles(self, symbol: str, interval: str, limit: int) -> list[Candle]:
        """Raise MarketDataError on transport or format failure."""


class RecommendationEngine(Protocol):
    """Turns a serialized snapshot into raw model text."""

    def complete(self, serialized_snapshot: str) -> str:
        """Raise RecommendationEngineError when the engine is unreachable."""


class SignalStore(Protocol):
    """Durable record of candles, signals and indicator snapshots."""

    def upsert_candles(self, candles: list[Candle]) -> int:
        """Insert or update by (symbol, interval, open_time); return rows written."""

    def insert_signal(self, signal: Signal) -> int:
        """Persist a signal and return its surrogate id."""

    def insert_indicators(self, signal_id: int, snapshot: IndicatorSnapshot) -> None:
        """Persist the snapshot owned by signal_id."""

    def delete_signal(self, signal_id: int) -> None:
        """Remove a signal and any snapshot it owns. Idempotent."""


class ExecutionVenue(Protocol):
    """Exchange account operations. Reads raise VenueError on transport failure."""

    def get_balance(self) -> float:
        """Account value available for sizing."""

    def get_open_positions(self) -> list[Position]:
        """Positions with non-zero size."""

    def place_bracket_order(
        self,
        symbol: str,
        side: OrderSide,
        size: float,
        entry: float,
        stop: float,
        target: float,
        leverage: int = 1,
    ) -> BracketOrderResult:
        """Entry limit plus reduce-only stop-loss and take-profit legs."""

    def close_position(self, symbol: str) -> OrderResult:
        """Flatten the open position for symbol with a reduce-only order."""

    def cancel_open_orders(self, symbol: str) -> int:
        """Cancel every open order for symbol and return how many were cancelled."""
