"""Paper trading venue with persistent local state."""

from __future__ import annotations

import json
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from signal_trading.errors import VenueError
from signal_trading.types import BracketOrderResult, OrderResult, OrderSide, Position
from signal_trading.utils.logging import get_logger


@dataclass(slots=True)
class _PaperOrder:
    order_id: str
    client_order_id: str
    symbol: str
    side: str
    type: str
    quantity: float
    price: float
    reduce_only: bool
    created_at: str


@dataclass(slots=True)
class _PaperState:
    balance: float
    initial_balance: float
    positions: dict[str, Position] = field(default_factory=dict)
    orders: list[_PaperOrder] = field(default_factory=list)


class PaperVenue:
    """Simulated venue: entries fill at the limit price plus slippage.

    The state file is the only source of truth. Every call reloads it, so
    several instances on the same directory see each other's fills.
    Exit legs rest as open orders until cancelled; nothing here watches prices.
    """

    # load-modify-write of the shared state file
    _state_lock = threading.Lock()

    def __init__(
        self,
        journal_dir: Path,
        *,
        slippage_bps: float = 2.0,
        initial_balance: float = 10_000.0,
    ) -> None:
        self._slippage_bps = slippage_bps
        self._initial_balance = initial_balance
        self._state_file = journal_dir / "paper_state.json"
        self._logger = get_logger("signal_trading.exec.paper")

    def get_balance(self) -> float:
        with self._state_lock:
            return self._load_state().balance

    def get_open_positions(self) -> list[Position]:
        with self._state_lock:
            state = self._load_state()
        return [p for p in state.positions.values() if p.size != 0]

    def open_orders(self, symbol: str | None = None) -> list[dict[str, Any]]:
        with self._state_lock:
            state = self._load_state()
        return [asdict(o) for o in state.orders if symbol is None or o.symbol == symbol]

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
        if size <= 0:
            return BracketOrderResult(entry=OrderResult(success=False, error="size_must_be_positive"))

        with self._state_lock:
            state = self._load_state()
            if symbol in state.positions:
                return BracketOrderResult(entry=OrderResult(success=False, error="position_already_open"))

            tag = uuid.uuid4().hex[:16]
            direction = 1.0 if side == "BUY" else -1.0
            fill_price = entry * (1.0 + direction * self._slippage_bps / 10_000.0)
            state.positions[symbol] = Position(
                symbol=symbol,
                size=direction * size,
                entry_price=fill_price,
                leverage=leverage,
            )
            entry_result = OrderResult(
                success=True,
                order_id=f"paper-{uuid.uuid4().hex[:12]}",
                client_order_id=f"{tag}-en",
            )

            exit_side = "SELL" if side == "BUY" else "BUY"
            legs = []
            for suffix, order_type, price in (("sl", "STOP_MARKET", stop), ("tp", "TAKE_PROFIT_MARKET", target)):
                order = _PaperOrder(
                    order_id=f"paper-{uuid.uuid4().hex[:12]}",
                    client_order_id=f"{tag}-{suffix}",
                    symbol=symbol,
                    side=exit_side,
                    type=order_type,
                    quantity=size,
                    price=price,
                    reduce_only=True,
                    created_at=datetime.now(timezone.utc).isoformat(),
                )
                state.orders.append(order)
                legs.append(OrderResult(success=True, order_id=order.order_id, client_order_id=order.client_order_id))
            self._persist(state)

        self._logger.info(
            "paper_bracket_filled",
            symbol=symbol,
            side=side,
            size=size,
            fill_price=round(fill_price, 8),
            stop=stop,
            target=target,
        )
        return BracketOrderResult(entry=entry_result, stop_loss=legs[0], take_profit=legs[1])

    def close_position(self, symbol: str, *, exit_price: float | None = None) -> OrderResult:
        """Close at exit_price (default: entry price) and realize PnL."""
        with self._state_lock:
            state = self._load_state()
            position = state.positions.get(symbol)
            if position is None:
                return OrderResult(success=False, error="no_open_position")

            raw_exit = position.entry_price if exit_price is None else exit_price
            direction = 1.0 if position.size > 0 else -1.0
            fill_price = raw_exit * (1.0 - direction * self._slippage_bps / 10_000.0)
            pnl = (fill_price - position.entry_price) * position.size
            state.balance += pnl
            del state.positions[symbol]
            state.orders = [o for o in state.orders if o.symbol != symbol]
            self._persist(state)

        self._logger.info("paper_position_closed", symbol=symbol, realized_pnl=round(pnl, 8))
        return OrderResult(success=True, order_id=f"paper-{uuid.uuid4().hex[:12]}")

    def cancel_open_orders(self, symbol: str) -> int:
        with self._state_lock:
            state = self._load_state()
            remaining = [o for o in state.orders if o.symbol != symbol]
            cancelled = len(state.orders) - len(remaining)
            if cancelled:
                state.orders = remaining
                self._persist(state)
        return cancelled

    def _load_state(self) -> _PaperState:
        if not self._state_file.exists():
            return _PaperState(balance=self._initial_balance, initial_balance=self._initial_balance)

        try:
            raw = json.loads(self._state_file.read_text(encoding="utf-8"))
            positions = {
                str(symbol): Position(**payload)
                for symbol, payload in (raw.get("positions") or {}).items()
                if isinstance(payload, dict)
            }
            orders = [_PaperOrder(**payload) for payload in raw.get("orders") or [] if isinstance(payload, dict)]
            return _PaperState(
                balance=float(raw.get("balance", self._initial_balance)),
                initial_balance=float(raw.get("initial_balance", self._initial_balance)),
                positions=positions,
                orders=orders,
            )
        except (OSError, ValueError, TypeError, AttributeError) as exc:
            raise VenueError(f"paper_state_unreadable: {self._state_file}: {exc}") from exc

    def _persist(self, state: _PaperState) -> None:
        payload: dict[str, Any] = {
            "balance": state.balance,
            "initial_balance": state.initial_balance,
            "positions": {symbol: asdict(p) for symbol, p in state.positions.items()},
            "orders": [asdict(o) for o in state.orders],
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        serialized = json.dumps(payload, ensure_ascii=True, indent=2)
        tmp_file = self._state_file.with_suffix(".json.tmp")
        try:
            self._state_file.parent.mkdir(parents=True, exist_ok=True)
            tmp_file.write_text(serialized, encoding="utf-8")
            tmp_file.replace(self._state_file)
        except OSError as exc:
            raise VenueError(f"paper_state_write_failed: {exc}") from exc
