"""Binance USDT-M futures execution venue."""

from __future__ import annotations

import uuid
from typing import Any

from binance.client import Client  # type: ignore[import-untyped]
from binance.exceptions import BinanceAPIException  # type: ignore[import-untyped]
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from signal_trading.config import Settings
from signal_trading.errors import VenueError
from signal_trading.types import BracketOrderResult, OrderResult, OrderSide, Position
from signal_trading.utils.exchange_filters import format_decimal
from signal_trading.utils.logging import get_logger

_RATE_LIMIT_CODES = (418, 429)


def _is_rate_limited(exc: BaseException) -> bool:
    return isinstance(exc, BinanceAPIException) and exc.status_code in _RATE_LIMIT_CODES


_rate_limit_retry = retry(
    retry=retry_if_exception(_is_rate_limited),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    reraise=True,
)


class BinanceFuturesVenue:
    """Live (or testnet) futures account behind the execution venue interface."""

    def __init__(self, settings: Settings, client: Client | None = None) -> None:
        self._settings = settings
        self._client = client
        self._logger = get_logger("signal_trading.exec.binance_futures")

    def get_balance(self) -> float:
        balances = self._read(lambda c: c.futures_account_balance())
        for row in balances:
            if row.get("asset") == self._settings.quote_asset:
                return float(row.get("availableBalance") or row.get("balance") or 0.0)
        return 0.0

    def get_open_positions(self) -> list[Position]:
        rows = self._read(lambda c: c.futures_position_information())
        positions: list[Position] = []
        for row in rows:
            amount = float(row.get("positionAmt") or 0.0)
            if amount == 0:
                continue
            positions.append(
                Position(
                    symbol=str(row.get("symbol")),
                    size=amount,
                    entry_price=float(row.get("entryPrice") or 0.0),
                    unrealized_pnl=float(row.get("unRealizedProfit") or 0.0),
                    leverage=int(float(row.get("leverage") or 1)),
                )
            )
        return positions

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
        """Limit entry first; exit legs only after the entry is accepted."""
        client = self._get_client()
        tag = uuid.uuid4().hex[:16]
        quantity = format_decimal(size)
        try:
            client.futures_change_leverage(symbol=symbol, leverage=leverage)
        except BinanceAPIException as exc:
            return BracketOrderResult(entry=OrderResult(success=False, error=f"leverage: {exc}"))
        except Exception as exc:  # noqa: BLE001 - transport failure before anything is placed.
            raise VenueError(f"leverage_request_failed: {exc}") from exc

        entry_result = self._submit(
            client,
            symbol=symbol,
            side=side,
            type="LIMIT",
            timeInForce="GTC",
            quantity=quantity,
            price=format_decimal(entry),
            newClientOrderId=f"{tag}-en",
        )
        if not entry_result.success:
            return BracketOrderResult(entry=entry_result)

        exit_side = "SELL" if side == "BUY" else "BUY"
        stop_result = self._submit(
            client,
            symbol=symbol,
            side=exit_side,
            type="STOP_MARKET",
            stopPrice=format_decimal(stop),
            quantity=quantity,
            reduceOnly="true",
            newClientOrderId=f"{tag}-sl",
        )
        target_result = self._submit(
            client,
            symbol=symbol,
            side=exit_side,
            type="TAKE_PROFIT_MARKET",
            stopPrice=format_decimal(target),
            quantity=quantity,
            reduceOnly="true",
            newClientOrderId=f"{tag}-tp",
        )
        self._logger.info(
            "bracket_submitted",
            symbol=symbol,
            tag=tag,
            entry_ok=entry_result.success,
            stop_ok=stop_result.success,
            target_ok=target_result.success,
        )
        return BracketOrderResult(entry=entry_result, stop_loss=stop_result, take_profit=target_result)

    def close_position(self, symbol: str) -> OrderResult:
        """Market order against the open size, reduce-only."""
        open_for_symbol = [p for p in self.get_open_positions() if p.symbol == symbol]
        if not open_for_symbol:
            return OrderResult(success=False, error="no_open_position")
        position = open_for_symbol[0]
        return self._submit(
            self._get_client(),
            symbol=symbol,
            side="SELL" if position.size > 0 else "BUY",
            type="MARKET",
            quantity=format_decimal(abs(position.size)),
            reduceOnly="true",
        )

    def cancel_open_orders(self, symbol: str) -> int:
        open_orders = self._read(lambda c: c.futures_get_open_orders(symbol=symbol))
        if not open_orders:
            return 0
        self._read(lambda c: c.futures_cancel_all_open_orders(symbol=symbol))
        self._logger.info("open_orders_cancelled", symbol=symbol, count=len(open_orders))
        return len(open_orders)

    def _submit(self, client: Client, **params: Any) -> OrderResult:
        try:
            res = client.futures_create_order(**params)
        except BinanceAPIException as exc:
            self._logger.warning(
                "order_rejected",
                symbol=params.get("symbol"),
                type=params.get("type"),
                code=exc.code,
                error=exc.message,
            )
            return OrderResult(
                success=False,
                client_order_id=params.get("newClientOrderId"),
                error=f"{exc.code}: {exc.message}",
            )
        except Exception as exc:  # noqa: BLE001 - one failed leg must not hide the others.
            self._logger.warning("order_transport_failed", symbol=params.get("symbol"), error=str(exc))
            return OrderResult(
                success=False,
                client_order_id=params.get("newClientOrderId"),
                error=f"transport: {exc}",
            )
        return OrderResult(
            success=True,
            order_id=str(res.get("orderId")),
            client_order_id=res.get("clientOrderId") or params.get("newClientOrderId"),
        )

    def _read(self, call: Any) -> Any:
        client = self._get_client()
        try:
            return _rate_limit_retry(call)(client)
        except Exception as exc:  # noqa: BLE001 - venue reads surface as one error type.
            raise VenueError(f"venue_request_failed: {exc}") from exc

    def _get_client(self) -> Client:
        if self._client is None:
            try:
                self._client = Client(
                    api_key=self._settings.binance_api_key,
                    api_secret=self._settings.binance_api_secret,
                    testnet=self._settings.binance_testnet,
                    requests_params={"timeout": self._settings.binance_timeout},
                )
            except Exception as exc:  # noqa: BLE001 - constructor pings the API.
                raise VenueError(f"binance_client_unavailable: {exc}") from exc
        return self._client
