from __future__ import annotations

from typing import Any

import pytest

from signal_trading.config import Settings
from signal_trading.errors import VenueError
from signal_trading.exec.binance_futures import BinanceFuturesVenue


class _FakeFuturesClient:
    def __init__(self, *, reject_types: tuple[str, ...] = (), fail_reads: bool = False) -> None:
        self.reject_types = reject_types
        self.fail_reads = fail_reads
        self.orders: list[dict[str, Any]] = []
        self.leverage: list[tuple[str, int]] = []
        self.cancelled: list[str] = []

    def futures_account_balance(self) -> list[dict[str, str]]:
        if self.fail_reads:
            raise ConnectionError("read timed out")
        return [
            {"asset": "BNB", "balance": "1.0", "availableBalance": "1.0"},
            {"asset": "USDT", "balance": "1500.0", "availableBalance": "1250.5"},
        ]

    def futures_position_information(self) -> list[dict[str, str]]:
        if self.fail_reads:
            raise ConnectionError("read timed out")
        return [
            {"symbol": "BTCUSDT", "positionAmt": "0.000", "entryPrice": "0", "unRealizedProfit": "0", "leverage": "1"},
            {"symbol": "ETHUSDT", "positionAmt": "-2.5", "entryPrice": "3000", "unRealizedProfit": "12.5", "leverage": "3"},
        ]

    def futures_change_leverage(self, symbol: str, leverage: int) -> dict[str, Any]:
        self.leverage.append((symbol, leverage))
        return {"symbol": symbol, "leverage": leverage}

    def futures_create_order(self, **params: Any) -> dict[str, Any]:
        if params["type"] in self.reject_types:
            raise RuntimeError("order would immediately trigger")
        self.orders.append(params)
        return {"orderId": len(self.orders), "clientOrderId": params.get("newClientOrderId")}

    def futures_get_open_orders(self, symbol: str) -> list[dict[str, Any]]:
        return [{"orderId": 1}, {"orderId": 2}]

    def futures_cancel_all_open_orders(self, symbol: str) -> dict[str, Any]:
        self.cancelled.append(symbol)
        return {"code": 200}


def test_balance_reads_quote_asset() -> None:
    venue = BinanceFuturesVenue(Settings(quote_asset="USDT"), client=_FakeFuturesClient())
    assert venue.get_balance() == pytest.approx(1250.5)


def test_positions_skip_flat_rows() -> None:
    positions = BinanceFuturesVenue(Settings(), client=_FakeFuturesClient()).get_open_positions()
    assert [(p.symbol, p.size, p.leverage) for p in positions] == [("ETHUSDT", -2.5, 3)]


def test_read_failure_is_venue_error() -> None:
    venue = BinanceFuturesVenue(Settings(), client=_FakeFuturesClient(fail_reads=True))
    with pytest.raises(VenueError, match="read timed out"):
        venue.get_balance()


def test_bracket_sets_leverage_then_places_three_tagged_orders() -> None:
    client = _FakeFuturesClient()
    venue = BinanceFuturesVenue(Settings(), client=client)
    result = venue.place_bracket_order("BTCUSDT", "BUY", 0.01, 90_000.0, 88_000.0, 96_000.0, leverage=2)

    assert client.leverage == [("BTCUSDT", 2)]
    assert [o["type"] for o in client.orders] == ["LIMIT", "STOP_MARKET", "TAKE_PROFIT_MARKET"]
    entry, stop, target = client.orders
    assert entry["side"] == "BUY" and entry["timeInForce"] == "GTC"
    assert entry["price"] == "90000" and entry["quantity"] == "0.01"
    assert stop["side"] == target["side"] == "SELL"
    assert stop["reduceOnly"] == target["reduceOnly"] == "true"
    assert stop["stopPrice"] == "88000" and target["stopPrice"] == "96000"
    tags = {o["newClientOrderId"].rsplit("-", 1)[0] for o in client.orders}
    assert len(tags) == 1
    assert result.leg_errors == []
    assert result.order_ids == ["1", "2", "3"]


def test_rejected_leg_is_reported_without_raising() -> None:
    client = _FakeFuturesClient(reject_types=("TAKE_PROFIT_MARKET",))
    result = BinanceFuturesVenue(Settings(), client=client).place_bracket_order(
        "BTCUSDT", "SELL", 0.01, 88_000.0, 90_000.0, 82_000.0
    )
    assert result.entry.success
    assert result.take_profit is not None and not result.take_profit.success
    assert result.leg_errors == ["take_profit: transport: order would immediately trigger"]


def test_rejected_entry_places_no_legs() -> None:
    client = _FakeFuturesClient(reject_types=("LIMIT",))
    result = BinanceFuturesVenue(Settings(), client=client).place_bracket_order(
        "BTCUSDT", "BUY", 0.01, 90_000.0, 88_000.0, 96_000.0
    )
    assert not result.entry.success
    assert result.stop_loss is None and result.take_profit is None
    assert client.orders == []


def test_close_position_sends_reduce_only_market_order() -> None:
    client = _FakeFuturesClient()
    result = BinanceFuturesVenue(Settings(), client=client).close_position("ETHUSDT")
    assert result.success
    assert client.orders[0]["type"] == "MARKET"
    assert client.orders[0]["side"] == "BUY"
    assert client.orders[0]["quantity"] == "2.5"
    assert client.orders[0]["reduceOnly"] == "true"


def test_close_without_position() -> None:
    result = BinanceFuturesVenue(Settings(), client=_FakeFuturesClient()).close_position("BTCUSDT")
    assert not result.success
    assert result.error == "no_open_position"


def test_cancel_open_orders_returns_count() -> None:
    client = _FakeFuturesClient()
    assert BinanceFuturesVenue(Settings(), client=client).cancel_open_orders("BTCUSDT") == 2
    assert client.cancelled == ["BTCUSDT"]
