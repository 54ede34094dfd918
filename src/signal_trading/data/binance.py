"""Binance futures market data client."""

from __future__ import annotations

from typing import Any

import pandas as pd  # type: ignore[import-untyped]
from binance.client import Client  # type: ignore[import-untyped]

from signal_trading.config import SUPPORTED_INTERVALS, Settings
from signal_trading.errors import MarketDataError
from signal_trading.types import Candle
from signal_trading.utils.logging import get_logger

_KLINE_COLUMNS = [
    "open_time",
    "open",
    "high",
    "low",
    "close",
    "volume",
    "close_time",
    "quote_asset_volume",
    "number_of_trades",
    "taker_buy_base_asset_volume",
    "taker_buy_quote_asset_volume",
    "ignore",
]
_PRICE_COLUMNS = ["open", "high", "low", "close"]


class BinanceDataClient:
    """Read-only client for USDT-M futures klines."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._logger = get_logger("signal_trading.data.binance")
        self._client: Client | None = None

    def fetch_candles(self, symbol: str, interval: str, limit: int) -> list[Candle]:
        """Fetch klines and return them oldest first."""
        if interval not in SUPPORTED_INTERVALS:
            raise MarketDataError(f"unsupported_interval: {interval}")
        if symbol not in self._settings.allowed_symbols:
            raise MarketDataError(f"unsupported_symbol: {symbol}")

        try:
            rows = self._get_client().futures_klines(symbol=symbol, interval=interval, limit=limit)
        except MarketDataError:
            raise
        except Exception as exc:  # noqa: BLE001 - every transport failure is a data error.
            raise MarketDataError(f"klines_request_failed: {exc}") from exc

        candles = normalize_klines(rows, symbol=symbol, interval=interval)
        if len(candles) < len(rows):
            self._logger.warning(
                "klines_rows_dropped",
                symbol=symbol,
                interval=interval,
                received=len(rows),
                kept=len(candles),
            )
        return candles

    def _get_client(self) -> Client:
        if self._client is None:
            try:
                self._client = Client(
                    api_key=self._settings.binance_api_key or None,
                    api_secret=self._settings.binance_api_secret or None,
                    testnet=self._settings.binance_testnet,
                    requests_params={"timeout": self._settings.binance_timeout},
                )
            except Exception as exc:  # noqa: BLE001 - constructor pings the API.
                raise MarketDataError(f"binance_client_unavailable: {exc}") from exc
        return self._client


def normalize_klines(rows: Any, *, symbol: str, interval: str) -> list[Candle]:
    """Turn raw kline arrays into candles, dropping malformed rows."""
    if not isinstance(rows, list):
        raise MarketDataError("klines_response_not_array")
    if not rows:
        return []

    try:
        df = pd.DataFrame(rows, columns=_KLINE_COLUMNS)
    except (ValueError, TypeError) as exc:
        raise MarketDataError(f"klines_response_malformed: {exc}") from exc

    numeric_cols = [*_PRICE_COLUMNS, "volume", "open_time", "close_time", "number_of_trades"]
    for col in numeric_cols:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    df = df.dropna(subset=numeric_cols)
    df = df[(df[_PRICE_COLUMNS] > 0).all(axis=1) & (df["volume"] >= 0)]
    df = df.drop_duplicates(subset="open_time", keep="last").sort_values("open_time")

    return [
        Candle(
            symbol=symbol,
            interval=interval,
            open_time=int(row.open_time),
            close_time=int(row.close_time),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
            trade_count=max(0, int(row.number_of_trades)),
        )
        for row in df.itertuples(index=False)
    ]
