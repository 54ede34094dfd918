from __future__ import annotations

import pytest

from signal_trading.errors import InsufficientDataError, MarketDataError
from signal_trading.features.indicators import build_indicator_snapshot, candles_to_frame
from signal_trading.types import Candle

_FOUR_HOURS_MS = 4 * 60 * 60 * 1000


def _build_candles(rows: int, start_price: float, drift: float) -> list[Candle]:
    closes = [start_price + i * drift for i in range(rows)]
    return [
        Candle(
            symbol="BTCUSDT",
            interval="4h",
            open_time=1_700_000_000_000 + i * _FOUR_HOURS_MS,
            close_time=1_700_000_000_000 + (i + 1) * _FOUR_HOURS_MS - 1,
            open=c,
            high=c + 20,
            low=c - 20,
            close=c,
            volume=1000.0,
        )
        for i, c in enumerate(closes)
    ]


def test_snapshot_on_steady_uptrend() -> None:
    candles = _build_candles(rows=120, start_price=40_000, drift=3)
    snap = build_indicator_snapshot(candles)
    closes = [c.close for c in candles]

    assert snap.price == closes[-1]
    assert snap.sma_21 == pytest.approx(sum(closes[-21:]) / 21)
    assert snap.sma_100 == pytest.approx(sum(closes[-100:]) / 100)
    assert snap.rsi_14 == pytest.approx(100.0)
    assert snap.atr == pytest.approx(40.0)
    assert snap.macd_line > 0
    assert snap.bb_lower < snap.bb_middle < snap.bb_upper
    assert snap.psar_trend == 1
    assert snap.psar_value < snap.price
    assert 0 <= snap.stoch_k <= 100


def test_snapshot_on_downtrend() -> None:
    snap = build_indicator_snapshot(_build_candles(rows=80, start_price=50_000, drift=-5))
    assert snap.rsi_14 == pytest.approx(0.0)
    assert snap.macd_line < 0
    assert snap.ema_12 < snap.ema_55


def test_lookback_longer_than_history_reports_zero() -> None:
    snap = build_indicator_snapshot(_build_candles(rows=60, start_price=100, drift=1))
    assert snap.sma_100 == 0.0
    assert snap.sma_50 > 0
    assert snap.ema_55 > 0


def test_too_few_candles_raises() -> None:
    with pytest.raises(InsufficientDataError) as excinfo:
        build_indicator_snapshot(_build_candles(rows=49, start_price=100, drift=1), min_candles=50)
    assert excinfo.value.available == 49
    assert excinfo.value.required == 50


def test_empty_series_raises() -> None:
    with pytest.raises(InsufficientDataError):
        build_indicator_snapshot([], min_candles=0)


def test_out_of_order_candles_are_rejected() -> None:
    candles = _build_candles(rows=60, start_price=100, drift=1)
    with pytest.raises(MarketDataError, match="ohlcv_timestamp_not_ascending"):
        build_indicator_snapshot(list(reversed(candles)))


def test_candles_to_frame_keeps_order() -> None:
    candles = _build_candles(rows=3, start_price=10, drift=1)
    df = candles_to_frame(candles)
    assert list(df["close"]) == [10, 11, 12]
    assert df["open_time"].is_monotonic_increasing
