"""Indicator snapshot for the most recent candle of a series.

Periods follow a 4h crypto setup: SMA 21/50/100, EMA 12/21/55, RSI 14/21,
MACD 8/17/9, Bollinger 20/2, ATR 14, Parabolic SAR 0.02/0.2, Stochastic 14/3.
A value whose lookback exceeds the available history is reported as 0.
"""

from __future__ import annotations

import math

import numpy as np
import pandas as pd  # type: ignore[import-untyped]

from signal_trading.errors import InsufficientDataError, MarketDataError
from signal_trading.types import Candle, IndicatorSnapshot

DEFAULT_MIN_CANDLES = 50


def candles_to_frame(candles: list[Candle]) -> pd.DataFrame:
    """Convert candles to an OHLCV dataframe, oldest first."""
    return pd.DataFrame(
        {
            "open_time": [c.open_time for c in candles],
            "open": [c.open for c in candles],
            "high": [c.high for c in candles],
            "low": [c.low for c in candles],
            "close": [c.close for c in candles],
            "volume": [c.volume for c in candles],
        }
    )


def build_indicator_snapshot(
    candles: list[Candle],
    min_candles: int = DEFAULT_MIN_CANDLES,
) -> IndicatorSnapshot:
    """Compute the full indicator snapshot used by the model and the audit trail."""
    if len(candles) < min_candles or not candles:
        raise InsufficientDataError(len(candles), max(min_candles, 1))

    df = candles_to_frame(candles)
    if not _is_time_ascending(df):
        raise MarketDataError("ohlcv_timestamp_not_ascending")

    close = df["close"].astype(float)
    high = df["high"].astype(float)
    low = df["low"].astype(float)

    macd_line, macd_signal, macd_hist = _macd(close, fast=8, slow=17, signal=9)
    bb_upper, bb_middle, bb_lower = _bollinger(close, period=20, num_std=2.0)
    psar_values, psar_trends = _psar(high, low, close, step=0.02, max_step=0.2)
    stoch_k, stoch_d = _stochastic(high, low, close, k_period=14, d_period=3)

    return IndicatorSnapshot(
        price=float(close.iloc[-1]),
        sma_21=_last(_sma(close, 21)),
        sma_50=_last(_sma(close, 50)),
        sma_100=_last(_sma(close, 100)),
        ema_12=_last(_ema(close, 12)),
        ema_21=_last(_ema(close, 21)),
        ema_55=_last(_ema(close, 55)),
        rsi_14=_last(_rsi(close, 14)),
        rsi_21=_last(_rsi(close, 21)),
        macd_line=_last(macd_line),
        macd_signal=_last(macd_signal),
        macd_histogram=_last(macd_hist),
        bb_upper=_last(bb_upper),
        bb_middle=_last(bb_middle),
        bb_lower=_last(bb_lower),
        atr=_last(_atr(high, low, close, period=14)),
        psar_value=float(psar_values[-1]) if len(psar_values) else 0.0,
        psar_trend=int(psar_trends[-1]) if len(psar_trends) else 0,
        stoch_k=_last(stoch_k),
        stoch_d=_last(stoch_d),
    )


def _is_time_ascending(df: pd.DataFrame) -> bool:
    return bool(df["open_time"].is_monotonic_increasing and df["open_time"].is_unique)


def _last(series: pd.Series) -> float:
    if series.empty:
        return 0.0
    value = float(series.iloc[-1])
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return value


def _sma(series: pd.Series, period: int) -> pd.Series:
    return series.rolling(window=period, min_periods=period).mean()


def _ema(series: pd.Series, period: int) -> pd.Series:
    ema = series.ewm(span=period, adjust=False).mean()
    ema.iloc[: period - 1] = np.nan
    return ema


def _rsi(series: pd.Series, period: int) -> pd.Series:
    delta = series.diff()
    gain = delta.clip(lower=0.0)
    loss = -delta.clip(upper=0.0)
    avg_gain = gain.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()
    avg_loss = loss.ewm(alpha=1.0 / period, adjust=False, min_periods=period).mean()
    rsi = 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)
    # no losses in the window
    rsi = rsi.where(avg_loss != 0, 100.0)
    return rsi.where(avg_gain.notna())


def _macd(
    series: pd.Series, *, fast: int, slow: int, signal: int
) -> tuple[pd.Series, pd.Series, pd.Series]:
    line = _ema(series, fast) - _ema(series, slow)
    signal_line = line.dropna().ewm(span=signal, adjust=False).mean().reindex(line.index)
    signal_line.iloc[: slow + signal - 2] = np.nan
    return line, signal_line, line - signal_line


def _bollinger(
    series: pd.Series, *, period: int, num_std: float
) -> tuple[pd.Series, pd.Series, pd.Series]:
    middle = _sma(series, period)
    std = series.rolling(window=period, min_periods=period).std(ddof=0)
    return middle + num_std * std, middle, middle - num_std * std


def _atr(high: pd.Series, low: pd.Series, close: pd.Series, period: int = 14) -> pd.Series:
    prev_close = close.shift(1)
    tr_components = pd.concat(
        [
            (high - low).abs(),
            (high - prev_close).abs(),
            (low - prev_close).abs(),
        ],
        axis=1,
    )
    tr = tr_components.max(axis=1)
    return tr.rolling(window=period, min_periods=period).mean()


def _stochastic(
    high: pd.Series, low: pd.Series, close: pd.Series, *, k_period: int, d_period: int
) -> tuple[pd.Series, pd.Series]:
    lowest = low.rolling(window=k_period, min_periods=k_period).min()
    highest = high.rolling(window=k_period, min_periods=k_period).max()
    span = (highest - lowest).replace(0.0, np.nan)
    k = 100.0 * (close - lowest) / span
    d = k.rolling(window=d_period, min_periods=d_period).mean()
    return k, d


def _psar(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    *,
    step: float,
    max_step: float,
) -> tuple[np.ndarray, np.ndarray]:
    """Parabolic SAR values and trend flags (+1 up, -1 down)."""
    highs = high.to_numpy(dtype=float)
    lows = low.to_numpy(dtype=float)
    closes = close.to_numpy(dtype=float)
    n = len(highs)
    if n < 2:
        return np.zeros(n), np.zeros(n, dtype=int)

    sar = np.zeros(n)
    trend = np.zeros(n, dtype=int)
    uptrend = bool(closes[1] >= closes[0])
    af = step
    extreme = highs[0] if uptrend else lows[0]
    sar[0] = lows[0] if uptrend else highs[0]
    trend[0] = 1 if uptrend else -1

    for i in range(1, n):
        candidate = sar[i - 1] + af * (extreme - sar[i - 1])
        if uptrend:
            candidate = min(candidate, lows[i - 1], lows[max(i - 2, 0)])
            if lows[i] < candidate:
                uptrend = False
                candidate = extreme
                extreme = lows[i]
                af = step
            elif highs[i] > extreme:
                extreme = highs[i]
                af = min(af + step, max_step)
        else:
            candidate = max(candidate, highs[i - 1], highs[max(i - 2, 0)])
            if highs[i] > candidate:
                uptrend = True
                candidate = extreme
                extreme = highs[i]
                af = step
            elif lows[i] < extreme:
                extreme = lows[i]
                af = min(af + step, max_step)
        sar[i] = candidate
        trend[i] = 1 if uptrend else -1

    return sar, trend
