"""SQLAlchemy table mappings."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import BigInteger, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class CandleRow(Base):
    __tablename__ = "candles"
    __table_args__ = (UniqueConstraint("symbol", "interval", "open_time", name="uq_candle_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(32), index=True)
    interval: Mapped[str] = mapped_column(String(8))
    open_time: Mapped[int] = mapped_column(BigInteger)
    close_time: Mapped[int] = mapped_column(BigInteger)
    open: Mapped[float] = mapped_column(Float)
    high: Mapped[float] = mapped_column(Float)
    low: Mapped[float] = mapped_column(Float)
    close: Mapped[float] = mapped_column(Float)
    volume: Mapped[float] = mapped_column(Float)
    trade_count: Mapped[int] = mapped_column(Integer, default=0)


class SignalRow(Base):
    __tablename__ = "trading_signals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(32), index=True)
    interval: Mapped[str] = mapped_column(String(8))
    generated_at: Mapped[str] = mapped_column(String(40))
    candle_open_time: Mapped[int] = mapped_column(BigInteger)
    direction: Mapped[str] = mapped_column(String(16))
    confidence: Mapped[float] = mapped_column(Float)
    price: Mapped[float] = mapped_column(Float)
    entry: Mapped[float | None] = mapped_column(Float, nullable=True)
    stop: Mapped[float | None] = mapped_column(Float, nullable=True)
    target: Mapped[float | None] = mapped_column(Float, nullable=True)
    risk_reward: Mapped[float | None] = mapped_column(Float, nullable=True)
    rationale: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class IndicatorRow(Base):
    __tablename__ = "signal_indicators"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    signal_id: Mapped[int] = mapped_column(ForeignKey("trading_signals.id"), unique=True)
    price: Mapped[float] = mapped_column(Float)
    sma_21: Mapped[float] = mapped_column(Float)
    sma_50: Mapped[float] = mapped_column(Float)
    sma_100: Mapped[float] = mapped_column(Float)
    ema_12: Mapped[float] = mapped_column(Float)
    ema_21: Mapped[float] = mapped_column(Float)
    ema_55: Mapped[float] = mapped_column(Float)
    rsi_14: Mapped[float] = mapped_column(Float)
    rsi_21: Mapped[float] = mapped_column(Float)
    macd_line: Mapped[float] = mapped_column(Float)
    macd_signal: Mapped[float] = mapped_column(Float)
    macd_histogram: Mapped[float] = mapped_column(Float)
    bb_upper: Mapped[float] = mapped_column(Float)
    bb_middle: Mapped[float] = mapped_column(Float)
    bb_lower: Mapped[float] = mapped_column(Float)
    atr: Mapped[float] = mapped_column(Float)
    psar_value: Mapped[float] = mapped_column(Float)
    psar_trend: Mapped[int] = mapped_column(Integer)
    stoch_k: Mapped[float] = mapped_column(Float)
    stoch_d: Mapped[float] = mapped_column(Float)
