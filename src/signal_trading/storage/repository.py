"""SQLAlchemy-backed signal store."""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine, delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from signal_trading.config import Settings
from signal_trading.errors import StoreError
from signal_trading.storage.models import Base, CandleRow, IndicatorRow, SignalRow
from signal_trading.types import Candle, IndicatorSnapshot, Signal
from signal_trading.utils.logging import get_logger

_UPSERT_DIALECTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}
_CANDLE_VALUE_COLUMNS = ("close_time", "open", "high", "low", "close", "volume", "trade_count")


class SqlSignalStore:
    """Candles, signals and indicator snapshots in one relational database.

    Every public call runs in its own transaction, so a failed insert never
    leaves a partial row behind.
    """

    def __init__(self, database_url: str, *, timeout: int = 10, create_schema: bool = True) -> None:
        self._logger = get_logger("signal_trading.storage")
        try:
            self._engine = create_engine(
                database_url,
                connect_args=_connect_args(database_url, timeout),
                pool_pre_ping=True,
            )
            self._sessions = sessionmaker(self._engine, expire_on_commit=False)
            if create_schema:
                Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise StoreError(f"store_unavailable: {exc}") from exc

    @classmethod
    def from_settings(cls, settings: Settings) -> "SqlSignalStore":
        return cls(settings.database_url, timeout=settings.db_timeout)

    def upsert_candles(self, candles: list[Candle]) -> int:
        """Insert or refresh candles keyed by (symbol, interval, open_time)."""
        if not candles:
            return 0
        rows = [_candle_values(c) for c in candles]
        dialect = self._engine.dialect.name
        try:
            with self._sessions.begin() as session:
                insert_fn = _UPSERT_DIALECTS.get(dialect)
                if insert_fn is not None:
                    stmt = insert_fn(CandleRow).values(rows)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["symbol", "interval", "open_time"],
                        set_={col: stmt.excluded[col] for col in _CANDLE_VALUE_COLUMNS},
                    )
                    session.execute(stmt)
                else:
                    _upsert_row_by_row(session, rows)
        except SQLAlchemyError as exc:
            raise StoreError(f"candle_upsert_failed: {exc}") from exc
        self._logger.debug("candles_upserted", count=len(rows), dialect=dialect)
        return len(rows)

    def insert_signal(self, signal: Signal) -> int:
        row = SignalRow(
            symbol=signal.symbol,
            interval=signal.interval,
            generated_at=signal.generated_at,
            candle_open_time=signal.candle_open_time,
            direction=signal.direction.value,
            confidence=signal.confidence,
            price=signal.price,
            entry=signal.entry,
            stop=signal.stop,
            target=signal.target,
            risk_reward=signal.risk_reward,
            rationale=signal.rationale,
        )
        try:
            with self._sessions.begin() as session:
                session.add(row)
                session.flush()
                signal_id = row.id
        except SQLAlchemyError as exc:
            raise StoreError(f"signal_insert_failed: {exc}") from exc
        self._logger.info("signal_stored", signal_id=signal_id, symbol=signal.symbol)
        return signal_id

    def insert_indicators(self, signal_id: int, snapshot: IndicatorSnapshot) -> None:
        try:
            with self._sessions.begin() as session:
                session.add(IndicatorRow(signal_id=signal_id, **snapshot.as_dict()))
        except SQLAlchemyError as exc:
            raise StoreError(f"indicator_insert_failed: signal_id={signal_id}: {exc}") from exc

    def delete_signal(self, signal_id: int) -> None:
        """Remove the signal and its snapshot. Missing rows are not an error."""
        try:
            with self._sessions.begin() as session:
                session.execute(delete(IndicatorRow).where(IndicatorRow.signal_id == signal_id))
                session.execute(delete(SignalRow).where(SignalRow.id == signal_id))
        except SQLAlchemyError as exc:
            raise StoreError(f"signal_delete_failed: signal_id={signal_id}: {exc}") from exc
        self._logger.info("signal_deleted", signal_id=signal_id)

    def recent_signals(self, limit: int = 20) -> list[dict[str, Any]]:
        """Newest first."""
        if limit <= 0:
            return []
        stmt = select(SignalRow).order_by(SignalRow.id.desc()).limit(limit)
        try:
            with self._sessions() as session:
                rows = session.scalars(stmt).all()
        except SQLAlchemyError as exc:
            raise StoreError(f"signal_read_failed: {exc}") from exc
        return [_signal_row_dict(row) for row in rows]

    def dispose(self) -> None:
        self._engine.dispose()


def _connect_args(database_url: str, timeout: int) -> dict[str, Any]:
    if database_url.startswith("sqlite"):
        return {"timeout": timeout, "check_same_thread": False}
    if database_url.startswith("postgresql"):
        return {"connect_timeout": timeout}
    return {}


def _candle_values(candle: Candle) -> dict[str, Any]:
    return {
        "symbol": candle.symbol,
        "interval": candle.interval,
        "open_time": candle.open_time,
        "close_time": candle.close_time,
        "open": candle.open,
        "high": candle.high,
        "low": candle.low,
        "close": candle.close,
        "volume": candle.volume,
        "trade_count": candle.trade_count,
    }


def _upsert_row_by_row(session: Session, rows: list[dict[str, Any]]) -> None:
    for values in rows:
        existing = session.scalars(
            select(CandleRow).where(
                CandleRow.symbol == values["symbol"],
                CandleRow.interval == values["interval"],
                CandleRow.open_time == values["open_time"],
            )
        ).first()
        if existing is None:
            session.add(CandleRow(**values))
            continue
        for col in _CANDLE_VALUE_COLUMNS:
            setattr(existing, col, values[col])


def _signal_row_dict(row: SignalRow) -> dict[str, Any]:
    return {
        "id": row.id,
        "symbol": row.symbol,
        "interval": row.interval,
        "generated_at": row.generated_at,
        "direction": row.direction,
        "confidence": row.confidence,
        "price": row.price,
        "entry": row.entry,
        "stop": row.stop,
        "target": row.target,
        "risk_reward": row.risk_reward,
        "rationale": row.rationale,
    }
