"""Relational persistence for candles, signals and indicator snapshots."""

from signal_trading.storage.repository import SqlSignalStore

__all__ = ["SqlSignalStore"]
