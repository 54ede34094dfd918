"""Signal-to-trade pipeline: one run per (symbol, interval)."""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from time import perf_counter
from typing import Any

from signal_trading.ai.openrouter_client import OpenRouterClient
from signal_trading.ai.schemas import MarketSnapshot, parse_recommendation_text
from signal_trading.config import Settings
from signal_trading.data.binance import BinanceDataClient
from signal_trading.errors import (
    InsufficientDataError,
    MarketDataError,
    OrphanedRecordError,
    RecommendationDecodeError,
    RecommendationEngineError,
    RecommendationValidationError,
    SignalTradingError,
    StoreError,
)
from signal_trading.exec.binance_futures import BinanceFuturesVenue
from signal_trading.exec.decision import TradeDecisionEngine
from signal_trading.exec.paper import PaperVenue
from signal_trading.features.indicators import build_indicator_snapshot
from signal_trading.interfaces import ExecutionVenue, MarketDataSource, RecommendationEngine, SignalStore
from signal_trading.journal.store import JournalStore
from signal_trading.risk.validator import RecommendationValidator
from signal_trading.storage.repository import SqlSignalStore
from signal_trading.types import ErrorKind, PipelineResult, PipelineStage, Signal, TradeStatus
from signal_trading.utils.logging import (
    bind_run_context,
    clear_run_context,
    get_logger,
    log_risk_event,
    log_trade_signal,
)

_TRADE_STATUS_TO_RUN_STATUS = {
    TradeStatus.PLACED: "traded",
    TradeStatus.SKIPPED: "signal_only",
    TradeStatus.FAILED: "trade_failed",
}


class SignalPipeline:
    """Orchestrates fetch, analysis, validation, persistence and trading.

    Collaborators are injected; the pipeline never builds its own clients.
    Every documented failure ends up in the returned PipelineResult.
    """

    def __init__(
        self,
        data_source: MarketDataSource,
        engine: RecommendationEngine,
        store: SignalStore,
        validator: RecommendationValidator,
        decision_engine: TradeDecisionEngine,
        *,
        min_candles: int = 50,
        history_depth: int = 100,
        journal: JournalStore | None = None,
    ) -> None:
        self._data_source = data_source
        self._engine = engine
        self._store = store
        self._validator = validator
        self._decision_engine = decision_engine
        self._min_candles = min_candles
        self._history_depth = history_depth
        self._journal = journal
        self._logger = get_logger("signal_trading.pipeline")

    def run(self, symbol: str, interval: str, limit: int) -> PipelineResult:
        started = perf_counter()
        result = PipelineResult(symbol=symbol, interval=interval, run_id=uuid.uuid4().hex[:12])
        bind_run_context(run_id=result.run_id, symbol=symbol, interval=interval)
        try:
            return self._guarded_run(result, started, limit)
        finally:
            clear_run_context()

    def _guarded_run(self, result: PipelineResult, started: float, limit: int) -> PipelineResult:
        try:
            self._record(
                result.run_id,
                "run_start",
                {
                    "symbol": result.symbol,
                    "interval": result.interval,
                    "limit": limit,
                    "started_at": datetime.now(timezone.utc).isoformat(),
                },
            )
            return self._run_stages(result, started, limit)
        except Exception as exc:  # noqa: BLE001 - top-level guard for loop resilience.
            self._logger.exception("pipeline_failed", stage=result.stage.value, error=str(exc))
            return self._fail(
                result,
                started,
                ErrorKind.UNEXPECTED,
                f"{result.stage.value}: {type(exc).__name__}: {exc}",
            )

    def _run_stages(self, result: PipelineResult, started: float, limit: int) -> PipelineResult:
        symbol, interval = result.symbol, result.interval

        result.stage = PipelineStage.FETCH_CANDLES
        try:
            candles = self._data_source.fetch_candles(symbol, interval, limit)
        except MarketDataError as exc:
            return self._fail(result, started, ErrorKind.MARKET_DATA, str(exc))
        if not candles:
            return self._fail(result, started, ErrorKind.MARKET_DATA, "no_candles_returned")
        result.candles_analyzed = len(candles)
        self._record(
            result.run_id,
            "market_data",
            {
                "symbol": symbol,
                "interval": interval,
                "candles": len(candles),
                "last_close": candles[-1].close,
            },
        )

        result.stage = PipelineStage.PERSIST_CANDLES
        try:
            self._store.upsert_candles(candles)
        except StoreError as exc:
            self._logger.warning("candle_upsert_failed", symbol=symbol, error=str(exc))
            result.warnings.append(f"candle_upsert_failed: {exc}")

        result.stage = PipelineStage.BUILD_INDICATORS
        try:
            snapshot = build_indicator_snapshot(candles, self._min_candles)
        except InsufficientDataError as exc:
            return self._fail(result, started, ErrorKind.INSUFFICIENT_DATA, str(exc))
        except MarketDataError as exc:
            return self._fail(result, started, ErrorKind.MARKET_DATA, str(exc))

        result.stage = PipelineStage.RECOMMENDATION
        serialized = MarketSnapshot.from_candles(
            candles,
            snapshot,
            symbol=symbol,
            interval=interval,
            history_depth=self._history_depth,
        ).serialize()
        try:
            raw_text = self._engine.complete(serialized)
        except RecommendationEngineError as exc:
            return self._fail(result, started, ErrorKind.RECOMMENDATION_UNAVAILABLE, str(exc))

        result.stage = PipelineStage.DECODE
        try:
            recommendation = parse_recommendation_text(raw_text)
        except RecommendationDecodeError as exc:
            return self._fail(result, started, ErrorKind.DECODE, str(exc))
        self._record(result.run_id, "recommendation", recommendation.model_dump())

        result.stage = PipelineStage.VALIDATION
        try:
            validated = self._validator.validate(recommendation)
        except RecommendationValidationError as exc:
            result.validation_kind = exc.kind.value
            return self._fail(result, started, ErrorKind.VALIDATION, str(exc))
        result.warnings.extend(validated.warnings)
        self._record(
            result.run_id,
            "validation",
            {
                "direction": validated.direction.value,
                "risk_reward": validated.risk_reward,
                "warnings": validated.warnings,
            },
        )

        signal = Signal(
            symbol=symbol,
            interval=interval,
            generated_at=datetime.now(timezone.utc).isoformat(),
            candle_open_time=candles[-1].open_time,
            direction=validated.direction,
            confidence=validated.confidence,
            price=snapshot.price,
            entry=validated.entry,
            stop=validated.stop,
            target=validated.target,
            rationale=validated.rationale,
            risk_reward=validated.risk_reward,
        )
        result.signal = signal
        log_trade_signal(
            self._logger,
            symbol=symbol,
            direction=signal.direction.value,
            confidence=signal.confidence,
            entry=signal.entry,
            stop=signal.stop,
            target=signal.target,
            risk_reward=signal.risk_reward,
        )

        result.stage = PipelineStage.PERSIST_SIGNAL
        try:
            signal_id = self._store.insert_signal(signal)
        except StoreError as exc:
            return self._fail(result, started, ErrorKind.PERSISTENCE, str(exc))
        result.signal_id = signal_id

        result.stage = PipelineStage.PERSIST_INDICATORS
        try:
            self._store.insert_indicators(signal_id, snapshot)
        except StoreError as exc:
            return self._roll_back(result, started, signal_id, exc)
        self._record(result.run_id, "signal", {"signal_id": signal_id, **signal.as_dict()})

        result.stage = PipelineStage.TRADE
        outcome = self._decision_engine.execute(signal)
        result.trade = outcome
        self._record(result.run_id, "trade", {"signal_id": signal_id, **outcome.as_dict()})

        result.stage = PipelineStage.COMPLETE
        status = _TRADE_STATUS_TO_RUN_STATUS[outcome.status]
        if result.degraded:
            status = "traded_degraded"
        return self._finish(result, started, status=status)

    def _roll_back(
        self,
        result: PipelineResult,
        started: float,
        signal_id: int,
        cause: StoreError,
    ) -> PipelineResult:
        """Compensate a half-written signal; an undeletable row is reported by id."""
        try:
            self._store.delete_signal(signal_id)
        except StoreError as exc:
            orphan = OrphanedRecordError(signal_id, f"{cause}; delete failed: {exc}")
            result.orphan_id = orphan.signal_id
            log_risk_event(
                self._logger,
                event_type="orphaned_signal",
                action="manual_cleanup_required",
                signal_id=signal_id,
                error=str(exc),
            )
            return self._fail(result, started, ErrorKind.ORPHANED_RECORD, str(orphan))

        result.signal_id = None
        result.signal = None
        self._logger.warning("signal_rolled_back", signal_id=signal_id, error=str(cause))
        return self._fail(result, started, ErrorKind.ROLLED_BACK, f"signal_rolled_back: {cause}")

    def _fail(
        self,
        result: PipelineResult,
        started: float,
        kind: ErrorKind,
        message: str,
    ) -> PipelineResult:
        result.error_kind = kind
        result.error = message
        self._logger.error(
            "pipeline_run_failed",
            symbol=result.symbol,
            stage=result.stage.value,
            error_kind=kind.value,
            error=message,
        )
        self._record(
            result.run_id,
            "error",
            {
                "stage": result.stage.value,
                "error_kind": kind.value,
                "validation_kind": result.validation_kind,
                "orphan_id": result.orphan_id,
                "error": message,
            },
        )
        return self._finish(result, started, status="failed")

    def _finish(self, result: PipelineResult, started: float, *, status: str) -> PipelineResult:
        result.status = status
        result.elapsed_ms = (perf_counter() - started) * 1000
        self._record(
            result.run_id,
            "run_end",
            {
                "symbol": result.symbol,
                "status": status,
                "stage": result.stage.value,
                "signal_id": result.signal_id,
                "elapsed_ms": result.elapsed_ms,
            },
        )
        return result

    def _record(self, run_id: str, event_type: str, payload: dict[str, Any]) -> None:
        if self._journal is None:
            return
        try:
            self._journal.append(event_type, payload, run_id=run_id)
        except OSError as exc:
            # the journal is an audit trail; the run result is still returned
            self._logger.warning("journal_write_failed", event_type=event_type, error=str(exc))


def build_venue(settings: Settings) -> ExecutionVenue:
    """Paper mode trades against local state, live mode against Binance."""
    if settings.is_paper_mode:
        return PaperVenue(settings.journal_dir)
    return BinanceFuturesVenue(settings)


def build_pipeline(
    settings: Settings,
    *,
    trade_enabled: bool = True,
    store: SignalStore | None = None,
) -> SignalPipeline:
    """Wire the concrete adapters selected by settings."""
    decision_engine = TradeDecisionEngine.from_settings(settings, build_venue(settings))
    if not trade_enabled:
        decision_engine.auto_trade_enabled = False
    return SignalPipeline(
        data_source=BinanceDataClient(settings),
        engine=OpenRouterClient(settings),
        store=store if store is not None else SqlSignalStore.from_settings(settings),
        validator=RecommendationValidator.from_settings(settings),
        decision_engine=decision_engine,
        min_candles=settings.min_candles,
        history_depth=settings.history_depth,
        journal=JournalStore(settings.journal_dir),
    )


def run_signal_cycle(
    settings: Settings,
    symbol: str | None = None,
    interval: str | None = None,
    limit: int | None = None,
    *,
    trade_enabled: bool = True,
    store: SignalStore | None = None,
) -> PipelineResult:
    """Build the pipeline and run it once."""
    symbol = symbol or settings.default_symbol
    interval = interval or settings.default_interval
    try:
        pipeline = build_pipeline(settings, trade_enabled=trade_enabled, store=store)
    except SignalTradingError as exc:
        kind = ErrorKind.PERSISTENCE if isinstance(exc, StoreError) else ErrorKind.UNEXPECTED
        get_logger("signal_trading.pipeline").error("pipeline_build_failed", symbol=symbol, error=str(exc))
        return PipelineResult(
            symbol=symbol,
            interval=interval,
            status="failed",
            error_kind=kind,
            error=f"pipeline_build_failed: {exc}",
        )
    return pipeline.run(symbol, interval, limit or settings.candle_limit)


def run_many(
    settings: Settings,
    symbols: Sequence[str],
    interval: str | None = None,
    limit: int | None = None,
    *,
    trade_enabled: bool = True,
    max_workers: int = 4,
) -> list[PipelineResult]:
    """Independent runs on a thread pool, results in input order."""
    if not symbols:
        return []
    store: SignalStore | None = None
    try:
        # one engine for all workers so schema creation happens once
        store = SqlSignalStore.from_settings(settings)
    except StoreError as exc:
        get_logger("signal_trading.pipeline").error("store_unavailable", error=str(exc))

    def _one(symbol: str) -> PipelineResult:
        return run_signal_cycle(
            settings,
            symbol,
            interval,
            limit,
            trade_enabled=trade_enabled,
            store=store,
        )

    workers = max(1, min(max_workers, len(symbols)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="signal-run") as pool:
        return list(pool.map(_one, symbols))
