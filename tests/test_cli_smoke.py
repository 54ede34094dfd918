from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from signal_trading.config import Settings
from signal_trading.main import cli
from signal_trading.storage.repository import SqlSignalStore
from signal_trading.types import (
    Direction,
    ErrorKind,
    OrderResult,
    PipelineResult,
    PipelineStage,
    Signal,
    TradeOutcome,
    TradeStatus,
)


@pytest.fixture()
def settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Settings:
    configured = Settings(
        journal_dir=tmp_path / "journal",
        database_url=f"sqlite:///{tmp_path / 'signals.db'}",
    )
    monkeypatch.setattr("signal_trading.main.get_settings", lambda: configured)
    return configured


def test_cli_once_smoke(monkeypatch: pytest.MonkeyPatch, settings: Settings) -> None:
    calls: list[tuple[object, ...]] = []

    def _fake_run_many(settings: object, symbols: list[str], interval: object, limit: object, *, trade_enabled: bool) -> list[PipelineResult]:
        calls.append((tuple(symbols), interval, limit, trade_enabled))
        return [PipelineResult(symbol=s, interval="4h", status="signal_only", stage=PipelineStage.COMPLETE) for s in symbols]

    monkeypatch.setattr("signal_trading.main.run_many", _fake_run_many)
    runner = CliRunner()
    result = runner.invoke(cli, ["once", "-s", "BTCUSDT", "-s", "ETHUSDT", "--interval", "1h", "--no-trade"])
    assert result.exit_code == 0
    assert calls == [(("BTCUSDT", "ETHUSDT"), "1h", None, False)]
    assert '"status": "signal_only"' in result.output


def test_cli_once_exits_non_zero_on_failed_run(monkeypatch: pytest.MonkeyPatch, settings: Settings) -> None:
    def _fake_run_many(settings: object, symbols: list[str], *args: object, **kwargs: object) -> list[PipelineResult]:
        return [
            PipelineResult(
                symbol=symbols[0],
                interval="4h",
                status="failed",
                error_kind=ErrorKind.MARKET_DATA,
                error="klines_request_failed",
            )
        ]

    monkeypatch.setattr("signal_trading.main.run_many", _fake_run_many)
    result = CliRunner().invoke(cli, ["once"])
    assert result.exit_code == 1


def test_cli_once_exits_non_zero_on_degraded_bracket(monkeypatch: pytest.MonkeyPatch, settings: Settings) -> None:
    def _fake_run_many(settings: object, symbols: list[str], *args: object, **kwargs: object) -> list[PipelineResult]:
        trade = TradeOutcome(
            status=TradeStatus.PLACED,
            order_ids=["1", "3"],
            degraded=True,
            leg_errors=["stop_loss: -2021: Order would immediately trigger."],
        )
        return [
            PipelineResult(
                symbol=symbols[0],
                interval="4h",
                status="traded_degraded",
                stage=PipelineStage.COMPLETE,
                trade=trade,
            )
        ]

    monkeypatch.setattr("signal_trading.main.run_many", _fake_run_many)
    result = CliRunner().invoke(cli, ["once"])
    assert result.exit_code == 1
    assert '"degraded": true' in result.output


def test_cli_once_rejects_unknown_interval(settings: Settings) -> None:
    result = CliRunner().invoke(cli, ["once", "--interval", "3h"])
    assert result.exit_code == 2


def test_cli_history_lists_stored_signals(settings: Settings) -> None:
    settings.ensure_directories()
    SqlSignalStore.from_settings(settings).insert_signal(
        Signal(
            symbol="BTCUSDT",
            interval="4h",
            generated_at="2024-01-01T00:00:00+00:00",
            candle_open_time=1,
            direction=Direction.SELL,
            confidence=66.0,
            price=100.0,
            entry=100.0,
            stop=105.0,
            target=85.0,
            rationale="test rationale text",
            risk_reward=3.0,
        )
    )
    result = CliRunner().invoke(cli, ["history", "--limit", "5"])
    assert result.exit_code == 0
    assert "BTCUSDT 4h sell (66%)" in result.output


def test_cli_close_and_cancel_use_venue(monkeypatch: pytest.MonkeyPatch, settings: Settings) -> None:
    class _FakeVenue:
        def close_position(self, symbol: str) -> OrderResult:
            return OrderResult(success=True, order_id="99")

        def cancel_open_orders(self, symbol: str) -> int:
            return 2

    monkeypatch.setattr("signal_trading.main.build_venue", lambda settings: _FakeVenue())
    runner = CliRunner()

    closed = runner.invoke(cli, ["close", "BTCUSDT"])
    assert closed.exit_code == 0
    assert json.loads(closed.output.strip().splitlines()[-1])["order_id"] == "99"

    cancelled = runner.invoke(cli, ["cancel", "BTCUSDT"])
    assert cancelled.exit_code == 0
    assert "Cancelled 2 open order(s) for BTCUSDT" in cancelled.output


def test_cli_status_and_check(settings: Settings) -> None:
    runner = CliRunner()
    status = runner.invoke(cli, ["status"])
    assert status.exit_code == 0
    assert "Paper Trading" in status.output

    check = runner.invoke(cli, ["check"])
    assert check.exit_code == 0
    assert "sqlalchemy" in check.output
