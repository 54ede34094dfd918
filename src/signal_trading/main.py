"""CLI 入口模块 - Signal Trading 命令行接口。"""

import importlib
import itertools
import json
import sys
import time
from datetime import datetime, timedelta, timezone
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import NoReturn

import click

from signal_trading import __version__
from signal_trading.config import SUPPORTED_INTERVALS, Settings, get_settings
from signal_trading.errors import StoreError, VenueError
from signal_trading.pipeline import build_venue, run_many
from signal_trading.storage.repository import SqlSignalStore
from signal_trading.types import PipelineResult
from signal_trading.utils.logging import get_logger, log_pipeline_result, setup_logging

# (导入名, 发行包名, 用途)
_DEPENDENCIES: tuple[tuple[str, str, str], ...] = (
    ("pydantic", "pydantic", "模型输出与配置校验"),
    ("pydantic_settings", "pydantic-settings", "环境变量配置"),
    ("httpx", "httpx", "OpenRouter 请求"),
    ("tenacity", "tenacity", "请求重试"),
    ("pandas", "pandas", "K 线整理"),
    ("numpy", "numpy", "指标计算"),
    ("sqlalchemy", "sqlalchemy", "信号存储"),
    ("binance", "python-binance", "行情与下单"),
    ("structlog", "structlog", "结构化日志"),
    ("click", "click", "命令行"),
)

_SYMBOL_OPTION = click.option(
    "--symbol",
    "-s",
    "symbols",
    multiple=True,
    help="交易对，可重复指定；多个交易对并发执行",
)
_NO_TRADE_OPTION = click.option(
    "--no-trade",
    is_flag=True,
    default=False,
    help="只生成并保存信号，不下单",
)


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """Signal Trading - LLM 信号生成与自动下单系统。

    拉取 K 线 → 计算指标 → 模型给出建议 → 规则校验 → 落库 → 风险定仓下单。
    """
    if version:
        click.echo(f"signal-trading version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def _prepare(settings: Settings) -> None:
    """创建目录；实盘模式缺少密钥时直接退出。"""
    settings.ensure_directories()
    if not settings.is_live_mode:
        return
    missing = settings.validate_for_live()
    if missing:
        get_logger("signal_trading.main").error(
            "missing_required_config",
            missing_keys=missing,
            hint="请在 .env 文件中配置必要的 API 密钥",
        )
        sys.exit(1)


def _log_results(results: list[PipelineResult], event: str, **extra: object) -> None:
    logger = get_logger("signal_trading.main")
    for result in results:
        log_pipeline_result(logger, event, result, **extra)


@cli.command()
@_SYMBOL_OPTION
@click.option(
    "--interval",
    type=click.Choice(SUPPORTED_INTERVALS),
    default=None,
    help="K 线周期（默认使用配置）",
)
@click.option("--limit", type=click.IntRange(50, 500), default=None, help="拉取的 K 线数量")
@_NO_TRADE_OPTION
def once(symbols: tuple[str, ...], interval: str | None, limit: int | None, no_trade: bool) -> None:
    """执行单次信号流程。

    每个交易对独立运行，结果以 JSON 输出；任一运行失败时退出码为 1。
    """
    setup_logging()
    logger = get_logger("signal_trading.main")
    settings = get_settings()
    _prepare(settings)

    targets = list(symbols) or [settings.default_symbol]
    logger.info(
        "single_run_started",
        mode=settings.mode.value,
        symbols=targets,
        interval=interval or settings.default_interval,
        trade_enabled=not no_trade,
    )

    try:
        results = run_many(settings, targets, interval, limit, trade_enabled=not no_trade)
    except KeyboardInterrupt:
        logger.info("single_run_interrupted")
        sys.exit(130)

    _log_results(results, "run_completed")
    click.echo(json.dumps([r.as_dict() for r in results], ensure_ascii=False, indent=2))
    if not all(r.ok for r in results):
        sys.exit(1)


def _run_iteration(settings: Settings, targets: list[str], iteration: int, *, trade_enabled: bool) -> None:
    logger = get_logger("signal_trading.main")
    try:
        results = run_many(settings, targets, trade_enabled=trade_enabled)
    except Exception as e:  # noqa: BLE001 - one bad iteration must not stop the loop.
        logger.exception("loop_iteration_failed", iteration=iteration, error=str(e))
        return
    _log_results(results, "loop_iteration_completed", iteration=iteration)


@cli.command()
@click.option(
    "--interval-min",
    "-i",
    type=click.IntRange(min=1),
    default=240,
    help="两次运行之间的间隔（分钟）",
)
@_SYMBOL_OPTION
@_NO_TRADE_OPTION
def loop(interval_min: int, symbols: tuple[str, ...], no_trade: bool) -> NoReturn:
    """按固定间隔重复运行信号流程。

    单次迭代失败只记录日志，不退出。使用 Ctrl+C 停止。
    """
    setup_logging()
    logger = get_logger("signal_trading.main")
    settings = get_settings()
    _prepare(settings)

    targets = list(symbols) or [settings.default_symbol]
    pause = timedelta(minutes=interval_min)
    logger.info(
        "loop_started",
        mode=settings.mode.value,
        interval_min=interval_min,
        symbols=targets,
        trade_enabled=not no_trade,
    )

    completed = 0
    try:
        for iteration in itertools.count(1):
            _run_iteration(settings, targets, iteration, trade_enabled=not no_trade)
            completed = iteration
            logger.debug(
                "loop_sleeping",
                iteration=iteration,
                next_run=(datetime.now(timezone.utc) + pause).isoformat(),
            )
            time.sleep(pause.total_seconds())
    except KeyboardInterrupt:
        logger.info("loop_stopped", completed_iterations=completed)
    sys.exit(0)


def _configured(secret: str) -> str:
    return "configured" if secret else "not configured"


def _status_sections(settings: Settings) -> dict[str, list[tuple[str, object]]]:
    return {
        "Venue": [
            ("Binance API", _configured(settings.binance_api_key)),
            ("Testnet", "yes" if settings.binance_testnet else "no"),
            ("Quote asset", settings.quote_asset),
            ("Leverage", f"{settings.leverage}x"),
        ],
        "Model": [
            ("OpenRouter API", _configured(settings.openrouter_api_key)),
            ("Model", settings.openrouter_model),
            ("Timeout", f"{settings.openrouter_timeout}s"),
        ],
        "Market data": [
            ("Default symbol", settings.default_symbol),
            ("Allowed symbols", ", ".join(settings.allowed_symbols)),
            ("Interval", settings.default_interval),
            ("Candles per run", settings.candle_limit),
            ("Candles sent to model", settings.history_depth),
        ],
        "Validation": [
            ("Target risk/reward", settings.min_risk_reward),
            ("Min stop distance", settings.min_risk_abs),
            ("Price tick", settings.price_tick),
            ("Round-number levels", ", ".join(f"{level:g}" for level in settings.psychological_levels)),
        ],
        "Trading": [
            ("Auto trade", "enabled" if settings.auto_trade_enabled else "disabled"),
            ("Min confidence", settings.min_confidence_to_trade),
            ("Risk per trade", f"{settings.risk_per_trade_pct}%"),
            ("Min balance", settings.min_balance),
            ("Size step / min size", f"{settings.size_step} / {settings.min_size}"),
        ],
        "Storage & logs": [
            ("Database", settings.database_url),
            ("Journal dir", settings.journal_dir),
            ("Log", f"{settings.log_level} ({settings.log_format.value})"),
        ],
    }


@cli.command()
def status() -> None:
    """显示运行模式和各组配置。"""
    setup_logging()
    settings = get_settings()

    mode_text = "Paper Trading" if settings.is_paper_mode else "Live Trading"
    click.echo(f"Signal Trading {__version__} - {mode_text}")
    for title, rows in _status_sections(settings).items():
        width = max(len(label) for label, _ in rows)
        click.echo(f"\n[{title}]")
        for label, value in rows:
            click.echo(f"  {label:<{width}}  {value}")
    click.echo()

    if settings.is_paper_mode:
        click.echo("[INFO] Paper mode trades against local state; API keys are optional")
        return
    missing = settings.validate_for_live()
    if missing:
        click.echo(f"[ERROR] Live mode is missing: {', '.join(missing)}")
    else:
        click.echo("[OK] Live mode configuration complete")


@cli.command()
def check() -> None:
    """检查依赖、配置文件与数据库连接。"""
    setup_logging()
    logger = get_logger("signal_trading.main")
    settings = get_settings()

    click.echo("Dependencies:")
    missing: list[str] = []
    for module, dist, purpose in _DEPENDENCIES:
        try:
            importlib.import_module(module)
        except ImportError:
            missing.append(dist)
            click.echo(f"  [MISSING] {module:<18} {purpose}")
            continue
        try:
            installed = version(dist)
        except PackageNotFoundError:
            installed = "unknown"
        click.echo(f"  [OK] {module:<18} {installed:<10} {purpose}")

    click.echo("\nConfiguration:")
    env_state = "found" if Path(".env").exists() else "not found, using environment and defaults"
    click.echo(f"  .env: {env_state}")

    database_ok = True
    try:
        settings.ensure_directories()
        SqlSignalStore.from_settings(settings).dispose()
    except (OSError, StoreError) as e:
        database_ok = False
        click.echo(f"  [FAIL] database: {e}")
    else:
        click.echo(f"  [OK] database: {settings.database_url}")

    all_ok = not missing and database_ok
    click.echo()
    if all_ok:
        click.echo("[OK] All checks passed")
    else:
        if missing:
            click.echo(f"[ERROR] Missing packages: {' '.join(missing)}. Run: pip install -e .")
        if not database_ok:
            click.echo("[ERROR] Database is not reachable, check DATABASE_URL")

    logger.info("dependency_check_completed", all_ok=all_ok, missing=missing, database_ok=database_ok)
    if not all_ok:
        sys.exit(1)


@cli.command()
@click.option("--limit", "-n", type=click.IntRange(min=1), default=10, help="显示最近的信号数量")
def history(limit: int) -> None:
    """显示最近保存的信号（新的在前）。"""
    setup_logging()
    logger = get_logger("signal_trading.main")
    settings = get_settings()
    settings.ensure_directories()

    try:
        rows = SqlSignalStore.from_settings(settings).recent_signals(limit)
    except StoreError as e:
        logger.error("history_unavailable", error=str(e))
        sys.exit(1)

    if not rows:
        click.echo("No signals stored yet.")
        return
    for row in rows:
        levels = (
            f"entry={row['entry']} stop={row['stop']} target={row['target']}"
            if row["entry"] is not None
            else "no levels"
        )
        click.echo(
            f"#{row['id']} {row['generated_at']} {row['symbol']} {row['interval']} "
            f"{row['direction']} ({row['confidence']:.0f}%) {levels}"
        )


@cli.command()
@click.argument("symbol")
def close(symbol: str) -> None:
    """以只减仓市价单平掉指定交易对的持仓。"""
    setup_logging()
    logger = get_logger("signal_trading.main")
    settings = get_settings()
    _prepare(settings)

    try:
        result = build_venue(settings).close_position(symbol)
    except VenueError as e:
        logger.error("close_position_failed", symbol=symbol, error=str(e))
        sys.exit(1)

    logger.info("close_position_completed", symbol=symbol, success=result.success, error=result.error)
    click.echo(json.dumps({"symbol": symbol, "success": result.success, "order_id": result.order_id, "error": result.error}))
    if not result.success:
        sys.exit(1)


@cli.command()
@click.argument("symbol")
def cancel(symbol: str) -> None:
    """撤销指定交易对的全部挂单。"""
    setup_logging()
    logger = get_logger("signal_trading.main")
    settings = get_settings()
    _prepare(settings)

    try:
        cancelled = build_venue(settings).cancel_open_orders(symbol)
    except VenueError as e:
        logger.error("cancel_orders_failed", symbol=symbol, error=str(e))
        sys.exit(1)

    logger.info("cancel_orders_completed", symbol=symbol, cancelled=cancelled)
    click.echo(f"Cancelled {cancelled} open order(s) for {symbol}")


# 支持 python -m signal_trading.main 调用
if __name__ == "__main__":
    cli()
