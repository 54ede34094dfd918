"""结构化日志配置模块。

使用 structlog 输出事件式日志（snake_case 事件名 + 关键字字段），
支持 JSON 与彩色控制台两种格式。每次流程运行通过 contextvars 绑定
run_id / symbol / interval，并发运行时日志可按运行关联。
"""

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import Processor

from signal_trading.config import LogFormat, Settings, get_settings

if TYPE_CHECKING:
    from signal_trading.types import PipelineResult

# 第三方库的请求级日志过于冗长
_NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "sqlalchemy.engine", "binance")


def setup_logging(settings: Settings | None = None) -> None:
    """配置结构化日志系统。

    根据配置设置日志级别和输出格式。
    """
    settings = settings or get_settings()

    log_level = getattr(logging, settings.log_level)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == LogFormat.JSON:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """获取结构化日志记录器。"""
    return structlog.get_logger(name)


def bind_run_context(*, run_id: str, symbol: str, interval: str) -> None:
    """为当前线程的后续日志绑定运行上下文。"""
    structlog.contextvars.bind_contextvars(run_id=run_id, symbol=symbol, interval=interval)


def clear_run_context() -> None:
    structlog.contextvars.unbind_contextvars("run_id", "symbol", "interval")


# 便捷日志函数
def log_trade_signal(
    logger: structlog.stdlib.BoundLogger,
    *,
    direction: str,
    confidence: float,
    entry: float | None = None,
    stop: float | None = None,
    target: float | None = None,
    risk_reward: float | None = None,
    **kwargs: Any,
) -> None:
    """记录校验通过的交易信号；hold 信号没有价位。"""
    levels: dict[str, Any] = {}
    if entry is not None:
        levels = {
            "entry": entry,
            "stop": stop,
            "target": target,
            "risk_reward": round(risk_reward, 2) if risk_reward is not None else None,
        }
    logger.info(
        "trade_signal",
        direction=direction,
        confidence=confidence,
        **levels,
        **kwargs,
    )


def log_llm_call(
    logger: structlog.stdlib.BoundLogger,
    *,
    model: str,
    success: bool,
    latency_ms: float,
    **kwargs: Any,
) -> None:
    """记录模型调用（失败为 warning）。"""
    level = "info" if success else "warning"
    getattr(logger, level)(
        "llm_call",
        model=model,
        success=success,
        latency_ms=round(latency_ms, 2),
        **kwargs,
    )


def log_order_execution(
    logger: structlog.stdlib.BoundLogger,
    *,
    symbol: str,
    side: str,
    quantity: float,
    price: float | None = None,
    order_id: str | None = None,
    status: str = "submitted",
    **kwargs: Any,
) -> None:
    """记录入场订单结果，rejected 记为 error。"""
    level = "error" if status == "rejected" else "info"
    getattr(logger, level)(
        "order_execution",
        symbol=symbol,
        side=side,
        quantity=quantity,
        price=price,
        order_id=order_id,
        status=status,
        **kwargs,
    )


def log_risk_event(
    logger: structlog.stdlib.BoundLogger,
    *,
    event_type: str,
    action: str,
    **kwargs: Any,
) -> None:
    """记录风控事件：软告警、降级挂单、孤儿记录等。"""
    logger.warning(
        "risk_event",
        event_type=event_type,
        action=action,
        **kwargs,
    )


def log_pipeline_result(
    logger: structlog.stdlib.BoundLogger,
    event: str,
    result: "PipelineResult",
    **kwargs: Any,
) -> None:
    """记录一次流程运行的汇总结果：失败为 error，止损/止盈腿缺失为 warning。"""
    trade = result.trade
    if result.error_kind is not None:
        level = "error"
    elif result.degraded:
        level = "warning"
    else:
        level = "info"
    getattr(logger, level)(
        event,
        symbol=result.symbol,
        interval=result.interval,
        run_id=result.run_id,
        status=result.status,
        stage=result.stage.value,
        signal_id=result.signal_id,
        trade_status=trade.status.value if trade else None,
        trade_reason=trade.reason.value if trade and trade.reason else None,
        trade_degraded=result.degraded,
        leg_errors=list(trade.leg_errors) if trade else [],
        error_kind=result.error_kind.value if result.error_kind else None,
        validation_kind=result.validation_kind,
        orphan_id=result.orphan_id,
        error=result.error,
        warnings=result.warnings,
        elapsed_ms=round(result.elapsed_ms, 2),
        **kwargs,
    )
