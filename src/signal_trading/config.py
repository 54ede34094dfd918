"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_INTERVALS: tuple[str, ...] = ("1m", "5m", "15m", "1h", "4h", "1d")


class RunMode(str, Enum):
    """运行模式枚举。"""

    PAPER = "paper"  # 纸交易
    LIVE = "live"  # 实盘


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


class Settings(BaseSettings):
    """系统配置设置。

    从环境变量和 .env 文件加载配置。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== 运行模式 ====================
    mode: RunMode = Field(default=RunMode.PAPER, description="运行模式: paper 或 live")

    # ==================== Binance API ====================
    binance_api_key: str = Field(default="", description="Binance API Key")
    binance_api_secret: str = Field(default="", description="Binance API Secret")
    binance_testnet: bool = Field(default=True, description="是否使用 Binance 测试网")
    binance_timeout: int = Field(default=10, ge=1, le=60, description="交易所请求超时（秒）")
    quote_asset: str = Field(default="USDT", description="保证金计价资产")

    # ==================== OpenRouter API ====================
    openrouter_api_key: str = Field(default="", description="OpenRouter API Key")
    openrouter_model: str = Field(
        default="anthropic/claude-3.5-sonnet",
        description="OpenRouter 模型名称",
    )
    openrouter_timeout: int = Field(default=60, description="LLM 调用超时（秒）")
    openrouter_temperature: float = Field(default=1.0, ge=0.0, le=2.0, description="采样温度")
    openrouter_max_tokens: int = Field(default=8000, ge=256, description="最大输出 token 数")

    # ==================== 行情数据 ====================
    default_symbol: str = Field(default="BTCUSDT", description="默认交易对")
    allowed_symbols: list[str] = Field(
        default_factory=lambda: ["BTCUSDT", "ETHUSDT", "SOLUSDT"],
        description="允许分析的交易对",
    )
    default_interval: str = Field(default="4h", description="默认 K 线周期")
    candle_limit: int = Field(default=100, ge=50, le=500, description="每次拉取的 K 线数量")
    min_candles: int = Field(default=50, ge=1, description="计算指标所需的最少 K 线数")
    history_depth: int = Field(default=100, ge=1, le=500, description="发送给模型的历史 K 线数")

    # ==================== 信号校验 ====================
    min_risk_reward: float = Field(
        default=3.0,
        ge=0.0,
        description="目标盈亏比（低于该值仅告警，不拒绝）",
    )
    min_risk_abs: float = Field(
        default=1.0,
        gt=0.0,
        description="入场与止损之间的最小绝对距离",
    )
    psychological_levels: list[float] = Field(
        default_factory=lambda: [1000.0, 5000.0],
        description="整数关口价位（仅告警）",
    )
    price_tick: float = Field(default=0.1, gt=0.0, description="交易所最小价格变动单位")
    atr_multiplier_sl: float = Field(default=1.75, gt=0.0, description="提示词中的止损 ATR 倍数")
    atr_multiplier_tp: float = Field(default=3.5, gt=0.0, description="提示词中的止盈 ATR 倍数")

    # ==================== 自动交易 ====================
    auto_trade_enabled: bool = Field(default=True, description="是否启用自动交易")
    min_confidence_to_trade: float = Field(
        default=60.0,
        ge=0.0,
        le=100.0,
        description="自动交易的最低置信度",
    )
    risk_per_trade_pct: float = Field(
        default=2.0,
        ge=0.1,
        le=5.0,
        description="单笔最大风险（账户净值百分比）",
    )
    min_balance: float = Field(default=10.0, ge=0.0, description="允许交易的最低账户余额")
    leverage: int = Field(default=1, ge=1, le=20, description="杠杆倍数")
    size_step: float = Field(default=0.001, gt=0.0, description="交易所最小数量步长")
    min_size: float = Field(default=0.001, gt=0.0, description="交易所最小下单数量")

    # ==================== 日志配置 ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="日志输出格式",
    )

    # ==================== 数据存储 ====================
    journal_dir: Path = Field(
        default=Path("data/journal"),
        description="运行事件日志存储目录",
    )
    database_url: str = Field(
        default="sqlite:///data/signals.db",
        description="信号数据库连接串",
    )
    db_timeout: int = Field(default=10, ge=1, le=120, description="数据库连接超时（秒）")

    @field_validator("journal_dir", mode="before")
    @classmethod
    def parse_journal_dir(cls, v: str | Path) -> Path:
        """将字符串转换为 Path 对象。"""
        return Path(v) if isinstance(v, str) else v

    @field_validator("default_interval")
    @classmethod
    def check_interval(cls, v: str) -> str:
        """仅允许受支持的 K 线周期。"""
        if v not in SUPPORTED_INTERVALS:
            raise ValueError(f"unsupported_interval: {v}")
        return v

    def ensure_directories(self) -> None:
        """确保必要的目录存在。"""
        self.journal_dir.mkdir(parents=True, exist_ok=True)
        sqlite_path = self.sqlite_path
        if sqlite_path is not None:
            sqlite_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def sqlite_path(self) -> Path | None:
        """SQLite 数据库文件路径（非 SQLite 时为 None）。"""
        prefix = "sqlite:///"
        if not self.database_url.startswith(prefix):
            return None
        raw = self.database_url[len(prefix) :]
        if not raw or raw == ":memory:":
            return None
        return Path(raw)

    @property
    def risk_fraction(self) -> float:
        """单笔风险比例（小数）。"""
        return self.risk_per_trade_pct / 100.0

    @property
    def is_paper_mode(self) -> bool:
        """是否为纸交易模式。"""
        return self.mode == RunMode.PAPER

    @property
    def is_live_mode(self) -> bool:
        """是否为实盘模式。"""
        return self.mode == RunMode.LIVE

    def validate_for_live(self) -> list[str]:
        """验证实盘模式的必要配置，返回缺失项列表。"""
        missing = []
        if not self.binance_api_key:
            missing.append("BINANCE_API_KEY")
        if not self.binance_api_secret:
            missing.append("BINANCE_API_SECRET")
        if not self.openrouter_api_key:
            missing.append("OPENROUTER_API_KEY")
        return missing


# 全局配置实例（延迟初始化）
_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置。"""
    global _settings
    _settings = Settings()
    return _settings
