"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from enum import Enum
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


class Settings(BaseSettings):
    """系统配置设置。

    从环境变量和 .env 文件加载配置。风控字段只是 RiskConfig 的基线，
    逐字段覆盖见 ``confluence_engine.risk.presets.resolve_risk_config``。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== 风控基线 ====================
    risk_pct_per_trade: float = Field(
        default=0.75,
        gt=0.0,
        le=5.0,
        description="单笔基础风险（账户净值百分比）",
    )
    atr_mult_sl: float = Field(
        default=1.2,
        gt=0.0,
        le=10.0,
        description="止损 ATR 倍数",
    )
    atr_mult_tp1: float = Field(
        default=1.0,
        gt=0.0,
        le=20.0,
        description="第一止盈 ATR 倍数",
    )
    atr_mult_tp2: float = Field(
        default=2.0,
        gt=0.0,
        le=20.0,
        description="第二止盈 ATR 倍数",
    )
    vol_min_atr_pct: float = Field(
        default=0.15,
        ge=0.0,
        description="ATR% 下限，低于该值放大风险",
    )
    vol_max_atr_pct: float = Field(
        default=3.0,
        gt=0.0,
        description="ATR% 上限，高于该值削减风险",
    )

    # ==================== 日志配置 ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="日志输出格式",
    )

    @model_validator(mode="after")
    def check_ordering(self) -> "Settings":
        """波动率区间与止盈倍数必须有序。"""
        if self.vol_min_atr_pct > self.vol_max_atr_pct:
            raise ValueError("vol_min_atr_pct must be <= vol_max_atr_pct")
        if self.atr_mult_tp1 > self.atr_mult_tp2:
            raise ValueError("atr_mult_tp1 must be <= atr_mult_tp2")
        return self


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
