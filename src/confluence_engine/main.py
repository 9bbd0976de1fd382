"""CLI 入口模块 - Confluence Engine 命令行接口。"""

import json
import sys
from dataclasses import asdict
from pathlib import Path

import click
from pydantic import ValidationError

from confluence_engine import __version__
from confluence_engine.config import get_settings
from confluence_engine.pipeline import run_evaluation
from confluence_engine.risk.presets import resolve_risk_config
from confluence_engine.risk.rules import build_atr_risk_levels
from confluence_engine.schemas import EvaluationRequest
from confluence_engine.strategy.confluence import trend_matrix_frame
from confluence_engine.utils.logging import get_logger, setup_logging


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """Confluence Engine - 多周期信号共振与风险仓位计算。

    读取各周期指标快照，输出方向判断、共振结论与分批建仓计划。
    """
    if version:
        click.echo(f"confluence-engine version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.argument("request_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--matrix",
    is_flag=True,
    default=False,
    help="输出趋势矩阵表格而不是 JSON",
)
def evaluate(request_file: Path, matrix: bool) -> None:
    """评估一份指标快照请求。

    分类 → 多周期共振 → 风控仓位，结果以 JSON 输出到 stdout。
    """
    setup_logging()
    logger = get_logger("confluence_engine.main")
    settings = get_settings()

    try:
        request = EvaluationRequest.from_file(request_file)
    except ValidationError as e:
        logger.error("invalid_request", path=str(request_file), errors=e.error_count())
        click.echo(str(e), err=True)
        sys.exit(1)

    try:
        result = run_evaluation(request, settings)
    except ValueError as e:
        # 配置不合法（回撤阶梯、权益分层等），直接失败
        logger.error("invalid_configuration", error=str(e))
        sys.exit(1)

    if matrix:
        if result.summary is not None:
            frame = trend_matrix_frame(result.summary.trend_matrix)
            click.echo(frame.to_string(index=False))
        click.echo(f"status: {result.status}" + (f" ({result.reason})" if result.reason else ""))
        return

    click.echo(json.dumps(result.to_payload(), indent=2))


@cli.command()
@click.option("--price", type=float, required=True, help="参考价格")
@click.option("--atr", type=float, required=True, help="ATR 数值")
@click.option(
    "--side",
    type=click.Choice(["LONG", "SHORT", "BOTH"], case_sensitive=False),
    default="BOTH",
    help="输出方向",
)
def levels(price: float, atr: float, side: str) -> None:
    """按当前配置计算 ATR 止损/止盈价位。"""
    setup_logging()
    settings = get_settings()
    risk_levels = build_atr_risk_levels(price, atr, resolve_risk_config(settings))
    if risk_levels is None:
        click.echo("[ERROR] price and atr must be finite numbers", err=True)
        sys.exit(1)

    payload = asdict(risk_levels)
    side = side.upper()
    if side == "LONG":
        payload.pop("short")
    elif side == "SHORT":
        payload.pop("long")
    click.echo(json.dumps(payload, indent=2))


@cli.command()
def status() -> None:
    """显示当前配置摘要。"""
    setup_logging()
    settings = get_settings()
    risk_config = resolve_risk_config(settings)

    click.echo("=" * 50)
    click.echo("Confluence Engine - Status")
    click.echo("=" * 50)
    click.echo()

    click.echo("[Risk Baseline]")
    click.echo(f"   Risk per trade: {settings.risk_pct_per_trade}%")
    click.echo(f"   Stop loss: {settings.atr_mult_sl} ATR")
    click.echo(f"   Targets: {settings.atr_mult_tp1} / {settings.atr_mult_tp2} ATR")
    click.echo(f"   ATR% band: {settings.vol_min_atr_pct} - {settings.vol_max_atr_pct}")
    click.echo()

    click.echo("[Resolved Limits]")
    click.echo(f"   Instrument cap: {risk_config.instrument_risk_cap_pct}%")
    click.echo(f"   Portfolio open risk: {risk_config.max_open_risk_pct_portfolio}%")
    click.echo(f"   Max open positions: {risk_config.max_open_positions}")
    click.echo(f"   Max daily loss: {risk_config.max_daily_loss_pct}%")
    click.echo(f"   Ladder weights: {list(risk_config.ladder.weights)}")
    click.echo()

    click.echo("[Logging]")
    click.echo(f"   Log level: {settings.log_level}")
    click.echo(f"   Log format: {settings.log_format.value}")
    click.echo()
    click.echo("=" * 50)


# 支持 python -m confluence_engine.main 调用
if __name__ == "__main__":
    cli()
