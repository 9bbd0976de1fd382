"""One-shot classify -> aggregate -> size evaluation for a symbol."""

from __future__ import annotations

from time import perf_counter

import structlog

from confluence_engine.config import Settings
from confluence_engine.features.classifier import get_combined_signal
from confluence_engine.risk.presets import resolve_risk_config
from confluence_engine.risk.rules import RiskEngine
from confluence_engine.schemas import EvaluationRequest
from confluence_engine.strategy.confluence import (
    DEFAULT_CONFLUENCE_CONFIG,
    ConfluenceConfig,
    first_consecutive_run,
    run_multi_tf_model,
)
from confluence_engine.types import (
    EvaluationResult,
    IndicatorSnapshot,
    MultiTimeframeModelSummary,
    Side,
    SignalContext,
    SignalVotes,
    TimeframeSignal,
)
from confluence_engine.utils.logging import (
    evaluation_context,
    get_logger,
    log_risk_event,
    log_trade_signal,
)


def run_evaluation(
    request: EvaluationRequest,
    settings: Settings,
    confluence_config: ConfluenceConfig = DEFAULT_CONFLUENCE_CONFIG,
) -> EvaluationResult:
    """Evaluate one snapshot set and return a plan, a rejection or no-trade.

    Every log line emitted during the evaluation carries the symbol; lines
    after the entry timeframe is chosen also carry ``entry_timeframe``.
    """
    with evaluation_context(request.symbol):
        return _evaluate(request, settings, confluence_config)


def _evaluate(
    request: EvaluationRequest,
    settings: Settings,
    confluence_config: ConfluenceConfig,
) -> EvaluationResult:
    logger = get_logger("confluence_engine.pipeline")
    started = perf_counter()
    result = EvaluationResult(status="unknown", symbol=request.symbol)

    try:
        risk_config = resolve_risk_config(settings, request.risk_overrides)

        snapshots: dict[str, IndicatorSnapshot] = {}
        signals: list[TimeframeSignal] = []
        for timeframe, tf_input in request.timeframes.items():
            snapshot = tf_input.snapshot()
            snapshots[timeframe] = snapshot
            signals.append(
                TimeframeSignal(
                    timeframe=timeframe,
                    timeframe_label=tf_input.label or confluence_config.label_for(timeframe),
                    combined=get_combined_signal(snapshot, tf_input.markov()),
                )
            )

        summary = run_multi_tf_model(signals, confluence_config)
        result.summary = summary
        logger.debug(
            "confluence_evaluated",
            combined_score=round(summary.combined.combined_score, 4),
            qualified=summary.qualified_timeframes,
            emit_trade_signal=summary.emit_trade_signal,
        )

        if not summary.emit_trade_signal:
            return _finish(result, logger, started, status="no_confluence")

        bias = summary.combined.combined_bias
        if bias.direction == "Neutral":
            return _finish(result, logger, started, status="no_direction")
        side: Side = "LONG" if bias.direction == "Bullish" else "SHORT"

        run = first_consecutive_run(
            summary.qualified_timeframes,
            confluence_config.min_consecutive,
            summary.per_timeframe,
            confluence_config,
        )
        entry_timeframe = run[0]
        logger = logger.bind(entry_timeframe=entry_timeframe, side=side)
        entry = snapshots[entry_timeframe]
        entry_direction = summary.per_timeframe[entry_timeframe].signal_strength
        if (entry_direction > 0) != (side == "LONG"):
            result.warnings.append("entry_timeframe_direction_mismatch")

        if entry.price is None:
            result.reason = "invalid_price"
            log_risk_event(logger, event_type="invalid_price", action="reject_trade")
            return _finish(result, logger, started, status="risk_rejected")

        ctx = SignalContext(
            side=side,
            price=entry.price,
            atr=entry.atr,
            atr_pct=entry.atr_pct,
            votes=_tally_votes(summary),
            ma_slope_ok=_ma_slope_ok(entry, side),
            strength_hint=request.strength_hint,
        )
        plan_result = RiskEngine(risk_config).compute_risk_plan(ctx, request.account.to_state())

        if not plan_result.allowed or plan_result.plan is None:
            result.reason = plan_result.reason
            log_risk_event(
                logger,
                event_type=plan_result.reason or "unknown",
                action="reject_trade",
            )
            return _finish(result, logger, started, status="risk_rejected")

        plan = plan_result.plan
        result.plan = plan
        log_trade_signal(
            logger,
            direction=side,
            signal_type=f"{bias.direction.lower()}_{bias.strength.lower()}",
            final_risk_pct=round(plan.final_risk_pct, 4),
            position_size_total=plan.position_size_total,
            steps=len(plan.steps),
        )
        return _finish(result, logger, started, status="plan_ready")

    except Exception as exc:
        logger.exception("evaluation_failed", error=str(exc))
        raise


def _tally_votes(summary: MultiTimeframeModelSummary) -> SignalVotes:
    strengths = [evaluation.signal_strength for evaluation in summary.per_timeframe.values()]
    return SignalVotes(
        bull=sum(1 for value in strengths if value > 0),
        bear=sum(1 for value in strengths if value < 0),
        total=len(strengths),
    )


def _ma_slope_ok(snapshot: IndicatorSnapshot, side: Side) -> bool:
    slope = snapshot.ma_long_slope
    if slope is None:
        return True
    return slope > 0 if side == "LONG" else slope < 0


def _finish(
    result: EvaluationResult,
    logger: structlog.stdlib.BoundLogger,
    started: float,
    *,
    status: str,
) -> EvaluationResult:
    result.status = status
    result.elapsed_ms = (perf_counter() - started) * 1000
    logger.info(
        "evaluation_completed",
        status=status,
        reason=result.reason,
        elapsed_ms=round(result.elapsed_ms, 2),
    )
    return result
