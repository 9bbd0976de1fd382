"""Reason-based 0-100 confluence scoring of screener readings.

Independent from the weighted multi-timeframe aggregate: each reading is
scored on its own from the reasons that fired plus a few indicator bonuses.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone

from confluence_engine.features.classifier import get_combined_signal
from confluence_engine.types import (
    Direction,
    HeatmapReading,
    SignalBucket,
    SignalDirection,
    SignalStage,
    TimeframeSignalSnapshot,
    TradingSignal,
)

RSI_OVERSOLD = 35.0
RSI_OVERBOUGHT = 65.0
STOCH_LOW = 20.0
STOCH_HIGH = 80.0
MAX_SCORE = 100

BULLISH_CROSS_DIRECTIONS = frozenset({"golden", "bullish", "cross_up", "up", "above", "long"})
BEARISH_CROSS_DIRECTIONS = frozenset({"death", "bearish", "cross_down", "down", "below", "short"})
BULLISH_CROSS_REASONS = {"ema10-ema50": "EMA10 crossed above EMA50", "ema50-ma200": "Golden Cross"}
BEARISH_CROSS_REASONS = {"ema10-ema50": "EMA10 crossed below EMA50", "ema50-ma200": "Death Cross"}

# (substring, points); a reason may match more than one entry
REASON_POINTS: tuple[tuple[str, int], ...] = (
    ("EMA10 crossed above EMA50", 20),
    ("EMA10 crossed below EMA50", 20),
    ("Golden Cross", 25),
    ("Death Cross", 25),
    ("RSI over", 10),
    ("StochRSI", 10),
    ("Trend & momentum aligned", 25),
    ("ATR filter satisfied", 5),
)

FALLBACK_REASON = "Confluence threshold met"


def derive_trading_signals(readings: Iterable[HeatmapReading]) -> list[TradingSignal]:
    """Triggered readings as scored signals, newest first."""
    signals = [signal for reading in readings if (signal := to_trading_signal(reading))]
    return sorted(signals, key=lambda signal: signal.created_at, reverse=True)


def to_trading_signal(reading: HeatmapReading) -> TradingSignal | None:
    if reading.signal == "NONE":
        return None

    side: SignalDirection = "Bullish" if reading.signal == "LONG" else "Bearish"
    reasons = build_reasons(reading, side)
    score = score_signal(reading, side, reasons)

    suggested_sl = suggested_tp = None
    if reading.risk is not None:
        leg = reading.risk.long if reading.signal == "LONG" else reading.risk.short
        suggested_sl = leg.sl
        suggested_tp = leg.tp2

    return TradingSignal(
        symbol=reading.symbol,
        timeframe=reading.timeframe,
        timeframe_label=reading.timeframe_label,
        side=side,
        reasons=reasons,
        confluence_score=score,
        strength=bucket_signal(score),
        suggested_sl=suggested_sl,
        suggested_tp=suggested_tp,
        dedupe_key=f"{reading.symbol}|{reading.timeframe}|{side}",
        created_at=reading.closed_at or reading.evaluated_at or datetime.now(timezone.utc),
        price=_finite_or_none(reading.snapshot.price),
        bias=reading.bias,
    )


def derive_timeframe_snapshots(readings: Iterable[HeatmapReading]) -> list[TimeframeSignalSnapshot]:
    return [to_timeframe_snapshot(reading) for reading in readings]


def to_timeframe_snapshot(reading: HeatmapReading) -> TimeframeSignalSnapshot:
    """Classify one reading and score it against the side it leans to.

    The side is the screener's trigger when there is one, otherwise the
    classifier's trend bias. A neutral reading has no side and no score.
    """
    combined = get_combined_signal(reading.snapshot, reading.markov)
    trend = combined.breakdown.bias
    momentum: Direction
    if combined.breakdown.momentum == "StrongBullish":
        momentum = "Bullish"
    elif combined.breakdown.momentum == "StrongBearish":
        momentum = "Bearish"
    else:
        momentum = "Neutral"

    side: SignalDirection | None = None
    if reading.signal == "LONG":
        side = "Bullish"
    elif reading.signal == "SHORT":
        side = "Bearish"
    elif trend != "Neutral":
        side = trend

    score = score_signal(reading, side, build_reasons(reading, side)) if side else None

    return TimeframeSignalSnapshot(
        timeframe=reading.timeframe,
        timeframe_label=reading.timeframe_label,
        trend=trend,
        momentum=momentum,
        stage=resolve_snapshot_stage(reading, side),
        confluence_score=score,
        strength=bucket_signal(score) if score is not None else None,
        price=_finite_or_none(reading.snapshot.price),
        bias=reading.bias,
        slope_ma_long=_finite_or_none(reading.snapshot.ma_long_slope),
        side=side,
        combined=combined,
    )


def resolve_snapshot_stage(reading: HeatmapReading, side: SignalDirection | None) -> SignalStage:
    if reading.signal in ("LONG", "SHORT"):
        return "triggered"
    if not reading.cooldown_ok:
        return "cooldown"

    long_open = reading.long_timing
    short_open = reading.short_timing
    if not long_open and not short_open:
        return "gated"
    if (side == "Bullish" or reading.bias == "BULL") and not long_open:
        return "gated"
    if (side == "Bearish" or reading.bias == "BEAR") and not short_open:
        return "gated"
    return "ready"


def build_reasons(reading: HeatmapReading, side: SignalDirection) -> list[str]:
    """Human-readable reasons, cross reasons first, never empty."""
    reasons = moving_average_cross_reasons(reading, side)
    rsi = reading.snapshot.rsi

    if side == "Bullish":
        if reading.long_timing and reading.bias == "BULL" and reading.ma_long_ok:
            reasons.append("Trend & momentum aligned above MA200")
        if _is_finite(rsi) and rsi <= RSI_OVERSOLD:
            reasons.append("RSI oversold")
        if reading.stoch_event == "cross_up_from_oversold":
            reasons.append("StochRSI K>D in lower band")
    else:
        if reading.short_timing and reading.bias == "BEAR" and reading.ma_short_ok:
            reasons.append("Trend & momentum aligned below MA200")
        if _is_finite(rsi) and rsi >= RSI_OVERBOUGHT:
            reasons.append("RSI overbought")
        if reading.stoch_event == "cross_down_from_overbought":
            reasons.append("StochRSI K<D in upper band")

    if reading.atr_status == "ok":
        reasons.append("ATR filter satisfied")

    return reasons or [FALLBACK_REASON]


def moving_average_cross_reasons(reading: HeatmapReading, side: SignalDirection) -> list[str]:
    reasons: list[str] = []
    for cross in reading.moving_average_crosses:
        direction = cross.direction.strip().lower()
        if side == "Bullish" and direction in BULLISH_CROSS_DIRECTIONS:
            by_pair = BULLISH_CROSS_REASONS
        elif side == "Bearish" and direction in BEARISH_CROSS_DIRECTIONS:
            by_pair = BEARISH_CROSS_REASONS
        else:
            continue
        text = by_pair.get(cross.pair)
        if text and text not in reasons:
            reasons.append(text)
    return reasons


def score_signal(reading: HeatmapReading, side: SignalDirection, reasons: Sequence[str]) -> int:
    """Sum reason points and indicator bonuses, clamped to [0, 100]."""
    score = 0.0
    for reason in reasons:
        score += sum(points for needle, points in REASON_POINTS if needle in reason)

    bullish = side == "Bullish"
    if (reading.bias == "BULL" and bullish) or (reading.bias == "BEAR" and not bullish):
        score += 10

    dist = reading.dist_pct_to_ma_long
    if _is_finite(dist):
        if dist < 0.5:
            score += 8
        elif dist < 1:
            score += 5

    rsi = reading.snapshot.rsi
    if _is_finite(rsi) and (rsi > 50 if bullish else rsi < 50):
        score += 8

    k, d = reading.snapshot.stoch_k, reading.stoch_d
    if _is_finite(k) and _is_finite(d):
        if (bullish and k > d) or (not bullish and k < d):
            score += 5
        if bullish and k <= STOCH_LOW and d <= STOCH_LOW:
            score += 5
        if not bullish and k >= STOCH_HIGH and d >= STOCH_HIGH:
            score += 5

    slope = reading.snapshot.ma_long_slope
    if _is_finite(slope) and (slope > 0 if bullish else slope < 0):
        score += 5

    return clamp_score(score)


def bucket_signal(score: float) -> SignalBucket:
    if score >= 80:
        return "Strong"
    if score >= 60:
        return "Medium"
    return "Weak"


def clamp_score(score: float) -> int:
    if score < 0:
        return 0
    if score > MAX_SCORE:
        return MAX_SCORE
    return round(score)


def _is_finite(value: float | None) -> bool:
    return value is not None and math.isfinite(value)


def _finite_or_none(value: float | None) -> float | None:
    return value if _is_finite(value) else None
