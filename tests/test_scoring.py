from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from confluence_engine.config import Settings
from confluence_engine.features.scoring import (
    FALLBACK_REASON,
    bucket_signal,
    build_reasons,
    clamp_score,
    derive_timeframe_snapshots,
    derive_trading_signals,
    resolve_snapshot_stage,
    score_signal,
)
from confluence_engine.risk.presets import resolve_risk_config
from confluence_engine.risk.rules import build_atr_risk_levels
from confluence_engine.types import HeatmapReading, IndicatorSnapshot, MovingAverageCross

_CLOSED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

_BULLISH_SNAPSHOT = IndicatorSnapshot(
    price=100.0,
    ema_fast=105.0,
    ema_slow=100.0,
    ma_long=95.0,
    ma_long_slope=0.3,
    macd_value=1.2,
    macd_signal=0.8,
    macd_histogram=0.4,
    rsi=62.0,
    stoch_k=75.0,
    adx=30.0,
    plus_di=28.0,
    minus_di=14.0,
    adx_slope=0.5,
    atr=2.0,
)


def _build_reading(**overrides: Any) -> HeatmapReading:
    reading = HeatmapReading(
        symbol="BTCUSDT",
        timeframe="15",
        timeframe_label="15m",
        snapshot=_BULLISH_SNAPSHOT,
        bias="BULL",
        signal="LONG",
        moving_average_crosses=(
            MovingAverageCross(pair="ema10-ema50", direction="up"),
            MovingAverageCross(pair="ema50-ma200", direction="golden"),
        ),
        stoch_d=70.0,
        atr_status="ok",
        ma_long_ok=True,
        dist_pct_to_ma_long=0.4,
        long_timing=True,
        closed_at=_CLOSED_AT,
    )
    return replace(reading, **overrides)


def _overbought_short(**overrides: Any) -> HeatmapReading:
    snapshot = IndicatorSnapshot(price=100.0, rsi=70.0, stoch_k=85.0)
    return _build_reading(
        snapshot=snapshot,
        bias="NEUTRAL",
        signal="SHORT",
        moving_average_crosses=(),
        stoch_event="cross_down_from_overbought",
        stoch_d=90.0,
        dist_pct_to_ma_long=None,
        **overrides,
    )


def test_bullish_reasons_put_crosses_first() -> None:
    reasons = build_reasons(_build_reading(), "Bullish")
    assert reasons == [
        "EMA10 crossed above EMA50",
        "Golden Cross",
        "Trend & momentum aligned above MA200",
        "ATR filter satisfied",
    ]


def test_cross_direction_is_normalized_and_deduplicated() -> None:
    crosses = (
        MovingAverageCross(pair="ema10-ema50", direction=" Cross_Up "),
        MovingAverageCross(pair="ema10-ema50", direction="bullish"),
        MovingAverageCross(pair="ema50-ma200", direction="death"),
        MovingAverageCross(pair="ema20-ema100", direction="up"),
    )
    reading = _build_reading(moving_average_crosses=crosses, atr_status=None, ma_long_ok=False)
    assert build_reasons(reading, "Bullish") == ["EMA10 crossed above EMA50"]
    assert build_reasons(reading, "Bearish") == ["Death Cross"]


def test_bearish_reasons_and_score() -> None:
    reading = _overbought_short()
    reasons = build_reasons(reading, "Bearish")
    assert reasons == ["RSI overbought", "StochRSI K<D in upper band", "ATR filter satisfied"]
    # 10 + 10 + 5 for reasons, 5 for K<D, 5 for both lines in the upper band
    assert score_signal(reading, "Bearish", reasons) == 35


def test_empty_reasons_fall_back() -> None:
    reading = _build_reading(
        snapshot=IndicatorSnapshot(price=100.0),
        bias="NEUTRAL",
        moving_average_crosses=(),
        atr_status="blocked",
        stoch_d=None,
        dist_pct_to_ma_long=None,
    )
    reasons = build_reasons(reading, "Bullish")
    assert reasons == [FALLBACK_REASON]
    assert score_signal(reading, "Bullish", reasons) == 0


def test_full_confluence_score_is_clamped() -> None:
    reading = _build_reading()
    assert score_signal(reading, "Bullish", build_reasons(reading, "Bullish")) == 100


def test_distance_to_ma_long_bonus() -> None:
    base = _overbought_short()
    reasons = build_reasons(base, "Bearish")
    near = replace(base, dist_pct_to_ma_long=0.3)
    mid = replace(base, dist_pct_to_ma_long=0.8)
    far = replace(base, dist_pct_to_ma_long=2.0)
    assert score_signal(near, "Bearish", reasons) == 43
    assert score_signal(mid, "Bearish", reasons) == 40
    assert score_signal(far, "Bearish", reasons) == 35


@pytest.mark.parametrize(
    ("score", "expected"),
    [(100, "Strong"), (80, "Strong"), (79, "Medium"), (60, "Medium"), (59, "Weak"), (0, "Weak")],
)
def test_bucket_boundaries(score: int, expected: str) -> None:
    assert bucket_signal(score) == expected


def test_clamp_score() -> None:
    assert clamp_score(-3) == 0
    assert clamp_score(140) == 100
    assert clamp_score(42.4) == 42


def test_untriggered_readings_yield_no_signal() -> None:
    assert derive_trading_signals([_build_reading(signal="NONE")]) == []


def test_signals_are_newest_first_with_dedupe_key() -> None:
    older = _build_reading(timeframe="60", timeframe_label="1h")
    newer = _overbought_short(closed_at=_CLOSED_AT + timedelta(minutes=15))
    signals = derive_trading_signals([older, _build_reading(signal="NONE"), newer])

    assert [signal.side for signal in signals] == ["Bearish", "Bullish"]
    assert signals[0].dedupe_key == "BTCUSDT|15|Bearish"
    assert signals[1].dedupe_key == "BTCUSDT|60|Bullish"
    assert signals[1].confluence_score == 100
    assert signals[1].strength == "Strong"
    assert signals[0].strength == "Weak"


def test_created_at_falls_back_to_evaluated_at() -> None:
    evaluated = _CLOSED_AT + timedelta(minutes=1)
    [signal] = derive_trading_signals([_build_reading(closed_at=None, evaluated_at=evaluated)])
    assert signal.created_at == evaluated


def test_suggested_levels_follow_side() -> None:
    levels = build_atr_risk_levels(100.0, 2.0, resolve_risk_config(Settings()))
    assert levels is not None

    [long_signal] = derive_trading_signals([_build_reading(risk=levels)])
    assert long_signal.suggested_sl == levels.long.sl
    assert long_signal.suggested_tp == levels.long.tp2

    [short_signal] = derive_trading_signals([_overbought_short(risk=levels)])
    assert short_signal.suggested_sl == levels.short.sl
    assert short_signal.suggested_tp == levels.short.tp2

    [bare] = derive_trading_signals([_build_reading()])
    assert bare.suggested_sl is None
    assert bare.suggested_tp is None


@pytest.mark.parametrize(
    ("overrides", "side", "expected"),
    [
        ({"signal": "SHORT"}, None, "triggered"),
        ({"signal": "NONE", "cooldown_ok": False}, "Bullish", "cooldown"),
        ({"signal": "NONE", "long_timing": False}, None, "gated"),
        ({"signal": "NONE", "long_timing": False, "short_timing": True}, "Bullish", "gated"),
        ({"signal": "NONE", "bias": "BEAR", "short_timing": False}, None, "gated"),
        ({"signal": "NONE", "bias": "NEUTRAL", "short_timing": True}, "Bearish", "ready"),
        ({"signal": "NONE"}, "Bullish", "ready"),
    ],
)
def test_snapshot_stage(overrides: dict[str, Any], side: str | None, expected: str) -> None:
    assert resolve_snapshot_stage(_build_reading(**overrides), side) == expected  # type: ignore[arg-type]


def test_timeframe_snapshots_follow_classifier_trend() -> None:
    bullish = _build_reading(signal="NONE")
    flat = _build_reading(
        timeframe="240",
        timeframe_label="4h",
        snapshot=IndicatorSnapshot(price=100.0),
        signal="NONE",
        bias="NEUTRAL",
        long_timing=False,
    )
    first, second = derive_timeframe_snapshots([bullish, flat])

    assert first.trend == "Bullish"
    assert first.momentum == "Bullish"
    assert first.side == "Bullish"
    assert first.stage == "ready"
    assert first.confluence_score == 100
    assert first.strength == "Strong"
    assert first.slope_ma_long == 0.3
    assert first.combined.direction == "Bullish"

    assert second.trend == "Neutral"
    assert second.momentum == "Neutral"
    assert second.side is None
    assert second.confluence_score is None
    assert second.strength is None
    assert second.stage == "gated"


def test_triggered_snapshot_uses_trigger_side() -> None:
    [snapshot] = derive_timeframe_snapshots([_overbought_short()])
    assert snapshot.trend == "Neutral"
    assert snapshot.side == "Bearish"
    assert snapshot.stage == "triggered"
    assert snapshot.confluence_score == 35
