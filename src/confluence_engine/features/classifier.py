"""Per-timeframe signal classification blended with a Markov prior."""

from __future__ import annotations

import math
from dataclasses import dataclass

from confluence_engine.types import (
    AdxDirection,
    CombinedSignal,
    Direction,
    IndicatorSnapshot,
    MarkovPrior,
    Momentum,
    SignalBreakdown,
    SignalLabel,
    TrendStrength,
)

MAX_SIGNAL_STRENGTH = 3
PRIOR_WEIGHT = 0.35


@dataclass(frozen=True, slots=True)
class ClassifierConfig:
    """Thresholds used by the classifier."""

    adx_strong_threshold: float = 25.0
    adx_forming_lo: float = 20.0
    adx_strong_boost_by_prior: float = 5.0
    adx_forming_range_boost: float = 3.0
    adx_threshold_floor: float = 10.0
    rsi_bull_min: float = 55.0
    rsi_bear_max: float = 45.0
    stoch_bull_min: float = 60.0
    stoch_bear_max: float = 40.0
    bias_threshold: float = 0.2


DEFAULT_CLASSIFIER_CONFIG = ClassifierConfig()


def get_combined_signal(
    snapshot: IndicatorSnapshot,
    markov: MarkovPrior | None = None,
    config: ClassifierConfig = DEFAULT_CLASSIFIER_CONFIG,
) -> CombinedSignal:
    """Classify one timeframe snapshot into a scored directional signal."""
    markov = markov or MarkovPrior()
    prior_score = clamp_unit(markov.prior_score if markov.prior_score is not None else 0.0)

    bias, trend_score = compute_trend_bias(snapshot, config)
    momentum = compute_momentum(bias, snapshot.rsi, snapshot.stoch_k, config)
    trend_strength = compute_trend_strength(snapshot.adx, prior_score, config)
    adx_direction = compute_adx_direction(bias, snapshot.plus_di, snapshot.minus_di)
    adx_is_rising = snapshot.adx_slope is not None and snapshot.adx_slope > 0

    raw = classify_signal_strength(bias, momentum, trend_strength, adx_direction, adx_is_rising)
    signal_strength = blend_with_prior(raw, prior_score)

    if signal_strength > 0:
        direction: Direction = "Bullish"
    elif signal_strength < 0:
        direction = "Bearish"
    else:
        direction = "Neutral"

    strength = round_half_up(min(max(abs(signal_strength) / MAX_SIGNAL_STRENGTH, 0.0), 1.0) * 100)

    return CombinedSignal(
        direction=direction,
        strength=strength,
        breakdown=SignalBreakdown(
            bias=bias,
            momentum=momentum,
            trend_strength=trend_strength,
            adx_direction=adx_direction,
            adx_is_rising=adx_is_rising,
            adx_value=snapshot.adx,
            rsi_value=snapshot.rsi,
            stoch_k_value=snapshot.stoch_k,
            ema_fast=snapshot.ema_fast,
            ema_slow=snapshot.ema_slow,
            ma_long=snapshot.ma_long,
            macd_value=snapshot.macd_value,
            macd_signal=snapshot.macd_signal,
            macd_histogram=snapshot.macd_histogram,
            trend_score=round(trend_score, 2),
            markov=MarkovPrior(prior_score=prior_score, current_state=markov.current_state),
            signal_strength_raw=raw,
            signal_strength=signal_strength,
            label=resolve_signal_label(signal_strength),
        ),
    )


def compute_trend_bias(
    snapshot: IndicatorSnapshot,
    config: ClassifierConfig = DEFAULT_CLASSIFIER_CONFIG,
) -> tuple[Direction, float]:
    """Blend EMA and MACD alignment into a bias and its score in [-1, 1]."""
    ema_alignment = resolve_ema_alignment(snapshot.ema_fast, snapshot.ema_slow, snapshot.ma_long)
    macd_alignment = resolve_macd_alignment(
        snapshot.macd_value, snapshot.macd_signal, snapshot.macd_histogram
    )

    # EMA leads when it has an opinion, MACD leads otherwise.
    if ema_alignment == 0:
        blended = 0.4 * ema_alignment + 0.6 * macd_alignment
    else:
        blended = 0.6 * ema_alignment + 0.4 * macd_alignment
    blended = clamp_unit(blended)

    if blended >= config.bias_threshold:
        return "Bullish", blended
    if blended <= -config.bias_threshold:
        return "Bearish", blended
    return "Neutral", blended


def resolve_ema_alignment(
    ema_fast: float | None,
    ema_slow: float | None,
    ma_long: float | None,
) -> int:
    if ema_fast is None or ema_slow is None or ma_long is None:
        return 0
    if ema_fast > ema_slow > ma_long:
        return 1
    if ema_fast < ema_slow < ma_long:
        return -1
    return 0


def resolve_macd_alignment(
    macd_value: float | None,
    macd_signal: float | None,
    macd_histogram: float | None,
) -> float:
    if macd_value is None or macd_signal is None or macd_histogram is None:
        return 0.0
    if macd_histogram > 0 and macd_value > macd_signal and macd_value > 0:
        return 1.0
    if macd_histogram < 0 and macd_value < macd_signal and macd_value < 0:
        return -1.0
    return _sign(macd_histogram) * 0.25


def compute_momentum(
    bias: Direction,
    rsi: float | None,
    stoch_k: float | None,
    config: ClassifierConfig = DEFAULT_CLASSIFIER_CONFIG,
) -> Momentum:
    if rsi is None or stoch_k is None:
        return "Weak"
    if bias == "Bullish" and rsi > config.rsi_bull_min and stoch_k > config.stoch_bull_min:
        return "StrongBullish"
    if bias == "Bearish" and rsi < config.rsi_bear_max and stoch_k < config.stoch_bear_max:
        return "StrongBearish"
    return "Weak"


def adx_thresholds(
    prior_score: float,
    config: ClassifierConfig = DEFAULT_CLASSIFIER_CONFIG,
) -> tuple[float, float]:
    """Return ``(forming_low, strong)`` ADX thresholds, tightened by a supportive prior."""
    positive_prior = max(0.0, prior_score)
    strong = max(
        config.adx_threshold_floor,
        config.adx_strong_threshold - config.adx_strong_boost_by_prior * positive_prior,
    )
    forming_low = max(
        config.adx_threshold_floor,
        config.adx_forming_lo - config.adx_forming_range_boost * positive_prior,
    )
    return forming_low, strong


def compute_trend_strength(
    adx: float | None,
    prior_score: float,
    config: ClassifierConfig = DEFAULT_CLASSIFIER_CONFIG,
) -> TrendStrength:
    if adx is None:
        return "Weak"
    forming_low, strong = adx_thresholds(prior_score, config)
    if adx >= strong:
        return "Strong"
    if forming_low <= adx < strong:
        return "Forming"
    return "Weak"


def compute_adx_direction(
    bias: Direction,
    plus_di: float | None,
    minus_di: float | None,
) -> AdxDirection:
    if plus_di is None or minus_di is None:
        return "NoConfirm"
    if bias == "Bullish" and plus_di > minus_di:
        return "ConfirmBull"
    if bias == "Bearish" and minus_di > plus_di:
        return "ConfirmBear"
    return "NoConfirm"


def classify_signal_strength(
    bias: Direction,
    momentum: Momentum,
    trend_strength: TrendStrength,
    adx_direction: AdxDirection,
    adx_is_rising: bool,
) -> int:
    """Score raw alignment in -3..3, strongest pattern first."""
    if (
        bias == "Bullish"
        and momentum == "StrongBullish"
        and trend_strength == "Strong"
        and adx_direction == "ConfirmBull"
    ):
        return 3
    if (
        bias == "Bearish"
        and momentum == "StrongBearish"
        and trend_strength == "Strong"
        and adx_direction == "ConfirmBear"
    ):
        return -3

    if trend_strength == "Forming" and adx_is_rising:
        if momentum == "StrongBullish" or bias == "Bullish":
            return 2
        if momentum == "StrongBearish" or bias == "Bearish":
            return -2

    if bias == "Bullish" and (momentum == "StrongBullish" or adx_direction == "ConfirmBull"):
        return 1
    if bias == "Bearish" and (momentum == "StrongBearish" or adx_direction == "ConfirmBear"):
        return -1
    return 0


def blend_with_prior(raw_score: int, prior_score: float) -> float:
    """Blend the raw score with the prior and rescale back to [-3, 3]."""
    base_scaled = clamp_unit(raw_score / MAX_SIGNAL_STRENGTH)
    posterior = (1 - PRIOR_WEIGHT) * base_scaled + PRIOR_WEIGHT * clamp_unit(prior_score)
    return min(max(posterior * MAX_SIGNAL_STRENGTH, -MAX_SIGNAL_STRENGTH), MAX_SIGNAL_STRENGTH)


def resolve_signal_label(score: float) -> SignalLabel:
    if score >= 2.5:
        return "STRONG_BUY"
    if score >= 1.5:
        return "BUY_FORMING"
    if score >= 0.5:
        return "BUY_WEAK"
    if score > -0.5:
        return "NEUTRAL"
    if score > -1.5:
        return "SELL_WEAK"
    if score > -2.5:
        return "SELL_FORMING"
    return "STRONG_SELL"


def clamp_unit(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return min(max(value, -1.0), 1.0)


def round_half_up(value: float) -> int:
    """Round halves up (``round`` would send 62.5 to 62)."""
    return int(math.floor(value + 0.5))


def _sign(value: float) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0
