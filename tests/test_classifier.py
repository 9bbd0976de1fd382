from __future__ import annotations

from dataclasses import replace

import pytest

from confluence_engine.features.classifier import (
    adx_thresholds,
    blend_with_prior,
    classify_signal_strength,
    compute_trend_strength,
    get_combined_signal,
    resolve_macd_alignment,
    resolve_signal_label,
)
from confluence_engine.types import IndicatorSnapshot, MarkovPrior

_TREND_RANK = {"Weak": 0, "Forming": 1, "Strong": 2}


def _bullish_snapshot(**overrides: float | None) -> IndicatorSnapshot:
    snapshot = IndicatorSnapshot(
        price=100.0,
        ema_fast=105.0,
        ema_slow=100.0,
        ma_long=95.0,
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
    return replace(snapshot, **overrides)


def _bearish_snapshot() -> IndicatorSnapshot:
    return IndicatorSnapshot(
        price=100.0,
        ema_fast=95.0,
        ema_slow=100.0,
        ma_long=105.0,
        macd_value=-1.2,
        macd_signal=-0.8,
        macd_histogram=-0.4,
        rsi=38.0,
        stoch_k=22.0,
        adx=31.0,
        plus_di=12.0,
        minus_di=29.0,
        adx_slope=0.3,
        atr=2.0,
    )


def test_full_bullish_alignment_is_damped_by_neutral_prior() -> None:
    signal = get_combined_signal(_bullish_snapshot(), MarkovPrior(prior_score=0.0))
    breakdown = signal.breakdown

    assert breakdown.bias == "Bullish"
    assert breakdown.momentum == "StrongBullish"
    assert breakdown.trend_strength == "Strong"
    assert breakdown.adx_direction == "ConfirmBull"
    assert breakdown.signal_strength_raw == 3
    assert breakdown.signal_strength == pytest.approx(1.95)
    assert breakdown.label == "BUY_FORMING"
    assert signal.direction == "Bullish"
    assert signal.strength == 65


def test_supportive_prior_lifts_full_alignment_to_strong_buy() -> None:
    signal = get_combined_signal(_bullish_snapshot(), MarkovPrior(prior_score=1.0, current_state="U"))
    assert signal.breakdown.signal_strength == pytest.approx(3.0)
    assert signal.breakdown.label == "STRONG_BUY"
    assert signal.strength == 100
    assert signal.breakdown.markov.current_state == "U"


def test_full_bearish_alignment_with_bearish_prior() -> None:
    signal = get_combined_signal(_bearish_snapshot(), MarkovPrior(prior_score=-1.0))
    assert signal.breakdown.bias == "Bearish"
    assert signal.breakdown.momentum == "StrongBearish"
    assert signal.breakdown.adx_direction == "ConfirmBear"
    assert signal.breakdown.signal_strength_raw == -3
    assert signal.breakdown.signal_strength == pytest.approx(-3.0)
    assert signal.breakdown.label == "STRONG_SELL"
    assert signal.direction == "Bearish"


def test_forming_trend_with_rising_adx_scores_two() -> None:
    snapshot = _bullish_snapshot(adx=22.0, adx_slope=1.0, rsi=50.0, plus_di=20.0, minus_di=25.0)
    signal = get_combined_signal(snapshot)
    assert signal.breakdown.trend_strength == "Forming"
    assert signal.breakdown.momentum == "Weak"
    assert signal.breakdown.adx_direction == "NoConfirm"
    assert signal.breakdown.signal_strength_raw == 2
    assert signal.breakdown.signal_strength == pytest.approx(1.3)
    assert signal.breakdown.label == "BUY_WEAK"


def test_missing_evidence_degrades_to_neutral() -> None:
    signal = get_combined_signal(IndicatorSnapshot())
    breakdown = signal.breakdown
    assert breakdown.bias == "Neutral"
    assert breakdown.momentum == "Weak"
    assert breakdown.trend_strength == "Weak"
    assert breakdown.adx_direction == "NoConfirm"
    assert breakdown.adx_is_rising is False
    assert breakdown.signal_strength_raw == 0
    assert breakdown.signal_strength == 0
    assert breakdown.label == "NEUTRAL"
    assert breakdown.markov.prior_score == 0.0
    assert signal.direction == "Neutral"
    assert signal.strength == 0


def test_macd_leads_when_emas_are_flat() -> None:
    snapshot = IndicatorSnapshot(macd_value=0.5, macd_signal=0.3, macd_histogram=0.2)
    signal = get_combined_signal(snapshot)
    assert signal.breakdown.bias == "Bullish"
    assert signal.breakdown.trend_score == pytest.approx(0.6)

    bearish = IndicatorSnapshot(macd_value=-0.5, macd_signal=-0.3, macd_histogram=-0.2)
    assert get_combined_signal(bearish).breakdown.bias == "Bearish"


def test_histogram_only_macd_is_quarter_weight() -> None:
    assert resolve_macd_alignment(-0.1, -0.3, 0.2) == 0.25
    assert resolve_macd_alignment(0.1, 0.3, -0.2) == -0.25
    assert resolve_macd_alignment(0.1, 0.1, 0.0) == 0.0
    assert resolve_macd_alignment(None, 0.3, 0.2) == 0.0

    signal = get_combined_signal(IndicatorSnapshot(macd_value=-0.1, macd_signal=-0.3, macd_histogram=0.2))
    assert signal.breakdown.bias == "Neutral"


def test_momentum_requires_rsi_and_stoch() -> None:
    signal = get_combined_signal(_bullish_snapshot(stoch_k=None))
    assert signal.breakdown.momentum == "Weak"
    assert signal.breakdown.signal_strength_raw == 1


def test_unconfirmed_adx_keeps_momentum_backed_bias_at_one() -> None:
    signal = get_combined_signal(_bullish_snapshot(plus_di=10.0, minus_di=20.0))
    assert signal.breakdown.adx_direction == "NoConfirm"
    assert signal.breakdown.signal_strength_raw == 1


def test_positive_prior_tightens_adx_thresholds() -> None:
    assert adx_thresholds(0.0) == (20.0, 25.0)
    assert adx_thresholds(1.0) == (17.0, 20.0)
    assert adx_thresholds(-1.0) == (20.0, 25.0)

    assert compute_trend_strength(21.0, 0.0) == "Forming"
    assert compute_trend_strength(21.0, 1.0) == "Strong"
    assert compute_trend_strength(18.0, 1.0) == "Forming"
    assert compute_trend_strength(18.0, 0.0) == "Weak"
    assert compute_trend_strength(None, 1.0) == "Weak"


def test_trend_strength_is_monotonic_in_adx() -> None:
    for prior in (0.0, 0.4, 1.0):
        forming_low, strong = adx_thresholds(prior)
        ranks = []
        adx = forming_low - 2.0
        while adx < strong + 2.0:
            ranks.append(_TREND_RANK[compute_trend_strength(adx, prior)])
            adx += 0.25
        assert ranks == sorted(ranks)


def test_classification_is_deterministic() -> None:
    snapshot = _bullish_snapshot()
    prior = MarkovPrior(prior_score=0.3, current_state="B")
    assert get_combined_signal(snapshot, prior) == get_combined_signal(snapshot, prior)


def test_signal_strength_and_strength_stay_in_range() -> None:
    for raw in range(-3, 4):
        for prior in (-5.0, -1.0, -0.4, 0.0, 0.4, 1.0, 5.0):
            assert -3.0 <= blend_with_prior(raw, prior) <= 3.0

    snapshots = [_bullish_snapshot(), _bearish_snapshot(), IndicatorSnapshot()]
    for snapshot in snapshots:
        for prior in (-2.0, -1.0, 0.0, 0.5, 2.0):
            signal = get_combined_signal(snapshot, MarkovPrior(prior_score=prior))
            assert -3.0 <= signal.breakdown.signal_strength <= 3.0
            assert 0 <= signal.strength <= 100
            expected = int(abs(signal.breakdown.signal_strength) / 3 * 100 + 0.5)
            assert signal.strength == expected


def test_prior_is_clamped_to_unit_range() -> None:
    signal = get_combined_signal(IndicatorSnapshot(), MarkovPrior(prior_score=5.0))
    assert signal.breakdown.markov.prior_score == 1.0
    assert signal.breakdown.signal_strength == pytest.approx(1.05)
    assert signal.breakdown.label == "BUY_WEAK"


def test_label_boundaries() -> None:
    assert resolve_signal_label(3.0) == "STRONG_BUY"
    assert resolve_signal_label(2.5) == "STRONG_BUY"
    assert resolve_signal_label(1.5) == "BUY_FORMING"
    assert resolve_signal_label(0.5) == "BUY_WEAK"
    assert resolve_signal_label(0.49) == "NEUTRAL"
    assert resolve_signal_label(-0.49) == "NEUTRAL"
    assert resolve_signal_label(-0.5) == "SELL_WEAK"
    assert resolve_signal_label(-1.5) == "SELL_FORMING"
    assert resolve_signal_label(-2.5) == "STRONG_SELL"


def test_raw_score_priorities() -> None:
    assert classify_signal_strength("Bullish", "StrongBullish", "Strong", "ConfirmBull", False) == 3
    assert classify_signal_strength("Bearish", "Weak", "Forming", "NoConfirm", True) == -2
    assert classify_signal_strength("Neutral", "Weak", "Forming", "NoConfirm", True) == 0
    assert classify_signal_strength("Bearish", "Weak", "Strong", "ConfirmBear", False) == -1
    assert classify_signal_strength("Bullish", "Weak", "Weak", "NoConfirm", True) == 0
