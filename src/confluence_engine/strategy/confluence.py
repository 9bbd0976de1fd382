"""Multi-timeframe confluence: weighting, qualification and trade emission."""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Sequence

import pandas as pd  # type: ignore[import-untyped]

from confluence_engine.features.classifier import MAX_SIGNAL_STRENGTH, round_half_up
from confluence_engine.types import (
    AggregateResult,
    CombinedBias,
    MarkovTimeframeEvaluation,
    MultiTimeframeModelSummary,
    MultiTimeframeSignal,
    MultiTimeframeSignalContribution,
    TimeframeSignal,
    TrendMatrixRow,
)

SIGNAL_WEAK_THRESHOLD = 0.5
SIGNAL_FORMING_THRESHOLD = 1.5
SIGNAL_STRONG_THRESHOLD = 2.5
PRIOR_SUPPORT_THRESHOLD = 0.25
PRIOR_STRONG_OPPOSITION_THRESHOLD = 0.45

_STRONG_BIAS_SCORE = 8.0
_MEDIUM_BIAS_SCORE = 4.0
_WEAK_BIAS_SCORE = 1.0

_UNIT_MINUTES = {"S": 1 / 60, "M": 1.0, "H": 60.0, "D": 60.0 * 24, "W": 60.0 * 24 * 7}
_SUFFIX_PATTERN = re.compile(r"^(\d+)([SMHDW])$")


@dataclass(frozen=True, slots=True)
class ConfluenceConfig:
    """Timeframe significance weights and the confluence run length.

    Weight and label maps are stored as read-only views so presets cannot be
    edited in place.
    """

    timeframe_weights: Mapping[str, float] = field(
        default_factory=lambda: {
            "5": 0.5,
            "15": 0.7,
            "30": 1.0,
            "60": 1.3,
            "120": 1.5,
            "240": 2.0,
            "360": 2.5,
        }
    )
    timeframe_labels: Mapping[str, str] = field(
        default_factory=lambda: {
            "5": "5m",
            "15": "15m",
            "30": "30m",
            "60": "60m",
            "120": "120m",
            "240": "240m (4h)",
            "360": "360m (6h)",
        }
    )
    default_weight: float = 1.0
    min_consecutive: int = 3

    def __post_init__(self) -> None:
        object.__setattr__(self, "timeframe_weights", MappingProxyType(dict(self.timeframe_weights)))
        object.__setattr__(self, "timeframe_labels", MappingProxyType(dict(self.timeframe_labels)))

    @property
    def ordered_timeframes(self) -> list[str]:
        numeric = [
            tf for tf in self.timeframe_weights if math.isfinite(parse_timeframe_to_minutes(tf))
        ]
        return sorted(numeric, key=parse_timeframe_to_minutes)

    @property
    def total_weight(self) -> float:
        return sum(self.timeframe_weights.values())

    def label_for(self, timeframe: str) -> str:
        return self.timeframe_labels.get(timeframe, timeframe)


DEFAULT_CONFLUENCE_CONFIG = ConfluenceConfig()


def parse_timeframe_to_minutes(value: str) -> float:
    """Parse ``"15"``, ``"4H"``, ``"1D"`` style timeframes; unknown sorts last."""
    try:
        numeric = float(value)
    except ValueError:
        numeric = math.nan
    if math.isfinite(numeric):
        return numeric

    match = _SUFFIX_PATTERN.match(value.strip().upper())
    if match:
        amount, unit = match.groups()
        return int(amount) * _UNIT_MINUTES[unit]
    return math.inf


def resolve_timeframe_weight(
    timeframe: str,
    config: ConfluenceConfig = DEFAULT_CONFLUENCE_CONFIG,
) -> float:
    direct = config.timeframe_weights.get(timeframe)
    if direct is not None and math.isfinite(direct):
        return direct

    try:
        numeric = float(timeframe)
    except ValueError:
        return config.default_weight
    if math.isfinite(numeric) and numeric > 0:
        canonical = str(int(numeric)) if numeric.is_integer() else str(numeric)
        return config.timeframe_weights.get(canonical, config.default_weight)
    return config.default_weight


def order_timeframes(
    timeframes: Iterable[str],
    config: ConfluenceConfig = DEFAULT_CONFLUENCE_CONFIG,
) -> list[str]:
    """Configured timeframes in significance order, then extras by duration."""
    present = set(timeframes)
    known = [tf for tf in config.ordered_timeframes if tf in present]
    extras = sorted(
        present.difference(known), key=lambda tf: (parse_timeframe_to_minutes(tf), tf)
    )
    return known + extras


def resolve_combined_bias(score: float) -> CombinedBias:
    """Bucket the un-normalized weighted score."""
    if score > _STRONG_BIAS_SCORE:
        return CombinedBias("Bullish", "Strong")
    if score > _MEDIUM_BIAS_SCORE:
        return CombinedBias("Bullish", "Medium")
    if score > _WEAK_BIAS_SCORE:
        return CombinedBias("Bullish", "Weak")
    if score < -_STRONG_BIAS_SCORE:
        return CombinedBias("Bearish", "Strong")
    if score < -_MEDIUM_BIAS_SCORE:
        return CombinedBias("Bearish", "Medium")
    if score < -_WEAK_BIAS_SCORE:
        return CombinedBias("Bearish", "Weak")
    return CombinedBias("Neutral", "Sideways")


def evaluate_snapshot_with_markov(signal: TimeframeSignal) -> MarkovTimeframeEvaluation:
    return MarkovTimeframeEvaluation(
        timeframe=signal.timeframe,
        timeframe_label=signal.timeframe_label,
        breakdown=signal.combined.breakdown,
    )


def build_trend_matrix_markov(
    evaluations: Mapping[str, MarkovTimeframeEvaluation],
    config: ConfluenceConfig = DEFAULT_CONFLUENCE_CONFIG,
) -> list[TrendMatrixRow]:
    rows: list[TrendMatrixRow] = []
    for timeframe in order_timeframes(evaluations, config):
        evaluation = evaluations[timeframe]
        breakdown = evaluation.breakdown
        rows.append(
            TrendMatrixRow(
                timeframe=timeframe,
                timeframe_label=evaluation.timeframe_label or timeframe,
                bias=breakdown.bias,
                rsi=_round_nullable(breakdown.rsi_value, 1),
                stoch_k=_round_nullable(breakdown.stoch_k_value, 1),
                adx=_round_nullable(breakdown.adx_value, 1),
                trend=breakdown.trend_strength,
                adx_direction=breakdown.adx_direction,
                prior=_round_nullable(breakdown.markov.prior_score, 2),
                label=breakdown.label,
                score_raw=round(float(breakdown.signal_strength_raw), 2),
                score=round(breakdown.signal_strength, 2),
            )
        )
    return rows


def trend_matrix_frame(rows: Sequence[TrendMatrixRow]) -> pd.DataFrame:
    """Tabular audit view of a trend matrix."""
    columns = list(TrendMatrixRow.__dataclass_fields__)
    return pd.DataFrame([asdict(row) for row in rows], columns=columns)


def aggregate_multi_tf_markov(
    evaluations: Mapping[str, MarkovTimeframeEvaluation],
    config: ConfluenceConfig = DEFAULT_CONFLUENCE_CONFIG,
) -> AggregateResult:
    combined_score = 0.0
    total_weight = 0.0
    for timeframe in order_timeframes(evaluations, config):
        weight = resolve_timeframe_weight(timeframe, config)
        if weight <= 0:
            continue
        combined_score += evaluations[timeframe].signal_strength * weight
        total_weight += weight

    normalized = combined_score / total_weight if total_weight > 0 else 0.0
    return AggregateResult(
        combined_score=combined_score,
        normalized_score=normalized,
        total_weight=total_weight,
        combined_bias=resolve_combined_bias(combined_score),
    )


def qualifies_for_trade_markov(evaluation: MarkovTimeframeEvaluation | None) -> bool:
    """Whether one timeframe's posterior is strong enough given its prior."""
    if evaluation is None:
        return False

    posterior = evaluation.signal_strength
    if not math.isfinite(posterior) or posterior == 0:
        return False

    magnitude = abs(posterior)
    prior_score = evaluation.prior_score
    prior_magnitude = abs(prior_score)
    aligned = prior_score != 0 and math.copysign(1, prior_score) == math.copysign(1, posterior)

    if magnitude >= SIGNAL_STRONG_THRESHOLD:
        return aligned or prior_magnitude < PRIOR_STRONG_OPPOSITION_THRESHOLD
    if magnitude >= SIGNAL_FORMING_THRESHOLD:
        return aligned or prior_magnitude < PRIOR_SUPPORT_THRESHOLD
    if magnitude >= SIGNAL_WEAK_THRESHOLD:
        return aligned and prior_magnitude >= PRIOR_SUPPORT_THRESHOLD
    return False


def has_n_consecutive_timeframes(
    timeframes: Sequence[str],
    n: int,
    evaluations: Mapping[str, MarkovTimeframeEvaluation] | None = None,
    config: ConfluenceConfig = DEFAULT_CONFLUENCE_CONFIG,
) -> bool:
    """True when ``n`` timeframes adjacent in significance order all appear in ``timeframes``."""
    if n <= 1:
        return len(timeframes) > 0
    if not timeframes:
        return False

    if evaluations is not None:
        ordered = order_timeframes(evaluations, config)
    else:
        ordered = config.ordered_timeframes
    qualified = set(timeframes)
    streak = 0
    for timeframe in ordered:
        if timeframe in qualified:
            streak += 1
            if streak >= n:
                return True
        else:
            streak = 0
    return False


def first_consecutive_run(
    timeframes: Sequence[str],
    n: int,
    evaluations: Mapping[str, MarkovTimeframeEvaluation],
    config: ConfluenceConfig = DEFAULT_CONFLUENCE_CONFIG,
) -> list[str]:
    """Timeframes of the first run of at least ``n`` adjacent qualifying timeframes."""
    qualified = set(timeframes)
    run: list[str] = []
    for timeframe in order_timeframes(evaluations, config):
        if timeframe in qualified:
            run.append(timeframe)
        else:
            if len(run) >= n:
                return run
            run = []
    return run if len(run) >= max(n, 1) else []


def run_multi_tf_model(
    signals: Iterable[TimeframeSignal],
    config: ConfluenceConfig = DEFAULT_CONFLUENCE_CONFIG,
) -> MultiTimeframeModelSummary:
    """Aggregate per-timeframe signals and decide whether a trade is emitted."""
    evaluations: dict[str, MarkovTimeframeEvaluation] = {}
    for signal in signals:
        evaluations[signal.timeframe] = evaluate_snapshot_with_markov(signal)

    ordered = order_timeframes(evaluations, config)
    qualified = [tf for tf in ordered if qualifies_for_trade_markov(evaluations[tf])]

    return MultiTimeframeModelSummary(
        per_timeframe={tf: evaluations[tf] for tf in ordered},
        trend_matrix=build_trend_matrix_markov(evaluations, config),
        combined=aggregate_multi_tf_markov(evaluations, config),
        qualified_timeframes=qualified,
        emit_trade_signal=has_n_consecutive_timeframes(
            qualified, config.min_consecutive, evaluations, config
        ),
    )


def get_multi_timeframe_signal(
    signals: Sequence[TimeframeSignal],
    config: ConfluenceConfig = DEFAULT_CONFLUENCE_CONFIG,
) -> MultiTimeframeSignal | None:
    """Contribution-level weighted score across timeframes."""
    if not signals:
        return None

    contributions: list[MultiTimeframeSignalContribution] = []
    combined_score = 0.0
    total_weight = 0.0
    for signal in signals:
        weight = resolve_timeframe_weight(signal.timeframe, config)
        if weight <= 0:
            continue
        score = signal.combined.breakdown.signal_strength
        contributions.append(
            MultiTimeframeSignalContribution(
                timeframe=signal.timeframe,
                timeframe_label=signal.timeframe_label,
                weight=weight,
                score=score,
                weighted_score=score * weight,
            )
        )
        combined_score += score * weight
        total_weight += weight

    if total_weight == 0:
        return MultiTimeframeSignal(
            direction="Neutral",
            strength=0,
            combined_score=0.0,
            normalized_score=0.0,
            combined_bias=CombinedBias("Neutral", "Sideways"),
            contributions=contributions,
        )

    combined_bias = resolve_combined_bias(combined_score)
    max_score = MAX_SIGNAL_STRENGTH * config.total_weight
    strength = 0
    if max_score > 0:
        strength = round_half_up(min(abs(combined_score) / max_score, 1.0) * 100)
    contributions.sort(key=lambda item: (item.weight, item.timeframe))

    return MultiTimeframeSignal(
        direction=combined_bias.direction,
        strength=strength,
        combined_score=combined_score,
        normalized_score=round_half_up(combined_score / total_weight * 10) / 10,
        combined_bias=combined_bias,
        contributions=contributions,
    )


def _round_nullable(value: float | None, decimals: int) -> float | None:
    if value is None or not math.isfinite(value):
        return None
    return round(value, decimals)
