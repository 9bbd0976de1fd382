"""Shared domain types for signal classification, confluence and risk sizing."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Literal

Side = Literal["LONG", "SHORT"]
Direction = Literal["Bullish", "Bearish", "Neutral"]
Momentum = Literal["StrongBullish", "StrongBearish", "Weak"]
TrendStrength = Literal["Strong", "Forming", "Weak"]
AdxDirection = Literal["ConfirmBull", "ConfirmBear", "NoConfirm"]
SignalLabel = Literal[
    "STRONG_BUY",
    "BUY_FORMING",
    "BUY_WEAK",
    "NEUTRAL",
    "SELL_WEAK",
    "SELL_FORMING",
    "STRONG_SELL",
]
BiasStrength = Literal["Strong", "Medium", "Weak", "Sideways"]
RiskGrade = Literal["weak", "standard", "strong"]
StepIntent = Literal["Enter", "Add"]
SignalDirection = Literal["Bullish", "Bearish"]
HeatmapBias = Literal["BULL", "BEAR", "NEUTRAL"]
HeatmapSignal = Literal["LONG", "SHORT", "NONE"]
SignalStage = Literal["triggered", "cooldown", "gated", "ready"]
SignalBucket = Literal["Strong", "Medium", "Weak"]


@dataclass(frozen=True, slots=True)
class IndicatorSnapshot:
    """Indicator values for one timeframe at one closed bar.

    ``None`` means the indicator has not warmed up yet.
    """

    price: float | None = None
    ema_fast: float | None = None
    ema_slow: float | None = None
    ma_long: float | None = None
    ma_long_slope: float | None = None
    macd_value: float | None = None
    macd_signal: float | None = None
    macd_histogram: float | None = None
    rsi: float | None = None
    stoch_k: float | None = None
    adx: float | None = None
    plus_di: float | None = None
    minus_di: float | None = None
    adx_slope: float | None = None
    atr: float | None = None
    atr_pct: float | None = None


@dataclass(frozen=True, slots=True)
class MarkovPrior:
    """Directional prior from the regime model, in [-1, 1]."""

    prior_score: float | None = None
    current_state: str | None = None


@dataclass(frozen=True, slots=True)
class SignalBreakdown:
    """Intermediate classification behind a combined signal."""

    bias: Direction
    momentum: Momentum
    trend_strength: TrendStrength
    adx_direction: AdxDirection
    adx_is_rising: bool
    adx_value: float | None
    rsi_value: float | None
    stoch_k_value: float | None
    ema_fast: float | None
    ema_slow: float | None
    ma_long: float | None
    macd_value: float | None
    macd_signal: float | None
    macd_histogram: float | None
    trend_score: float
    markov: MarkovPrior
    signal_strength_raw: int
    signal_strength: float
    label: SignalLabel


@dataclass(frozen=True, slots=True)
class CombinedSignal:
    """Scored directional classification for one timeframe."""

    direction: Direction
    strength: int
    breakdown: SignalBreakdown


@dataclass(frozen=True, slots=True)
class TimeframeSignal:
    """A combined signal tagged with the timeframe it was computed on."""

    timeframe: str
    timeframe_label: str
    combined: CombinedSignal


@dataclass(frozen=True, slots=True)
class MarkovTimeframeEvaluation:
    """Breakdown of one timeframe as consumed by the aggregator."""

    timeframe: str
    timeframe_label: str
    breakdown: SignalBreakdown

    @property
    def signal_strength(self) -> float:
        return self.breakdown.signal_strength

    @property
    def prior_score(self) -> float:
        score = self.breakdown.markov.prior_score
        return 0.0 if score is None else score


@dataclass(frozen=True, slots=True)
class TrendMatrixRow:
    """Rounded, display-only projection of one timeframe evaluation."""

    timeframe: str
    timeframe_label: str
    bias: Direction
    rsi: float | None
    stoch_k: float | None
    adx: float | None
    trend: TrendStrength
    adx_direction: AdxDirection
    prior: float | None
    label: SignalLabel
    score_raw: float
    score: float


@dataclass(frozen=True, slots=True)
class CombinedBias:
    direction: Direction
    strength: BiasStrength


@dataclass(frozen=True, slots=True)
class AggregateResult:
    """Weighted verdict across timeframes."""

    combined_score: float
    normalized_score: float
    total_weight: float
    combined_bias: CombinedBias


@dataclass(frozen=True, slots=True)
class MultiTimeframeModelSummary:
    """Per-timeframe evaluations plus the trade qualification decision."""

    per_timeframe: dict[str, MarkovTimeframeEvaluation]
    trend_matrix: list[TrendMatrixRow]
    combined: AggregateResult
    qualified_timeframes: list[str]
    emit_trade_signal: bool


@dataclass(frozen=True, slots=True)
class MultiTimeframeSignalContribution:
    timeframe: str
    timeframe_label: str
    weight: float
    score: float
    weighted_score: float


@dataclass(frozen=True, slots=True)
class MultiTimeframeSignal:
    """Contribution-level view of the weighted multi-timeframe score."""

    direction: Direction
    strength: int
    combined_score: float
    normalized_score: float
    combined_bias: CombinedBias
    contributions: list[MultiTimeframeSignalContribution]


@dataclass(frozen=True, slots=True)
class MovingAverageCross:
    """A moving-average cross seen on the closed bar, e.g. ``ema10-ema50`` ``up``."""

    pair: str
    direction: str


@dataclass(frozen=True, slots=True)
class HeatmapReading:
    """One timeframe's screener output for a symbol.

    ``signal`` is the screener's own trigger verdict; ``long_timing`` and
    ``short_timing`` say whether the timing gate is open for each side.
    """

    symbol: str
    timeframe: str
    timeframe_label: str
    snapshot: IndicatorSnapshot
    bias: HeatmapBias = "NEUTRAL"
    signal: HeatmapSignal = "NONE"
    markov: MarkovPrior | None = None
    stoch_event: str | None = None
    moving_average_crosses: tuple[MovingAverageCross, ...] = ()
    stoch_d: float | None = None
    atr_status: str | None = None
    ma_long_ok: bool = False
    ma_short_ok: bool = False
    dist_pct_to_ma_long: float | None = None
    long_timing: bool = False
    short_timing: bool = False
    cooldown_ok: bool = True
    risk: AtrRiskLevels | None = None
    closed_at: datetime | None = None
    evaluated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class TradingSignal:
    """A triggered signal with its reasons and a 0-100 confluence score."""

    symbol: str
    timeframe: str
    timeframe_label: str
    side: SignalDirection
    reasons: list[str]
    confluence_score: int
    strength: SignalBucket
    suggested_sl: float | None
    suggested_tp: float | None
    dedupe_key: str
    created_at: datetime
    price: float | None
    bias: HeatmapBias


@dataclass(frozen=True, slots=True)
class TimeframeSignalSnapshot:
    """Per-timeframe view: trend, momentum, stage and (when sided) the score."""

    timeframe: str
    timeframe_label: str
    trend: Direction
    momentum: Direction
    stage: SignalStage
    confluence_score: int | None
    strength: SignalBucket | None
    price: float | None
    bias: HeatmapBias
    slope_ma_long: float | None
    side: SignalDirection | None
    combined: CombinedSignal


@dataclass(frozen=True, slots=True)
class OpenPosition:
    risk_at_open_pct: float


@dataclass(frozen=True, slots=True)
class AccountState:
    """Read-only account snapshot supplied by the caller on every call."""

    equity: float
    equity_peak: float
    today_realized_pnl_pct: float = 0.0
    open_positions: tuple[OpenPosition, ...] = ()


@dataclass(frozen=True, slots=True)
class SignalVotes:
    bull: int = 0
    bear: int = 0
    total: int = 0


@dataclass(frozen=True, slots=True)
class SignalContext:
    """A qualifying signal handed to the risk engine."""

    side: Side
    price: float
    atr: float | None
    atr_pct: float | None = None
    votes: SignalVotes = field(default_factory=SignalVotes)
    ma_slope_ok: bool = True
    strength_hint: RiskGrade | None = None


@dataclass(frozen=True, slots=True)
class RiskLeg:
    sl: float
    tp1: float
    tp2: float


@dataclass(frozen=True, slots=True)
class AtrRiskLevels:
    """ATR-derived stop and target prices for both sides of one price."""

    atr: float
    sl_multiplier: float
    tp_multipliers: tuple[float, float]
    long: RiskLeg
    short: RiskLeg


@dataclass(frozen=True, slots=True)
class RiskPlanStep:
    step_index: int
    intent: StepIntent
    qty: float
    entry_trigger: float
    sl_price: float
    tp1_price: float
    tp2_price: float


@dataclass(frozen=True, slots=True)
class TrailingPlan:
    enabled: bool
    atr_multiplier: float
    trail_distance: float
    activation_price: float | None
    initial_stop: float | None


@dataclass(frozen=True, slots=True)
class RiskPlan:
    """Laddered execution plan. Not re-validated against live prices."""

    side: Side
    final_risk_pct: float
    risk_grade: RiskGrade
    throttle_factor: float
    volatility_factor: float
    drawdown_factor: float
    tier_cap_pct: float
    position_size_total: float
    notional: float
    steps: tuple[RiskPlanStep, ...]
    trailing_plan: TrailingPlan


@dataclass(frozen=True, slots=True)
class RiskPlanResult:
    """Either a plan or the guard rail that rejected the trade."""

    allowed: bool
    plan: RiskPlan | None = None
    reason: str | None = None


@dataclass(slots=True)
class EvaluationResult:
    """Outcome of one classify -> aggregate -> size evaluation."""

    status: str
    symbol: str
    summary: MultiTimeframeModelSummary | None = None
    plan: RiskPlan | None = None
    reason: str | None = None
    warnings: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0

    def to_payload(self) -> dict[str, object]:
        """Plain dict suitable for JSON transport."""
        return asdict(self)
