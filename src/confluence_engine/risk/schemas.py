"""Risk sizing policy schema with strict validation."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

RoundMode = Literal["nearest", "round_down"]


class DrawdownThrottle(BaseModel):
    """Ascending drawdown thresholds (percent) and the factor applied past each."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    thresholds: tuple[float, ...] = (5.0, 10.0, 15.0)
    factors: tuple[float, ...] = (0.7, 0.5, 0.3)

    @model_validator(mode="after")
    def check_ladder(self) -> "DrawdownThrottle":
        if len(self.thresholds) != len(self.factors):
            raise ValueError(
                f"drawdown thresholds ({len(self.thresholds)}) and factors "
                f"({len(self.factors)}) must have the same length"
            )
        for previous, current in zip(self.thresholds, self.thresholds[1:]):
            if current < previous:
                raise ValueError("drawdown thresholds must be non-decreasing")
        if any(factor < 0 for factor in self.factors):
            raise ValueError("drawdown factors must be >= 0")
        return self


class EquityTier(BaseModel):
    """Equity range ``[min, max)`` with its own risk cap; ``max=None`` is unbounded."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    min: float = Field(ge=0.0)
    max: float | None = None
    cap_pct: float = Field(ge=0.0)

    def contains(self, equity: float) -> bool:
        return equity >= self.min and (self.max is None or equity < self.max)


class LadderConfig(BaseModel):
    """Relative weights of the ladder steps, interpreted proportionally."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    weights: tuple[float, ...] = (0.5, 0.3, 0.2)

    @field_validator("weights")
    @classmethod
    def check_weights(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        if not v:
            raise ValueError("ladder needs at least one step")
        if any(weight < 0 for weight in v):
            raise ValueError("ladder weights must be >= 0")
        if sum(v) <= 0:
            raise ValueError("ladder weights must sum to a positive value")
        return v

    @property
    def steps(self) -> int:
        return len(self.weights)


class RiskConfig(BaseModel):
    """Fully resolved sizing policy for one evaluation call."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    base_risk_weak_pct: float = Field(ge=0.0)
    base_risk_std_pct: float = Field(ge=0.0)
    base_risk_strong_pct: float = Field(ge=0.0)

    vol_min_atr_pct: float = Field(ge=0.0)
    vol_max_atr_pct: float = Field(ge=0.0)
    vol_high_cut_factor: float = 0.6
    vol_low_boost_factor: float = 1.2

    drawdown_throttle: DrawdownThrottle = Field(default_factory=DrawdownThrottle)
    equity_tiers: tuple[EquityTier, ...]

    atr_mult_sl: float = Field(gt=0.0)
    atr_mult_tp1: float = Field(gt=0.0)
    atr_mult_tp2: float = Field(gt=0.0)

    instrument_risk_cap_pct: float = Field(gt=0.0)
    max_open_risk_pct_portfolio: float = Field(gt=0.0)
    max_open_positions: int = Field(ge=1)
    max_daily_loss_pct: float = Field(gt=0.0)

    ladder: LadderConfig = Field(default_factory=LadderConfig)
    sl_multipliers: tuple[float, ...]
    tp_multipliers: tuple[tuple[float, float], ...]
    ladder_spacing_atr: float = Field(default=0.5, ge=0.0)

    qty_step: float = Field(default=0.001, gt=0.0)
    contract_round_mode: RoundMode = "nearest"
    min_order_qty: float = Field(default=0.0, ge=0.0)

    use_hard_tps: bool = False
    trailing_atr_multiplier: float = Field(default=1.5, gt=0.0)

    @field_validator("equity_tiers")
    @classmethod
    def check_tiers(cls, v: tuple[EquityTier, ...]) -> tuple[EquityTier, ...]:
        """Tiers must tile [0, +inf) without gaps or overlaps."""
        if not v:
            raise ValueError("at least one equity tier is required")
        tiers = sorted(v, key=lambda tier: tier.min)
        if tiers[0].min != 0:
            raise ValueError("equity tiers must start at 0")
        for previous, current in zip(tiers, tiers[1:]):
            if previous.max is None:
                raise ValueError("only the last equity tier may be unbounded")
            if current.min < previous.max:
                raise ValueError(
                    f"equity tiers overlap: [{previous.min}, {previous.max}) and "
                    f"[{current.min}, {current.max})"
                )
            if current.min > previous.max:
                raise ValueError(f"equity tiers leave a gap at [{previous.max}, {current.min})")
        for tier in tiers:
            if tier.max is not None and tier.max <= tier.min:
                raise ValueError(f"equity tier [{tier.min}, {tier.max}) is empty")
        if tiers[-1].max is not None:
            raise ValueError("last equity tier must be unbounded")
        return tuple(tiers)

    @model_validator(mode="after")
    def check_consistency(self) -> "RiskConfig":
        if self.vol_min_atr_pct > self.vol_max_atr_pct:
            raise ValueError("vol_min_atr_pct must be <= vol_max_atr_pct")
        steps = self.ladder.steps
        if len(self.sl_multipliers) != steps:
            raise ValueError(f"sl_multipliers needs {steps} entries, got {len(self.sl_multipliers)}")
        if len(self.tp_multipliers) != steps:
            raise ValueError(f"tp_multipliers needs {steps} entries, got {len(self.tp_multipliers)}")
        if any(mult <= 0 for mult in self.sl_multipliers):
            raise ValueError("sl_multipliers must be > 0")
        if any(tp1 <= 0 or tp2 <= 0 for tp1, tp2 in self.tp_multipliers):
            raise ValueError("tp_multipliers must be > 0")
        if self.atr_mult_tp1 > self.atr_mult_tp2:
            raise ValueError("atr_mult_tp1 must be <= atr_mult_tp2")
        if any(tp1 > tp2 for tp1, tp2 in self.tp_multipliers):
            raise ValueError("each tp_multipliers pair must satisfy tp1 <= tp2")
        return self
