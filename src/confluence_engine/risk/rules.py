"""Risk sizing: grade, throttles, guard rails and the laddered execution plan."""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Literal

from confluence_engine.risk.schemas import RiskConfig, RoundMode
from confluence_engine.types import (
    AccountState,
    AtrRiskLevels,
    RiskGrade,
    RiskLeg,
    RiskPlan,
    RiskPlanResult,
    RiskPlanStep,
    SignalContext,
    SignalVotes,
    Side,
    TrailingPlan,
)

PriceOperation = Literal["+", "-"]


class RiskEngine:
    """Rule-based sizing of one qualifying signal."""

    def __init__(self, config: RiskConfig) -> None:
        self._config = config

    @property
    def config(self) -> RiskConfig:
        return self._config

    def check_guard_rails(self, account: AccountState, final_risk_pct: float) -> str | None:
        """Return the first violated portfolio guard rail, if any."""
        cfg = self._config
        if len(account.open_positions) >= cfg.max_open_positions:
            return "max_open_positions_reached"
        if account.today_realized_pnl_pct <= -cfg.max_daily_loss_pct:
            return "max_daily_loss_reached"
        open_risk = portfolio_open_risk_pct(account)
        if open_risk + final_risk_pct > cfg.max_open_risk_pct_portfolio:
            return "max_portfolio_open_risk_exceeded"
        return None

    def compute_risk_plan(self, ctx: SignalContext, account: AccountState) -> RiskPlanResult:
        """Size a qualifying signal into a capped ladder, or reject it."""
        cfg = self._config

        if not _is_positive(account.equity):
            return RiskPlanResult(allowed=False, reason="invalid_equity")
        if not _is_positive(ctx.price):
            return RiskPlanResult(allowed=False, reason="invalid_price")
        if ctx.atr is None or not _is_positive(ctx.atr):
            return RiskPlanResult(allowed=False, reason="atr_unavailable")

        grade = ctx.strength_hint or risk_grade_from_signal(ctx.votes, ma_slope_ok=ctx.ma_slope_ok)
        base_risk_pct = base_risk_pct_from_grade(grade, cfg)

        atr_pct = ctx.atr_pct
        if atr_pct is None:
            atr_pct = ctx.atr / ctx.price * 100.0
        vol_factor = volatility_throttle(atr_pct, cfg)
        dd_factor = drawdown_throttle(account, cfg)
        tier_cap = equity_tier_cap(account, cfg)

        final_risk_pct = base_risk_pct * vol_factor * dd_factor
        final_risk_pct = min(final_risk_pct, tier_cap, cfg.instrument_risk_cap_pct)
        final_risk_pct = max(0.0, final_risk_pct)

        rejection = self.check_guard_rails(account, final_risk_pct)
        if rejection is not None:
            return RiskPlanResult(allowed=False, reason=rejection)
        if final_risk_pct <= 0:
            return RiskPlanResult(allowed=False, reason="risk_budget_exhausted")

        stop_distance = ctx.atr * cfg.atr_mult_sl
        raw_total = account.equity * (final_risk_pct / 100.0) / stop_distance
        steps = self._build_ladder(ctx.side, ctx.price, ctx.atr, raw_total)
        if not steps:
            return RiskPlanResult(allowed=False, reason="position_below_min_order_qty")

        position_size_total = _normalize_qty(sum(step.qty for step in steps), cfg.qty_step)

        return RiskPlanResult(
            allowed=True,
            plan=RiskPlan(
                side=ctx.side,
                final_risk_pct=final_risk_pct,
                risk_grade=grade,
                throttle_factor=vol_factor * dd_factor,
                volatility_factor=vol_factor,
                drawdown_factor=dd_factor,
                tier_cap_pct=tier_cap,
                position_size_total=position_size_total,
                notional=position_size_total * ctx.price,
                steps=tuple(steps),
                trailing_plan=self._build_trailing_plan(ctx.side, ctx.atr, steps[0]),
            ),
        )

    def _build_ladder(
        self,
        side: Side,
        price: float,
        atr: float,
        raw_total: float,
    ) -> list[RiskPlanStep]:
        cfg = self._config
        weights = cfg.ladder.weights
        weight_sum = sum(weights)

        steps: list[RiskPlanStep] = []
        for index, weight in enumerate(weights):
            qty = round_qty(raw_total * weight / weight_sum, cfg.qty_step, cfg.contract_round_mode)
            qty = _normalize_qty(qty, cfg.qty_step)
            if qty <= 0 or qty < cfg.min_order_qty:
                continue

            # Adds pyramid in the trade's favour.
            trigger = priced(price, index * cfg.ladder_spacing_atr * atr, side, "+")
            tp1_mult, tp2_mult = cfg.tp_multipliers[index]
            steps.append(
                RiskPlanStep(
                    step_index=len(steps),
                    intent="Enter" if not steps else "Add",
                    qty=qty,
                    entry_trigger=trigger,
                    sl_price=priced(trigger, cfg.sl_multipliers[index] * atr, side, "-"),
                    tp1_price=priced(trigger, tp1_mult * atr, side, "+"),
                    tp2_price=priced(trigger, tp2_mult * atr, side, "+"),
                )
            )
        return steps

    def _build_trailing_plan(self, side: Side, atr: float, entry: RiskPlanStep) -> TrailingPlan:
        cfg = self._config
        multiplier = cfg.trailing_atr_multiplier
        if cfg.use_hard_tps:
            return TrailingPlan(
                enabled=False,
                atr_multiplier=multiplier,
                trail_distance=0.0,
                activation_price=None,
                initial_stop=None,
            )
        distance = atr * multiplier
        return TrailingPlan(
            enabled=True,
            atr_multiplier=multiplier,
            trail_distance=distance,
            activation_price=entry.tp1_price,
            initial_stop=priced(entry.tp1_price, distance, side, "-"),
        )


def clamp(x: float, lo: float, hi: float) -> float:
    """Clamp ``x`` into ``[lo, hi]``; a non-finite ``x`` maps to ``lo``."""
    if not math.isfinite(lo) or not math.isfinite(hi):
        raise ValueError("clamp bounds must be finite numbers")
    if lo > hi:
        raise ValueError("clamp lower bound must be <= upper bound")
    if not math.isfinite(x):
        return lo
    return min(max(x, lo), hi)


def round_qty(qty: float, step: float, mode: RoundMode = "nearest") -> float:
    if not math.isfinite(qty):
        return math.nan
    if not math.isfinite(step) or step <= 0:
        return qty
    ratio = qty / step
    if mode == "round_down":
        # Absorb float noise such as 0.3 / 0.1 == 2.9999999999999996.
        return math.floor(round(ratio, 9)) * step
    return math.floor(ratio + 0.5) * step


def price_for_side(base: float, delta: float, side: Side, op: PriceOperation) -> float | None:
    """Apply ``delta`` in the side's favourable (``+``) or adverse (``-``) direction."""
    if not math.isfinite(base) or not math.isfinite(delta):
        return None
    return priced(base, delta, side, op)


def priced(base: float, delta: float, side: Side, op: PriceOperation) -> float:
    sign = 1.0 if side == "LONG" else -1.0
    if op == "-":
        sign = -sign
    return base + sign * delta


def risk_grade_from_signal(votes: SignalVotes, *, ma_slope_ok: bool = True) -> RiskGrade:
    """Grade conviction from the bull/bear vote tally."""
    total = votes.total if votes.total > 0 else votes.bull + votes.bear
    if total <= 0:
        return "weak"
    if ma_slope_ok and (votes.bull == total or votes.bear == total):
        return "strong"
    if votes.bull != votes.bear:
        return "standard"
    return "weak"


def base_risk_pct_from_grade(grade: RiskGrade, cfg: RiskConfig) -> float:
    if grade == "weak":
        return cfg.base_risk_weak_pct
    if grade == "standard":
        return cfg.base_risk_std_pct
    if grade == "strong":
        return cfg.base_risk_strong_pct
    return 0.0


def volatility_throttle(atr_pct: float | None, cfg: RiskConfig) -> float:
    if atr_pct is None or not math.isfinite(atr_pct):
        return 1.0
    if atr_pct > cfg.vol_max_atr_pct:
        return max(0.0, cfg.vol_high_cut_factor)
    if atr_pct < cfg.vol_min_atr_pct:
        return max(0.0, cfg.vol_low_boost_factor)
    return 1.0


def drawdown_pct(account: AccountState) -> float:
    peak = account.equity_peak
    if not _is_positive(peak) or not math.isfinite(account.equity):
        return 0.0
    return (peak - account.equity) / peak * 100.0


def drawdown_throttle(account: AccountState, cfg: RiskConfig) -> float:
    """Factor of the highest drawdown threshold reached, else 1."""
    dd = drawdown_pct(account)
    factor = 1.0
    for threshold, threshold_factor in zip(
        cfg.drawdown_throttle.thresholds, cfg.drawdown_throttle.factors
    ):
        if dd >= threshold:
            factor = threshold_factor
    return clamp(factor, 0.0, 1.0)


def equity_tier_cap(account: AccountState, cfg: RiskConfig) -> float:
    for tier in cfg.equity_tiers:
        if tier.contains(account.equity):
            return tier.cap_pct
    return cfg.equity_tiers[-1].cap_pct


def portfolio_open_risk_pct(account: AccountState) -> float:
    return sum(
        position.risk_at_open_pct
        for position in account.open_positions
        if math.isfinite(position.risk_at_open_pct)
    )


def build_atr_risk_levels(price: float, atr: float, cfg: RiskConfig) -> AtrRiskLevels | None:
    """Stop and target prices for both sides of ``price``."""
    if not math.isfinite(price) or not math.isfinite(atr):
        return None

    sl_delta = cfg.atr_mult_sl * atr
    tp1_delta = cfg.atr_mult_tp1 * atr
    tp2_delta = cfg.atr_mult_tp2 * atr

    def _leg(side: Side) -> RiskLeg:
        return RiskLeg(
            sl=priced(price, sl_delta, side, "-"),
            tp1=priced(price, tp1_delta, side, "+"),
            tp2=priced(price, tp2_delta, side, "+"),
        )

    return AtrRiskLevels(
        atr=atr,
        sl_multiplier=cfg.atr_mult_sl,
        tp_multipliers=(cfg.atr_mult_tp1, cfg.atr_mult_tp2),
        long=_leg("LONG"),
        short=_leg("SHORT"),
    )


def _normalize_qty(qty: float, step: float) -> float:
    """Trim float noise so quantities print as clean multiples of ``step``."""
    exponent = Decimal(str(step)).normalize().as_tuple().exponent
    decimals = max(0, -exponent) if isinstance(exponent, int) else 0
    return round(qty, decimals)


def _is_positive(value: float) -> bool:
    return math.isfinite(value) and value > 0
