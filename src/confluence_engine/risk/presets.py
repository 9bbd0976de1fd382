"""Risk config and account state resolution with explicit overrides."""

from __future__ import annotations

import math
from typing import Any, Mapping

from confluence_engine.config import Settings
from confluence_engine.risk.schemas import DrawdownThrottle, EquityTier, LadderConfig, RiskConfig
from confluence_engine.types import AccountState, OpenPosition

DEFAULT_LADDER_WEIGHTS = (0.5, 0.3, 0.2)
DEFAULT_DRAWDOWN_THRESHOLDS = (5.0, 10.0, 15.0)
DEFAULT_DRAWDOWN_FACTORS = (0.7, 0.5, 0.3)
DEFAULT_EQUITY_TIER_BREAK = 25_000.0

DEFAULT_ACCOUNT_EQUITY = 100_000.0


def resolve_risk_config(
    settings: Settings,
    overrides: Mapping[str, Any] | None = None,
) -> RiskConfig:
    """Build a fully populated RiskConfig from settings plus per-field overrides.

    Fallbacks only replace missing or non-positive overrides; anything else is
    passed through and validated, so a malformed override raises instead of
    being silently repaired.
    """
    overrides = dict(overrides or {})
    risk_pct = settings.risk_pct_per_trade
    atr_mult_sl = settings.atr_mult_sl
    tp1 = settings.atr_mult_tp1
    tp2 = settings.atr_mult_tp2

    base_weak = _positive_or(overrides.pop("base_risk_weak_pct", None), risk_pct)
    base_std = _positive_or(overrides.pop("base_risk_std_pct", None), risk_pct)
    base_strong = _positive_or(
        overrides.pop("base_risk_strong_pct", None), max(risk_pct, base_std)
    )

    ladder = _resolve_ladder(overrides.pop("ladder", None))
    steps = ladder.steps

    sl_multipliers = overrides.pop("sl_multipliers", None)
    if not sl_multipliers:
        sl_multipliers = [atr_mult_sl] * steps
    tp_multipliers = overrides.pop("tp_multipliers", None)
    if not tp_multipliers:
        tp_multipliers = [(tp1, tp2)] * steps

    equity_tiers = overrides.pop("equity_tiers", None)
    if not equity_tiers:
        equity_tiers = [
            EquityTier(min=0.0, max=DEFAULT_EQUITY_TIER_BREAK, cap_pct=risk_pct),
            EquityTier(min=DEFAULT_EQUITY_TIER_BREAK, max=None, cap_pct=risk_pct),
        ]

    resolved: dict[str, Any] = {
        "base_risk_weak_pct": base_weak,
        "base_risk_std_pct": base_std,
        "base_risk_strong_pct": base_strong,
        "vol_min_atr_pct": settings.vol_min_atr_pct,
        "vol_max_atr_pct": settings.vol_max_atr_pct,
        "drawdown_throttle": _resolve_drawdown(overrides.pop("drawdown_throttle", None)),
        "equity_tiers": equity_tiers,
        "atr_mult_sl": atr_mult_sl,
        "atr_mult_tp1": tp1,
        "atr_mult_tp2": tp2,
        "instrument_risk_cap_pct": _positive_or(
            overrides.pop("instrument_risk_cap_pct", None), risk_pct
        ),
        "max_open_risk_pct_portfolio": _positive_or(
            overrides.pop("max_open_risk_pct_portfolio", None), risk_pct * 4
        ),
        "max_open_positions": int(_positive_or(overrides.pop("max_open_positions", None), 4)),
        "max_daily_loss_pct": _positive_or(
            overrides.pop("max_daily_loss_pct", None), risk_pct * 3
        ),
        "ladder": ladder,
        "sl_multipliers": sl_multipliers,
        "tp_multipliers": tp_multipliers,
        "qty_step": _positive_or(overrides.pop("qty_step", None), 0.001),
        "min_order_qty": _non_negative_or(overrides.pop("min_order_qty", None), 0.0),
        "trailing_atr_multiplier": _positive_or(
            overrides.pop("trailing_atr_multiplier", None), max(tp1, 1.5)
        ),
    }
    # Remaining keys (vol factors, round mode, hard TPs, spacing, ...) pass straight through.
    resolved.update(overrides)
    return RiskConfig.model_validate(resolved)


def create_default_account_state(overrides: Mapping[str, Any] | None = None) -> AccountState:
    """Account snapshot with defaults for anything the caller left out.

    Supplied values are kept as given, even when non-positive, so the risk
    engine can reject them. A missing peak equals the equity (no drawdown).
    """
    overrides = overrides or {}
    equity_value = overrides.get("equity")
    equity = DEFAULT_ACCOUNT_EQUITY if equity_value is None else float(equity_value)
    peak_value = overrides.get("equity_peak")
    equity_peak = equity if peak_value is None else float(peak_value)
    pnl = overrides.get("today_realized_pnl_pct")
    positions = tuple(
        OpenPosition(risk_at_open_pct=_finite_or(_position_risk(position), 0.0))
        for position in overrides.get("open_positions") or ()
    )
    return AccountState(
        equity=equity,
        equity_peak=equity_peak,
        today_realized_pnl_pct=_finite_or(pnl, 0.0),
        open_positions=positions,
    )


def _resolve_ladder(value: Any) -> LadderConfig:
    if isinstance(value, LadderConfig):
        return value
    if isinstance(value, Mapping) and value.get("weights"):
        return LadderConfig(weights=tuple(value["weights"]))
    return LadderConfig(weights=DEFAULT_LADDER_WEIGHTS)


def _resolve_drawdown(value: Any) -> DrawdownThrottle:
    """Merge a partial drawdown override key by key over the defaults."""
    if isinstance(value, DrawdownThrottle):
        return value
    thresholds: Any = DEFAULT_DRAWDOWN_THRESHOLDS
    factors: Any = DEFAULT_DRAWDOWN_FACTORS
    if isinstance(value, Mapping):
        if value.get("thresholds"):
            thresholds = tuple(value["thresholds"])
        if value.get("factors"):
            factors = tuple(value["factors"])
    return DrawdownThrottle(thresholds=thresholds, factors=factors)


def _position_risk(position: Any) -> Any:
    if isinstance(position, OpenPosition):
        return position.risk_at_open_pct
    if isinstance(position, Mapping):
        return position.get("risk_at_open_pct")
    return None


def _is_finite_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _finite_or(value: Any, fallback: float) -> float:
    return float(value) if _is_finite_number(value) else fallback


def _positive_or(value: Any, fallback: float) -> float:
    return float(value) if _is_finite_number(value) and value > 0 else fallback


def _non_negative_or(value: Any, fallback: float) -> float:
    return float(value) if _is_finite_number(value) and value >= 0 else fallback
