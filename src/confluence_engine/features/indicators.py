"""Indicator snapshot extraction from externally computed indicator frames."""

from __future__ import annotations

import math
from typing import Any, Mapping

import pandas as pd  # type: ignore[import-untyped]

from confluence_engine.types import IndicatorSnapshot

# First alias present in the row wins.
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "price": ("price", "close"),
    "ema_fast": ("ema_fast", "ema10"),
    "ema_slow": ("ema_slow", "ema50"),
    "ma_long": ("ma_long", "ma200"),
    "ma_long_slope": ("ma_long_slope", "ma200_slope"),
    "macd_value": ("macd_value", "macd", "macd_line"),
    "macd_signal": ("macd_signal", "signal_line"),
    "macd_histogram": ("macd_histogram", "macd_hist", "hist"),
    "rsi": ("rsi",),
    "stoch_k": ("stoch_k", "k"),
    "adx": ("adx",),
    "plus_di": ("plus_di", "pdi"),
    "minus_di": ("minus_di", "mdi"),
    "adx_slope": ("adx_slope",),
    "atr": ("atr",),
    "atr_pct": ("atr_pct",),
}


def to_number_or_none(value: Any) -> float | None:
    """Return a finite float, or None for anything else (NaN, inf, text, bools)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) or pd.api.types.is_number(value):
        number = float(value)
        return number if math.isfinite(number) else None
    return None


def snapshot_from_row(row: Mapping[str, Any] | pd.Series) -> IndicatorSnapshot:
    """Build a snapshot from one indicator row."""
    values: dict[str, float | None] = {}
    for field_name, aliases in _FIELD_ALIASES.items():
        values[field_name] = None
        for alias in aliases:
            if alias in row:
                values[field_name] = to_number_or_none(row[alias])
                break

    price = values["price"]
    atr = values["atr"]
    if values["atr_pct"] is None and price is not None and atr is not None and price > 0:
        values["atr_pct"] = atr / price * 100.0

    return IndicatorSnapshot(**values)


def snapshot_from_frame(df: pd.DataFrame) -> IndicatorSnapshot:
    """Build a snapshot from the last (most recent closed) row of an indicator frame."""
    if df.empty:
        raise ValueError("indicator_frame_empty")
    if "open_time" in df.columns and not _is_time_ascending(df):
        raise ValueError("indicator_timestamp_not_ascending")
    return snapshot_from_row(df.iloc[-1])


def _is_time_ascending(df: pd.DataFrame) -> bool:
    return bool(pd.Series(df["open_time"]).is_monotonic_increasing)
