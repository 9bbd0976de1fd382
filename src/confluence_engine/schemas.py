"""Evaluation request schema and strict parsing helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from confluence_engine.features.indicators import snapshot_from_row
from confluence_engine.risk.presets import create_default_account_state
from confluence_engine.types import AccountState, IndicatorSnapshot, MarkovPrior


class TimeframeInput(BaseModel):
    """Indicator values and Markov prior for one timeframe."""

    model_config = ConfigDict(extra="forbid")

    label: str | None = None
    indicators: dict[str, float | None]
    prior: float | None = None
    markov_state: str | None = None

    def snapshot(self) -> IndicatorSnapshot:
        return snapshot_from_row(self.indicators)

    def markov(self) -> MarkovPrior:
        return MarkovPrior(prior_score=self.prior, current_state=self.markov_state)


class OpenPositionInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    risk_at_open_pct: float


class AccountInput(BaseModel):
    """Account snapshot; missing values fall back to the default account."""

    model_config = ConfigDict(extra="forbid")

    equity: float | None = None
    equity_peak: float | None = None
    today_realized_pnl_pct: float | None = None
    open_positions: list[OpenPositionInput] = Field(default_factory=list)

    def to_state(self) -> AccountState:
        return create_default_account_state(self.model_dump())


class EvaluationRequest(BaseModel):
    """One point-in-time evaluation of a symbol across timeframes."""

    model_config = ConfigDict(extra="forbid")

    symbol: str = Field(pattern=r"^[A-Z0-9]+$")
    timeframes: dict[str, TimeframeInput] = Field(min_length=1)
    account: AccountInput = Field(default_factory=AccountInput)
    risk_overrides: dict[str, Any] = Field(default_factory=dict)
    strength_hint: Literal["weak", "standard", "strong"] | None = None

    @classmethod
    def parse_text(cls, text: str) -> "EvaluationRequest":
        """Parse a JSON document. Invalid input raises ``ValidationError``."""
        return cls.model_validate_json(text)

    @classmethod
    def from_file(cls, path: Path) -> "EvaluationRequest":
        return cls.parse_text(path.read_text(encoding="utf-8"))
