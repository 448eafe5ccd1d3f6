from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, NamedTuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from odds_insight.errors import PartialBatchError
from odds_insight.odds import (
    DEFAULT_SIGNIFICANCE_PCT,
    Magnitude,
    MovementKind,
    OddsFormat,
    classify,
    is_significant,
    magnitude_of,
    numeric_value,
    to_decimal,
)


def ensure_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MarketKey(NamedTuple):
    event_id: str
    market_id: str
    selection_id: str

    def __str__(self) -> str:
        return f"{self.event_id}/{self.market_id}/{self.selection_id}"


def _coerce_raw(value: Any, fmt: OddsFormat) -> float | str:
    # validates as a side effect; fractional odds keep their "num/den" form
    numeric = numeric_value(value, fmt)
    if fmt is OddsFormat.FRACTIONAL:
        return str(value).strip()
    return numeric


class SourceKind(str, Enum):
    API = "api"
    FEED = "feed"
    MANUAL = "manual"


class TimingCategory(str, Enum):
    EARLY = "early"
    MID = "mid"
    LATE = "late"
    PEAK = "peak"


class OddsPosition(str, Enum):
    FAVORABLE = "favorable"
    UNFAVORABLE = "unfavorable"
    NEUTRAL = "neutral"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class OddsUpdate(BaseModel):
    """One normalized price observation for a market selection."""

    event_id: str
    market_id: str
    selection_id: str
    value: float | str
    odds_format: OddsFormat = OddsFormat.DECIMAL
    observed_at: datetime = Field(default_factory=utcnow)
    source: str = "manual"
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("observed_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def _check_odds(self) -> OddsUpdate:
        self.value = _coerce_raw(self.value, self.odds_format)
        return self

    @property
    def key(self) -> MarketKey:
        return MarketKey(self.event_id, self.market_id, self.selection_id)


class MovementRecord(BaseModel):
    """An immutable price change for one (event, market, selection).

    ``movement_kind`` and ``movement_percentage`` are always derived from the values
    and format at construction; anything passed for them is ignored.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    event_id: str
    market_id: str
    selection_id: str
    odds_format: OddsFormat = OddsFormat.DECIMAL
    previous_value: float | str
    current_value: float | str
    movement_kind: MovementKind = MovementKind.UNCHANGED
    movement_percentage: float = 0.0
    observed_at: datetime
    source: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _derive(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        fmt = OddsFormat(data.get("odds_format", OddsFormat.DECIMAL))
        data["previous_value"] = _coerce_raw(data.get("previous_value"), fmt)
        data["current_value"] = _coerce_raw(data.get("current_value"), fmt)
        kind, pct = classify(data["previous_value"], data["current_value"], fmt)
        data["odds_format"] = fmt
        data["movement_kind"] = kind
        data["movement_percentage"] = pct
        return data

    @field_validator("observed_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def key(self) -> MarketKey:
        return MarketKey(self.event_id, self.market_id, self.selection_id)

    @property
    def previous_decimal(self) -> float:
        return to_decimal(self.previous_value, self.odds_format)

    @property
    def current_decimal(self) -> float:
        return to_decimal(self.current_value, self.odds_format)

    def is_significant(self, threshold_pct: float = DEFAULT_SIGNIFICANCE_PCT) -> bool:
        return is_significant(self.movement_percentage, threshold_pct)

    def magnitude(self) -> Magnitude:
        return magnitude_of(self.movement_percentage)


class PriceBaseline(BaseModel):
    """First observed price for a key that has no movement yet."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    market_id: str
    selection_id: str
    odds_format: OddsFormat
    value: float | str
    observed_at: datetime


class DataSourceDescriptor(BaseModel):
    source_id: str
    kind: SourceKind
    endpoint: str | None = None
    # None falls back to the pipeline's default_poll_interval_ms
    poll_interval_ms: int | None = Field(default=None, gt=0)
    active: bool = True
    headers: dict[str, str] = Field(default_factory=dict)


class IngestionResult(BaseModel):
    success: bool
    movements_created: int
    errors: list[str] = Field(default_factory=list)
    processing_time_ms: float
    source_id: str
    updates_received: int = 0

    def raise_for_errors(self) -> IngestionResult:
        if self.errors:
            raise PartialBatchError(self)
        return self


class Wager(BaseModel):
    """A placed bet, as supplied by the betting subsystem."""

    bet_id: str
    customer_id: str
    event_id: str
    market_id: str
    selection_id: str
    amount: float = Field(..., gt=0)
    accepted_odds: float | str
    odds_format: OddsFormat = OddsFormat.DECIMAL
    placed_at: datetime

    @field_validator("placed_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode="after")
    def _check_odds(self) -> Wager:
        self.accepted_odds = _coerce_raw(self.accepted_odds, self.odds_format)
        return self

    @property
    def key(self) -> MarketKey:
        return MarketKey(self.event_id, self.market_id, self.selection_id)

    @property
    def accepted_decimal(self) -> float:
        return to_decimal(self.accepted_odds, self.odds_format)


class TimingRecord(BaseModel):
    """Flattened per-bet timing row, the shape the wager source keeps."""

    model_config = ConfigDict(frozen=True)

    bet_id: str
    event_id: str
    market_id: str
    selection_id: str
    amount: float
    accepted_odds: float
    placed_at: datetime
    timing_category: TimingCategory
    odds_position: OddsPosition
    potential_savings: float = 0.0
    risk_level: RiskLevel = RiskLevel.LOW


class BetTimingAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    bet_id: str
    customer_id: str
    event_id: str
    market_id: str
    selection_id: str
    amount: float
    accepted_odds: float | str
    accepted_decimal_odds: float
    placed_at: datetime
    hours_before_start: float | None = None
    timing_category: TimingCategory
    odds_position: OddsPosition
    best_available_odds: float | None = None
    potential_savings: float
    risk_score: int
    risk_level: RiskLevel
    movements: list[MovementRecord] = Field(default_factory=list)

    def to_record(self) -> TimingRecord:
        return TimingRecord(
            bet_id=self.bet_id,
            event_id=self.event_id,
            market_id=self.market_id,
            selection_id=self.selection_id,
            amount=self.amount,
            accepted_odds=self.accepted_decimal_odds,
            placed_at=self.placed_at,
            timing_category=self.timing_category,
            odds_position=self.odds_position,
            potential_savings=self.potential_savings,
            risk_level=self.risk_level,
        )


class Period(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime


class TimingBucket(BaseModel):
    count: int = 0
    amount: float = 0.0
    avg_savings: float = 0.0


class BetVolume(BaseModel):
    total_bets: int = 0
    total_amount: float = 0.0
    avg_bet_amount: float = 0.0
    by_timing_category: dict[TimingCategory, TimingBucket] = Field(default_factory=dict)


class FinancialImpact(BaseModel):
    actual_revenue: float
    potential_revenue: float
    opportunity_cost: float
    risk_adjusted_revenue: float


class EfficiencyFactors(BaseModel):
    movement_frequency: int
    significant_movements: int
    significant_ratio: float
    early_volume_ratio: float


class MarketEfficiency(BaseModel):
    score: float = Field(..., ge=0, le=100)
    factors: EfficiencyFactors


class MarketImpactAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str
    market_id: str
    period: Period
    movements: list[MovementRecord] = Field(default_factory=list)
    bet_volume: BetVolume
    unfavorable_bets: int = 0
    financial_impact: FinancialImpact
    efficiency: MarketEfficiency


class MarketActivity(BaseModel):
    event_id: str
    market_id: str
    total_movements: int
    average_movement: float
    max_movement: float
    significant_movements: int
    bet_volume: float = 0.0


class TimingSummary(BaseModel):
    early_bets: int = 0
    mid_bets: int = 0
    late_bets: int = 0
    peak_bets: int = 0
    average_timing_score: float = 0.0

    @property
    def total_bets(self) -> int:
        return self.early_bets + self.mid_bets + self.late_bets + self.peak_bets


class ReportSummary(BaseModel):
    total_movements: int
    significant_movements: int
    affected_bets: int
    potential_revenue_impact: float
    opportunity_cost: float


class MovementReport(BaseModel):
    period: Period
    summary: ReportSummary
    movements_by_kind: dict[MovementKind, int]
    movements_by_magnitude: dict[Magnitude, int]
    top_markets: list[MarketActivity] = Field(default_factory=list)
    timing: TimingSummary
    recommendations: list[str]
    generated_at: datetime = Field(default_factory=utcnow)
