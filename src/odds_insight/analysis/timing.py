"""Score how well a wager was timed against the price history visible before it."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Sequence

import structlog

from odds_insight import events
from odds_insight.collaborators import EventMetadataLookup, TimingSink
from odds_insight.config import Settings, settings as default_settings
from odds_insight.errors import AnalysisError
from odds_insight.events import EventPublisher, NullPublisher, safe_publish
from odds_insight.repo.base import MovementStore
from odds_insight.schemas import (
    BetTimingAssessment,
    MovementRecord,
    OddsPosition,
    RiskLevel,
    TimingCategory,
    Wager,
    ensure_utc,
)

log = structlog.get_logger(__name__)

EARLY_HOURS = 24.0
MID_HOURS = 2.0
BUSY_MARKET_MOVEMENTS = 5


def categorize_timing(placed_at: datetime, event_start: datetime | None) -> tuple[TimingCategory, float | None]:
    """Bucket a bet by hours before the scheduled start.

    Boundaries are exclusive on the upper side: exactly 24h is ``mid``, exactly 2h
    is ``late``, and a bet at or after the start is ``peak``. Without a start time
    the bet counts as ``mid``.
    """
    if event_start is None:
        return TimingCategory.MID, None
    hours = (event_start - placed_at).total_seconds() / 3600
    if hours > EARLY_HOURS:
        return TimingCategory.EARLY, hours
    if hours > MID_HOURS:
        return TimingCategory.MID, hours
    if hours > 0:
        return TimingCategory.LATE, hours
    return TimingCategory.PEAK, hours


def assess_odds_position(
    accepted_decimal: float,
    movements: Sequence[MovementRecord],
    tolerance: float = 0.1,
) -> OddsPosition:
    """Compare accepted odds to the newest observed price (``movements`` newest first)."""
    if not movements:
        return OddsPosition.NEUTRAL
    difference = movements[0].current_decimal - accepted_decimal
    if abs(difference) < tolerance:
        return OddsPosition.NEUTRAL
    return OddsPosition.FAVORABLE if difference > 0 else OddsPosition.UNFAVORABLE


def potential_savings(
    amount: float,
    accepted_decimal: float,
    movements: Sequence[MovementRecord],
) -> tuple[float, float | None]:
    """Profit forgone by not taking the best observed price; returns (savings, best)."""
    if not movements:
        return 0.0, None
    best = max(m.current_decimal for m in movements)
    if best <= accepted_decimal:
        return 0.0, best
    return amount * (best - 1) - amount * (accepted_decimal - 1), best


def assess_risk(category: TimingCategory, position: OddsPosition, movement_count: int) -> tuple[int, RiskLevel]:
    score = 0
    if category is TimingCategory.PEAK:
        score += 2
    if position is OddsPosition.UNFAVORABLE:
        score += 2
    if movement_count > BUSY_MARKET_MOVEMENTS:
        score += 1

    if score >= 4:
        return score, RiskLevel.HIGH
    if score >= 2:
        return score, RiskLevel.MEDIUM
    return score, RiskLevel.LOW


class BetTimingAnalyzer:
    def __init__(
        self,
        store: MovementStore,
        event_metadata: EventMetadataLookup,
        publisher: EventPublisher | None = None,
        cfg: Settings | None = None,
        sink: TimingSink | None = None,
    ):
        self.store = store
        self.event_metadata = event_metadata
        self.publisher = publisher or NullPublisher()
        self.cfg = cfg or default_settings
        self.sink = sink

    async def _event_start(self, event_id: str) -> datetime | None:
        try:
            start = await self.event_metadata.get_event_start_time(event_id)
        except Exception as e:
            log.warning("event_metadata_lookup_failed", event_id=event_id, error=str(e))
            return None
        if start is None:
            log.warning("event_metadata_missing", event_id=event_id)
            return None
        return ensure_utc(start)

    async def analyze(self, bet: Wager | Mapping[str, Any]) -> BetTimingAssessment:
        if not isinstance(bet, Wager):
            bet = Wager.model_validate(bet)

        try:
            movements = await self.store.query(
                event_id=bet.event_id,
                market_id=bet.market_id,
                selection_id=bet.selection_id,
                before=bet.placed_at,
                newest_first=True,
            )
        except Exception as e:
            raise AnalysisError(f"Bet timing analysis failed for {bet.bet_id}: {e}", "TIMING_ANALYSIS_FAILED") from e

        event_start = await self._event_start(bet.event_id)
        category, hours = categorize_timing(bet.placed_at, event_start)

        accepted = bet.accepted_decimal
        position = assess_odds_position(accepted, movements, self.cfg.neutral_odds_tolerance)
        savings, best = potential_savings(bet.amount, accepted, movements)
        score, level = assess_risk(category, position, len(movements))

        assessment = BetTimingAssessment(
            bet_id=bet.bet_id,
            customer_id=bet.customer_id,
            event_id=bet.event_id,
            market_id=bet.market_id,
            selection_id=bet.selection_id,
            amount=bet.amount,
            accepted_odds=bet.accepted_odds,
            accepted_decimal_odds=accepted,
            placed_at=bet.placed_at,
            hours_before_start=hours,
            timing_category=category,
            odds_position=position,
            best_available_odds=best,
            potential_savings=savings,
            risk_score=score,
            risk_level=level,
            movements=movements,
        )

        if self.sink is not None:
            try:
                await self.sink.record_timing(assessment)
            except Exception as e:
                log.warning("timing_sink_failed", bet_id=bet.bet_id, error=str(e))

        safe_publish(
            self.publisher,
            events.TIMING_ANALYZED,
            {
                "bet_id": bet.bet_id,
                "event_id": bet.event_id,
                "market_id": bet.market_id,
                "timing_category": category.value,
                "odds_position": position.value,
                "potential_savings": savings,
                "risk_assessment": level.value,
            },
        )
        log.debug("bet_timing_analyzed", bet_id=bet.bet_id, category=category.value, position=position.value)
        return assessment
