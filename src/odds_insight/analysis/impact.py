"""Financial impact and efficiency of one market over a window."""
from __future__ import annotations

from datetime import datetime
from typing import Sequence

import structlog

from odds_insight import events
from odds_insight.collaborators import WagerSource
from odds_insight.config import Settings, settings as default_settings
from odds_insight.errors import AnalysisError, OddsValidationError
from odds_insight.events import EventPublisher, NullPublisher, safe_publish
from odds_insight.repo.base import MovementStore
from odds_insight.schemas import (
    BetVolume,
    EfficiencyFactors,
    FinancialImpact,
    MarketEfficiency,
    MarketImpactAssessment,
    OddsPosition,
    Period,
    TimingBucket,
    TimingCategory,
    TimingRecord,
    ensure_utc,
)

log = structlog.get_logger(__name__)


def validate_period(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    start, end = ensure_utc(start), ensure_utc(end)
    if start > end:
        raise OddsValidationError(f"period start {start.isoformat()} is after end {end.isoformat()}")
    return start, end


def summarize_bet_volume(records: Sequence[TimingRecord]) -> BetVolume:
    buckets: dict[TimingCategory, TimingBucket] = {}
    for category in TimingCategory:
        rows = [r for r in records if r.timing_category is category]
        buckets[category] = TimingBucket(
            count=len(rows),
            amount=sum(r.amount for r in rows),
            avg_savings=sum(r.potential_savings for r in rows) / len(rows) if rows else 0.0,
        )
    total_amount = sum(r.amount for r in records)
    return BetVolume(
        total_bets=len(records),
        total_amount=total_amount,
        avg_bet_amount=total_amount / len(records) if records else 0.0,
        by_timing_category=buckets,
    )


def financial_impact(volume: BetVolume, unfavorable_bets: int, cfg: Settings) -> FinancialImpact:
    """Revenue figures around a fixed improvement assumption.

    ``opportunity_cost`` is an estimate: every unfavorably timed bet is assumed to
    have left ``cfg.opportunity_cost_rate`` of an average stake on the table.
    """
    avg_bet = volume.avg_bet_amount or cfg.default_avg_bet_amount
    opportunity_cost = unfavorable_bets * avg_bet * cfg.opportunity_cost_rate
    actual = volume.total_amount
    return FinancialImpact(
        actual_revenue=actual,
        potential_revenue=actual + opportunity_cost,
        opportunity_cost=opportunity_cost,
        risk_adjusted_revenue=actual * cfg.risk_adjustment_factor,
    )


def efficiency_score(
    total_movements: int,
    significant_movements: int,
    early_amount: float,
    total_amount: float,
) -> MarketEfficiency:
    early_ratio = early_amount / total_amount if total_amount > 0 else 0.0
    significant_ratio = significant_movements / total_movements if total_movements > 0 else 0.0

    score = 100.0
    if total_movements > 50:
        score -= 20
    elif total_movements > 20:
        score -= 10
    if early_ratio < 0.3:
        score -= 15
    # no movements means no evidence of stability either
    if total_movements > 0 and significant_ratio < 0.2:
        score += 10

    return MarketEfficiency(
        score=max(0.0, min(100.0, score)),
        factors=EfficiencyFactors(
            movement_frequency=total_movements,
            significant_movements=significant_movements,
            significant_ratio=significant_ratio,
            early_volume_ratio=early_ratio,
        ),
    )


class MarketImpactAnalyzer:
    def __init__(
        self,
        store: MovementStore,
        wagers: WagerSource,
        publisher: EventPublisher | None = None,
        cfg: Settings | None = None,
    ):
        self.store = store
        self.wagers = wagers
        self.publisher = publisher or NullPublisher()
        self.cfg = cfg or default_settings

    async def analyze(self, event_id: str, market_id: str, start: datetime, end: datetime) -> MarketImpactAssessment:
        start, end = validate_period(start, end)
        try:
            movements = await self.store.query(event_id=event_id, market_id=market_id, start=start, end=end)
            records = await self.wagers.timing_records_for_period(start, end, event_id=event_id, market_id=market_id)
        except Exception as e:
            raise AnalysisError(
                f"Market impact analysis failed for {event_id}/{market_id}: {e}", "MARKET_IMPACT_ANALYSIS_FAILED"
            ) from e

        volume = summarize_bet_volume(records)
        unfavorable = sum(1 for r in records if r.odds_position is OddsPosition.UNFAVORABLE)
        impact = financial_impact(volume, unfavorable, self.cfg)
        significant = sum(1 for m in movements if m.is_significant(self.cfg.significance_threshold_pct))
        efficiency = efficiency_score(
            len(movements),
            significant,
            volume.by_timing_category[TimingCategory.EARLY].amount,
            volume.total_amount,
        )

        assessment = MarketImpactAssessment(
            event_id=event_id,
            market_id=market_id,
            period=Period(start=start, end=end),
            movements=movements,
            bet_volume=volume,
            unfavorable_bets=unfavorable,
            financial_impact=impact,
            efficiency=efficiency,
        )
        safe_publish(
            self.publisher,
            events.MARKET_IMPACT_ANALYZED,
            {
                "event_id": event_id,
                "market_id": market_id,
                "total_movements": len(movements),
                "total_bet_volume": volume.total_amount,
                "potential_revenue": impact.potential_revenue,
                "opportunity_cost": impact.opportunity_cost,
                "market_efficiency_score": efficiency.score,
            },
        )
        log.info("market_impact_analyzed", event_id=event_id, market_id=market_id, score=efficiency.score)
        return assessment
