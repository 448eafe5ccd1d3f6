"""Period roll-up of movements and bet timing, with advisory recommendations."""
from __future__ import annotations

import asyncio
from collections import Counter, defaultdict
from datetime import datetime
from typing import Sequence

import numpy as np
import structlog

from odds_insight import events
from odds_insight.analysis.impact import MarketImpactAnalyzer, validate_period
from odds_insight.collaborators import WagerSource
from odds_insight.config import Settings, settings as default_settings
from odds_insight.events import EventPublisher, NullPublisher, safe_publish
from odds_insight.odds import Magnitude, MovementKind
from odds_insight.repo.base import MovementStore
from odds_insight.schemas import (
    MovementRecord,
    MovementReport,
    Period,
    ReportSummary,
    TimingCategory,
    TimingRecord,
    TimingSummary,
)

log = structlog.get_logger(__name__)

TIMING_WEIGHTS: dict[TimingCategory, int] = {
    TimingCategory.EARLY: 4,
    TimingCategory.MID: 3,
    TimingCategory.LATE: 2,
    TimingCategory.PEAK: 1,
}

DEFAULT_RECOMMENDATIONS = (
    "Monitor odds movement patterns for emerging opportunities",
    "Consider customer education on optimal betting timing",
)


def summarize_timing(records: Sequence[TimingRecord]) -> TimingSummary:
    counts = Counter(r.timing_category for r in records)
    weights = [counts.get(c, 0) for c in TIMING_WEIGHTS]
    average = float(np.average(list(TIMING_WEIGHTS.values()), weights=weights)) if sum(weights) else 0.0
    return TimingSummary(
        early_bets=counts.get(TimingCategory.EARLY, 0),
        mid_bets=counts.get(TimingCategory.MID, 0),
        late_bets=counts.get(TimingCategory.LATE, 0),
        peak_bets=counts.get(TimingCategory.PEAK, 0),
        average_timing_score=average,
    )


def build_recommendations(
    total_movements: int,
    significant_movements: int,
    timing: TimingSummary,
    opportunity_cost: float,
    cfg: Settings,
) -> list[str]:
    recommendations: list[str] = []

    if total_movements and significant_movements / total_movements > cfg.volatility_alert_ratio:
        recommendations.append("High odds volatility detected - consider implementing odds stabilization measures")

    if timing.total_bets and timing.early_bets / timing.total_bets < cfg.early_bet_alert_ratio:
        recommendations.append("Low early betting participation - implement early betting incentives")

    if timing.peak_bets > timing.early_bets * 2:
        recommendations.append("Peak betting overload - optimize peak period capacity and odds adjustments")

    if opportunity_cost > cfg.opportunity_cost_alert:
        recommendations.append(
            f"Significant revenue opportunity identified (${opportunity_cost:,.2f}) - "
            "implement timing-based pricing strategies"
        )

    return recommendations or list(DEFAULT_RECOMMENDATIONS)


def _count_by_kind(movements: Sequence[MovementRecord]) -> dict[MovementKind, int]:
    counts = {kind: 0 for kind in MovementKind}
    for m in movements:
        counts[m.movement_kind] += 1
    return counts


def _count_by_magnitude(movements: Sequence[MovementRecord]) -> dict[Magnitude, int]:
    counts = {magnitude: 0 for magnitude in Magnitude}
    for m in movements:
        counts[m.magnitude()] += 1
    return counts


class ReportBuilder:
    def __init__(
        self,
        store: MovementStore,
        wagers: WagerSource,
        impact_analyzer: MarketImpactAnalyzer,
        publisher: EventPublisher | None = None,
        cfg: Settings | None = None,
    ):
        self.store = store
        self.wagers = wagers
        self.impact_analyzer = impact_analyzer
        self.publisher = publisher or NullPublisher()
        self.cfg = cfg or default_settings

    async def build(self, start: datetime, end: datetime, top_n: int | None = None) -> MovementReport:
        start, end = validate_period(start, end)
        threshold = self.cfg.significance_threshold_pct

        movements = await self.store.query(start=start, end=end)
        records = await self.wagers.timing_records_for_period(start, end)
        significant = [m for m in movements if m.is_significant(threshold)]

        timing = summarize_timing(records)
        avg_bet = sum(r.amount for r in records) / len(records) if records else self.cfg.default_avg_bet_amount
        revenue_impact = len(significant) * avg_bet * self.cfg.revenue_impact_rate

        markets = sorted({(m.event_id, m.market_id) for m in movements} | {(r.event_id, r.market_id) for r in records})
        impacts = await asyncio.gather(*(self.impact_analyzer.analyze(e, mk, start, end) for e, mk in markets))
        opportunity_cost = sum(i.financial_impact.opportunity_cost for i in impacts)

        volume_by_market: dict[tuple[str, str], float] = defaultdict(float)
        for r in records:
            volume_by_market[(r.event_id, r.market_id)] += r.amount
        top_markets = [
            a.model_copy(update={"bet_volume": volume_by_market.get((a.event_id, a.market_id), 0.0)})
            for a in await self.store.aggregate_by_market(start, end, limit=top_n or self.cfg.report_top_n, significance_pct=threshold)
        ]

        report = MovementReport(
            period=Period(start=start, end=end),
            summary=ReportSummary(
                total_movements=len(movements),
                significant_movements=len(significant),
                affected_bets=sum(1 for r in records if r.potential_savings > 0),
                potential_revenue_impact=revenue_impact,
                opportunity_cost=opportunity_cost,
            ),
            movements_by_kind=_count_by_kind(movements),
            movements_by_magnitude=_count_by_magnitude(movements),
            top_markets=top_markets,
            timing=timing,
            recommendations=build_recommendations(len(movements), len(significant), timing, opportunity_cost, self.cfg),
        )

        safe_publish(
            self.publisher,
            events.REPORT_GENERATED,
            {
                "period_start": start.isoformat(),
                "period_end": end.isoformat(),
                "total_movements": report.summary.total_movements,
                "potential_revenue_impact": report.summary.potential_revenue_impact,
                "opportunity_cost": opportunity_cost,
            },
        )
        log.info("movement_report_generated", total_movements=len(movements), markets=len(markets))
        return report
