from __future__ import annotations

from dataclasses import dataclass

import structlog

from odds_insight.analysis.impact import MarketImpactAnalyzer
from odds_insight.analysis.report import ReportBuilder
from odds_insight.analysis.timing import BetTimingAnalyzer
from odds_insight.collaborators import EventMetadataLookup, InMemoryEventCalendar, InMemoryWagerSource, WagerSource
from odds_insight.config import Settings, settings as default_settings
from odds_insight.db import create_engine
from odds_insight.events import EventPublisher, LoggingPublisher
from odds_insight.ingestion import IngestionPipeline
from odds_insight.repo.base import MovementStore
from odds_insight.repo.memory import InMemoryMovementStore
from odds_insight.repo.sql import SqlMovementStore

log = structlog.get_logger(__name__)


@dataclass
class Runtime:
    """Every component of one odds-insight instance, wired together."""

    cfg: Settings
    store: MovementStore
    publisher: EventPublisher
    wagers: WagerSource
    events: EventMetadataLookup
    pipeline: IngestionPipeline
    timing: BetTimingAnalyzer
    impact: MarketImpactAnalyzer
    reports: ReportBuilder

    async def aclose(self) -> None:
        await self.pipeline.aclose()
        await self.store.close()


async def build_runtime(
    cfg: Settings | None = None,
    *,
    store: MovementStore | None = None,
    publisher: EventPublisher | None = None,
    wagers: WagerSource | None = None,
    event_metadata: EventMetadataLookup | None = None,
    create_schema: bool = False,
) -> Runtime:
    cfg = cfg or default_settings
    if store is None:
        if cfg.store_backend == "sql":
            store = SqlMovementStore(create_engine(cfg))
            if create_schema:
                await store.create_schema()
        else:
            store = InMemoryMovementStore()

    publisher = publisher or LoggingPublisher()
    wagers = wagers or InMemoryWagerSource()
    event_metadata = event_metadata or InMemoryEventCalendar()
    # the wager book doubles as the timing cache when it can take writes
    sink = wagers if hasattr(wagers, "record_timing") else None

    impact = MarketImpactAnalyzer(store, wagers, publisher, cfg)
    runtime = Runtime(
        cfg=cfg,
        store=store,
        publisher=publisher,
        wagers=wagers,
        events=event_metadata,
        pipeline=IngestionPipeline(store, publisher, cfg),
        timing=BetTimingAnalyzer(store, event_metadata, publisher, cfg, sink=sink),
        impact=impact,
        reports=ReportBuilder(store, wagers, impact, publisher, cfg),
    )
    log.info("runtime_built", store=type(store).__name__)
    return runtime
