"""Domain event names and publishers.

Delivery is best-effort and at-most-once: a publisher that raises is logged and
ignored so analysis and ingestion never fail because of the event sink.
"""
from __future__ import annotations

from typing import Any, Protocol

import structlog

log = structlog.get_logger(__name__)

SOURCE_REGISTERED = "OddsDataSourceRegistered"
SOURCE_UNREGISTERED = "OddsDataSourceUnregistered"
POLLING_STARTED = "OddsDataSourcePollingStarted"
POLLING_STOPPED = "OddsDataSourcePollingStopped"
POLL_FAILED = "OddsDataSourcePollFailed"
DATA_PROCESSED = "OddsDataProcessed"
MOVEMENT_RECORDED = "OddsMovementRecorded"
UPDATES_PROCESSED = "OddsUpdatesProcessed"
INGESTION_STARTED = "OddsIngestionStarted"
INGESTION_STOPPED = "OddsIngestionStopped"
TIMING_ANALYZED = "BetTimingAnalyzed"
MARKET_IMPACT_ANALYZED = "MarketImpactAnalyzed"
REPORT_GENERATED = "OddsMovementReportGenerated"


class EventPublisher(Protocol):
    def publish(self, name: str, payload: dict[str, Any]) -> None: ...


class NullPublisher:
    def publish(self, name: str, payload: dict[str, Any]) -> None:
        return None


class LoggingPublisher:
    """Writes every event to the structured log."""

    def publish(self, name: str, payload: dict[str, Any]) -> None:
        log.info("domain_event", event_name=name, **payload)


class InMemoryPublisher:
    """Keeps published events in order; handy for tests and local inspection."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def publish(self, name: str, payload: dict[str, Any]) -> None:
        self.events.append((name, payload))

    def named(self, name: str) -> list[dict[str, Any]]:
        return [p for n, p in self.events if n == name]


def safe_publish(publisher: EventPublisher, name: str, payload: dict[str, Any]) -> None:
    try:
        publisher.publish(name, payload)
    except Exception as e:
        log.warning("event_publish_failed", event_name=name, error=str(e))
