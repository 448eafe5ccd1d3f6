"""Source registry, per-source polling, and the dedup/persist stage."""
from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping

import structlog
from prometheus_client import CollectorRegistry

from odds_insight import events
from odds_insight.config import Settings, settings as default_settings
from odds_insight.connectors.base import OddsSource, RawTick, normalize_tick
from odds_insight.connectors.factory import build_source
from odds_insight.connectors.sample import SampleDataGenerator
from odds_insight.errors import SourceNotFoundError
from odds_insight.events import EventPublisher, NullPublisher, safe_publish
from odds_insight.metrics import IngestionMetrics
from odds_insight.odds import OddsFormat, numeric_value, to_decimal
from odds_insight.repo.base import MovementStore
from odds_insight.schemas import (
    DataSourceDescriptor,
    IngestionResult,
    MovementRecord,
    OddsUpdate,
    PriceBaseline,
)

log = structlog.get_logger(__name__)

MANUAL_SOURCE_ID = "manual"

_KEY_FIELDS = (("event_id", "eventId"), ("market_id", "marketId"), ("selection_id", "selectionId"))


@dataclass
class PollingHandle:
    """Cancellable periodic task for one source."""

    source_id: str
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task[None] | None = None
    polls: int = 0

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def stop(self) -> None:
        self.stop_event.set()

    async def wait(self) -> None:
        if self.task is not None:
            await self.task


def _reaches(delta: float, epsilon: float) -> bool:
    return delta >= epsilon or math.isclose(delta, epsilon, rel_tol=1e-9)


def _describe(raw: RawTick | OddsUpdate) -> str:
    if isinstance(raw, OddsUpdate):
        return str(raw.key)
    if not isinstance(raw, Mapping):
        return repr(raw)
    return "/".join(str(raw.get(a) or raw.get(b)) for a, b in _KEY_FIELDS)


class IngestionPipeline:
    """Polls registered sources and turns their ticks into movement records.

    Each pipeline owns its registry, polling handles and metrics, so several
    independent instances can share one store (per-key locks live on the store).
    Polling methods must be called from inside a running event loop.
    """

    def __init__(
        self,
        store: MovementStore,
        publisher: EventPublisher | None = None,
        cfg: Settings | None = None,
        registry: CollectorRegistry | None = None,
        sample_seed: int | None = None,
    ):
        self.store = store
        self.publisher = publisher or NullPublisher()
        self.cfg = cfg or default_settings
        self.metrics = IngestionMetrics(registry)
        self._descriptors: dict[str, DataSourceDescriptor] = {}
        self._sources: dict[str, OddsSource] = {}
        self._handles: dict[str, PollingHandle] = {}
        self._retired: dict[str, PollingHandle] = {}
        self._running = False
        self._sample = SampleDataGenerator(sample_seed)

    # -- registry ---------------------------------------------------------

    async def register_source(self, descriptor: DataSourceDescriptor, source: OddsSource | None = None) -> OddsSource:
        """Register (or replace) a source; starts polling right away if it is active.

        A replaced source is stopped, allowed to finish its in-flight poll and closed
        before the new one starts.
        """
        if descriptor.source_id in self._descriptors:
            await self._retire(descriptor.source_id)
        source = source or build_source(descriptor, self.cfg)
        self._descriptors[descriptor.source_id] = descriptor
        self._sources[descriptor.source_id] = source

        safe_publish(
            self.publisher,
            events.SOURCE_REGISTERED,
            {"source_id": descriptor.source_id, "kind": descriptor.kind.value, "active": descriptor.active},
        )
        log.info("source_registered", source_id=descriptor.source_id, kind=descriptor.kind.value, active=descriptor.active)

        if descriptor.active:
            self.start_polling(descriptor.source_id)
        return source

    async def unregister_source(self, source_id: str) -> None:
        self._require(source_id)
        await self._retire(source_id)
        self._descriptors.pop(source_id)
        safe_publish(self.publisher, events.SOURCE_UNREGISTERED, {"source_id": source_id})

    async def _retire(self, source_id: str) -> None:
        # stop, let an in-flight poll finish, then release the source
        self.stop_polling(source_id)
        handle = self._retired.pop(source_id, None)
        if handle is not None:
            await handle.wait()
        source = self._sources.pop(source_id, None)
        if source is not None:
            await source.close()

    def get_source(self, source_id: str) -> OddsSource:
        self._require(source_id)
        return self._sources[source_id]

    def descriptors(self) -> list[DataSourceDescriptor]:
        return list(self._descriptors.values())

    def _require(self, source_id: str) -> DataSourceDescriptor:
        try:
            return self._descriptors[source_id]
        except KeyError:
            raise SourceNotFoundError(source_id) from None

    # -- polling ----------------------------------------------------------

    def start_polling(self, source_id: str) -> PollingHandle:
        descriptor = self._require(source_id)
        handle = self._handles.get(source_id)
        if handle is not None and not handle.stopped:
            return handle

        interval_ms = descriptor.poll_interval_ms or self.cfg.default_poll_interval_ms
        handle = PollingHandle(source_id=source_id)
        prior = self._retired.pop(source_id, None)
        handle.task = asyncio.get_running_loop().create_task(
            self._poll_loop(handle, interval_ms / 1000, prior),
            name=f"odds-poll:{source_id}",
        )
        self._handles[source_id] = handle
        descriptor.active = True

        safe_publish(self.publisher, events.POLLING_STARTED, {"source_id": source_id})
        log.info("polling_started", source_id=source_id, interval_ms=interval_ms)
        return handle

    def stop_polling(self, source_id: str) -> None:
        """Stop a source's polling. No new poll begins once this returns; one already in flight may finish."""
        descriptor = self._require(source_id)
        descriptor.active = False
        handle = self._handles.pop(source_id, None)
        if handle is None:
            return
        handle.stop()
        self._retired[source_id] = handle
        safe_publish(self.publisher, events.POLLING_STOPPED, {"source_id": source_id, "polls": handle.polls})
        log.info("polling_stopped", source_id=source_id, polls=handle.polls)

    def start_all(self) -> None:
        self._running = True
        for source_id in list(self._descriptors):
            self.start_polling(source_id)
        safe_publish(self.publisher, events.INGESTION_STARTED, {"sources": len(self._descriptors)})

    def stop_all(self) -> None:
        self._running = False
        for source_id in list(self._descriptors):
            self.stop_polling(source_id)
        safe_publish(self.publisher, events.INGESTION_STOPPED, {})

    async def aclose(self) -> None:
        self.stop_all()
        handles = list(self._retired.values())
        self._retired.clear()
        await asyncio.gather(*(h.wait() for h in handles), return_exceptions=True)
        for source in self._sources.values():
            await source.close()
        self._sources.clear()
        self._descriptors.clear()

    def status(self) -> dict[str, Any]:
        return {
            "is_running": self._running,
            "active_sources": sorted(sid for sid, h in self._handles.items() if not h.stopped),
            "total_sources": len(self._descriptors),
        }

    async def _poll_loop(self, handle: PollingHandle, interval_seconds: float, prior: PollingHandle | None = None) -> None:
        # a restarted source waits for its previous loop so polls never overlap
        if prior is not None:
            await prior.wait()
        while not handle.stopped:
            handle.polls += 1
            await self.poll_once(handle.source_id)
            try:
                await asyncio.wait_for(handle.stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def poll_once(self, source_id: str) -> IngestionResult | None:
        """Poll one source and ingest what it returns. Failures are contained here.

        The fetch and the store writes together are bounded by ``poll_timeout_seconds``;
        movements written before a timeout stay committed.
        """
        source = self._sources.get(source_id)
        if source is None:
            return None
        try:
            return await asyncio.wait_for(
                self._poll_and_ingest(source_id, source), timeout=self.cfg.poll_timeout_seconds
            )
        except asyncio.TimeoutError:
            self._poll_failed(source_id, f"poll timed out after {self.cfg.poll_timeout_seconds}s")
        except Exception as e:
            self._poll_failed(source_id, str(e))
        return None

    async def _poll_and_ingest(self, source_id: str, source: OddsSource) -> IngestionResult | None:
        ticks = await source.poll()
        if not ticks:
            return None
        result = await self.process_updates(ticks, source_id)
        safe_publish(
            self.publisher,
            events.DATA_PROCESSED,
            {"source_id": source_id, "updates_count": len(ticks), "movements_created": result.movements_created},
        )
        return result

    def _poll_failed(self, source_id: str, error: str) -> None:
        self.metrics.poll_failures.labels(source_id).inc()
        log.error("source_poll_failed", source_id=source_id, error=error)
        safe_publish(self.publisher, events.POLL_FAILED, {"source_id": source_id, "error": error})

    # -- dedup + persist --------------------------------------------------

    async def process_updates(self, updates: Iterable[RawTick | OddsUpdate], source_id: str) -> IngestionResult:
        """Dedup and persist a batch.

        Items are handled in order. A bad item is reported in ``errors`` and does not
        stop the rest of the batch from being committed.
        """
        started = time.perf_counter()
        items = list(updates)
        errors: list[str] = []
        created = 0
        self.metrics.updates_received.labels(source_id).inc(len(items))

        for idx, raw in enumerate(items):
            try:
                update = normalize_tick(raw, source_id)
                if await self._apply(update, source_id) is not None:
                    created += 1
            except Exception as e:
                errors.append(f"Failed to process update {idx} for {_describe(raw)}: {e}")
                self.metrics.item_errors.labels(source_id).inc()
                log.warning("odds_update_rejected", source_id=source_id, index=idx, error=str(e))

        elapsed = time.perf_counter() - started
        self.metrics.batch_seconds.labels(source_id).observe(elapsed)
        result = IngestionResult(
            success=not errors,
            movements_created=created,
            errors=errors,
            processing_time_ms=elapsed * 1000,
            source_id=source_id,
            updates_received=len(items),
        )
        safe_publish(
            self.publisher,
            events.UPDATES_PROCESSED,
            {
                "source_id": source_id,
                "movements_created": created,
                "errors_count": len(errors),
                "processing_time_ms": result.processing_time_ms,
            },
        )
        log.info("odds_updates_processed", source_id=source_id, n=len(items), created=created, errors=len(errors))
        return result

    async def ingest_manual(self, updates: Iterable[RawTick | OddsUpdate]) -> IngestionResult:
        """Backfill or operator-entered batch, bypassing polling."""
        return await self.process_updates(updates, MANUAL_SOURCE_ID)

    async def _apply(self, update: OddsUpdate, source_id: str) -> MovementRecord | None:
        key = update.key
        async with self.store.key_lock(key):
            latest = await self.store.latest(key)
            if latest is not None:
                ref_value, ref_format = latest.current_value, latest.odds_format
            else:
                baseline = await self.store.get_baseline(key)
                if baseline is None:
                    await self.store.set_baseline(
                        PriceBaseline(
                            event_id=update.event_id,
                            market_id=update.market_id,
                            selection_id=update.selection_id,
                            odds_format=update.odds_format,
                            value=update.value,
                            observed_at=update.observed_at,
                        )
                    )
                    log.debug("price_baseline_set", key=str(key), value=update.value)
                    return None
                ref_value, ref_format = baseline.value, baseline.odds_format

            fmt = update.odds_format
            previous: float | str
            current: float | str
            if ref_format is fmt:
                previous, current = ref_value, update.value
                delta = abs(numeric_value(previous, fmt) - numeric_value(current, fmt))
            else:
                # mixed notations are compared and stored as decimal equivalents
                previous, current = to_decimal(ref_value, ref_format), to_decimal(update.value, fmt)
                fmt = OddsFormat.DECIMAL
                delta = abs(previous - current)

            if not _reaches(delta, self.cfg.dedup_epsilon):
                return None

            record = MovementRecord(
                event_id=update.event_id,
                market_id=update.market_id,
                selection_id=update.selection_id,
                odds_format=fmt,
                previous_value=previous,
                current_value=current,
                observed_at=update.observed_at,
                source=update.source,
                metadata=update.metadata,
            )
            await self.store.insert(record)

        self.metrics.movements_created.labels(source_id).inc()
        safe_publish(
            self.publisher,
            events.MOVEMENT_RECORDED,
            {
                "movement_id": record.id,
                "event_id": record.event_id,
                "market_id": record.market_id,
                "selection_id": record.selection_id,
                "previous_odds": record.previous_value,
                "current_odds": record.current_value,
                "movement_percentage": record.movement_percentage,
            },
        )
        return record

    # -- synthetic data ---------------------------------------------------

    def generate_sample_updates(
        self,
        event_count: int = 5,
        days_back: int = 7,
        now: datetime | None = None,
    ) -> list[OddsUpdate]:
        return self._sample.generate_updates(event_count=event_count, days_back=days_back, now=now)
