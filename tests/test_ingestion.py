import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import CollectorRegistry

from odds_insight import events
from odds_insight.config import Settings
from odds_insight.connectors.base import OddsSource
from odds_insight.connectors.manual import ManualSource
from odds_insight.errors import PartialBatchError, SourceNotFoundError
from odds_insight.events import InMemoryPublisher
from odds_insight.ingestion import IngestionPipeline
from odds_insight.odds import MovementKind, OddsFormat
from odds_insight.repo.memory import InMemoryMovementStore
from odds_insight.schemas import DataSourceDescriptor, MarketKey, OddsUpdate, SourceKind

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
KEY = MarketKey("ev1", "m1", "s1")


def upd(value, minutes=0, fmt="decimal", key=KEY):
    return OddsUpdate(
        event_id=key.event_id,
        market_id=key.market_id,
        selection_id=key.selection_id,
        value=value,
        odds_format=fmt,
        observed_at=T0 + timedelta(minutes=minutes),
        source="test",
    )


@pytest.fixture
def store():
    return InMemoryMovementStore()


@pytest.fixture
def publisher():
    return InMemoryPublisher()


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def pipeline(store, publisher, registry):
    return IngestionPipeline(store, publisher, Settings(), registry=registry)


@pytest.mark.asyncio
async def test_first_observation_sets_baseline_only(pipeline, store):
    result = await pipeline.process_updates([upd(2.0)], "feed-a")

    assert result.success
    assert result.movements_created == 0
    assert await store.count() == 0
    baseline = await store.get_baseline(KEY)
    assert baseline is not None and baseline.value == 2.0


@pytest.mark.asyncio
async def test_repeated_update_creates_single_record(pipeline, store):
    await pipeline.process_updates([upd(2.0, 0), upd(2.4, 1)], "feed-a")
    result = await pipeline.process_updates([upd(2.4, 2)], "feed-a")

    assert result.movements_created == 0
    assert await store.count() == 1
    latest = await store.latest(KEY)
    assert latest.previous_value == 2.0
    assert latest.current_value == 2.4
    assert latest.movement_kind is MovementKind.INCREASE


@pytest.mark.asyncio
async def test_epsilon_threshold(pipeline, store):
    await pipeline.process_updates([upd(2.0)], "feed-a")

    below = await pipeline.process_updates([upd(2.0005, 1)], "feed-a")
    assert below.movements_created == 0

    at = await pipeline.process_updates([upd(2.001, 2)], "feed-a")
    assert at.movements_created == 1
    assert (await store.latest(KEY)).current_value == 2.001


@pytest.mark.asyncio
async def test_change_then_near_duplicate_with_wider_epsilon(store, publisher, registry):
    pipeline = IngestionPipeline(store, publisher, Settings(dedup_epsilon=0.02), registry=registry)

    result = await pipeline.process_updates([upd(2.0, 0), upd(2.0, 1), upd(2.3, 2), upd(2.29, 3)], "feed-a")

    assert result.success
    assert result.movements_created == 1
    latest = await store.latest(KEY)
    assert latest.current_value == 2.3
    assert latest.movement_percentage == pytest.approx(15.0)


@pytest.mark.asyncio
async def test_bad_items_do_not_block_the_batch(pipeline, store):
    batch = [
        upd(2.0, 0),
        {"event_id": "ev1", "market_id": "m1", "selection_id": "s1", "odds": -1.5},
        {"event_id": "ev1", "market_id": "m1", "odds": 2.2},
        upd(2.6, 3),
    ]
    result = await pipeline.process_updates(batch, "feed-a")

    assert not result.success
    assert result.updates_received == 4
    assert result.movements_created == 1
    assert len(result.errors) == 2
    assert "update 1" in result.errors[0]
    assert await store.count() == 1
    with pytest.raises(PartialBatchError):
        result.raise_for_errors()


@pytest.mark.asyncio
async def test_mixed_formats_are_stored_as_decimal(pipeline, store):
    await pipeline.process_updates([upd(2.0, 0), upd(150, 1, fmt="american")], "feed-a")

    rec = await store.latest(KEY)
    assert rec.odds_format is OddsFormat.DECIMAL
    assert rec.previous_value == pytest.approx(2.0)
    assert rec.current_value == pytest.approx(2.5)
    assert rec.movement_percentage == pytest.approx(25.0)


@pytest.mark.asyncio
async def test_american_movement_percentage_on_decimal_basis(pipeline, store):
    await pipeline.process_updates([upd(-150, 0, fmt="american"), upd(150, 1, fmt="american")], "feed-a")

    rec = await store.latest(KEY)
    assert rec.odds_format is OddsFormat.AMERICAN
    assert rec.previous_value == -150
    assert rec.current_value == 150
    assert rec.movement_percentage == pytest.approx(50.0)


@pytest.mark.asyncio
async def test_fractional_dedup_uses_fraction_value(pipeline, store):
    batch = [upd("5/2", 0, fmt="fractional"), upd("10/4", 1, fmt="fractional"), upd("3/1", 2, fmt="fractional")]
    result = await pipeline.process_updates(batch, "feed-a")

    assert result.movements_created == 1
    rec = await store.latest(KEY)
    assert rec.previous_value == "5/2"
    assert rec.current_value == "3/1"


class YieldingStore(InMemoryMovementStore):
    """Suspends inside ``latest`` so concurrent writers interleave."""

    async def latest(self, key):
        await asyncio.sleep(0.01)
        return await super().latest(key)


@pytest.mark.asyncio
async def test_concurrent_writers_for_one_key_create_one_record():
    store = YieldingStore()
    first = IngestionPipeline(store, registry=CollectorRegistry())
    second = IngestionPipeline(store, registry=CollectorRegistry())
    await first.process_updates([upd(2.0)], "a")

    results = await asyncio.gather(
        first.process_updates([upd(2.5, 1)], "a"),
        second.process_updates([upd(2.5, 2)], "b"),
    )

    assert sum(r.movements_created for r in results) == 1
    assert await store.count() == 1


@pytest.mark.asyncio
async def test_events_and_metrics(pipeline, publisher, registry):
    await pipeline.process_updates([upd(2.0, 0), upd(2.2, 1)], "feed-a")

    recorded = publisher.named(events.MOVEMENT_RECORDED)
    assert len(recorded) == 1
    assert recorded[0]["previous_odds"] == 2.0
    assert recorded[0]["current_odds"] == 2.2
    assert recorded[0]["movement_percentage"] == pytest.approx(10.0)

    processed = publisher.named(events.UPDATES_PROCESSED)
    assert processed[-1]["movements_created"] == 1
    assert processed[-1]["errors_count"] == 0

    assert registry.get_sample_value("odds_updates_received_total", {"source_id": "feed-a"}) == 2
    assert registry.get_sample_value("odds_movements_created_total", {"source_id": "feed-a"}) == 1


@pytest.mark.asyncio
async def test_failing_publisher_does_not_break_ingestion(store, registry):
    class Broken:
        def publish(self, name, payload):
            raise RuntimeError("bus down")

    pipeline = IngestionPipeline(store, Broken(), registry=registry)
    result = await pipeline.process_updates([upd(2.0, 0), upd(2.2, 1)], "feed-a")

    assert result.success
    assert result.movements_created == 1


@pytest.mark.asyncio
async def test_ingest_manual_uses_manual_source_id(pipeline):
    result = await pipeline.ingest_manual([{"eventId": "ev1", "marketId": "m1", "selectionId": "s1", "odds": 1.9}])
    assert result.source_id == "manual"
    assert result.success


def test_sample_generator_is_ordered_and_deterministic(store):
    a = IngestionPipeline(store, registry=CollectorRegistry(), sample_seed=7)
    b = IngestionPipeline(store, registry=CollectorRegistry(), sample_seed=7)

    first = a.generate_sample_updates(event_count=3, days_back=4, now=T0)
    second = b.generate_sample_updates(event_count=3, days_back=4, now=T0)

    assert first
    assert [u.observed_at for u in first] == sorted(u.observed_at for u in first)
    assert [(u.key, u.value) for u in first] == [(u.key, u.value) for u in second]
    assert all(u.source == "sample_data" and u.value >= 1.1 for u in first)


@pytest.mark.asyncio
async def test_sample_chatter_is_absorbed_by_dedup(pipeline, store):
    updates = pipeline.generate_sample_updates(event_count=2, days_back=3, now=T0)
    result = await pipeline.process_updates(updates, "sample")

    assert result.success
    keys = {u.key for u in updates}
    assert 0 < result.movements_created <= len(updates) - len(keys)


# -- polling ---------------------------------------------------------------


def descriptor(source_id, kind=SourceKind.MANUAL, interval_ms=10, active=True):
    return DataSourceDescriptor(source_id=source_id, kind=kind, poll_interval_ms=interval_ms, active=active)


class CountingSource(OddsSource):
    kind = SourceKind.API

    def __init__(self, descriptor):
        super().__init__(descriptor)
        self.polls = 0

    async def poll(self):
        self.polls += 1
        return []


class BoomSource(CountingSource):
    async def poll(self):
        self.polls += 1
        raise RuntimeError("upstream exploded")


class HangingSource(CountingSource):
    async def poll(self):
        self.polls += 1
        await asyncio.sleep(5)
        return []


@pytest.mark.asyncio
async def test_manual_source_is_polled_and_ingested(pipeline, store, publisher):
    source = await pipeline.register_source(descriptor("desk"))
    assert isinstance(source, ManualSource)

    source.submit([upd(2.0, 0), upd(2.4, 1)])
    await asyncio.sleep(0.1)

    assert await store.count() == 1
    assert pipeline.status()["active_sources"] == ["desk"]
    assert publisher.named(events.DATA_PROCESSED)[0]["movements_created"] == 1
    await pipeline.aclose()
    assert pipeline.status()["active_sources"] == []


@pytest.mark.asyncio
async def test_failing_and_hanging_sources_are_isolated(store, publisher, registry):
    pipeline = IngestionPipeline(store, publisher, Settings(poll_timeout_seconds=0.05), registry=registry)
    boom = BoomSource(descriptor("boom", SourceKind.API))
    hanging = HangingSource(descriptor("slow", SourceKind.API))
    await pipeline.register_source(boom.descriptor, boom)
    await pipeline.register_source(hanging.descriptor, hanging)
    desk = await pipeline.register_source(descriptor("desk"))

    desk.submit([upd(2.0, 0), upd(2.2, 1)])
    await asyncio.sleep(0.25)

    assert await store.count() == 1
    assert boom.polls >= 2
    assert hanging.polls >= 1
    assert registry.get_sample_value("odds_poll_failures_total", {"source_id": "boom"}) >= 2
    assert registry.get_sample_value("odds_poll_failures_total", {"source_id": "slow"}) >= 1
    failed = {p["source_id"] for p in publisher.named(events.POLL_FAILED)}
    assert failed == {"boom", "slow"}
    assert set(pipeline.status()["active_sources"]) == {"boom", "desk", "slow"}
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_no_polls_after_stop(pipeline):
    src = CountingSource(descriptor("counting", SourceKind.API))
    await pipeline.register_source(src.descriptor, src)
    await asyncio.sleep(0.05)

    pipeline.stop_polling("counting")
    seen = src.polls
    await asyncio.sleep(0.05)

    assert seen >= 1
    assert src.polls == seen
    assert pipeline.status()["active_sources"] == []
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_start_polling_is_idempotent_and_restartable(pipeline, publisher):
    src = CountingSource(descriptor("counting", SourceKind.API, active=False))
    await pipeline.register_source(src.descriptor, src)
    assert pipeline.status()["active_sources"] == []

    first = pipeline.start_polling("counting")
    assert pipeline.start_polling("counting") is first
    assert len(publisher.named(events.POLLING_STARTED)) == 1

    pipeline.stop_polling("counting")
    pipeline.stop_polling("counting")
    assert first.stopped

    second = pipeline.start_polling("counting")
    assert second is not first
    await asyncio.sleep(0.05)
    assert second.polls >= 1
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_start_all_and_stop_all(pipeline, publisher):
    for sid in ("a", "b"):
        src = CountingSource(descriptor(sid, SourceKind.API, active=False))
        await pipeline.register_source(src.descriptor, src)

    pipeline.start_all()
    status = pipeline.status()
    assert status["is_running"]
    assert status["active_sources"] == ["a", "b"]

    pipeline.stop_all()
    assert pipeline.status() == {"is_running": False, "active_sources": [], "total_sources": 2}
    assert publisher.named(events.INGESTION_STOPPED)
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_unknown_source_raises(pipeline):
    with pytest.raises(SourceNotFoundError):
        pipeline.start_polling("nope")
    with pytest.raises(SourceNotFoundError):
        pipeline.stop_polling("nope")
    with pytest.raises(SourceNotFoundError):
        await pipeline.unregister_source("nope")


@pytest.mark.asyncio
async def test_unregister_source(pipeline, publisher):
    await pipeline.register_source(descriptor("desk"))
    await pipeline.unregister_source("desk")

    assert pipeline.descriptors() == []
    assert publisher.named(events.SOURCE_UNREGISTERED) == [{"source_id": "desk"}]
    with pytest.raises(SourceNotFoundError):
        pipeline.get_source("desk")


class ClosableSource(CountingSource):
    def __init__(self, descriptor):
        super().__init__(descriptor)
        self.closed = False
        self.in_poll = False
        self.closed_mid_poll = False

    async def close(self):
        self.closed_mid_poll = self.in_poll
        self.closed = True


class SlowClosableSource(ClosableSource):
    async def poll(self):
        self.polls += 1
        self.in_poll = True
        try:
            await asyncio.sleep(0.2)
        finally:
            self.in_poll = False
        return []


@pytest.mark.asyncio
async def test_replacing_a_source_closes_the_old_one(pipeline):
    old = ClosableSource(descriptor("x", SourceKind.API))
    new = ClosableSource(descriptor("x", SourceKind.API))
    await pipeline.register_source(old.descriptor, old)
    await pipeline.register_source(new.descriptor, new)

    assert old.closed
    assert not new.closed
    assert pipeline.get_source("x") is new

    seen = old.polls
    await asyncio.sleep(0.05)
    assert old.polls == seen
    assert new.polls >= 1

    await pipeline.aclose()
    assert new.closed


@pytest.mark.asyncio
async def test_unregister_after_stop_waits_for_in_flight_poll(pipeline, publisher):
    src = SlowClosableSource(descriptor("x", SourceKind.API))
    await pipeline.register_source(src.descriptor, src)
    await asyncio.sleep(0.05)
    assert src.in_poll

    pipeline.stop_polling("x")
    await pipeline.unregister_source("x")

    assert src.closed
    assert not src.closed_mid_poll
    assert src.polls == 1
    assert publisher.named(events.POLL_FAILED) == []


@pytest.mark.asyncio
async def test_replacing_a_source_mid_poll_closes_it_afterwards(pipeline):
    old = SlowClosableSource(descriptor("x", SourceKind.API))
    await pipeline.register_source(old.descriptor, old)
    await asyncio.sleep(0.05)

    new = ClosableSource(descriptor("x", SourceKind.API))
    await pipeline.register_source(new.descriptor, new)

    assert old.closed
    assert not old.closed_mid_poll
    await pipeline.aclose()


@pytest.mark.asyncio
async def test_descriptor_without_interval_uses_configured_default(store, registry):
    pipeline = IngestionPipeline(store, cfg=Settings(default_poll_interval_ms=10), registry=registry)
    src = CountingSource(DataSourceDescriptor(source_id="c", kind=SourceKind.API))
    await pipeline.register_source(src.descriptor, src)
    await asyncio.sleep(0.1)

    assert src.polls >= 3
    await pipeline.aclose()


class SlowInsertStore(InMemoryMovementStore):
    async def insert(self, record):
        await asyncio.sleep(0.5)
        await super().insert(record)


@pytest.mark.asyncio
async def test_poll_timeout_covers_store_writes(publisher, registry):
    store = SlowInsertStore()
    pipeline = IngestionPipeline(store, publisher, Settings(poll_timeout_seconds=0.05), registry=registry)
    desk = await pipeline.register_source(descriptor("desk", active=False))
    desk.submit([upd(2.0, 0), upd(2.4, 1)])

    assert await pipeline.poll_once("desk") is None

    assert await store.count() == 0
    assert registry.get_sample_value("odds_poll_failures_total", {"source_id": "desk"}) == 1
    assert publisher.named(events.POLL_FAILED)[0]["error"].startswith("poll timed out")
    await pipeline.aclose()
