"""Interfaces to the betting and event-metadata subsystems, plus in-memory stand-ins.

The production implementations live with the ledger/betting service; this package
only depends on the protocols.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol

from odds_insight.schemas import BetTimingAssessment, TimingRecord, Wager, ensure_utc


class EventMetadataLookup(Protocol):
    async def get_event_start_time(self, event_id: str) -> datetime | None: ...


class WagerSource(Protocol):
    async def wagers_for_period(
        self,
        start: datetime,
        end: datetime,
        event_id: str | None = None,
        market_id: str | None = None,
    ) -> list[Wager]: ...

    async def timing_records_for_period(
        self,
        start: datetime,
        end: datetime,
        event_id: str | None = None,
        market_id: str | None = None,
    ) -> list[TimingRecord]: ...


class TimingSink(Protocol):
    async def record_timing(self, assessment: BetTimingAssessment) -> None: ...


class InMemoryEventCalendar:
    def __init__(self, start_times: dict[str, datetime] | None = None):
        self._start_times = {k: ensure_utc(v) for k, v in (start_times or {}).items()}

    def set_start_time(self, event_id: str, start: datetime) -> None:
        self._start_times[event_id] = ensure_utc(start)

    async def get_event_start_time(self, event_id: str) -> datetime | None:
        return self._start_times.get(event_id)


def _in_window(ts: datetime, start: datetime, end: datetime) -> bool:
    return ensure_utc(start) <= ts <= ensure_utc(end)


class InMemoryWagerSource:
    """Wager book and timing cache in one; doubles as a ``TimingSink``."""

    def __init__(self, wagers: Iterable[Wager] = (), timing_records: Iterable[TimingRecord] = ()):
        self._wagers: dict[str, Wager] = {w.bet_id: w for w in wagers}
        self._timing: dict[str, TimingRecord] = {r.bet_id: r for r in timing_records}

    def add_wager(self, wager: Wager) -> None:
        self._wagers[wager.bet_id] = wager

    def add_timing_record(self, record: TimingRecord) -> None:
        self._timing[record.bet_id] = record

    async def record_timing(self, assessment: BetTimingAssessment) -> None:
        self._timing[assessment.bet_id] = assessment.to_record()

    async def wagers_for_period(
        self,
        start: datetime,
        end: datetime,
        event_id: str | None = None,
        market_id: str | None = None,
    ) -> list[Wager]:
        return sorted(
            (
                w
                for w in self._wagers.values()
                if _in_window(w.placed_at, start, end)
                and (event_id is None or w.event_id == event_id)
                and (market_id is None or w.market_id == market_id)
            ),
            key=lambda w: w.placed_at,
        )

    async def timing_records_for_period(
        self,
        start: datetime,
        end: datetime,
        event_id: str | None = None,
        market_id: str | None = None,
    ) -> list[TimingRecord]:
        return sorted(
            (
                r
                for r in self._timing.values()
                if _in_window(r.placed_at, start, end)
                and (event_id is None or r.event_id == event_id)
                and (market_id is None or r.market_id == market_id)
            ),
            key=lambda r: r.placed_at,
        )
