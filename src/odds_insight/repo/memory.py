from __future__ import annotations

import bisect
from datetime import datetime

from odds_insight.odds import DEFAULT_SIGNIFICANCE_PCT
from odds_insight.repo.base import MovementStore, aggregate_records
from odds_insight.schemas import MarketActivity, MarketKey, MovementRecord, PriceBaseline, ensure_utc


class InMemoryMovementStore(MovementStore):
    """Process-local store. Records per key stay sorted by (observed_at, insertion order)."""

    def __init__(self) -> None:
        super().__init__()
        self._seq = 0
        self._by_key: dict[MarketKey, list[tuple[datetime, int, MovementRecord]]] = {}
        self._baselines: dict[MarketKey, PriceBaseline] = {}

    async def insert(self, record: MovementRecord) -> None:
        self._seq += 1
        rows = self._by_key.setdefault(record.key, [])
        bisect.insort(rows, (record.observed_at, self._seq, record), key=lambda row: row[:2])

    async def latest(self, key: MarketKey) -> MovementRecord | None:
        rows = self._by_key.get(key)
        return rows[-1][2] if rows else None

    async def get_baseline(self, key: MarketKey) -> PriceBaseline | None:
        return self._baselines.get(key)

    async def set_baseline(self, baseline: PriceBaseline) -> None:
        key = MarketKey(baseline.event_id, baseline.market_id, baseline.selection_id)
        self._baselines[key] = baseline

    async def query(
        self,
        *,
        event_id: str | None = None,
        market_id: str | None = None,
        selection_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        before: datetime | None = None,
        min_abs_percentage: float | None = None,
        newest_first: bool = False,
        limit: int | None = None,
    ) -> list[MovementRecord]:
        start = ensure_utc(start) if start else None
        end = ensure_utc(end) if end else None
        before = ensure_utc(before) if before else None

        rows: list[tuple[datetime, int, MovementRecord]] = []
        for key, key_rows in self._by_key.items():
            if event_id is not None and key.event_id != event_id:
                continue
            if market_id is not None and key.market_id != market_id:
                continue
            if selection_id is not None and key.selection_id != selection_id:
                continue
            for row in key_rows:
                ts, _, rec = row
                if start is not None and ts < start:
                    continue
                if end is not None and ts > end:
                    continue
                if before is not None and ts >= before:
                    continue
                if min_abs_percentage is not None and abs(rec.movement_percentage) < min_abs_percentage:
                    continue
                rows.append(row)

        rows.sort(key=lambda row: row[:2], reverse=newest_first)
        out = [rec for _, _, rec in rows]
        return out[:limit] if limit is not None else out

    async def aggregate_by_market(
        self,
        start: datetime,
        end: datetime,
        limit: int = 10,
        significance_pct: float = DEFAULT_SIGNIFICANCE_PCT,
    ) -> list[MarketActivity]:
        records = await self.query(start=start, end=end)
        return aggregate_records(records, limit, significance_pct)

    async def count(self) -> int:
        return sum(len(rows) for rows in self._by_key.values())
