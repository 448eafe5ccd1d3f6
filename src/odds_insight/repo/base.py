from __future__ import annotations

import asyncio
import weakref
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Iterable

from odds_insight.odds import DEFAULT_SIGNIFICANCE_PCT
from odds_insight.schemas import MarketActivity, MarketKey, MovementRecord, PriceBaseline


class MovementStore(ABC):
    """System of record for movement records.

    Reads may run concurrently. Writers for the same key must hold ``key_lock(key)``
    across their read-compare-insert sequence; different keys never contend.
    """

    def __init__(self) -> None:
        self._key_locks: weakref.WeakValueDictionary[MarketKey, asyncio.Lock] = weakref.WeakValueDictionary()

    def key_lock(self, key: MarketKey) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._key_locks[key] = lock
        return lock

    @abstractmethod
    async def insert(self, record: MovementRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    async def latest(self, key: MarketKey) -> MovementRecord | None:
        raise NotImplementedError

    @abstractmethod
    async def get_baseline(self, key: MarketKey) -> PriceBaseline | None:
        raise NotImplementedError

    @abstractmethod
    async def set_baseline(self, baseline: PriceBaseline) -> None:
        raise NotImplementedError

    @abstractmethod
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
        """Movements matching every given filter.

        ``start``/``end`` are inclusive bounds, ``before`` is exclusive.
        """
        raise NotImplementedError

    @abstractmethod
    async def aggregate_by_market(
        self,
        start: datetime,
        end: datetime,
        limit: int = 10,
        significance_pct: float = DEFAULT_SIGNIFICANCE_PCT,
    ) -> list[MarketActivity]:
        raise NotImplementedError

    @abstractmethod
    async def count(self) -> int:
        raise NotImplementedError

    async def close(self) -> None:
        return None


def aggregate_records(
    records: Iterable[MovementRecord],
    limit: int,
    significance_pct: float = DEFAULT_SIGNIFICANCE_PCT,
) -> list[MarketActivity]:
    grouped: dict[tuple[str, str], list[MovementRecord]] = defaultdict(list)
    for r in records:
        grouped[(r.event_id, r.market_id)].append(r)

    out = [
        MarketActivity(
            event_id=event_id,
            market_id=market_id,
            total_movements=len(rows),
            average_movement=sum(r.movement_percentage for r in rows) / len(rows),
            max_movement=max(abs(r.movement_percentage) for r in rows),
            significant_movements=sum(1 for r in rows if r.is_significant(significance_pct)),
        )
        for (event_id, market_id), rows in grouped.items()
    ]
    out.sort(key=lambda a: (-a.total_movements, a.event_id, a.market_id))
    return out[:limit]
