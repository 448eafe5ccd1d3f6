from __future__ import annotations

from typing import Iterable

from odds_insight.connectors.base import OddsSource, RawTick
from odds_insight.schemas import DataSourceDescriptor, OddsUpdate, SourceKind


class ManualSource(OddsSource):
    """Operator-fed source: batches submitted between polls are drained on the next poll."""

    kind = SourceKind.MANUAL

    def __init__(self, descriptor: DataSourceDescriptor):
        super().__init__(descriptor)
        self._pending: list[RawTick | OddsUpdate] = []

    def submit(self, updates: Iterable[RawTick | OddsUpdate]) -> int:
        before = len(self._pending)
        self._pending.extend(updates)
        return len(self._pending) - before

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def poll(self) -> list[RawTick | OddsUpdate]:
        batch, self._pending = self._pending, []
        return batch
