from __future__ import annotations

import asyncio
import json
from pathlib import Path

import structlog

from odds_insight.connectors.base import OddsSource, RawTick
from odds_insight.errors import SourceError
from odds_insight.schemas import DataSourceDescriptor, SourceKind

log = structlog.get_logger(__name__)


class FeedSource(OddsSource):
    """File-backed feed.

    ``.jsonl`` endpoints are tailed: each poll returns only lines appended since the
    previous poll. Any other file is read as a JSON array snapshot on every poll and
    left to dedup to filter unchanged prices.
    """

    kind = SourceKind.FEED

    def __init__(self, descriptor: DataSourceDescriptor):
        super().__init__(descriptor)
        if not descriptor.endpoint:
            raise SourceError(descriptor.source_id, "feed path not configured")
        self.path = Path(descriptor.endpoint)
        self._offset = 0

    def _read_lines(self) -> list[RawTick]:
        size = self.path.stat().st_size
        if size < self._offset:
            # truncated or rotated in place: start over from the top
            log.warning("feed_rotated", source_id=self.source_id, offset=self._offset, size=size)
            self._offset = 0
        with self.path.open("r", encoding="utf-8") as fh:
            fh.seek(self._offset)
            chunk = fh.read()
        # only consume complete lines; a partial trailing line waits for the next poll
        complete, _, _ = chunk.rpartition("\n")
        if not complete:
            return []
        self._offset += len((complete + "\n").encode("utf-8"))
        return [json.loads(line) for line in complete.splitlines() if line.strip()]

    def _read_snapshot(self) -> list[RawTick]:
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise SourceError(self.source_id, "feed snapshot must be a JSON array")
        return data

    async def poll(self) -> list[RawTick]:
        if not self.path.exists():
            raise SourceError(self.source_id, f"feed file not found: {self.path}")
        reader = self._read_lines if self.path.suffix == ".jsonl" else self._read_snapshot
        try:
            ticks = await asyncio.to_thread(reader)
        except json.JSONDecodeError as e:
            raise SourceError(self.source_id, f"invalid JSON in feed: {e}") from e
        log.debug("feed_ticks_read", source_id=self.source_id, n=len(ticks))
        return ticks
