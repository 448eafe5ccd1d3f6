from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Mapping, Sequence

from odds_insight.errors import OddsValidationError
from odds_insight.odds import OddsFormat
from odds_insight.schemas import DataSourceDescriptor, OddsUpdate, SourceKind, utcnow

RawTick = Mapping[str, Any]

# Feeds disagree on casing; first match wins.
_ALIASES: dict[str, tuple[str, ...]] = {
    "event_id": ("event_id", "eventId"),
    "market_id": ("market_id", "marketId"),
    "selection_id": ("selection_id", "selectionId"),
    "value": ("value", "odds", "price"),
    "odds_format": ("odds_format", "oddsFormat", "oddsType"),
    "observed_at": ("observed_at", "timestamp", "tick_ts"),
}


def _pick(raw: RawTick, field: str) -> Any:
    for name in _ALIASES[field]:
        if raw.get(name) is not None:
            return raw[name]
    return None


def normalize_tick(
    raw: RawTick | OddsUpdate,
    source_id: str,
    default_format: OddsFormat = OddsFormat.DECIMAL,
    observed_at: datetime | None = None,
) -> OddsUpdate:
    """Turn a raw feed item into an ``OddsUpdate``; raises ``ValueError`` on bad input."""
    if isinstance(raw, OddsUpdate):
        return raw
    missing = [f for f in ("event_id", "market_id", "selection_id", "value") if _pick(raw, f) is None]
    if missing:
        raise OddsValidationError(f"tick missing required field(s): {', '.join(missing)}")

    ts = _pick(raw, "observed_at")
    if isinstance(ts, str):
        ts = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    return OddsUpdate(
        event_id=str(_pick(raw, "event_id")),
        market_id=str(_pick(raw, "market_id")),
        selection_id=str(_pick(raw, "selection_id")),
        value=_pick(raw, "value"),
        odds_format=_pick(raw, "odds_format") or default_format,
        observed_at=ts or observed_at or utcnow(),
        source=str(raw.get("source") or source_id),
        metadata=dict(raw.get("metadata") or {}),
    )


class OddsSource(ABC):
    """A pollable origin of odds ticks. One subclass per ``SourceKind``."""

    kind: SourceKind

    def __init__(self, descriptor: DataSourceDescriptor):
        self.descriptor = descriptor

    @property
    def source_id(self) -> str:
        return self.descriptor.source_id

    @abstractmethod
    async def poll(self) -> Sequence[RawTick | OddsUpdate]:
        raise NotImplementedError

    async def close(self) -> None:
        return None
