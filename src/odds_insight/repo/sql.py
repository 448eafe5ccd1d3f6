"""SQLAlchemy-backed movement store (Postgres in production, SQLite in tests)."""
from __future__ import annotations

from datetime import datetime
from typing import Any

import sqlalchemy as sa
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from odds_insight.db import get_session, session_factory
from odds_insight.odds import DEFAULT_SIGNIFICANCE_PCT, OddsFormat
from odds_insight.repo.base import MovementStore
from odds_insight.schemas import MarketActivity, MarketKey, MovementRecord, PriceBaseline, ensure_utc
from odds_insight.sql import execute, fetch_all, fetch_one

log = structlog.get_logger(__name__)

metadata = sa.MetaData()

odds_movements = sa.Table(
    "odds_movements",
    metadata,
    sa.Column("seq", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("id", sa.String(64), nullable=False, unique=True),
    sa.Column("event_id", sa.String(128), nullable=False),
    sa.Column("market_id", sa.String(128), nullable=False),
    sa.Column("selection_id", sa.String(128), nullable=False),
    sa.Column("odds_format", sa.String(16), nullable=False),
    sa.Column("previous_value", sa.String(32), nullable=False),
    sa.Column("current_value", sa.String(32), nullable=False),
    sa.Column("movement_kind", sa.String(16), nullable=False),
    sa.Column("movement_percentage", sa.Float, nullable=False),
    sa.Column("observed_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("source", sa.String(128), nullable=False),
    sa.Column("metadata", sa.JSON, nullable=False, default=dict),
    sa.Index("ix_odds_movements_key_ts", "event_id", "market_id", "selection_id", "observed_at"),
    sa.Index("ix_odds_movements_ts", "observed_at"),
)

odds_baselines = sa.Table(
    "odds_baselines",
    metadata,
    sa.Column("event_id", sa.String(128), primary_key=True),
    sa.Column("market_id", sa.String(128), primary_key=True),
    sa.Column("selection_id", sa.String(128), primary_key=True),
    sa.Column("odds_format", sa.String(16), nullable=False),
    sa.Column("value", sa.String(32), nullable=False),
    sa.Column("observed_at", sa.DateTime(timezone=True), nullable=False),
)


def _raw_to_text(value: float | str, fmt: OddsFormat) -> str:
    return value if fmt is OddsFormat.FRACTIONAL else repr(float(value))


def _row_to_record(row: dict[str, Any]) -> MovementRecord:
    return MovementRecord(
        id=row["id"],
        event_id=row["event_id"],
        market_id=row["market_id"],
        selection_id=row["selection_id"],
        odds_format=row["odds_format"],
        previous_value=row["previous_value"],
        current_value=row["current_value"],
        observed_at=ensure_utc(row["observed_at"]),
        source=row["source"],
        metadata=row["metadata"] or {},
    )


def _key_filter(key: MarketKey, table: sa.Table) -> sa.ColumnElement[bool]:
    return sa.and_(
        table.c.event_id == key.event_id,
        table.c.market_id == key.market_id,
        table.c.selection_id == key.selection_id,
    )


class SqlMovementStore(MovementStore):
    def __init__(self, engine: AsyncEngine):
        super().__init__()
        self.engine = engine
        self._sessions = session_factory(engine)

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def insert(self, record: MovementRecord) -> None:
        stmt = sa.insert(odds_movements).values(
            id=record.id,
            event_id=record.event_id,
            market_id=record.market_id,
            selection_id=record.selection_id,
            odds_format=record.odds_format.value,
            previous_value=_raw_to_text(record.previous_value, record.odds_format),
            current_value=_raw_to_text(record.current_value, record.odds_format),
            movement_kind=record.movement_kind.value,
            movement_percentage=record.movement_percentage,
            observed_at=record.observed_at,
            source=record.source,
            metadata=record.metadata,
        )
        async with get_session(self._sessions) as session:
            await execute(session, stmt)
            await session.commit()

    async def latest(self, key: MarketKey) -> MovementRecord | None:
        stmt = (
            sa.select(odds_movements)
            .where(_key_filter(key, odds_movements))
            .order_by(odds_movements.c.observed_at.desc(), odds_movements.c.seq.desc())
            .limit(1)
        )
        async with get_session(self._sessions) as session:
            row = await fetch_one(session, stmt)
        return _row_to_record(row) if row else None

    async def get_baseline(self, key: MarketKey) -> PriceBaseline | None:
        stmt = sa.select(odds_baselines).where(_key_filter(key, odds_baselines))
        async with get_session(self._sessions) as session:
            row = await fetch_one(session, stmt)
        if row is None:
            return None
        return PriceBaseline(
            event_id=row["event_id"],
            market_id=row["market_id"],
            selection_id=row["selection_id"],
            odds_format=row["odds_format"],
            value=row["value"] if row["odds_format"] == OddsFormat.FRACTIONAL.value else float(row["value"]),
            observed_at=ensure_utc(row["observed_at"]),
        )

    async def set_baseline(self, baseline: PriceBaseline) -> None:
        key = MarketKey(baseline.event_id, baseline.market_id, baseline.selection_id)
        async with get_session(self._sessions) as session:
            await execute(session, sa.delete(odds_baselines).where(_key_filter(key, odds_baselines)))
            await execute(
                session,
                sa.insert(odds_baselines).values(
                    event_id=baseline.event_id,
                    market_id=baseline.market_id,
                    selection_id=baseline.selection_id,
                    odds_format=baseline.odds_format.value,
                    value=_raw_to_text(baseline.value, baseline.odds_format),
                    observed_at=ensure_utc(baseline.observed_at),
                ),
            )
            await session.commit()

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
        t = odds_movements
        stmt = sa.select(t)
        if event_id is not None:
            stmt = stmt.where(t.c.event_id == event_id)
        if market_id is not None:
            stmt = stmt.where(t.c.market_id == market_id)
        if selection_id is not None:
            stmt = stmt.where(t.c.selection_id == selection_id)
        if start is not None:
            stmt = stmt.where(t.c.observed_at >= ensure_utc(start))
        if end is not None:
            stmt = stmt.where(t.c.observed_at <= ensure_utc(end))
        if before is not None:
            stmt = stmt.where(t.c.observed_at < ensure_utc(before))
        if min_abs_percentage is not None:
            stmt = stmt.where(sa.func.abs(t.c.movement_percentage) >= min_abs_percentage)
        if newest_first:
            stmt = stmt.order_by(t.c.observed_at.desc(), t.c.seq.desc())
        else:
            stmt = stmt.order_by(t.c.observed_at.asc(), t.c.seq.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with get_session(self._sessions) as session:
            rows = await fetch_all(session, stmt)
        return [_row_to_record(r) for r in rows]

    async def aggregate_by_market(
        self,
        start: datetime,
        end: datetime,
        limit: int = 10,
        significance_pct: float = DEFAULT_SIGNIFICANCE_PCT,
    ) -> list[MarketActivity]:
        t = odds_movements
        total = sa.func.count().label("total_movements")
        stmt = (
            sa.select(
                t.c.event_id,
                t.c.market_id,
                total,
                sa.func.avg(t.c.movement_percentage).label("average_movement"),
                sa.func.max(sa.func.abs(t.c.movement_percentage)).label("max_movement"),
                sa.func.sum(
                    sa.case((sa.func.abs(t.c.movement_percentage) >= significance_pct, 1), else_=0)
                ).label("significant_movements"),
            )
            .where(t.c.observed_at.between(ensure_utc(start), ensure_utc(end)))
            .group_by(t.c.event_id, t.c.market_id)
            .order_by(total.desc(), t.c.event_id, t.c.market_id)
            .limit(limit)
        )
        async with get_session(self._sessions) as session:
            rows = await fetch_all(session, stmt)
        return [
            MarketActivity(
                event_id=r["event_id"],
                market_id=r["market_id"],
                total_movements=int(r["total_movements"]),
                average_movement=float(r["average_movement"] or 0.0),
                max_movement=float(r["max_movement"] or 0.0),
                significant_movements=int(r["significant_movements"] or 0),
            )
            for r in rows
        ]

    async def count(self) -> int:
        async with get_session(self._sessions) as session:
            row = await fetch_one(session, sa.select(sa.func.count()).select_from(odds_movements))
        return int(next(iter(row.values()))) if row else 0

    async def close(self) -> None:
        await self.engine.dispose()
        log.info("movement_store_closed")
