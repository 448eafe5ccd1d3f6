"""Generate synthetic odds and push them through the dedup stage."""
from __future__ import annotations

import argparse
import asyncio

import structlog

from odds_insight.config import settings
from odds_insight.logging import configure_logging
from odds_insight.runtime import build_runtime

log = structlog.get_logger(__name__)


async def run(event_count: int = 5, days_back: int = 7) -> dict:
    configure_logging(settings)
    runtime = await build_runtime(settings, create_schema=settings.store_backend == "sql")
    try:
        updates = runtime.pipeline.generate_sample_updates(event_count=event_count, days_back=days_back)
        result = await runtime.pipeline.ingest_manual(updates)
        log.info(
            "ingest_sample_done",
            updates=len(updates),
            movements_created=result.movements_created,
            errors=len(result.errors),
            store=settings.store_backend,
        )
        return result.model_dump()
    finally:
        await runtime.aclose()


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--events", type=int, default=5)
    ap.add_argument("--days-back", type=int, default=7)
    args = ap.parse_args()
    asyncio.run(run(args.events, args.days_back))


if __name__ == "__main__":
    main()
