from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timedelta, timezone

from odds_insight.config import settings
from odds_insight.logging import configure_logging
from odds_insight.runtime import build_runtime


async def run(days: int = 7, top_n: int | None = None) -> str:
    configure_logging(settings)
    runtime = await build_runtime(settings)
    try:
        end = datetime.now(timezone.utc)
        report = await runtime.reports.build(end - timedelta(days=days), end, top_n=top_n)
        return report.model_dump_json(indent=2)
    finally:
        await runtime.aclose()


def main() -> None:
    ap = argparse.ArgumentParser(description="Print an odds movement report for the trailing window as JSON")
    ap.add_argument("--days", type=int, default=7)
    ap.add_argument("--top-n", type=int, default=None)
    args = ap.parse_args()
    print(asyncio.run(run(args.days, args.top_n)))


if __name__ == "__main__":
    main()
