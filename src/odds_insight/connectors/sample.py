"""Synthetic odds generator for exercising the analyzers without a live feed."""
from __future__ import annotations

from datetime import datetime, timedelta

import numpy as np

from odds_insight.odds import OddsFormat
from odds_insight.schemas import OddsUpdate, ensure_utc, utcnow

SAMPLE_SOURCE = "sample_data"


class SampleDataGenerator:
    """Random-walk decimal odds per (event, market, selection)."""

    def __init__(self, seed: int | None = 42):
        self.rng = np.random.default_rng(seed)

    def generate_updates(
        self,
        event_count: int = 5,
        days_back: int = 7,
        now: datetime | None = None,
    ) -> list[OddsUpdate]:
        """
        Generate a time-ordered update stream.

        Args:
            event_count: Number of events; each gets 1-3 markets with 2-4 selections
            days_back: Days of history, ending today
            now: Reference time (defaults to the current UTC time)
        """
        now = ensure_utc(now) if now else utcnow()
        updates: list[OddsUpdate] = []

        for event_idx in range(1, event_count + 1):
            event_id = f"event_{event_idx:03d}"
            for market_idx in range(1, int(self.rng.integers(1, 4)) + 1):
                market_id = f"market_{market_idx:02d}"
                for selection_idx in range(1, int(self.rng.integers(2, 5)) + 1):
                    selection_id = f"selection_{selection_idx:02d}"
                    updates.extend(self._walk(event_id, market_id, selection_id, days_back, now))

        updates.sort(key=lambda u: u.observed_at)
        return updates

    def _walk(
        self,
        event_id: str,
        market_id: str,
        selection_id: str,
        days_back: int,
        now: datetime,
    ) -> list[OddsUpdate]:
        out: list[OddsUpdate] = []
        odds = float(self.rng.uniform(2.0, 5.0))

        for day in range(days_back, -1, -1):
            odds = max(1.1, odds + float(self.rng.uniform(-0.2, 0.2)))
            day_start = (now - timedelta(days=day)).replace(hour=0, minute=0, second=0, microsecond=0)

            # several ticks per day at the same price: feed chatter that dedup must absorb
            for _ in range(int(self.rng.integers(1, 5))):
                ts = day_start + timedelta(
                    hours=int(self.rng.integers(9, 21)),
                    minutes=int(self.rng.integers(0, 60)),
                    seconds=int(self.rng.integers(0, 60)),
                )
                out.append(
                    OddsUpdate(
                        event_id=event_id,
                        market_id=market_id,
                        selection_id=selection_id,
                        value=round(odds, 3),
                        odds_format=OddsFormat.DECIMAL,
                        observed_at=ts,
                        source=SAMPLE_SOURCE,
                        metadata={
                            "is_sample": True,
                            "day_of_week": ts.weekday(),
                            "hour_of_day": ts.hour,
                        },
                    )
                )
        return out
