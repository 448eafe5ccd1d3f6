from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


class IngestionMetrics:
    """Prometheus collectors owned by one pipeline instance, on its own registry."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.updates_received = Counter(
            "odds_updates_received_total", "Odds updates handed to the dedup stage", ["source_id"], registry=self.registry
        )
        self.movements_created = Counter(
            "odds_movements_created_total", "Movement records persisted", ["source_id"], registry=self.registry
        )
        self.item_errors = Counter(
            "odds_update_errors_total", "Updates rejected during processing", ["source_id"], registry=self.registry
        )
        self.poll_failures = Counter(
            "odds_poll_failures_total", "Source polls that failed or timed out", ["source_id"], registry=self.registry
        )
        self.batch_seconds = Histogram(
            "odds_batch_processing_seconds", "Time spent processing one update batch", ["source_id"], registry=self.registry
        )

    def render(self) -> bytes:
        return generate_latest(self.registry)
