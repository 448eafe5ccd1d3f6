"""Exception hierarchy shared by ingestion and the analyzers."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from odds_insight.schemas import IngestionResult


class OddsInsightError(Exception):
    code = "ODDS_INSIGHT_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class OddsValidationError(OddsInsightError, ValueError):
    """Odds or period bounds rejected at the boundary. Never persisted."""

    code = "VALIDATION_FAILED"


class SourceError(OddsInsightError):
    code = "SOURCE_POLL_FAILED"

    def __init__(self, source_id: str, message: str):
        super().__init__(f"{source_id}: {message}")
        self.source_id = source_id


class SourceNotFoundError(SourceError):
    code = "SOURCE_NOT_FOUND"

    def __init__(self, source_id: str):
        super().__init__(source_id, "data source not registered")


class PartialBatchError(OddsInsightError):
    """Some updates in a batch failed; the valid subset was still committed."""

    code = "PARTIAL_BATCH"

    def __init__(self, result: IngestionResult):
        super().__init__(
            f"{len(result.errors)} update(s) failed for source {result.source_id}; "
            f"{result.movements_created} movement(s) recorded"
        )
        self.result = result


class AnalysisError(OddsInsightError):
    code = "ANALYSIS_FAILED"
