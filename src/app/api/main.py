from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Histogram, generate_latest
from starlette.responses import Response

from odds_insight.config import settings
from odds_insight.errors import AnalysisError, OddsValidationError, SourceNotFoundError
from odds_insight.logging import configure_logging
from odds_insight.runtime import Runtime, build_runtime
from odds_insight.schemas import (
    BetTimingAssessment,
    DataSourceDescriptor,
    IngestionResult,
    MarketImpactAssessment,
    MovementReport,
    Wager,
)

REQS = Counter("api_requests_total", "Total API requests", ["path"])
LAT = Histogram("api_request_seconds", "API request latency", ["path"])


def _runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def create_app(runtime: Runtime | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if runtime is not None:
            yield
            return
        configure_logging(settings)
        app.state.runtime = await build_runtime(settings)
        try:
            yield
        finally:
            await app.state.runtime.aclose()

    app = FastAPI(title="odds-insight", lifespan=lifespan)
    if runtime is not None:
        app.state.runtime = runtime

    @app.exception_handler(OddsValidationError)
    async def _validation(request: Request, exc: OddsValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"code": exc.code, "detail": str(exc)})

    @app.exception_handler(SourceNotFoundError)
    async def _not_found(request: Request, exc: SourceNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"code": exc.code, "detail": str(exc)})

    @app.exception_handler(AnalysisError)
    async def _analysis(request: Request, exc: AnalysisError) -> JSONResponse:
        return JSONResponse(status_code=500, content={"code": exc.code, "detail": str(exc)})

    @app.get("/health")
    async def health(request: Request) -> dict:
        REQS.labels("/health").inc()
        rt = _runtime(request)
        checks: dict[str, Any] = {}
        try:
            checks["movements"] = await rt.store.count()
            checks["store"] = "healthy"
        except Exception as e:
            checks["store"] = f"unhealthy: {e}"
        checks["ingestion"] = rt.pipeline.status()
        return {
            "status": "healthy" if checks["store"] == "healthy" else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/metrics")
    async def metrics(request: Request) -> Response:
        body = generate_latest(REGISTRY) + _runtime(request).pipeline.metrics.render()
        return Response(body, media_type=CONTENT_TYPE_LATEST)

    @app.get("/sources")
    async def list_sources(request: Request) -> dict:
        REQS.labels("/sources").inc()
        rt = _runtime(request)
        return {
            "sources": [d.model_dump(mode="json") for d in rt.pipeline.descriptors()],
            "status": rt.pipeline.status(),
        }

    @app.post("/sources", status_code=201)
    async def register_source(request: Request, descriptor: DataSourceDescriptor) -> DataSourceDescriptor:
        REQS.labels("/sources").inc()
        await _runtime(request).pipeline.register_source(descriptor)
        return descriptor

    @app.post("/sources/{source_id}/start")
    async def start_source(request: Request, source_id: str) -> dict:
        REQS.labels("/sources/{source_id}/start").inc()
        handle = _runtime(request).pipeline.start_polling(source_id)
        return {"source_id": source_id, "polling": not handle.stopped}

    @app.post("/sources/{source_id}/stop")
    async def stop_source(request: Request, source_id: str) -> dict:
        REQS.labels("/sources/{source_id}/stop").inc()
        _runtime(request).pipeline.stop_polling(source_id)
        return {"source_id": source_id, "polling": False}

    @app.post("/ingest")
    async def ingest(
        request: Request,
        updates: list[dict[str, Any]] = Body(...),
        source_id: str = "manual",
    ) -> IngestionResult:
        REQS.labels("/ingest").inc()
        with LAT.labels("/ingest").time():
            return await _runtime(request).pipeline.process_updates(updates, source_id)

    @app.post("/bets/timing")
    async def bet_timing(request: Request, wager: Wager) -> BetTimingAssessment:
        REQS.labels("/bets/timing").inc()
        with LAT.labels("/bets/timing").time():
            return await _runtime(request).timing.analyze(wager)

    @app.get("/markets/{event_id}/{market_id}/impact")
    async def market_impact(
        request: Request,
        event_id: str,
        market_id: str,
        start: datetime,
        end: datetime,
    ) -> MarketImpactAssessment:
        REQS.labels("/markets/{event_id}/{market_id}/impact").inc()
        with LAT.labels("/markets/{event_id}/{market_id}/impact").time():
            return await _runtime(request).impact.analyze(event_id, market_id, start, end)

    @app.get("/reports")
    async def report(request: Request, start: datetime, end: datetime, top_n: int | None = None) -> MovementReport:
        REQS.labels("/reports").inc()
        with LAT.labels("/reports").time():
            return await _runtime(request).reports.build(start, end, top_n=top_n)

    return app


app = create_app()
