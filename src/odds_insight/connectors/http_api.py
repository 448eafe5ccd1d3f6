"""Pull odds from an HTTP JSON endpoint."""
from __future__ import annotations

from typing import Any

import httpx
import structlog

from odds_insight.config import Settings, settings as default_settings
from odds_insight.connectors.base import OddsSource, RawTick
from odds_insight.connectors.rate_limit import RateLimiter, retry_with_backoff
from odds_insight.errors import SourceError
from odds_insight.schemas import DataSourceDescriptor, SourceKind

log = structlog.get_logger(__name__)


class HttpApiSource(OddsSource):
    """Polls ``descriptor.endpoint`` with GET.

    The endpoint may answer with a bare JSON array of ticks or an object wrapping
    it under ``data``, ``updates`` or ``odds``.
    """

    kind = SourceKind.API

    def __init__(
        self,
        descriptor: DataSourceDescriptor,
        cfg: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        super().__init__(descriptor)
        if not descriptor.endpoint:
            raise SourceError(descriptor.source_id, "API endpoint not configured")
        cfg = cfg or default_settings
        headers: dict[str, str] = {"Accept": "application/json", **descriptor.headers}
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=cfg.http_timeout_seconds, headers=headers)
        self.rate_limiter = rate_limiter or RateLimiter(cfg.http_max_calls, cfg.http_period_seconds)
        self._fetch = retry_with_backoff(
            max_retries=cfg.http_max_retries,
            initial_delay=cfg.http_retry_initial_delay,
        )(self._fetch_once)

    async def _fetch_once(self) -> Any:
        await self.rate_limiter.acquire()
        response = await self.client.get(self.descriptor.endpoint)
        response.raise_for_status()
        return response.json()

    async def poll(self) -> list[RawTick]:
        try:
            data = await self._fetch()
        except httpx.HTTPStatusError as e:
            raise SourceError(self.source_id, f"HTTP {e.response.status_code}: {e.response.text[:200]}") from e
        except httpx.HTTPError as e:
            raise SourceError(self.source_id, f"request failed: {e}") from e
        except ValueError as e:
            raise SourceError(self.source_id, f"invalid JSON payload: {e}") from e

        if isinstance(data, dict):
            data = data.get("data") or data.get("updates") or data.get("odds") or []
        if not isinstance(data, list):
            raise SourceError(self.source_id, f"unexpected payload type {type(data).__name__}")

        ticks = [item for item in data if isinstance(item, dict)]
        log.info("api_ticks_fetched", source_id=self.source_id, n=len(ticks), skipped=len(data) - len(ticks))
        return ticks

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
