from __future__ import annotations

from typing import Callable

from odds_insight.config import Settings
from odds_insight.connectors.base import OddsSource
from odds_insight.connectors.feed import FeedSource
from odds_insight.connectors.http_api import HttpApiSource
from odds_insight.connectors.manual import ManualSource
from odds_insight.schemas import DataSourceDescriptor, SourceKind

SourceBuilder = Callable[[DataSourceDescriptor, Settings], OddsSource]

SOURCE_BUILDERS: dict[SourceKind, SourceBuilder] = {
    SourceKind.API: lambda d, cfg: HttpApiSource(d, cfg),
    SourceKind.FEED: lambda d, cfg: FeedSource(d),
    SourceKind.MANUAL: lambda d, cfg: ManualSource(d),
}


def build_source(descriptor: DataSourceDescriptor, cfg: Settings) -> OddsSource:
    return SOURCE_BUILDERS[descriptor.kind](descriptor, cfg)
