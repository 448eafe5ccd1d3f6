from __future__ import annotations

import logging

import structlog

from odds_insight.config import Settings, settings as default_settings


def configure_logging(cfg: Settings | None = None) -> None:
    cfg = cfg or default_settings
    level = logging.getLevelName(cfg.log_level.upper())
    logging.basicConfig(level=level)
    renderer = structlog.processors.JSONRenderer() if cfg.log_json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
    )
