"""
Logging setup for the CLI and the API server.
JSON lines in production, plain text in development.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import json_log_formatter

from location_resolver.config import get_settings

NOISY_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncpg": logging.WARNING,
    "apscheduler": logging.INFO,
}


class ResolverJSONFormatter(json_log_formatter.JSONFormatter):
    """Adds level, logger name and environment to every JSON record."""

    def __init__(self, env: str):
        super().__init__()
        self.env = env

    def json_record(self, message: str, extra: dict, record: logging.LogRecord) -> dict:
        extra = super().json_record(message, extra, record)
        extra["level"] = record.levelname
        extra["logger"] = record.name
        extra["env"] = self.env
        if record.exc_info:
            extra["exc_info"] = self.formatException(record.exc_info)
        return extra


def setup_logging(level_name: Optional[str] = None) -> None:
    """Configure the root logger from settings; `level_name` overrides LOG_LEVEL."""
    settings = get_settings()
    level = getattr(logging, (level_name or settings.log_level).upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    if settings.env == "production":
        handler.setFormatter(ResolverJSONFormatter(settings.env))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]

    for name, noisy_level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(noisy_level)
