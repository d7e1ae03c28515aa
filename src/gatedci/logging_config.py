"""Centralized logging configuration for gatedci."""

import json
import logging
import os
from datetime import datetime, timezone


class JSONFormatter(logging.Formatter):
    """One JSON object per line with timestamp, level, logger, message and optional exception."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def configure_logging(level_override: str | None = None) -> None:
    """Configure the gatedci logger from environment variables.

    Args:
        level_override: If set, takes precedence over LOG_LEVEL env var.

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR).
            Defaults to WARNING so step output stays readable.
        LOG_FORMAT: "json" for JSON lines, anything else for
            human-readable. Defaults to "text".
    """
    level_name = (level_override or os.getenv("LOG_LEVEL", "WARNING")).upper()
    level = getattr(logging, level_name, logging.WARNING)

    log_format = os.getenv("LOG_FORMAT", "text").lower()

    logger = logging.getLogger("gatedci")
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    # stderr, so console output on stdout can be piped on its own
    handler = logging.StreamHandler()
    handler.setLevel(level)

    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )

    logger.addHandler(handler)
