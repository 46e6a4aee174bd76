"""Logging configuration.

Environment variables:
    LOG_FORMAT  - "json" for JSON lines, "text" for human-readable (default: "text")
    LOG_LEVEL   - root log level name (default: "INFO")
"""

import json
import logging
import sys
from datetime import datetime, timezone

import config


class _JsonFormatter(logging.Formatter):
    """Emit one JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str = None, fmt: str = None) -> None:
    """Configure the root logger and the audit alerts logger."""
    level_name = (level or config.LOG_LEVEL).strip().upper()
    fmt = (fmt or config.LOG_FORMAT).strip().lower()

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    # Remove existing handlers to avoid duplicates on reload
    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    root.addHandler(handler)

    # Audit failures must reach operators even when the root level is raised
    logging.getLogger(config.AUDIT_ALERT_LOGGER).setLevel(logging.ERROR)


def get_alert_logger() -> logging.Logger:
    """Logger used to escalate audit-trail failures."""
    return logging.getLogger(config.AUDIT_ALERT_LOGGER)
