"""Structured JSON logging for the licensing client."""

import logging
import json
import sys
from datetime import datetime, timezone


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        license_key = getattr(record, "license_key", None)
        if license_key:
            log_entry["license_key"] = mask_key(license_key)
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def mask_key(license_key: str) -> str:
    """Keep only the first characters of a license key for log output."""
    if len(license_key) <= 8:
        return "***"
    return f"{license_key[:8]}..."


def setup_logging(level: str = "INFO", debug: bool = False) -> None:
    """Configure structured logging for the licensing client."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger("licensing_client")
    for existing in list(root.handlers):
        if isinstance(existing.formatter, JSONFormatter):
            root.removeHandler(existing)
    if debug:
        root.setLevel(logging.DEBUG)
    else:
        root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.addHandler(handler)
    root.propagate = False


def get_logger(name: str) -> logging.Logger:
    """Get a logger scoped under licensing_client."""
    return logging.getLogger(f"licensing_client.{name}")
