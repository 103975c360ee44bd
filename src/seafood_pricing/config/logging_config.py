"""Structured logging configuration for the pricing core."""
import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional


class JSONFormatter(logging.Formatter):
    """JSON structured log formatter."""
    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "factory_id"):
            log_entry["factory_id"] = record.factory_id
        if hasattr(record, "integration_id"):
            log_entry["integration_id"] = record.integration_id
        return json.dumps(log_entry)


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None):
    """Configure application logging. Unset arguments come from settings."""
    if level is None or json_output is None:
        from .settings import get_settings
        settings = get_settings()
        level = level or settings.log_level
        json_output = settings.log_json if json_output is None else json_output

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
        ))

    root.handlers = [handler]
