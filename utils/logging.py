"""
Structured logging for the compute scheduler.

Provides:
    - StructuredFormatter: JSON formatter for machine-parseable log output.
    - configure_logging: Root logger setup used by ``run_scheduler.py``.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

PLAIN_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


class StructuredFormatter(logging.Formatter):
    """JSON formatter for machine-parseable log output.

    Each log record is serialised as a single JSON line containing at minimum:
        timestamp, level, module, message.
    If the record carries a ``metrics`` attribute (set via ``extra={"metrics": {...}}``),
    those key-value pairs are included under the ``"metrics"`` key. A
    ``job_id`` attribute is copied through as a top-level field.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.module,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "job_id"):
            log_entry["job_id"] = record.job_id
        if hasattr(record, "metrics"):
            log_entry["metrics"] = record.metrics
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def _formatter(fmt: str) -> logging.Formatter:
    if fmt == "structured":
        return StructuredFormatter()
    if fmt == "plain":
        return logging.Formatter(PLAIN_FORMAT)
    raise ValueError(f"Unknown log format {fmt!r}; expected 'structured' or 'plain'")


def configure_logging(level: str = "INFO", fmt: str = "structured") -> logging.Logger:
    """Install a single stderr handler on the root logger.

    ``fmt`` is ``"structured"`` (JSON lines) or ``"plain"``. Calling this
    again replaces the handler rather than stacking another one.
    """
    formatter = _formatter(fmt)
    root = logging.getLogger()
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(numeric_level)
    for handler in list(root.handlers):
        if getattr(handler, "_compute_scheduler", False):
            root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(formatter)
    handler._compute_scheduler = True
    root.addHandler(handler)
    return root
