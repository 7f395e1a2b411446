"""
Structured logging configuration.

- Development / testing: human-readable colored lines with pipeline tags
- Production: one JSON object per line (log aggregator compatible)
- LOG_FORMAT=json|readable overrides the per-environment default
- LOG_LEVEL sets the root level; PIPELINE_LOG_LEVEL the ``upgrade_pipeline`` loggers

Pipeline modules attach context through ``extra=``:

    logger.info("Step %s ok", step, extra={"proposal_id": pid, "step": step})
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

PIPELINE_LOGGER = "upgrade_pipeline"

# Record attributes lifted into JSON entries when present
CONTEXT_FIELDS = (
    "audit_run_id",
    "proposal_id",
    "step",
    "category",
    "backend",
    "job_name",
    "duration_ms",
)

# Subset shown inline by the readable formatter
TAG_FIELDS = ("audit_run_id", "proposal_id", "step", "backend", "job_name")


def log_context(**fields) -> dict:
    """Build an ``extra=`` dict, dropping fields that are None."""
    return {k: v for k, v in fields.items() if k in CONTEXT_FIELDS and v is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        entry.update({
            key: getattr(record, key)
            for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line format; pipeline context rendered as trailing tags."""

    COLORS = {
        "DEBUG": "\033[36m",      # cyan
        "INFO": "\033[32m",       # green
        "WARNING": "\033[33m",    # yellow
        "ERROR": "\033[31m",      # red
        "CRITICAL": "\033[35m",   # magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tags = " ".join(
            f"{key}={getattr(record, key)}"
            for key in TAG_FIELDS
            if getattr(record, key, None) is not None
        )
        duration = getattr(record, "duration_ms", None)
        line = (
            f"{color}{ts} {record.levelname:<8}{self.RESET} "
            f"{record.threadName} {record.name}: {record.getMessage()}"
        )
        if tags:
            line += f" [{tags}]"
        if duration is not None:
            line += f" ({duration}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _level(name: str | None, fallback: int) -> int:
    if not name:
        return fallback
    return getattr(logging, name.upper(), fallback)


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    Pipeline work runs on audit and upgrade worker threads, so context
    travels on each record (``extra=``) rather than in request globals.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    root_level = _level(os.getenv("LOG_LEVEL"), logging.INFO if is_prod else logging.DEBUG)
    pipeline_level = _level(os.getenv("PIPELINE_LOG_LEVEL"), root_level)
    fmt = os.getenv("LOG_FORMAT", "json" if is_prod else "readable").lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())

    root = logging.getLogger()
    # Replace, never stack: create_app runs once per test
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(root_level)
    logging.getLogger(PIPELINE_LOGGER).setLevel(pipeline_level)

    for noisy in ("urllib3", "werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(root_level)
    if not is_testing:
        app.logger.info("Logging configured: level=%s pipeline=%s format=%s",
                        logging.getLevelName(root_level),
                        logging.getLevelName(pipeline_level), fmt)
