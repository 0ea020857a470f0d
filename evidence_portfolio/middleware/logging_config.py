"""
Logging setup for the portfolio API.

A single stderr handler on the root logger. ``LOG_FORMAT`` picks the line
shape: ``json`` (one object per line, for the log shipper) or ``text``
(local runs and tests). ``LOG_LEVEL`` overrides the level.
"""

import json
import logging
import os
import sys
import time

# Fields services and middleware attach through ``extra={...}``
CONTEXT_FIELDS = (
    "request_id",
    "user_id",
    "role",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "cycle_id",
    "assignment_id",
    "root_id",
    "file_id",
    "event_type",
)

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _context(record: logging.LogRecord) -> dict:
    return {
        key: record.__dict__[key]
        for key in CONTEXT_FIELDS
        if record.__dict__.get(key) is not None
    }


class ContextJSONFormatter(logging.Formatter):
    """One JSON object per record, context fields flattened in."""

    converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "src": f"{record.module}:{record.lineno}",
        }
        entry.update(_context(record))
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ContextTextFormatter(logging.Formatter):
    """TEXT_FORMAT plus a trailing ``[key=value ...]`` block."""

    def __init__(self):
        super().__init__(TEXT_FORMAT, datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if not context:
            return line
        pairs = " ".join(f"{k}={v}" for k, v in context.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{pairs}]{sep}{tail}"


def configure_logging(app):
    """Install the stderr handler; safe to call once per app factory run."""
    fmt = app.config.get("LOG_FORMAT", "json")
    default_level = "DEBUG" if app.debug else "INFO"
    level_name = os.getenv("LOG_LEVEL", default_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ContextJSONFormatter() if fmt == "json" else ContextTextFormatter())

    root = logging.getLogger()
    # The factory runs more than once under tests
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine", "alembic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    app.logger.debug("Logging configured: level=%s format=%s", level_name, fmt)
