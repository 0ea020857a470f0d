"""
Log formatter tests: context fields from ``extra=`` reach both line shapes.
"""

import json
import logging
import sys

from evidence_portfolio.middleware.logging_config import (
    ContextJSONFormatter,
    ContextTextFormatter,
)


def _record(msg="Cycle created", exc_info=None, **extra):
    record = logging.LogRecord(
        "evidence_portfolio.services.cycle_service", logging.INFO,
        __file__, 12, msg, None, exc_info,
    )
    record.__dict__.update(extra)
    return record


class TestJSONFormatter:
    def test_context_fields_flattened(self):
        line = ContextJSONFormatter().format(_record(cycle_id=3, user_id=1, unrelated="x"))
        entry = json.loads(line)

        assert entry["msg"] == "Cycle created"
        assert entry["level"] == "INFO"
        assert entry["cycle_id"] == 3
        assert entry["user_id"] == 1
        assert "unrelated" not in entry
        assert entry["ts"].endswith("Z")

    def test_exception_included(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = _record(exc_info=sys.exc_info())
        entry = json.loads(ContextJSONFormatter().format(record))
        assert "RuntimeError: boom" in entry["exc"]


class TestTextFormatter:
    def test_context_block_appended(self):
        line = ContextTextFormatter().format(_record(root_id=7, event_type="file_review"))
        assert line.endswith("Cycle created [root_id=7 event_type=file_review]")

    def test_no_context_no_block(self):
        line = ContextTextFormatter().format(_record())
        assert line.endswith("evidence_portfolio.services.cycle_service: Cycle created")
