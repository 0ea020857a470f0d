"""Shared request-parsing helpers for blueprints.

parse_date_input:  raises ValueError on bad input (callers answer 400)
require_json:      request body as dict, or a 400 error tuple
parse_int_arg:     optional integer query argument
"""
import logging
from datetime import date, datetime

from flask import request

from evidence_portfolio.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, DD.MM.YYYY, date objects. Empty input returns None.
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (ValueError, TypeError):
        try:
            return datetime.strptime(str(value), "%d.%m.%Y").date()
        except ValueError as exc:
            raise ValueError(
                "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
            ) from exc


def require_json():
    """Return ``(payload, None)`` or ``(None, error_response)``.

    Usage::

        data, err = require_json()
        if err:
            return err
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_REQUIRED, "JSON object body is required")
    return data, None


def parse_int_arg(name):
    """Read an optional integer query argument; raise ValueError if malformed."""
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be an integer") from exc
