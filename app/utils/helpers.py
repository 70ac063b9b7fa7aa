"""Shared utility functions used by services and blueprints.

parse_date:          lenient date parsing (returns None on bad input)
pagination_args:     limit/offset query parsing with a configurable cap
expected_version:    optimistic-lock token from JSON body or If-Match header
"""
import logging
from datetime import date, datetime

from flask import current_app, request

logger = logging.getLogger(__name__)

DEFAULT_MAX_LIMIT = 500


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD (ISO format)
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY (European format)
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def pagination_args(default_limit: int = 50) -> tuple[int, int]:
    """Parse limit/offset pagination query parameters from the current request.

    The upper bound comes from the DYNAMIC_LIST_MAX_LIMIT config value.

    Returns:
        Tuple of (limit, offset).
    """
    max_limit = int(current_app.config.get("DYNAMIC_LIST_MAX_LIMIT", DEFAULT_MAX_LIMIT))
    try:
        limit = min(max(int(request.args.get("limit", default_limit)), 1), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset


def expected_version(data: dict | None = None) -> int | None:
    """Read the optimistic-lock version from the body or an ``If-Match`` header.

    Raises:
        ValueError: If a version is supplied but is not an integer.
    """
    raw = (data or {}).get("expected_version")
    if raw is None:
        header = request.headers.get("If-Match", "").strip().strip('"')
        raw = header or None
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValueError("expected_version must be an integer")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError("expected_version must be an integer") from exc
