"""
Calendar-day coercion for fact-table date fields.

Fact rows are keyed by day, so any timestamp that arrives with a time
component (datetime objects, pandas timestamps, ISO strings from spreadsheet
parsers) is reduced to a ``YYYY-MM-DD`` string before it is sent anywhere.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Optional

import pandas as pd

logger = logging.getLogger(__name__)

FAILED_SAMPLE_LIMIT = 5
SUPPRESSION_NOTICE_EVERY = 100

_ISO_DAY_PREFIX = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:$|[T\s])")

_failure_stats: dict = {}


def _record_parse_failure(value: Any, context: Optional[str], error: Exception) -> None:
    """
    Collect failure stats and emit limited logs (sampled warnings + periodic summaries).
    """
    key = context or "default"
    stats = _failure_stats.setdefault(key, {"count": 0, "samples": []})
    stats["count"] += 1
    count = stats["count"]

    if len(stats["samples"]) < FAILED_SAMPLE_LIMIT:
        stats["samples"].append(value)
        logger.warning("Failed to parse date%s value '%s': %s", f" ({key})" if context else "", value, error)
        return

    if count == FAILED_SAMPLE_LIMIT + 1 or count % SUPPRESSION_NOTICE_EVERY == 0:
        logger.info(
            "Suppressed additional date parse warnings after %d failures%s; sample values=%s",
            count,
            f" ({key})" if context else "",
            stats["samples"],
        )


def is_blank(value: Any) -> bool:
    """True for None, NaN/NaT and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def to_calendar_day(value: Any, *, log_context: Optional[str] = None) -> Optional[str]:
    """
    Reduce a date-like value to its calendar day.

    The day is taken as supplied: an offset-aware timestamp is NOT shifted to
    UTC first, because operators enter report dates in their own timezone.

    Supports:
    - ``datetime`` / ``date`` / ``pandas.Timestamp``
    - ISO strings with or without a time part: "2024-09-04", "2024-09-04T23:09:18Z"
    - Anything else pandas can infer from a string, e.g. "2024/09/04 10:00"

    Returns:
        ``YYYY-MM-DD`` string, or None when the value is blank or unparseable
    """
    if is_blank(value):
        return None

    # pd.Timestamp subclasses datetime
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    if not isinstance(value, str):
        _record_parse_failure(value, log_context, TypeError(f"unsupported type {type(value).__name__}"))
        return None

    text_value = value.strip()
    match = _ISO_DAY_PREFIX.match(text_value)
    if match:
        try:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3))).isoformat()
        except ValueError as exc:
            _record_parse_failure(value, log_context, exc)
            return None

    try:
        parsed = pd.to_datetime(text_value, errors="raise")
    except (ValueError, TypeError, OverflowError) as exc:
        _record_parse_failure(value, log_context, exc)
        return None

    if pd.isna(parsed):
        return None
    return parsed.date().isoformat()
