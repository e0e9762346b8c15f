"""Date normalization for event payloads.

The backend hands out dates in several shapes:

- ISO date only: ``2025-05-11``
- SQL server datetime: ``2025-05-11 12:00:00`` (optionally ``.mmm``)
- ISO datetime without offset: ``2025-05-11T12:00:00``
- Full ISO instant: ``2025-05-11T12:00:00Z`` / ``...+02:00``

Everything without an explicit offset is UTC. ``parse_instant`` is strict and
raises :class:`TemporalParseError`; ``normalize_instant`` never raises and maps
unusable input to :data:`EPOCH`.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, date, datetime
from typing import Any

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

_DATE_ONLY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_OFFSET_PATTERN = re.compile(r"(?:[zZ]|[+-]\d{2}(?::?\d{2})?)$")


class TemporalParseError(ValueError):
    """Raised when a value cannot be read as a calendar date or instant."""

    def __init__(self, value: Any, reason: str) -> None:
        self.value = value
        self.reason = reason
        super().__init__(f"Cannot parse {value!r} as an instant: {reason}")


def parse_instant(value: Any) -> datetime:
    """Return *value* as a timezone-aware UTC datetime.

    Raises
    ------
    TemporalParseError
        If *value* is missing, empty, of an unsupported type, or not a valid
        ISO / SQL-style date.
    """
    if value is None:
        raise TemporalParseError(value, "value is missing")

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)

    if not isinstance(value, str):
        raise TemporalParseError(value, f"unsupported type {type(value).__name__}")

    text = value.strip()
    if not text:
        raise TemporalParseError(value, "value is empty")

    if _DATE_ONLY_PATTERN.match(text):
        try:
            day = date.fromisoformat(text)
        except ValueError as exc:
            raise TemporalParseError(value, str(exc)) from exc
        return datetime(day.year, day.month, day.day, tzinfo=UTC)

    if "T" not in text and " " in text:
        text = text.replace(" ", "T", 1)

    if "T" in text:
        _, time_part = text.split("T", 1)
        if not _OFFSET_PATTERN.search(time_part):
            text = f"{text}+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise TemporalParseError(value, str(exc)) from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def normalize_instant(value: Any, *, field: str | None = None) -> datetime:
    """Like :func:`parse_instant`, but returns :data:`EPOCH` instead of raising."""
    try:
        return parse_instant(value)
    except TemporalParseError as exc:
        logger.warning(
            "Unparseable date%s (%s); using epoch sentinel",
            f" in field {field!r}" if field else "",
            exc.reason,
        )
        return EPOCH


def is_sentinel(instant: datetime) -> bool:
    return instant == EPOCH


def format_instant(instant: datetime) -> str:
    """ISO-8601 UTC string with a ``Z`` suffix."""
    return instant.astimezone(UTC).isoformat().replace("+00:00", "Z")


def format_server_instant(instant: datetime) -> str:
    """SQL server datetime form (``YYYY-MM-DD HH:MM:SS``) in UTC."""
    return instant.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S")
