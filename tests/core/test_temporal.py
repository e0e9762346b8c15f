"""Tests for date normalization."""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from eventsync.core.temporal import (
    EPOCH,
    TemporalParseError,
    format_instant,
    format_server_instant,
    is_sentinel,
    normalize_instant,
    parse_instant,
)

pytestmark = pytest.mark.unit


class TestParseInstant:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("2025-05-11", datetime(2025, 5, 11, tzinfo=UTC)),
            ("2025-05-11 12:30:00", datetime(2025, 5, 11, 12, 30, tzinfo=UTC)),
            ("2025-05-11 12:30:00.250", datetime(2025, 5, 11, 12, 30, 0, 250000, tzinfo=UTC)),
            ("2025-05-11T12:30:00", datetime(2025, 5, 11, 12, 30, tzinfo=UTC)),
            ("2025-05-11T12:30:00Z", datetime(2025, 5, 11, 12, 30, tzinfo=UTC)),
            ("2025-05-11T14:30:00+02:00", datetime(2025, 5, 11, 12, 30, tzinfo=UTC)),
            ("  2025-05-11  ", datetime(2025, 5, 11, tzinfo=UTC)),
        ],
    )
    def test_accepted_shapes(self, raw, expected):
        assert parse_instant(raw) == expected

    def test_result_is_utc(self):
        assert parse_instant("2025-05-11T14:30:00+02:00").tzinfo == UTC

    def test_naive_datetime_read_as_utc(self):
        assert parse_instant(datetime(2025, 1, 1, 8)) == datetime(2025, 1, 1, 8, tzinfo=UTC)

    def test_aware_datetime_converted(self):
        plus_two = timezone(timedelta(hours=2))
        assert parse_instant(datetime(2025, 1, 1, 8, tzinfo=plus_two)) == datetime(
            2025, 1, 1, 6, tzinfo=UTC
        )

    def test_date_object_is_midnight(self):
        assert parse_instant(date(2025, 3, 4)) == datetime(2025, 3, 4, tzinfo=UTC)

    @pytest.mark.parametrize("raw", [None, "", "   ", "yesterday", "2025-13-01", "2025-02-30", 42])
    def test_rejects_unusable_values(self, raw):
        with pytest.raises(TemporalParseError):
            parse_instant(raw)

    def test_parse_error_is_value_error(self):
        with pytest.raises(ValueError):
            parse_instant("nope")


class TestNormalizeInstant:
    def test_passes_valid_values_through(self):
        assert normalize_instant("2025-05-11") == datetime(2025, 5, 11, tzinfo=UTC)

    def test_invalid_value_becomes_epoch(self, caplog):
        with caplog.at_level(logging.WARNING, logger="eventsync.core.temporal"):
            result = normalize_instant("garbage", field="start_date")

        assert result == EPOCH
        assert is_sentinel(result)
        assert "start_date" in caplog.text

    def test_missing_value_becomes_epoch(self):
        assert normalize_instant(None) == EPOCH


class TestFormatting:
    def test_format_instant_uses_z_suffix(self):
        assert format_instant(datetime(2025, 5, 11, 12, tzinfo=UTC)) == "2025-05-11T12:00:00Z"

    def test_format_server_instant_converts_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        instant = datetime(2025, 5, 11, 14, 0, 5, tzinfo=plus_two)
        assert format_server_instant(instant) == "2025-05-11 12:00:05"

    def test_server_form_parses_back(self):
        instant = datetime(2025, 5, 11, 12, 0, 5, tzinfo=UTC)
        assert parse_instant(format_server_instant(instant)) == instant
