"""Tests for chorewheel.core.clock — timestamp helpers."""

from datetime import datetime

import pytest

from chorewheel.core.clock import days_between, parse_timestamp, to_timestamp


class TestParseTimestamp:
    @pytest.mark.parametrize(
        "raw",
        ["2026-03-05T00:00:00", "2026-03-05T00:00:00Z", "2026-03-05T02:00:00+02:00"],
    )
    def test_normalized_to_naive_utc(self, raw):
        assert parse_timestamp(raw) == datetime(2026, 3, 5)

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_timestamp("next week")


class TestHelpers:
    def test_to_timestamp_round_trip(self):
        moment = datetime(2026, 3, 1, 23, 0)
        assert parse_timestamp(to_timestamp(moment)) == moment

    def test_days_between(self):
        assert days_between("2026-03-01T11:00:00", datetime(2026, 3, 2, 23, 0)) == 1.5
