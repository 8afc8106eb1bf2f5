# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Tests for date window arithmetic (app.greenpass.dates)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.greenpass.dates import (
    add_days,
    add_hours,
    end_of_day,
    is_at_least_years_old,
    parse_date,
    parse_datetime,
    start_of_day,
    to_iso,
)

UTC = timezone.utc


class TestParseDate:

    def test_full_date_is_utc_midnight(self):
        assert parse_date("2021-05-10") == datetime(2021, 5, 10, tzinfo=UTC)

    def test_time_part_is_discarded(self):
        assert parse_date("2021-05-10T22:30:00+02:00") == datetime(2021, 5, 10, tzinfo=UTC)

    @pytest.mark.parametrize("value,expected", [
        ("1990", datetime(1990, 1, 1, tzinfo=UTC)),
        ("1990-07", datetime(1990, 7, 1, tzinfo=UTC)),
    ])
    def test_partial_dates_resolve_to_first_day(self, value, expected):
        assert parse_date(value) == expected

    @pytest.mark.parametrize("value", ["", "10/05/2021", "2021-13-01", "abcd"])
    def test_invalid_dates_raise(self, value):
        with pytest.raises(ValueError):
            parse_date(value)

    def test_none_raises(self):
        with pytest.raises(ValueError):
            parse_date(None)


class TestParseDatetime:

    def test_zulu_suffix(self):
        assert parse_datetime("2022-03-14T20:00:00Z") == datetime(2022, 3, 14, 20, tzinfo=UTC)

    def test_offset_is_normalized_to_utc(self):
        assert parse_datetime("2022-03-14T20:00:00+01:00") == datetime(2022, 3, 14, 19, tzinfo=UTC)

    def test_naive_is_taken_as_utc(self):
        assert parse_datetime("2022-03-14T20:00:00").tzinfo is UTC

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_datetime("yesterday")


class TestArithmetic:

    def test_add_days_fractional(self):
        ts = datetime(2022, 1, 1, tzinfo=UTC)
        assert add_days(ts, 0.5) == ts + timedelta(hours=12)
        assert add_days(ts, -1) == datetime(2021, 12, 31, tzinfo=UTC)

    def test_add_hours(self):
        ts = datetime(2022, 1, 1, tzinfo=UTC)
        assert add_hours(ts, 72) == datetime(2022, 1, 4, tzinfo=UTC)

    def test_day_bounds(self):
        ts = datetime(2022, 3, 15, 12, 34, 56, 789, tzinfo=UTC)
        assert start_of_day(ts) == datetime(2022, 3, 15, tzinfo=UTC)
        assert end_of_day(ts) == datetime(2022, 3, 15, 23, 59, 59, 999000, tzinfo=UTC)

    def test_to_iso_milliseconds(self):
        ts = datetime(2022, 1, 2, 3, 4, 5, 678900, tzinfo=UTC)
        assert to_iso(ts) == "2022-01-02T03:04:05.678Z"


class TestAge:

    def test_clearly_over(self):
        assert is_at_least_years_old(datetime(1960, 5, 1, tzinfo=UTC), datetime(2022, 3, 15, tzinfo=UTC), 50)

    def test_clearly_under(self):
        assert not is_at_least_years_old(datetime(1990, 5, 1, tzinfo=UTC), datetime(2022, 3, 15, tzinfo=UTC), 50)

    def test_birthday_itself_does_not_count(self):
        birth = datetime(1972, 3, 15, tzinfo=UTC)
        assert not is_at_least_years_old(birth, datetime(2022, 3, 15, 18, tzinfo=UTC), 50)

    def test_day_after_birthday_counts(self):
        birth = datetime(1972, 3, 15, tzinfo=UTC)
        assert is_at_least_years_old(birth, datetime(2022, 3, 16, tzinfo=UTC), 50)
