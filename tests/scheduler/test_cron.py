"""Tests for agentcron/scheduler/cron.py"""
from __future__ import annotations

import pytest

from agentcron.core.errors import CronError
from agentcron.scheduler.cron import (
    compile_launchd_calendars,
    compile_systemd_calendars,
    describe_cron,
    parse_expression,
    parse_field,
    split_expression,
    validate_schedule,
)


# ── parse_field ──────────────────────────────────────────────────────────────

class TestParseField:
    def test_wildcard_is_none(self):
        assert parse_field("*", 0, 59) is None

    def test_single_value(self):
        assert parse_field("9", 0, 23) == [9]

    def test_step_from_minimum(self):
        assert parse_field("*/15", 0, 59) == [0, 15, 30, 45]

    def test_step_that_does_not_divide(self):
        assert parse_field("*/7", 0, 59) == [0, 7, 14, 21, 28, 35, 42, 49, 56]

    def test_step_over_hours(self):
        assert parse_field("*/7", 0, 23) == [0, 7, 14, 21]

    def test_step_starts_at_field_minimum(self):
        assert parse_field("*/5", 1, 12) == [1, 6, 11]

    def test_list_is_deduplicated_and_sorted(self):
        assert parse_field("5,1,5,3", 0, 59) == [1, 3, 5]

    def test_seven_aliases_to_sunday(self):
        assert parse_field("7", 0, 7, allow_seven_as_zero=True) == [0]
        assert parse_field("0,7", 0, 7, allow_seven_as_zero=True) == [0]

    def test_seven_alias_applies_to_steps(self):
        # 0..7 step 7 would be [0, 7]; after aliasing only Sunday remains
        assert parse_field("*/7", 0, 7, allow_seven_as_zero=True) == [0]

    def test_seven_is_kept_outside_day_of_week(self):
        assert parse_field("7", 0, 23) == [7]

    @pytest.mark.parametrize(
        "raw",
        ["1-5", "MON", "*/0", "*/x", "", "1,,2", "-1", "+3", "60", "1,60", "٣"],
    )
    def test_rejects(self, raw):
        with pytest.raises(CronError):
            parse_field(raw, 0, 59, "minute")

    def test_error_names_the_field(self):
        with pytest.raises(CronError) as exc:
            parse_field("99", 0, 23, "hour")
        assert exc.value.field == "hour"
        assert "hour" in exc.value.message
        assert "99" in exc.value.message


# ── split / validate ─────────────────────────────────────────────────────────

class TestValidate:
    def test_split_tolerates_extra_whitespace(self):
        assert split_expression("  0   9 * *\t1 ") == ("0", "9", "*", "*", "1")

    @pytest.mark.parametrize("raw", ["", "* * * *", "* * * * * *", "@daily"])
    def test_wrong_field_count(self, raw):
        with pytest.raises(CronError):
            validate_schedule(raw)

    def test_valid_expressions(self):
        for raw in ["* * * * *", "0 9 * * *", "*/15 * * * *", "30 8 * * 1", "0 0 1,15 * 7"]:
            validate_schedule(raw)

    def test_day_of_month_bounds(self):
        with pytest.raises(CronError):
            validate_schedule("0 9 0 * *")
        with pytest.raises(CronError):
            validate_schedule("0 9 32 * *")

    def test_parse_expression_fields(self):
        fields = parse_expression("0 9 * 1,2 7")
        assert fields.minute == [0]
        assert fields.hour == [9]
        assert fields.day is None
        assert fields.month == [1, 2]
        assert fields.weekday == [0]


# ── launchd ──────────────────────────────────────────────────────────────────

class TestLaunchdCalendars:
    def test_daily(self):
        assert compile_launchd_calendars("0 9 * * *") == [{"Minute": 0, "Hour": 9}]

    def test_every_minute_is_one_empty_entry(self):
        assert compile_launchd_calendars("* * * * *") == [{}]

    def test_keys_only_for_constrained_fields(self):
        for entry in compile_launchd_calendars("*/20 * * 6 *"):
            assert set(entry) == {"Minute", "Month"}

    def test_minute_outermost(self):
        assert compile_launchd_calendars("0,30 8,9 * * *") == [
            {"Minute": 0, "Hour": 8},
            {"Minute": 0, "Hour": 9},
            {"Minute": 30, "Hour": 8},
            {"Minute": 30, "Hour": 9},
        ]

    def test_day_and_weekday_are_unioned(self):
        assert compile_launchd_calendars("0 9 1 * 1") == [
            {"Minute": 0, "Hour": 9, "Day": 1},
            {"Minute": 0, "Hour": 9, "Weekday": 1},
        ]

    def test_union_keeps_month_in_both_families(self):
        entries = compile_launchd_calendars("0 9 1 6 1")
        assert entries == [
            {"Minute": 0, "Hour": 9, "Day": 1, "Month": 6},
            {"Minute": 0, "Hour": 9, "Month": 6, "Weekday": 1},
        ]

    def test_invalid_raises(self):
        with pytest.raises(CronError):
            compile_launchd_calendars("0 9 * * MON")


# ── systemd ──────────────────────────────────────────────────────────────────

class TestSystemdCalendars:
    def test_daily(self):
        assert compile_systemd_calendars("0 9 * * *") == ["* *-*-* 09:00:00"]

    def test_weekday_names(self):
        assert compile_systemd_calendars("30 8 * * 1") == ["Mon *-*-* 08:30:00"]

    def test_sunday_seven(self):
        assert compile_systemd_calendars("0 0 * * 7") == ["Sun *-*-* 00:00:00"]

    def test_padded_month_and_day(self):
        assert compile_systemd_calendars("5 4 3 2 *") == ["* *-02-03 04:05:00"]

    def test_day_and_weekday_are_unioned(self):
        assert compile_systemd_calendars("0 9 1 * 1") == [
            "* *-*-01 09:00:00",
            "Mon *-*-* 09:00:00",
        ]

    def test_step_expands(self):
        assert compile_systemd_calendars("*/15 * * * *") == [
            "* *-*-* *:00:00",
            "* *-*-* *:15:00",
            "* *-*-* *:30:00",
            "* *-*-* *:45:00",
        ]


# ── describe ─────────────────────────────────────────────────────────────────

class TestDescribe:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("0 9 * * *", "daily at 9:00 AM"),
            ("30 14 * * *", "daily at 2:30 PM"),
            ("0 0 * * *", "daily at 12:00 AM"),
            ("0 */6 * * *", "every 6 hours"),
            ("*/15 * * * *", "every 15 minutes"),
            ("* * * * *", "every minute"),
            ("30 8 * * 1", "Mondays at 8:30 AM"),
            ("0 9 * * 7", "Sundays at 9:00 AM"),
            ("0 9 1 * *", "0 9 1 * *"),
            ("garbage", "garbage"),
        ],
    )
    def test_describe(self, raw, expected):
        assert describe_cron(raw) == expected
