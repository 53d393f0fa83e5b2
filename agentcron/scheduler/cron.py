"""
Cron compiler: turns a 5-field cron expression into native calendar specs.

Supported field syntax (a deliberate subset):
    *          every value
    */step     every step-th value from the field minimum
    N          a single value
    N,M,...    a list of values

Ranges (1-5) and names (MON, JAN) are rejected. Day-of-week 7 is Sunday (0).

When both day-of-month and day-of-week are restricted, cron fires when
EITHER matches. Neither launchd nor systemd calendars express that OR
directly, so the compiler emits two families of entries and lets the
native scheduler union them.

Usage:
    compile_launchd_calendars("0 9 * * *")   # [{"Minute": 0, "Hour": 9}]
    compile_systemd_calendars("0 9 * * *")   # ["* *-*-* 09:00:00"]
"""

from __future__ import annotations

import re
from typing import NamedTuple

from agentcron.core.errors import CronError

_NUMBER = re.compile(r"\d+", re.ASCII)

SYSTEMD_WEEKDAYS = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")

WEEKDAY_NAMES = (
    "Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday",
)


class FieldSpec(NamedTuple):
    label: str
    minimum: int
    maximum: int
    allow_seven_as_zero: bool = False


FIELDS = (
    FieldSpec("minute", 0, 59),
    FieldSpec("hour", 0, 23),
    FieldSpec("day of month", 1, 31),
    FieldSpec("month", 1, 12),
    FieldSpec("day of week", 0, 7, allow_seven_as_zero=True),
)


class CronFields(NamedTuple):
    """Parsed expression. None means the field is a wildcard."""

    minute: list[int] | None
    hour: list[int] | None
    day: list[int] | None
    month: list[int] | None
    weekday: list[int] | None


# ━━━ Parsing ━━━


def split_expression(cron: str) -> tuple[str, str, str, str, str]:
    """Split on whitespace; exactly five fields are required."""
    parts = cron.split() if isinstance(cron, str) else []
    if len(parts) != 5:
        raise CronError(f"Invalid cron: {cron!r} (expected 5 fields)", value=str(cron))
    return parts[0], parts[1], parts[2], parts[3], parts[4]


def parse_field(
    field: str,
    minimum: int,
    maximum: int,
    label: str = "field",
    allow_seven_as_zero: bool = False,
) -> list[int] | None:
    """
    Parse one cron field into a sorted, de-duplicated value list.

    Returns None for the wildcard "*". Raises CronError naming the field.
    """
    if field == "*":
        return None

    if field.startswith("*/"):
        step_text = field[2:]
        if not _NUMBER.fullmatch(step_text) or int(step_text) <= 0:
            raise CronError(
                f"Invalid cron {label} step: {field}", field=label, value=field
            )
        values = range(minimum, maximum + 1, int(step_text))
        return _unique_sorted(_alias(v, allow_seven_as_zero) for v in values)

    if "," in field:
        return _unique_sorted(
            _parse_number(part, minimum, maximum, label, allow_seven_as_zero)
            for part in field.split(",")
        )

    if _NUMBER.fullmatch(field):
        return [_parse_number(field, minimum, maximum, label, allow_seven_as_zero)]

    raise CronError(f"Invalid cron {label} field: {field}", field=label, value=field)


def parse_expression(cron: str) -> CronFields:
    parts = split_expression(cron)
    return CronFields(
        *(
            parse_field(part, spec.minimum, spec.maximum, spec.label, spec.allow_seven_as_zero)
            for part, spec in zip(parts, FIELDS)
        )
    )


def validate_schedule(cron: str) -> None:
    """Raise CronError unless every field of the expression parses."""
    parse_expression(cron)


def _parse_number(
    value: str, minimum: int, maximum: int, label: str, allow_seven_as_zero: bool
) -> int:
    if not _NUMBER.fullmatch(value):
        raise CronError(f"Invalid cron {label} value: {value}", field=label, value=value)
    number = _alias(int(value), allow_seven_as_zero)
    if number < minimum or number > maximum:
        raise CronError(f"Invalid cron {label} value: {value}", field=label, value=value)
    return number


def _alias(value: int, allow_seven_as_zero: bool) -> int:
    return 0 if allow_seven_as_zero and value == 7 else value


def _unique_sorted(values) -> list[int]:
    return sorted(set(values))


# ━━━ launchd ━━━


def compile_launchd_calendars(cron: str) -> list[dict[str, int]]:
    """
    Compile to StartCalendarInterval dicts.

    Each dict carries only the keys of restricted fields. Expansion order is
    minute outermost, weekday innermost.
    """
    fields = parse_expression(cron)

    if fields.day is not None and fields.weekday is not None:
        return _expand_launchd(fields._replace(weekday=None)) + _expand_launchd(
            fields._replace(day=None)
        )

    return _expand_launchd(fields)


def _expand_launchd(fields: CronFields) -> list[dict[str, int]]:
    entries: list[dict[str, int]] = [{}]
    for key, values in (
        ("Minute", fields.minute),
        ("Hour", fields.hour),
        ("Day", fields.day),
        ("Month", fields.month),
        ("Weekday", fields.weekday),
    ):
        if values is None:
            continue
        entries = [{**entry, key: value} for entry in entries for value in values]
    return entries


# ━━━ systemd ━━━


def compile_systemd_calendars(cron: str) -> list[str]:
    """Compile to OnCalendar= values: "<dow> *-<MM>-<DD> <HH>:<MM>:00"."""
    fields = parse_expression(cron)

    minutes = _padded(fields.minute)
    hours = _padded(fields.hour)
    days = _padded(fields.day)
    months = _padded(fields.month)
    weekdays = (
        [SYSTEMD_WEEKDAYS[v] for v in fields.weekday] if fields.weekday is not None else ["*"]
    )

    if fields.day is not None and fields.weekday is not None:
        return _expand_systemd(minutes, hours, days, months, ["*"]) + _expand_systemd(
            minutes, hours, ["*"], months, weekdays
        )

    return _expand_systemd(minutes, hours, days, months, weekdays)


def _padded(values: list[int] | None) -> list[str]:
    if values is None:
        return ["*"]
    return [f"{v:02d}" for v in values]


def _expand_systemd(
    minutes: list[str],
    hours: list[str],
    days: list[str],
    months: list[str],
    weekdays: list[str],
) -> list[str]:
    return [
        f"{dow} *-{month}-{day} {hour}:{minute}:00"
        for minute in minutes
        for hour in hours
        for day in days
        for month in months
        for dow in weekdays
    ]


# ━━━ Display ━━━


def describe_cron(cron: str) -> str:
    """Human-readable summary for common shapes; anything else echoes the expression."""
    parts = cron.split() if isinstance(cron, str) else []
    if len(parts) != 5:
        return cron

    minute, hour, dom, month, dow = parts

    if month == "*" and dom == "*":
        if dow == "*" and _NUMBER.fullmatch(hour) and _NUMBER.fullmatch(minute):
            return f"daily at {_clock(int(hour), int(minute))}"
        if dow == "*" and hour == "*" and minute == "*":
            return "every minute"
        if hour.startswith("*/"):
            return f"every {hour[2:]} hours"
        if minute.startswith("*/"):
            return f"every {minute[2:]} minutes"

    if dom == "*" and month == "*" and _NUMBER.fullmatch(dow) and int(dow) <= 7:
        if _NUMBER.fullmatch(hour) and _NUMBER.fullmatch(minute):
            weekday = WEEKDAY_NAMES[int(dow) % 7]
            return f"{weekday}s at {_clock(int(hour), int(minute))}"

    return cron


def _clock(hour: int, minute: int) -> str:
    suffix = "PM" if hour >= 12 else "AM"
    display = hour - 12 if hour > 12 else (12 if hour == 0 else hour)
    return f"{display}:{minute:02d} {suffix}"
