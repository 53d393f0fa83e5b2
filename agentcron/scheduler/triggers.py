"""
Cron trigger: computes when the native scheduler will next fire a job.

Display only. launchd/systemd decide when jobs actually run.

Usage:
    trigger = CronTrigger("0 9 * * *")
    next_ts = trigger.next_fire_time(now=time.time())
"""

from __future__ import annotations

import datetime
import time

from croniter import croniter

from agentcron.scheduler.cron import describe_cron, validate_schedule


class CronTrigger:
    """
    Fires on a 5-field cron schedule in local time.

    The expression is checked against the compiler's own grammar, so anything
    croniter accepts beyond it (ranges, names) is still rejected here.
    """

    def __init__(self, expression: str) -> None:
        validate_schedule(expression)
        self._expression = expression

    @property
    def expression(self) -> str:
        return self._expression

    def next_fire_time(self, now: float | None = None) -> int:
        """Return the next unix timestamp strictly after ``now``."""
        base = datetime.datetime.fromtimestamp(
            now if now is not None else time.time()
        ).astimezone()
        it = croniter(self._expression, base)
        return int(it.get_next(datetime.datetime).timestamp())

    def next_fire_datetime(self, now: float | None = None) -> datetime.datetime:
        return datetime.datetime.fromtimestamp(self.next_fire_time(now))

    @property
    def description(self) -> str:
        return describe_cron(self._expression)
