"""
systemd backend: a oneshot service plus a timer per job, as user units.

    ~/.config/systemd/user/opencode-job-<slug>.service
    ~/.config/systemd/user/opencode-job-<slug>.timer

The timer carries Persistent=true so runs missed while the machine was
off or asleep fire on the next boot/resume.
"""

from __future__ import annotations

import logging
from pathlib import Path

from agentcron.backends.base import SchedulerBackend
from agentcron.scheduler.cron import compile_systemd_calendars
from agentcron.scheduler.job import Job

logger = logging.getLogger(__name__)


def quote_exec_arg(value: str) -> str:
    """
    Double-quote one ExecStart argument.

    Backslash and quote are escaped, newlines become \\n, and % / $ are
    doubled so systemd does not expand specifiers or variables.
    """
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("%", "%%")
        .replace("$", "$$")
    )
    return f'"{escaped}"'


def quote_unit_value(value: str) -> str:
    """Make a value safe for a single-line unit setting (no specifiers)."""
    return value.replace("%", "%%").replace("\n", " ")


class SystemdBackend(SchedulerBackend):
    """systemd user timers via systemctl --user."""

    name = "systemd"

    def unit_name(self, slug: str) -> str:
        return f"{self._config.systemd.unit_prefix}-{slug}"

    def service_path(self, slug: str) -> Path:
        return self._config.get_systemd_unit_dir() / f"{self.unit_name(slug)}.service"

    def timer_path(self, slug: str) -> Path:
        return self._config.get_systemd_unit_dir() / f"{self.unit_name(slug)}.timer"

    def unit_paths(self, slug: str) -> list[Path]:
        return [self.service_path(slug), self.timer_path(slug)]

    # ── Rendering ─────────────────────────────────────────────────────────────

    def render_service(self, job: Job) -> str:
        invocation = self._builder.build(job)
        log_path = quote_unit_value(str(self.log_path(job.slug)))
        exec_start = " ".join(
            [quote_exec_arg(invocation.command), *(quote_exec_arg(a) for a in invocation.args)]
        )

        return (
            "[Unit]\n"
            f"Description=OpenCode Job: {quote_unit_value(job.name)}\n"
            "\n"
            "[Service]\n"
            "Type=oneshot\n"
            f"WorkingDirectory={quote_unit_value(self.workdir(job))}\n"
            f'Environment="PATH={quote_unit_value(self.path_env())}"\n'
            f"ExecStart={exec_start}\n"
            f"StandardOutput=append:{log_path}\n"
            f"StandardError=append:{log_path}\n"
            "\n"
            "[Install]\n"
            "WantedBy=default.target\n"
        )

    def render_timer(self, job: Job) -> str:
        calendar_lines = "".join(
            f"OnCalendar={calendar}\n" for calendar in compile_systemd_calendars(job.schedule)
        )
        return (
            "[Unit]\n"
            f"Description=Timer for OpenCode Job: {quote_unit_value(job.name)}\n"
            "\n"
            "[Timer]\n"
            f"{calendar_lines}"
            "Persistent=true\n"
            "\n"
            "[Install]\n"
            "WantedBy=timers.target\n"
        )

    def render(self, job: Job) -> dict[Path, str]:
        # timer first, so schedule errors surface before invocation errors
        timer = self.render_timer(job)
        return {
            self.service_path(job.slug): self.render_service(job),
            self.timer_path(job.slug): timer,
        }

    # ── Install / uninstall ───────────────────────────────────────────────────

    def _systemctl(self, *args: str) -> list[str]:
        return ["systemctl", "--user", *args]

    async def install(self, job: Job) -> None:
        files = self.render(job)
        unit = self.unit_name(job.slug)
        timer = f"{unit}.timer"

        await self._write_units(files, unit)
        await self._runner.run(self._systemctl("daemon-reload"), unit=unit)
        await self._runner.run(self._systemctl("enable", timer), unit=unit)
        await self._runner.run(self._systemctl("start", timer), unit=unit)
        logger.info(f"Installed systemd timer {timer}")

    async def uninstall(self, slug: str) -> None:
        unit = self.unit_name(slug)
        timer = f"{unit}.timer"

        await self._runner.run(self._systemctl("stop", timer), check=False, unit=unit)
        await self._runner.run(self._systemctl("disable", timer), check=False, unit=unit)
        await self._remove_units(slug)
        await self._runner.run(self._systemctl("daemon-reload"), check=False, unit=unit)
        logger.info(f"Uninstalled systemd timer {timer}")
