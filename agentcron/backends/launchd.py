"""
launchd backend: one launch agent plist per job.

    ~/Library/LaunchAgents/com.opencode.job.<slug>.plist

The plist is loaded with ``launchctl load``. launchd fires it on the
compiled StartCalendarInterval and runs missed intervals after wake.
"""

from __future__ import annotations

import logging
import plistlib
from pathlib import Path

from agentcron.backends.base import SchedulerBackend
from agentcron.core.errors import ValidationError
from agentcron.scheduler.cron import compile_launchd_calendars
from agentcron.scheduler.job import Job

logger = logging.getLogger(__name__)


class LaunchdBackend(SchedulerBackend):
    """macOS launch agents via launchctl."""

    name = "launchd"

    def label(self, slug: str) -> str:
        return f"{self._config.launchd.label_prefix}.{slug}"

    def plist_path(self, slug: str) -> Path:
        return self._config.get_launch_agents_dir() / f"{self.label(slug)}.plist"

    def unit_paths(self, slug: str) -> list[Path]:
        return [self.plist_path(slug)]

    # ── Rendering ─────────────────────────────────────────────────────────────

    def build_plist(self, job: Job) -> dict:
        calendars = compile_launchd_calendars(job.schedule)
        invocation = self._builder.build(job)
        log_path = str(self.log_path(job.slug))

        return {
            "Label": self.label(job.slug),
            "WorkingDirectory": self.workdir(job),
            "EnvironmentVariables": {"PATH": self.path_env()},
            "ProgramArguments": invocation.argv,
            "StartCalendarInterval": calendars[0] if len(calendars) == 1 else calendars,
            "StandardOutPath": log_path,
            "StandardErrorPath": log_path,
            "RunAtLoad": False,
        }

    def render_plist(self, job: Job) -> str:
        try:
            return plistlib.dumps(self.build_plist(job), sort_keys=False).decode("utf-8")
        except ValueError as e:
            # plist strings cannot hold control characters
            raise ValidationError(f"Cannot render launch agent for {job.slug}: {e}") from e

    def render(self, job: Job) -> dict[Path, str]:
        return {self.plist_path(job.slug): self.render_plist(job)}

    # ── Install / uninstall ───────────────────────────────────────────────────

    async def install(self, job: Job) -> None:
        files = self.render(job)
        plist = self.plist_path(job.slug)
        label = self.label(job.slug)

        if plist.exists():
            await self._runner.run(["launchctl", "unload", str(plist)], check=False, unit=label)

        await self._write_units(files, label)
        await self._runner.run(["launchctl", "load", str(plist)], unit=label)
        logger.info(f"Installed launch agent {label}")

    async def uninstall(self, slug: str) -> None:
        plist = self.plist_path(slug)
        if not plist.exists():
            return
        await self._runner.run(
            ["launchctl", "unload", str(plist)], check=False, unit=self.label(slug)
        )
        await self._remove_units(slug)
        logger.info(f"Uninstalled launch agent {self.label(slug)}")
