"""
Scheduler backend interface.

A backend renders a job into native unit file(s) and registers them with
the host's service manager. Exactly one backend is chosen at startup
(see detect.py) and injected wherever jobs are installed.

Implementations:
    LaunchdBackend      macOS launch agents
    SystemdBackend      systemd user timers
    UnsupportedBackend  anything else
"""

from __future__ import annotations

import logging
import platform
from abc import ABC, abstractmethod
from pathlib import Path

import aiofiles
import aiofiles.os

from agentcron.backends.commands import CommandRunner
from agentcron.core.config import AgentCronConfig
from agentcron.core.errors import InstallError, UnsupportedPlatformError
from agentcron.scheduler.invocation import InvocationBuilder, enhanced_path
from agentcron.scheduler.job import Job

logger = logging.getLogger(__name__)


class SchedulerBackend(ABC):
    """Abstract base class for native scheduler adapters."""

    name: str = ""

    def __init__(
        self,
        config: AgentCronConfig,
        runner: CommandRunner | None = None,
        builder: InvocationBuilder | None = None,
    ) -> None:
        self._config = config
        self._runner = runner or CommandRunner()
        self._builder = builder or InvocationBuilder(config)

    @abstractmethod
    def render(self, job: Job) -> dict[Path, str]:
        """Unit file path → file content. Raises ValidationError on a bad job."""
        ...

    @abstractmethod
    def unit_paths(self, slug: str) -> list[Path]:
        ...

    @abstractmethod
    async def install(self, job: Job) -> None:
        """Write the unit(s) and register them. Raises InstallError."""
        ...

    @abstractmethod
    async def uninstall(self, slug: str) -> None:
        """Unregister and delete the unit(s). Never fails on a missing unit."""
        ...

    # ── Shared helpers ────────────────────────────────────────────────────────

    def log_path(self, slug: str) -> Path:
        return self._config.get_logs_dir() / f"{slug}.log"

    def workdir(self, job: Job) -> str:
        return job.workdir or str(Path.home())

    def path_env(self) -> str:
        return enhanced_path(self._config)

    async def _write_units(self, files: dict[Path, str], unit: str) -> None:
        try:
            await aiofiles.os.makedirs(self._config.get_logs_dir(), exist_ok=True)
            for path, content in files.items():
                await aiofiles.os.makedirs(path.parent, exist_ok=True)
                async with aiofiles.open(path, mode="w", encoding="utf-8") as f:
                    await f.write(content)
        except OSError as e:
            raise InstallError(f"Failed to write unit {unit}: {e}", unit=unit) from e

    async def _remove_units(self, slug: str) -> None:
        for path in self.unit_paths(slug):
            try:
                await aiofiles.os.remove(path)
                logger.debug(f"Removed {path}")
            except FileNotFoundError:
                pass


class UnsupportedBackend(SchedulerBackend):
    """Placeholder for hosts with neither launchd nor systemd."""

    name = "unsupported"

    def __init__(self, config: AgentCronConfig, system: str | None = None, **kwargs) -> None:
        super().__init__(config, **kwargs)
        self._system = system or platform.system()

    def _error(self) -> UnsupportedPlatformError:
        return UnsupportedPlatformError(
            f"Unsupported platform: {self._system}. Only macOS and Linux are supported."
        )

    def render(self, job: Job) -> dict[Path, str]:
        raise self._error()

    def unit_paths(self, slug: str) -> list[Path]:
        return []

    async def install(self, job: Job) -> None:
        raise self._error()

    async def uninstall(self, slug: str) -> None:
        return None
