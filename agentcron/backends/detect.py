"""
Backend auto-detection: picks the native scheduler for the current OS.
"""

from __future__ import annotations

import logging
import platform

from agentcron.backends.base import SchedulerBackend, UnsupportedBackend
from agentcron.backends.commands import CommandRunner
from agentcron.core.config import AgentCronConfig
from agentcron.core.errors import ConfigError
from agentcron.scheduler.invocation import InvocationBuilder

logger = logging.getLogger(__name__)


def detect_backend(
    config: AgentCronConfig,
    system: str | None = None,
    runner: CommandRunner | None = None,
    builder: InvocationBuilder | None = None,
) -> SchedulerBackend:
    """
    Return the scheduler backend for this system.

    Args:
        config: config.backend is "auto", "launchd" or "systemd".
                "auto" picks by OS.
        system: platform.system() override, for tests.

    Returns:
        An instantiated SchedulerBackend (UnsupportedBackend if nothing fits)
    """
    system = (system or platform.system()).lower()
    preference = config.backend.lower().strip()

    if preference != "auto":
        return _create_by_name(preference, config, runner, builder)

    if system == "darwin":
        logger.info("Detected macOS, using launchd")
        return _create_by_name("launchd", config, runner, builder)
    if system == "linux":
        logger.info("Detected Linux, using systemd")
        return _create_by_name("systemd", config, runner, builder)

    logger.warning(f"No native scheduler for {system}")
    return UnsupportedBackend(config, system=system, runner=runner, builder=builder)


def _create_by_name(
    name: str,
    config: AgentCronConfig,
    runner: CommandRunner | None,
    builder: InvocationBuilder | None,
) -> SchedulerBackend:
    if name == "launchd":
        from agentcron.backends.launchd import LaunchdBackend

        return LaunchdBackend(config, runner=runner, builder=builder)
    elif name == "systemd":
        from agentcron.backends.systemd import SystemdBackend

        return SystemdBackend(config, runner=runner, builder=builder)
    else:
        raise ConfigError(
            f"Unknown scheduler backend: '{name}'. Available: auto, launchd, systemd"
        )
