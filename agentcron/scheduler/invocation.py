"""
Invocation builder: maps a job's run spec to the agent executable's argv.

The same Invocation feeds the launchd plist, the systemd ExecStart line and
manual runs, so the argument order below is fixed:

    run [--attach URL] [--port N] [--command CMD]
        [--agent A] [--model M] [--variant V] [--format F]
        [--title T] [--session S] [--share] [--continue]
        [--file PATH]... -- <arguments | prompt>
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from agentcron.core.config import AgentCronConfig
from agentcron.scheduler.job import (
    Job,
    RunSpec,
    normalize_run_spec,
    resolve_effective_run,
    validate_run_spec,
)

logger = logging.getLogger(__name__)


def enhanced_path(config: AgentCronConfig) -> str:
    """Fixed PATH for scheduled runs, which start without a login shell."""
    return os.pathsep.join(config.executable.extra_path)


def find_executable(config: AgentCronConfig, env: dict[str, str] | None = None) -> str:
    """
    Resolve the agent executable. Never fails.

    Order: override env var → configured path → PATH lookup (enhanced PATH
    first) → known install locations → the bare name.
    """
    env = os.environ if env is None else env
    exe = config.executable

    override = env.get(exe.override_env, "").strip()
    if override:
        return override

    if exe.path:
        return str(Path(exe.path).expanduser())

    search_path = enhanced_path(config)
    if env.get("PATH"):
        search_path = f"{search_path}{os.pathsep}{env['PATH']}"
    resolved = shutil.which(exe.name, path=search_path)
    if resolved:
        return resolved

    for candidate in exe.fallback_paths:
        path = Path(candidate).expanduser()
        if path.is_file():
            return str(path)

    logger.debug(f"{exe.name} not found, relying on PATH at run time")
    return exe.name


def build_run_environment(
    config: AgentCronConfig, base_env: dict[str, str] | None = None
) -> dict[str, str]:
    """
    Environment for a manual run: enhanced PATH prepended, and the permission
    policy forced to deny interactive questions so runs never block.
    """
    env = dict(os.environ if base_env is None else base_env)
    path = enhanced_path(config)
    env["PATH"] = f"{path}{os.pathsep}{env['PATH']}" if env.get("PATH") else path

    policy: dict = {}
    raw = env.get(config.executable.permission_env)
    if raw:
        try:
            existing = json.loads(raw)
        except ValueError:
            logger.warning(f"Ignoring non-JSON {config.executable.permission_env}")
        else:
            if isinstance(existing, dict):
                policy.update(existing)
    policy["question"] = "deny"
    env[config.executable.permission_env] = json.dumps(policy)
    return env


@dataclass(frozen=True)
class Invocation:
    """A resolved command plus its argument vector."""

    command: str
    args: tuple[str, ...]

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


class InvocationBuilder:
    """
    Usage:
        builder = InvocationBuilder(config)
        inv = builder.build(job)
        inv.argv  # ["/usr/local/bin/opencode", "run", "--", "find deals"]
    """

    def __init__(self, config: AgentCronConfig, env: dict[str, str] | None = None) -> None:
        self._config = config
        self._env = env

    def resolve_executable(self) -> str:
        return find_executable(self._config, self._env)

    def build(self, job: Job, run: RunSpec | None = None) -> Invocation:
        """
        Build the argv for ``run`` (default: the job's effective run spec).

        Raises ValidationError if the spec is invalid.
        """
        spec = normalize_run_spec(run if run is not None else resolve_effective_run(job))
        validate_run_spec(spec)

        args = [self._config.executable.subcommand]

        if spec.attach_url:
            args += ["--attach", spec.attach_url]
        if spec.port is not None:
            args += ["--port", str(spec.port)]
        if spec.command:
            args += ["--command", spec.command]

        for flag, value in (
            ("--agent", spec.agent),
            ("--model", spec.model),
            ("--variant", spec.variant),
            ("--format", spec.run_format),
            ("--title", spec.title),
            ("--session", spec.session),
        ):
            if value:
                args += [flag, value]

        if spec.share:
            args.append("--share")
        if spec.continue_:
            args.append("--continue")

        for path in spec.files or []:
            args += ["--file", path]

        args.append("--")
        args.append((spec.arguments or "") if spec.command else spec.prompt)

        return Invocation(command=self.resolve_executable(), args=tuple(args))
