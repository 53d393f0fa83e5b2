"""
agentcron configuration: loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (AGENTCRON_*)
3. Project config (./agentcron.toml)
4. User config (~/.config/agentcron/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    AGENTCRON_BACKEND → backend
    AGENTCRON_JOBS_DIR → paths.jobs_dir
    AGENTCRON_LOGS_DIR → paths.logs_dir
    AGENTCRON_EXECUTABLE → executable.name
    AGENTCRON_LOG_LEVEL → logging.console_level
"""

from __future__ import annotations

import os
import re
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from agentcron.core.errors import ConfigError

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Sub-Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class PathsConfig(BaseModel):
    """Where job records and run logs live."""

    jobs_dir: str = "~/.config/opencode/jobs"
    logs_dir: str = "~/.config/opencode/logs"


class ExecutableConfig(BaseModel):
    """The agent-run executable that scheduled jobs invoke."""

    name: str = "opencode"
    subcommand: str = "run"
    path: str | None = None
    override_env: str = "OPENCODE_SCHEDULER_OPENCODE_PATH"
    fallback_paths: list[str] = Field(
        default_factory=lambda: [
            "/opt/homebrew/bin/opencode",
            "/usr/local/bin/opencode",
            "~/.opencode/bin/opencode",
        ]
    )
    extra_path: list[str] = Field(
        default_factory=lambda: [
            "/opt/homebrew/bin",
            "/usr/local/bin",
            "/usr/bin",
            "/bin",
            "/usr/sbin",
            "/sbin",
        ]
    )
    permission_env: str = "OPENCODE_PERMISSION"


class LaunchdConfig(BaseModel):
    """macOS launch agent settings."""

    agents_dir: str = "~/Library/LaunchAgents"
    label_prefix: str = "com.opencode.job"


class SystemdConfig(BaseModel):
    """systemd user unit settings."""

    unit_dir: str = "~/.config/systemd/user"
    unit_prefix: str = "opencode-job"


class LogsConfig(BaseModel):
    """Limits for reading run logs back."""

    default_tail_lines: int = 200
    max_chars: int = 20000
    run_preview_chars: int = 5000


class LoggingConfig(BaseModel):
    """agentcron's own diagnostics log, separate from job run logs."""

    dir: str = "~/.config/agentcron/logs"  # "" disables the file log
    console_level: str = "WARNING"
    file_level: str = "DEBUG"
    max_bytes: int = 1_000_000
    backup_count: int = 3


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Main Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class AgentCronConfig(BaseModel):
    """Root configuration for agentcron."""

    backend: str = "auto"  # auto | launchd | systemd
    paths: PathsConfig = Field(default_factory=PathsConfig)
    executable: ExecutableConfig = Field(default_factory=ExecutableConfig)
    launchd: LaunchdConfig = Field(default_factory=LaunchdConfig)
    systemd: SystemdConfig = Field(default_factory=SystemdConfig)
    logs: LogsConfig = Field(default_factory=LogsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> AgentCronConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        merged: dict[str, Any] = {}

        # Layer 1: User config
        user_config_path = user_path or default_user_config_path()
        if user_config_path.exists():
            _deep_merge(merged, _load_toml(user_config_path))

        # Layer 2: Project config (./agentcron.toml)
        project_config_path = project_path or Path.cwd() / "agentcron.toml"
        if project_config_path.exists():
            _deep_merge(merged, _load_toml(project_config_path))

        # Layer 3: Environment variables
        _deep_merge(merged, _load_from_env())

        # Layer 4: Explicit overrides
        if overrides:
            _deep_merge(merged, overrides)

        _substitute_env_vars(merged)

        try:
            return AgentCronConfig(**merged)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def get_jobs_dir(self) -> Path:
        return Path(self.paths.jobs_dir).expanduser()

    def get_logs_dir(self) -> Path:
        return Path(self.paths.logs_dir).expanduser()

    def get_launch_agents_dir(self) -> Path:
        return Path(self.launchd.agents_dir).expanduser()

    def get_systemd_unit_dir(self) -> Path:
        return Path(self.systemd.unit_dir).expanduser()

    def get_app_log_dir(self) -> Path | None:
        if not self.logging.dir.strip():
            return None
        return Path(self.logging.dir).expanduser()


def default_user_config_path() -> Path:
    return Path.home() / ".config" / "agentcron" / "config.toml"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Internal Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e


def _load_from_env() -> dict[str, Any]:
    """Load configuration from AGENTCRON_* environment variables."""
    result: dict[str, Any] = {}

    env_mapping = {
        "AGENTCRON_BACKEND": (None, "backend"),
        "AGENTCRON_JOBS_DIR": ("paths", "jobs_dir"),
        "AGENTCRON_LOGS_DIR": ("paths", "logs_dir"),
        "AGENTCRON_EXECUTABLE": ("executable", "name"),
        "AGENTCRON_EXECUTABLE_PATH": ("executable", "path"),
        "AGENTCRON_LAUNCHD_AGENTS_DIR": ("launchd", "agents_dir"),
        "AGENTCRON_LAUNCHD_LABEL_PREFIX": ("launchd", "label_prefix"),
        "AGENTCRON_SYSTEMD_UNIT_DIR": ("systemd", "unit_dir"),
        "AGENTCRON_SYSTEMD_UNIT_PREFIX": ("systemd", "unit_prefix"),
        "AGENTCRON_LOGS_MAX_CHARS": ("logs", "max_chars"),
        "AGENTCRON_LOG_DIR": ("logging", "dir"),
        "AGENTCRON_LOG_LEVEL": ("logging", "console_level"),
    }

    for env_var, (section, key) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is None:
            continue
        if section is None:
            result[key] = value
            continue
        result.setdefault(section, {})[key] = _convert_value(value)

    return result


def _convert_value(value: str) -> Any:
    """Convert string value to appropriate type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    return value


def _deep_merge(base: dict, override: dict) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _substitute(value: str) -> str:
    for var_name in _ENV_PATTERN.findall(value):
        value = value.replace(f"${{{var_name}}}", os.environ.get(var_name, ""))
    return value


def _substitute_env_vars(data: dict) -> None:
    """Recursively substitute ${ENV_VAR} patterns in string values."""
    for key, value in data.items():
        if isinstance(value, dict):
            _substitute_env_vars(value)
        elif isinstance(value, str):
            data[key] = _substitute(value)
        elif isinstance(value, list):
            data[key] = [_substitute(v) if isinstance(v, str) else v for v in value]
