"""
agentcron exception hierarchy.

Every error in the system inherits from AgentCronError.
Each layer has its own error class for targeted catching.

Usage:
    try:
        await backend.install(job)
    except InstallError as e:
        # service manager refused the unit
    except AgentCronError as e:
        # any agentcron error
"""


class AgentCronError(Exception):
    """Base exception for all agentcron errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ━━━ Layer 0: Core Errors ━━━


class ConfigError(AgentCronError):
    """Configuration is invalid, missing, or malformed."""

    pass


# ━━━ Layer 1: Validation Errors ━━━


class ValidationError(AgentCronError):
    """Caller-supplied input was rejected before anything was written."""

    pass


class CronError(ValidationError):
    """Malformed cron expression or field."""

    def __init__(
        self,
        message: str,
        field: str = "",
        value: str = "",
        details: dict | None = None,
    ):
        self.field = field
        self.value = value
        super().__init__(message, details)


class RunSpecError(ValidationError):
    """Run specification violates prompt/command exclusivity or a field check."""

    pass


class MissingPromptError(ValidationError):
    """Legacy record has neither a run spec nor a prompt."""

    def __init__(self, message: str, slug: str = "", details: dict | None = None):
        self.slug = slug
        super().__init__(message, details)


# ━━━ Layer 2: Store Errors ━━━


class JobExistsError(AgentCronError):
    """A job with the same slug is already stored."""

    pass


class NotFoundError(AgentCronError):
    """No job matched the given name or slug."""

    pass


class PersistenceError(AgentCronError):
    """Job store read/write failure."""

    pass


# ━━━ Layer 3: Platform Errors ━━━


class InstallError(AgentCronError):
    """Writing a unit file or a service-manager command failed."""

    def __init__(
        self,
        message: str,
        unit: str = "",
        command: list[str] | None = None,
        details: dict | None = None,
    ):
        self.unit = unit
        self.command = command or []
        super().__init__(message, details)


class UnsupportedPlatformError(InstallError):
    """No native scheduler is available on this host."""

    pass


class SpawnError(AgentCronError):
    """The agent executable could not be started for a manual run."""

    def __init__(self, message: str, slug: str = "", details: dict | None = None):
        self.slug = slug
        super().__init__(message, details)
