"""
agentcron shared types: enums for run state and the result object
every public operation returns.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Enums
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class RunStatus(str, Enum):
    """Outcome of the most recent run of a job."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class RunSource(str, Enum):
    """Who started the most recent run."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"


class RunFormat(str, Enum):
    """Output format passed to the agent executable (--format)."""

    DEFAULT = "default"
    JSON = "json"


class OutputFormat(str, Enum):
    """How an OperationResult is rendered for the caller."""

    TEXT = "text"
    JSON = "json"

    @classmethod
    def parse(cls, value: OutputFormat | str | None) -> OutputFormat:
        return cls.JSON if value == "json" else cls.TEXT


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Results
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(slots=True)
class OperationResult:
    """Result of a scheduler operation."""

    success: bool
    output: str
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @staticmethod
    def ok(output: str, **data: Any) -> OperationResult:
        return OperationResult(success=True, output=output, data=data)

    @staticmethod
    def fail(output: str, **data: Any) -> OperationResult:
        return OperationResult(success=False, output=output, data=data, error=output)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "output": self.output,
            # Failed operations invite the caller to correct and retry.
            "shouldContinue": not self.success,
        }
        if self.data:
            payload["data"] = self.data
        return payload

    def render(self, fmt: OutputFormat | str = OutputFormat.TEXT) -> str:
        if OutputFormat.parse(fmt) is OutputFormat.JSON:
            return json.dumps(self.to_dict(), indent=2, default=str)
        return self.output
