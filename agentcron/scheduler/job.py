"""
Scheduler Job: the core data model.

A Job describes when to run (a cron expression handed to the native
scheduler) and what to run (a RunSpec turned into an argv by the
invocation builder). Records are stored as camelCase JSON, one file per slug.

Older records carry only a top-level ``prompt``/``attachUrl`` and no
``run`` block; resolve_effective_run() is the single place that bridges them.

Two paths cross the storage boundary:
    decode_job()    tolerant, used on read, never raises
    sanitize_job()  strict, used before every write, raises ValidationError
"""

from __future__ import annotations

import dataclasses
import datetime
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from agentcron.core.errors import MissingPromptError, RunSpecError, ValidationError
from agentcron.core.types import RunFormat, RunSource, RunStatus

logger = logging.getLogger(__name__)

_RUN_FORMATS = {f.value for f in RunFormat}


def utc_now_iso() -> str:
    """UTC timestamp with millisecond precision, e.g. 2025-01-31T09:00:00.000Z"""
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def slugify(name: str) -> str:
    """'Standing Desk!' → 'standing-desk'"""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def make_slug(name: str, source: str | None = None) -> str:
    slug = slugify(f"{source}-{name}" if source else name)
    if not slug:
        raise ValidationError(f"Job name {name!r} has no usable characters for a slug")
    return slug


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# RunSpec
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class RunSpec:
    """What a job invokes. Exactly one of prompt/command once validated."""

    prompt: str | None = None
    command: str | None = None
    arguments: str | None = None   # command mode only
    files: list[str] | None = None
    agent: str | None = None
    model: str | None = None
    variant: str | None = None
    title: str | None = None
    share: bool | None = None
    continue_: bool | None = None
    session: str | None = None
    run_format: str | None = None  # "default" | "json"
    attach_url: str | None = None
    port: int | None = None

    # attribute name → JSON key, where they differ
    _KEYS = {"continue_": "continue", "run_format": "runFormat", "attach_url": "attachUrl"}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value is not None:
                out[self._KEYS.get(f.name, f.name)] = list(value) if f.name == "files" else value
        return out

    @classmethod
    def from_dict(cls, raw: Any) -> RunSpec | None:
        """Field-by-field decode; values of the wrong type are dropped."""
        if not isinstance(raw, dict):
            return None

        run = cls()
        for name in ("prompt", "command", "arguments", "agent", "model", "variant", "title", "session"):
            if isinstance(raw.get(name), str):
                setattr(run, name, raw[name])

        if isinstance(raw.get("files"), list):
            run.files = [str(f) for f in raw["files"]]
        if isinstance(raw.get("share"), bool):
            run.share = raw["share"]
        if isinstance(raw.get("continue"), bool):
            run.continue_ = raw["continue"]
        if raw.get("runFormat") in _RUN_FORMATS:
            run.run_format = raw["runFormat"]
        if isinstance(raw.get("attachUrl"), str):
            run.attach_url = raw["attachUrl"]
        if _is_number(raw.get("port")):
            run.port = raw["port"]
        return run


def normalize_run_spec(run: RunSpec) -> RunSpec:
    """
    Tolerant cleanup: trims strings (empty → None), keeps flags only when
    exactly True, drops unknown formats and non-positive ports. Never raises.
    """
    files = None
    if isinstance(run.files, (list, tuple)):
        files = [str(f).strip() for f in run.files]
        files = [f for f in files if f] or None

    port = None
    if _is_number(run.port) and math.isfinite(run.port):
        port = math.floor(run.port)
        if port <= 0:
            port = None

    run_format = None
    if run.run_format in _RUN_FORMATS:
        run_format = RunFormat(run.run_format).value

    return RunSpec(
        prompt=_trim(run.prompt),
        command=_trim(run.command),
        arguments=_trim(run.arguments),
        files=files,
        agent=_trim(run.agent),
        model=_trim(run.model),
        variant=_trim(run.variant),
        title=_trim(run.title),
        share=True if run.share is True else None,
        continue_=True if run.continue_ is True else None,
        session=_trim(run.session),
        run_format=run_format,
        attach_url=_trim(run.attach_url),
        port=port,
    )


def validate_run_spec(run: RunSpec) -> None:
    """Strict checks. Raises RunSpecError (or ValidationError for the URL)."""
    has_prompt = isinstance(run.prompt, str) and bool(run.prompt.strip())
    has_command = isinstance(run.command, str) and bool(run.command.strip())

    if not has_prompt and not has_command:
        raise RunSpecError("Job must have either run.prompt or run.command")
    if has_prompt and has_command:
        raise RunSpecError("Job cannot specify both run.prompt and run.command")

    if has_command and run.arguments is not None and not isinstance(run.arguments, str):
        raise RunSpecError("run.arguments must be a string")

    if run.attach_url is not None:
        normalize_attach_url(run.attach_url)

    if run.port is not None:
        if isinstance(run.port, bool) or not isinstance(run.port, int) or run.port <= 0:
            raise RunSpecError("run.port must be a positive integer")

    if run.run_format is not None and run.run_format not in _RUN_FORMATS:
        raise RunSpecError("run.runFormat must be 'default' or 'json'")


def merge_run_spec(base: RunSpec, overrides: dict[str, Any]) -> RunSpec:
    """
    Overlay caller-supplied fields on ``base``. None means "keep".

    Empty values ("" or []) survive the merge and are cleared by normalization.
    """
    known = {f.name for f in dataclasses.fields(RunSpec)}
    unknown = set(overrides) - known
    if unknown:
        raise RunSpecError(f"Unknown run fields: {', '.join(sorted(unknown))}")
    return dataclasses.replace(base, **{k: v for k, v in overrides.items() if v is not None})


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Input parsers (strict, for caller-supplied values)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def normalize_attach_url(value: str | None) -> str | None:
    """Trim; empty clears. Anything that is not an absolute URL is rejected."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Invalid attach URL: {value!r}")
    trimmed = value.strip()
    if not trimmed:
        return None
    try:
        parts = urlsplit(trimmed)
        parts.port  # raises on a malformed port
    except ValueError as e:
        raise ValidationError(f"Invalid attach URL: {value}") from e
    if not parts.scheme or not parts.netloc:
        raise ValidationError(f"Invalid attach URL: {value}")
    return trimmed


def parse_files(value: Any) -> list[str] | None:
    """Accept "a.md, b.md" or a list. None means "not supplied"."""
    if value is None:
        return None
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    raise ValidationError(f"Invalid files: {value!r}")


def parse_port(value: Any) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid port: {value!r}")
    if isinstance(value, str):
        if not value.strip().isdigit():
            raise ValidationError(f"Invalid port: {value!r}")
        value = int(value.strip())
    if not _is_number(value) or not math.isfinite(value) or math.floor(value) <= 0:
        raise ValidationError(f"Invalid port: {value!r} (expected a positive integer)")
    return math.floor(value)


def parse_run_format(value: Any) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, str) and value.strip() in _RUN_FORMATS:
        return value.strip()
    raise ValidationError(f"Invalid runFormat: {value} (expected: default | json)")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Job
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass
class Job:
    """A scheduled agent run."""

    slug: str            # immutable; names the record, the log and the unit
    name: str            # display label
    schedule: str        # 5-field cron, stored verbatim
    run: RunSpec | None = None

    # legacy fields, used only when run is absent
    prompt: str | None = None
    attach_url: str | None = None

    source: str | None = None
    workdir: str | None = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str | None = None

    # written only by the run supervisor
    last_run_at: str | None = None
    last_run_source: RunSource | None = None
    last_run_status: RunStatus | None = None
    last_run_exit_code: int | None = None
    last_run_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d = {
            "slug": self.slug,
            "name": self.name,
            "schedule": self.schedule,
            "run": self.run.to_dict() if self.run else None,
            "prompt": self.prompt,
            "attachUrl": self.attach_url,
            "source": self.source,
            "workdir": self.workdir,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "lastRunAt": self.last_run_at,
            "lastRunSource": self.last_run_source.value if self.last_run_source else None,
            "lastRunStatus": self.last_run_status.value if self.last_run_status else None,
            "lastRunExitCode": self.last_run_exit_code,
            "lastRunError": self.last_run_error,
        }
        return {k: v for k, v in d.items() if v is not None}


def decode_job(raw: Any) -> Job | None:
    """
    Tolerant decode of a stored record.

    Returns None only when the record lacks a string slug, name or schedule.
    Unknown enum values and mistyped fields are dropped, a missing createdAt
    is backfilled, and a malformed legacy attachUrl is discarded.
    """
    if not isinstance(raw, dict):
        return None
    if not all(isinstance(raw.get(k), str) for k in ("slug", "name", "schedule")):
        return None

    exit_code = raw.get("lastRunExitCode")
    job = Job(
        slug=raw["slug"],
        name=raw["name"],
        schedule=raw["schedule"],
        prompt=_str_or_none(raw.get("prompt")),
        attach_url=_str_or_none(raw.get("attachUrl")),
        source=_str_or_none(raw.get("source")),
        workdir=_str_or_none(raw.get("workdir")),
        created_at=raw["createdAt"] if isinstance(raw.get("createdAt"), str) else utc_now_iso(),
        updated_at=_str_or_none(raw.get("updatedAt")),
        last_run_at=_str_or_none(raw.get("lastRunAt")),
        last_run_source=_enum_or_none(RunSource, raw.get("lastRunSource")),
        last_run_status=_enum_or_none(RunStatus, raw.get("lastRunStatus")),
        last_run_exit_code=exit_code if isinstance(exit_code, int) and not isinstance(exit_code, bool) else None,
        last_run_error=_str_or_none(raw.get("lastRunError")),
    )

    run = RunSpec.from_dict(raw.get("run"))
    if run is not None:
        job.run = normalize_run_spec(run)

    if job.prompt is not None:
        job.prompt = _trim(job.prompt)
    try:
        job.attach_url = normalize_attach_url(job.attach_url)
    except ValidationError:
        logger.warning(f"Dropping malformed attachUrl on job {job.slug}: {job.attach_url!r}")
        job.attach_url = None

    return job


def sanitize_job(job: Job) -> Job:
    """Strict normalization before persistence. Raises ValidationError."""
    run = None
    if job.run is not None:
        run = normalize_run_spec(job.run)
        validate_run_spec(run)

    return dataclasses.replace(
        job,
        run=run,
        prompt=_trim(job.prompt),
        attach_url=normalize_attach_url(job.attach_url),
        source=_trim(job.source),
        workdir=_trim(job.workdir),
    )


def resolve_effective_run(job: Job) -> RunSpec:
    """The job's run spec, or one rebuilt from the legacy prompt fields."""
    if job.run is not None:
        return job.run

    prompt = (job.prompt or "").strip()
    if not prompt:
        raise MissingPromptError(
            f'Job "{job.slug}" is missing a prompt. '
            "Update the job to include run.prompt or prompt.",
            slug=job.slug,
        )
    return RunSpec(prompt=prompt, attach_url=job.attach_url)


# ━━━ Helpers ━━━


def _trim(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip() or None
    return value


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _enum_or_none(enum_cls, value: Any):
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
