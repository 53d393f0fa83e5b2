"""
SchedulerService: every public operation on scheduled jobs.

Wires the job store, the native scheduler backend and the run supervisor
together. Each operation returns an OperationResult instead of raising, so
the CLI and tool callers can render it as text or JSON.

Operations:
    create_job(name, schedule, ...)
    list_jobs(source=None)
    get_job(name)
    update_job(name, ...)
    delete_job(name)
    run_job(name, ...)
    job_logs(name, lines=None)
    get_version()

execute_tool(tool_name, arguments) dispatches the same operations by tool
name with camelCase argument keys (runFormat, attachUrl, continue).
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
import os
import platform
from pathlib import Path
from typing import Any

from agentcron import __version__
from agentcron.backends.base import SchedulerBackend
from agentcron.backends.commands import CommandRunner
from agentcron.core.bus import EventBus
from agentcron.core.config import AgentCronConfig
from agentcron.core.errors import (
    AgentCronError,
    CronError,
    JobExistsError,
    NotFoundError,
    SpawnError,
    ValidationError,
)
from agentcron.core.events import Event, EventType
from agentcron.core.types import OperationResult
from agentcron.runner.logs import log_path, read_log_tail
from agentcron.runner.supervisor import RunSupervisor
from agentcron.scheduler.cron import describe_cron, validate_schedule
from agentcron.scheduler.invocation import InvocationBuilder, build_run_environment
from agentcron.scheduler.job import (
    Job,
    RunSpec,
    make_slug,
    merge_run_spec,
    normalize_attach_url,
    normalize_run_spec,
    parse_files,
    parse_port,
    parse_run_format,
    resolve_effective_run,
    slugify,
    utc_now_iso,
    validate_run_spec,
)
from agentcron.scheduler.store import JobStore
from agentcron.scheduler.triggers import CronTrigger

logger = logging.getLogger(__name__)

# tool argument key → python parameter name
_ARG_ALIASES = {
    "continue": "continue_",
    "runFormat": "run_format",
    "attachUrl": "attach_url",
}


class SchedulerService:
    """
    Usage:
        service = SchedulerService(config, store, backend)
        result = await service.create_job("Standing Desk", "0 9 * * *", prompt="find deals")
        print(result.render("json"))
    """

    def __init__(
        self,
        config: AgentCronConfig,
        store: JobStore,
        backend: SchedulerBackend,
        builder: InvocationBuilder | None = None,
        bus: EventBus | None = None,
        supervisor: RunSupervisor | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.backend = backend
        self.builder = builder or InvocationBuilder(config)
        self.bus = bus or EventBus()
        self.supervisor = supervisor or RunSupervisor(store, self.builder, config, self.bus)
        self._active_runs: set[asyncio.Task] = set()

    # ── Lookup ────────────────────────────────────────────────────────────────

    async def find_job(self, name: str) -> Job | None:
        """
        Resolve a user-supplied name.

        Tries the exact slug, then the slugified name, then scans all jobs for
        a slug match, a "-<slug>" suffix (source-prefixed jobs), a
        case-insensitive name match and finally name containment.
        """
        name = name.strip()
        if not name:
            return None

        slug = slugify(name)
        for candidate in (name, slug):
            if candidate and "/" not in candidate:
                job = await self.store.get(candidate)
                if job is not None:
                    return job

        lowered = name.lower()
        jobs = await self.store.get_all()
        for matches in (
            lambda j: j.slug == name,
            lambda j: bool(slug) and j.slug.endswith(f"-{slug}"),
            lambda j: j.name.lower() == lowered,
            lambda j: lowered in j.name.lower(),
        ):
            for job in jobs:
                if matches(job):
                    return job
        return None

    async def require_job(self, name: str, hint: str = "") -> Job:
        """find_job() that raises NotFoundError instead of returning None."""
        job = await self.find_job(name)
        if job is None:
            raise NotFoundError(f'Job "{name}" not found.{hint}', {"name": name})
        return job

    # ── Create ────────────────────────────────────────────────────────────────

    async def create_job(
        self,
        name: str,
        schedule: str,
        *,
        prompt: str | None = None,
        command: str | None = None,
        arguments: str | None = None,
        files: Any = None,
        agent: str | None = None,
        model: str | None = None,
        variant: str | None = None,
        title: str | None = None,
        share: bool | None = None,
        continue_: bool | None = None,
        session: str | None = None,
        run_format: str | None = None,
        port: Any = None,
        source: str | None = None,
        workdir: str | None = None,
        attach_url: str | None = None,
    ) -> OperationResult:
        try:
            slug = make_slug(name, source)
            if await self.store.exists(slug):
                raise JobExistsError(
                    f'Job "{slug}" already exists. Delete it first or use a different name.',
                    {"slug": slug},
                )
        except (ValidationError, JobExistsError) as e:
            return OperationResult.fail(e.message)

        try:
            run = normalize_run_spec(
                RunSpec(
                    prompt=prompt,
                    command=command,
                    arguments=arguments,
                    files=parse_files(files),
                    agent=agent,
                    model=model,
                    variant=variant,
                    title=title,
                    share=share,
                    continue_=continue_,
                    session=session,
                    run_format=parse_run_format(run_format),
                    attach_url=attach_url,
                    port=parse_port(port),
                )
            )
            validate_run_spec(run)
            legacy_attach_url = normalize_attach_url(attach_url)
        except ValidationError as e:
            return OperationResult.fail(f"Invalid run spec: {e.message}")

        try:
            validate_schedule(schedule)
        except CronError as e:
            return OperationResult.fail(f"Invalid cron schedule: {e.message}")

        job = Job(
            slug=slug,
            name=name,
            schedule=schedule,
            run=run,
            prompt=prompt,
            attach_url=legacy_attach_url,
            source=source,
            workdir=workdir or os.getcwd(),
        )

        # nothing is stored for a job that cannot be rendered
        try:
            self.backend.render(job)
        except AgentCronError as e:
            return OperationResult.fail(f"Failed to schedule job: {e.message}")

        try:
            job = await self.store.save(job)
            await self.backend.install(job)
        except AgentCronError as e:
            await self._discard(job.slug)
            return OperationResult.fail(f"Failed to schedule job: {e.message}")

        await self._emit(EventType.JOB_CREATED, job)

        primary = (
            f"Command: {run.command}{f' {run.arguments}' if run.arguments else ''}"
            if run.command
            else f"Prompt: {_truncate(run.prompt or '', 100)}"
        )
        attach_line = f"Attach URL: {run.attach_url}\n" if run.attach_url else ""
        return OperationResult.ok(
            f'Scheduled "{name}"\n\n'
            f"Schedule: {schedule} ({describe_cron(schedule)})\n"
            f"Platform: {self.backend.name}\n"
            f"Working Directory: {job.workdir}\n"
            f"{attach_line}{primary}\n\n"
            "The job will run at the scheduled time. "
            "If your computer was asleep, it will catch up when it wakes.",
            job=job.to_dict(),
        )

    async def _discard(self, slug: str) -> None:
        """Undo a half-finished create: drop the record and any written units."""
        try:
            await self.store.delete(slug)
        except AgentCronError as e:
            logger.error(f"Could not remove record for {slug}: {e.message}")
        try:
            await self.backend.uninstall(slug)
        except (AgentCronError, OSError) as e:
            logger.debug(f"Cleanup uninstall of {slug} failed: {e}")

    # ── Read ──────────────────────────────────────────────────────────────────

    async def list_jobs(self, source: str | None = None) -> OperationResult:
        jobs = await self.store.get_all()
        if source:
            jobs = [j for j in jobs if j.source == source or j.slug.startswith(f"{source}-")]

        if not jobs:
            message = (
                f'No jobs found for "{source}".'
                if source
                else 'No scheduled jobs yet.\n\nTry: "Schedule a daily job at 9am to search for standing desks"'
            )
            return OperationResult.ok(message, jobs=[])

        lines = []
        for i, job in enumerate(jobs, start=1):
            lines.append(
                f"{i}. {job.name} ({job.slug})\n"
                f"   {describe_cron(job.schedule)}\n"
                f"   {_truncate(_run_preview(job), 50)}"
            )
        return OperationResult.ok(
            "Scheduled Jobs\n\n" + "\n\n".join(lines),
            jobs=[j.to_dict() for j in jobs],
        )

    async def get_job(self, name: str) -> OperationResult:
        try:
            job = await self.require_job(name)
        except NotFoundError as e:
            return OperationResult.fail(e.message)
        return OperationResult.ok(self.format_job_details(job), job=job.to_dict())

    def format_job_details(self, job: Job) -> str:
        lines = [
            f"Job: {job.name}",
            f"Slug: {job.slug}",
            f"Schedule: {job.schedule} ({describe_cron(job.schedule)})",
        ]

        try:
            next_run = CronTrigger(job.schedule).next_fire_datetime()
            lines.append(f"Next Run: {next_run.strftime('%Y-%m-%d %H:%M')}")
        except CronError:
            lines.append("Next Run: (invalid schedule)")

        lines.append(f"Working Directory: {job.workdir or Path.home()}")

        run = _safe_run(job)
        attach_url = (run.attach_url if run else None) or job.attach_url
        if attach_url:
            lines.append(f"Attach URL: {attach_url}")

        if run and run.command:
            lines.append(f"Command: {run.command}")
            if run.arguments:
                lines.append(f"Arguments: {run.arguments}")

        prompt = (run.prompt if run else None) or job.prompt
        if prompt:
            lines.append(f"Prompt: {prompt}")

        if run:
            if run.files:
                lines.append(f"Files: {', '.join(run.files)}")
            for label, value in (
                ("Agent", run.agent),
                ("Model", run.model),
                ("Variant", run.variant),
                ("Run Format", run.run_format),
                ("Title", run.title),
            ):
                if value:
                    lines.append(f"{label}: {value}")
            if run.share:
                lines.append("Share: true")
            if run.continue_:
                lines.append("Continue: true")
            if run.session:
                lines.append(f"Session: {run.session}")
            if run.port is not None:
                lines.append(f"Port: {run.port}")

        lines.append(f"Created: {job.created_at}")
        for label, value in (
            ("Updated", job.updated_at),
            ("Last Run", job.last_run_at),
            ("Last Run Source", job.last_run_source.value if job.last_run_source else None),
            ("Last Run Status", job.last_run_status.value if job.last_run_status else None),
            ("Last Exit Code", job.last_run_exit_code),
            ("Last Error", job.last_run_error),
        ):
            if value is not None:
                lines.append(f"{label}: {value}")

        return "\n".join(lines)

    # ── Update ────────────────────────────────────────────────────────────────

    async def update_job(
        self,
        name: str,
        *,
        schedule: str | None = None,
        prompt: str | None = None,
        command: str | None = None,
        arguments: str | None = None,
        files: Any = None,
        agent: str | None = None,
        model: str | None = None,
        variant: str | None = None,
        title: str | None = None,
        share: bool | None = None,
        continue_: bool | None = None,
        session: str | None = None,
        run_format: str | None = None,
        port: Any = None,
        workdir: str | None = None,
        attach_url: str | None = None,
    ) -> OperationResult:
        try:
            job = await self.require_job(name)
        except NotFoundError as e:
            return OperationResult.fail(e.message)

        run_fields = dict(
            prompt=prompt,
            command=command,
            arguments=arguments,
            files=files,
            agent=agent,
            model=model,
            variant=variant,
            title=title,
            share=share,
            continue_=continue_,
            session=session,
            run_format=run_format,
            port=port,
            attach_url=attach_url,
        )
        if schedule is None and workdir is None and all(v is None for v in run_fields.values()):
            return OperationResult.fail("No updates provided.")

        try:
            overrides = _parse_run_overrides(run_fields)
            run = normalize_run_spec(merge_run_spec(_safe_run(job) or RunSpec(), overrides))
            validate_run_spec(run)
        except ValidationError as e:
            return OperationResult.fail(f"Invalid run spec: {e.message}")

        changes: dict[str, Any] = {"run": run}

        if schedule is not None:
            if not schedule.strip():
                return OperationResult.fail("Schedule cannot be empty.")
            try:
                validate_schedule(schedule)
            except CronError as e:
                return OperationResult.fail(f"Invalid cron schedule: {e.message}")
            changes["schedule"] = schedule

        if prompt is not None:
            if not prompt.strip():
                return OperationResult.fail("Prompt cannot be empty.")
            changes["prompt"] = prompt

        if workdir is not None:
            if not workdir.strip():
                return OperationResult.fail("Working directory cannot be empty.")
            changes["workdir"] = workdir

        if attach_url is not None:
            try:
                changes["attach_url"] = normalize_attach_url(attach_url)
            except ValidationError as e:
                return OperationResult.fail(e.message)

        updated = dataclasses.replace(job, **changes, updated_at=utc_now_iso())

        try:
            self.backend.render(updated)
        except AgentCronError as e:
            return OperationResult.fail(f"Failed to update job: {e.message}")

        try:
            updated = await self.store.save(updated)
            await self.backend.install(updated)
        except AgentCronError as e:
            await self._restore(job)
            return OperationResult.fail(f"Failed to update job: {e.message}")

        await self._emit(EventType.JOB_UPDATED, updated)
        return OperationResult.ok(f'Updated job "{updated.name}"', job=updated.to_dict())

    async def _restore(self, job: Job) -> None:
        """Put back the previous record and unit after a failed update."""
        try:
            await self.store.save(job)
        except AgentCronError as e:
            logger.error(f"Could not restore record for {job.slug}: {e.message}")
        try:
            await self.backend.install(job)
        except AgentCronError as e:
            logger.error(f"Could not reinstall previous unit for {job.slug}: {e.message}")

    # ── Delete ────────────────────────────────────────────────────────────────

    async def delete_job(self, name: str) -> OperationResult:
        try:
            job = await self.require_job(name)
        except NotFoundError as e:
            return OperationResult.fail(e.message)

        try:
            await self.backend.uninstall(job.slug)
            await self.store.delete(job.slug)
        except (AgentCronError, OSError) as e:
            return OperationResult.fail(f"Failed to delete job: {e}")

        await self._emit(EventType.JOB_DELETED, job)
        return OperationResult.ok(f'Deleted job "{job.name}"', job=job.to_dict())

    # ── Run ───────────────────────────────────────────────────────────────────

    async def run_job(
        self,
        name: str,
        *,
        prompt: str | None = None,
        command: str | None = None,
        arguments: str | None = None,
        files: Any = None,
        agent: str | None = None,
        model: str | None = None,
        variant: str | None = None,
        title: str | None = None,
        share: bool | None = None,
        continue_: bool | None = None,
        session: str | None = None,
        run_format: str | None = None,
        port: Any = None,
        attach_url: str | None = None,
    ) -> OperationResult:
        """Start the job now. Returns once the process is spawned."""
        try:
            job = await self.require_job(name, hint=" Use list_jobs to see available jobs.")
        except NotFoundError as e:
            return OperationResult.fail(e.message)

        try:
            overrides = _parse_run_overrides(
                dict(
                    prompt=prompt,
                    command=command,
                    arguments=arguments,
                    files=files,
                    agent=agent,
                    model=model,
                    variant=variant,
                    title=title,
                    share=share,
                    continue_=continue_,
                    session=session,
                    run_format=run_format,
                    port=port,
                    attach_url=attach_url,
                )
            )
            handle = await self.supervisor.run_now(job, overrides or None)
        except ValidationError as e:
            return OperationResult.fail(f"Invalid run override: {e.message}")
        except SpawnError as e:
            return OperationResult.fail(f'Failed to start job "{job.name}": {e.message}')

        self._active_runs.add(handle.task)
        handle.task.add_done_callback(self._active_runs.discard)

        logs = await read_log_tail(handle.log_path, max_chars=self.config.logs.run_preview_chars)
        if "attach_url" in overrides:
            effective_attach = overrides["attach_url"].strip()
        else:
            base = _safe_run(job)
            effective_attach = base.attach_url if base else None
        attach_hint = (
            f"\nAttach: {self.config.executable.name} attach {effective_attach}"
            if effective_attach
            else ""
        )
        log_section = f"\nLatest logs:\n{logs}" if logs else "\nNo logs yet. Check again soon."

        return OperationResult.ok(
            f'Triggered "{job.name}" (fire-and-forget).\nLogs: {handle.log_path}{attach_hint}{log_section}',
            job=(handle.job or job).to_dict(),
            startedAt=handle.started_at,
            logPath=str(handle.log_path),
            pid=handle.pid,
        )

    async def drain(self) -> None:
        """Wait for every run started by this service to finish."""
        while self._active_runs:
            await asyncio.gather(*list(self._active_runs), return_exceptions=True)

    # ── Logs / version ────────────────────────────────────────────────────────

    async def job_logs(
        self, name: str, lines: int | None = None, max_chars: int | None = None
    ) -> OperationResult:
        try:
            job = await self.require_job(name)
        except NotFoundError as e:
            return OperationResult.fail(e.message)

        path = log_path(self.config, job.slug)
        logs = await read_log_tail(
            path,
            tail_lines=lines if lines is not None else self.config.logs.default_tail_lines,
            max_chars=max_chars if max_chars is not None else self.config.logs.max_chars,
        )
        if not logs:
            return OperationResult.ok(
                f'No logs found for "{job.name}". The job may not have run yet.',
                job=job.to_dict(),
                logPath=str(path),
                logs="",
            )
        return OperationResult.ok(
            f"Logs for {job.name}\n\n{logs}", job=job.to_dict(), logPath=str(path), logs=logs
        )

    async def get_version(self, runner: CommandRunner | None = None) -> OperationResult:
        executable = self.builder.resolve_executable()
        runner = runner or CommandRunner(timeout=10)
        result = await runner.run(
            [executable, "--version"], check=False, env=build_run_environment(self.config)
        )
        version = result.stdout if result.ok and result.stdout else None

        return OperationResult.ok(
            "\n".join(
                [
                    f"Scheduler: agentcron@{__version__}",
                    f"Backend: {self.backend.name}",
                    f"Executable: {executable}",
                    f"Executable Version: {version or 'unknown'}",
                ]
            ),
            scheduler={"name": "agentcron", "version": __version__},
            executable={"path": executable, "version": version},
            backend=self.backend.name,
            platform=platform.system().lower(),
        )

    # ── Tool dispatch ─────────────────────────────────────────────────────────

    async def execute_tool(self, tool_name: str, arguments: dict[str, Any]) -> str:
        """
        Run an operation by tool name and render it.

        ``arguments`` may carry ``format`` ("text" or "json").
        """
        arguments = dict(arguments)
        fmt = arguments.pop("format", None)

        handlers = {
            "schedule_job": self.create_job,
            "list_jobs": self.list_jobs,
            "get_job": self.get_job,
            "update_job": self.update_job,
            "delete_job": self.delete_job,
            "run_job": self.run_job,
            "job_logs": self.job_logs,
            "get_version": self.get_version,
        }
        handler = handlers.get(tool_name)
        if handler is None:
            return OperationResult.fail(f"Unknown tool: {tool_name}").render(fmt)

        kwargs = {_ARG_ALIASES.get(k, k): v for k, v in arguments.items()}
        params = inspect.signature(handler).parameters
        unknown = set(kwargs) - (set(params) - {"runner"})
        if unknown:
            return OperationResult.fail(
                f"Unknown argument(s) for {tool_name}: {', '.join(sorted(unknown))}"
            ).render(fmt)
        missing = [
            p.name for p in params.values()
            if p.default is inspect.Parameter.empty and p.name not in kwargs
        ]
        if missing:
            return OperationResult.fail(
                f"Missing argument(s) for {tool_name}: {', '.join(missing)}"
            ).render(fmt)

        result = await handler(**kwargs)
        return result.render(fmt)

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _emit(self, event_type: str, job: Job) -> None:
        await self.bus.emit(
            Event(type=event_type, source="service", data={"slug": job.slug, "name": job.name})
        )


def _parse_run_overrides(fields: dict[str, Any]) -> dict[str, Any]:
    """
    Turn caller input into merge_run_spec() overrides.

    Unset (None) fields are left out. Empty input clears a field: "" and []
    normalize away, and an empty port or runFormat maps to a value that
    normalization drops.
    """
    overrides: dict[str, Any] = {}
    for key, value in fields.items():
        if value is None:
            continue
        if key == "files":
            overrides[key] = parse_files(value)
        elif key == "port":
            parsed = parse_port(value)
            overrides[key] = parsed if parsed is not None else 0
        elif key == "run_format":
            overrides[key] = parse_run_format(value) or ""
        else:
            overrides[key] = value
    return overrides


def _safe_run(job: Job) -> RunSpec | None:
    try:
        return normalize_run_spec(resolve_effective_run(job))
    except AgentCronError:
        return None


def _run_preview(job: Job) -> str:
    run = _safe_run(job)
    if run and run.command:
        return f"{run.command}{f' {run.arguments}' if run.arguments else ''}".strip()
    if run and run.prompt:
        return run.prompt.strip()
    return (job.prompt or "(missing prompt)").strip()


def _truncate(s: str, n: int) -> str:
    return s[:n] + "..." if len(s) > n else s
