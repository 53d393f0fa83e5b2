"""
RunSupervisor: starts a job immediately, outside its schedule.

State machine for one manual run:

    spawning ──spawn ok──▶ running ──exit 0──▶ success
        │                     └──exit ≠ 0, signal, error or cancel──▶ failed
        └──spawn error──▶ failed (SpawnError raised to the caller)

run_now() returns as soon as the child is spawned. A background task
streams the child's stdout/stderr into the job log, writes the completion
marker and records the outcome on the job. Every transition is published
on the EventBus.

Log layout per run:

    === Manual run <iso> ===
    ...child output...
    === Run complete (<code|unknown>) <iso> ===

A cancelled run kills the child and ends with "=== Run cancelled <iso> ===".
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable

import aiofiles
import aiofiles.os

from agentcron.core.bus import EventBus
from agentcron.core.config import AgentCronConfig
from agentcron.core.errors import AgentCronError, MissingPromptError, SpawnError
from agentcron.core.events import Event, EventType
from agentcron.core.types import RunSource, RunStatus
from agentcron.runner.logs import format_marker, log_path
from agentcron.scheduler.invocation import InvocationBuilder, build_run_environment
from agentcron.scheduler.job import (
    Job,
    RunSpec,
    merge_run_spec,
    normalize_run_spec,
    resolve_effective_run,
    utc_now_iso,
)
from agentcron.scheduler.store import JobStore

logger = logging.getLogger(__name__)

SpawnFunc = Callable[..., Awaitable[Any]]

_CHUNK = 64 * 1024


async def spawn_detached(argv: list[str], cwd: str, env: dict[str, str]) -> asyncio.subprocess.Process:
    """Start the child in its own session with piped output and no stdin."""
    return await asyncio.create_subprocess_exec(
        *argv,
        cwd=cwd,
        env=env,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        start_new_session=True,
    )


@dataclass(slots=True)
class RunOutcome:
    status: RunStatus
    exit_code: int | None = None
    error: str | None = None


@dataclass
class RunHandle:
    """A run that has been spawned. Await wait() for its outcome."""

    slug: str
    started_at: str
    log_path: Path
    pid: int | None
    job: Job | None
    task: asyncio.Task

    async def wait(self) -> RunOutcome:
        return await self.task

    @property
    def done(self) -> bool:
        return self.task.done()


class RunSupervisor:
    """
    Usage:
        supervisor = RunSupervisor(store, builder, config, bus)
        handle = await supervisor.run_now(job)
        outcome = await handle.wait()
    """

    def __init__(
        self,
        store: JobStore,
        builder: InvocationBuilder,
        config: AgentCronConfig,
        bus: EventBus | None = None,
        spawn: SpawnFunc | None = None,
    ) -> None:
        self._store = store
        self._builder = builder
        self._config = config
        self._bus = bus or EventBus()
        self._spawn = spawn or spawn_detached

    async def run_now(self, job: Job, overrides: dict[str, Any] | None = None) -> RunHandle:
        """
        Spawn the job now, optionally with run-spec field overrides.

        Raises ValidationError before anything is written if the effective
        run is invalid, and SpawnError if the process cannot be started.
        """
        try:
            run = normalize_run_spec(resolve_effective_run(job))
        except MissingPromptError:
            if not overrides:
                raise
            run = RunSpec()
        if overrides:
            run = merge_run_spec(run, overrides)
        invocation = self._builder.build(job, run)

        workdir = job.workdir or str(Path.home())
        env = build_run_environment(self._config)
        path = log_path(self._config, job.slug)

        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        log = await aiofiles.open(path, mode="ab")

        started_at = utc_now_iso()
        await log.write(format_marker("Manual run", started_at).encode())
        await log.flush()
        await self._emit(EventType.RUN_SPAWNING, job.slug, argv=invocation.argv, log_path=str(path))

        try:
            process = await self._spawn(invocation.argv, cwd=workdir, env=env)
        except Exception as e:
            message = str(e) or type(e).__name__
            await self._write_quietly(log, format_marker("Run error", utc_now_iso(), message))
            await log.close()
            await self._record(
                job.slug,
                last_run_status=RunStatus.FAILED,
                last_run_exit_code=None,
                last_run_error=message,
            )
            await self._emit(EventType.RUN_FAILED, job.slug, error=message, exit_code=None)
            raise SpawnError(
                f"Failed to start {invocation.command}: {message}", slug=job.slug
            ) from e
        except BaseException:
            await log.close()
            raise

        running = await self._record(
            job.slug,
            last_run_at=started_at,
            last_run_source=RunSource.MANUAL,
            last_run_status=RunStatus.RUNNING,
            last_run_exit_code=None,
            last_run_error=None,
        )
        await self._emit(EventType.RUN_STARTED, job.slug, pid=process.pid, log_path=str(path))
        logger.info(f"Started {job.slug} (pid {process.pid})")

        task = asyncio.create_task(
            self._supervise(job.slug, process, log), name=f"run:{job.slug}"
        )
        return RunHandle(
            slug=job.slug,
            started_at=started_at,
            log_path=path,
            pid=process.pid,
            job=running,
            task=task,
        )

    # ── Monitoring ────────────────────────────────────────────────────────────

    async def _supervise(self, slug: str, process: Any, log: Any) -> RunOutcome:
        try:
            outcome = await self._watch(process, log)
        except asyncio.CancelledError:
            await self._stop(process)
            message = "Run cancelled before the process exited"
            await self._write_quietly(log, format_marker("Run cancelled", utc_now_iso()))
            await log.close()
            await self._finish(slug, RunOutcome(RunStatus.FAILED, None, message))
            raise
        except Exception as e:
            logger.exception(f"Supervising {slug} failed")
            await self._stop(process)
            message = str(e) or type(e).__name__
            await self._write_quietly(log, format_marker("Run error", utc_now_iso(), message))
            outcome = RunOutcome(RunStatus.FAILED, None, message)
        await log.close()
        await self._finish(slug, outcome)
        return outcome

    async def _finish(self, slug: str, outcome: RunOutcome) -> None:
        await self._record(
            slug,
            last_run_status=outcome.status,
            last_run_exit_code=outcome.exit_code,
            last_run_error=outcome.error,
        )
        event = EventType.RUN_COMPLETE if outcome.status is RunStatus.SUCCESS else EventType.RUN_FAILED
        await self._emit(event, slug, exit_code=outcome.exit_code, error=outcome.error)
        logger.info(f"Run of {slug} finished: {outcome.status.value} ({outcome.exit_code})")

    async def _watch(self, process: Any, log: Any) -> RunOutcome:
        pumps = [
            asyncio.create_task(self._pump(process.stdout, log)),
            asyncio.create_task(self._pump(process.stderr, log)),
        ]
        try:
            await asyncio.gather(*pumps)
        finally:
            for pump in pumps:
                pump.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
        returncode = await process.wait()

        # Negative return codes are signals, not exit codes.
        exit_code = returncode if returncode is not None and returncode >= 0 else None
        shown = exit_code if exit_code is not None else "unknown"
        await log.write(format_marker(f"Run complete ({shown})", utc_now_iso()).encode())

        if exit_code == 0:
            return RunOutcome(RunStatus.SUCCESS, 0, None)
        error = f"Exit code {shown}"
        if returncode is not None and returncode < 0:
            error += f" (signal {-returncode})"
        return RunOutcome(RunStatus.FAILED, exit_code, error)

    @staticmethod
    async def _stop(process: Any) -> None:
        """Kill the child if it is still running, then reap it."""
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()

    @staticmethod
    async def _pump(stream: asyncio.StreamReader | None, log: Any) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(_CHUNK)
            if not chunk:
                break
            await log.write(chunk)
            await log.flush()

    # ── Helpers ───────────────────────────────────────────────────────────────

    @staticmethod
    async def _write_quietly(log: Any, text: str) -> None:
        try:
            await log.write(text.encode())
        except (OSError, ValueError) as e:
            logger.warning(f"Could not write run marker: {e}")

    async def _record(self, slug: str, **changes: Any) -> Job | None:
        try:
            job = await self._store.update(slug, **changes)
        except AgentCronError as e:
            logger.error(f"Could not record run state for {slug}: {e.message}")
            return None
        if job is None:
            logger.warning(f"Job {slug} disappeared during its run")
        return job

    async def _emit(self, event_type: str, slug: str, **data: Any) -> None:
        await self._bus.emit(Event(type=event_type, source="supervisor", data={"slug": slug, **data}))
