"""
agentcron CLI entry point.

Commands:
    agentcron add       Schedule a new job
    agentcron list      List scheduled jobs
    agentcron show      Job details
    agentcron update    Change a job and reinstall its unit
    agentcron delete    Remove a job and its unit (logs are kept)
    agentcron run       Run a job now
    agentcron logs      Tail a job's run log
    agentcron version   Scheduler and executable versions
    agentcron config    Show the effective configuration
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from agentcron.core.config import AgentCronConfig, default_user_config_path
from agentcron.core.types import OperationResult
from agentcron.scheduler.service import SchedulerService

app = typer.Typer(
    name="agentcron",
    help="agentcron: schedule agent runs with launchd or systemd.",
    add_completion=False,
)

console = Console()


def build_service(verbose: bool = False) -> SchedulerService:
    """Load config, pick the backend once, and wire the service."""
    from agentcron.backends.detect import detect_backend
    from agentcron.core.logging import setup_logging
    from agentcron.scheduler.store import FileJobStore

    config = AgentCronConfig.load()
    setup_logging(config, verbose=verbose)
    backend = detect_backend(config)
    store = FileJobStore(config.get_jobs_dir())
    return SchedulerService(config, store, backend)


def _flag(on: bool, off: bool) -> Optional[bool]:
    """--x / --no-x pair → True, False, or None when neither was given."""
    if on and off:
        console.print("[red]Conflicting flags given.[/red]")
        raise typer.Exit(2)
    if on:
        return True
    if off:
        return False
    return None


def _print_result(result: OperationResult, as_json: bool, title: str | None = None) -> None:
    if as_json:
        typer.echo(result.render("json"))
    elif not result.success:
        console.print(f"[red]{escape(result.output)}[/red]", soft_wrap=True)
    elif title:
        console.print(Panel(escape(result.output), title=title, border_style="cyan"))
    else:
        console.print(result.output, markup=False, highlight=False, soft_wrap=True)


def _execute(
    operation: Callable[[SchedulerService], Awaitable[OperationResult]],
    as_json: bool,
    verbose: bool,
    title: str | None = None,
) -> OperationResult:
    async def _go() -> OperationResult:
        service = build_service(verbose)
        return await operation(service)

    result = asyncio.run(_go())
    _print_result(result, as_json, title)
    if not result.success:
        raise typer.Exit(1)
    return result


# ━━━ Jobs ━━━


@app.command()
def add(
    name: str = typer.Argument(..., help="Job name, e.g. 'standing desk search'"),
    schedule: str = typer.Argument(..., help="Cron expression, e.g. '0 9 * * *'"),
    prompt: str = typer.Option(None, "--prompt", "-p", help="Prompt to run"),
    command: str = typer.Option(None, "--command", "-c", help="Agent command to run instead of a prompt"),
    arguments: str = typer.Option(None, "--arguments", "-a", help="Arguments string for --command"),
    files: List[str] = typer.Option(None, "--file", "-f", help="File/dir to attach (repeatable)"),
    agent: str = typer.Option(None, "--agent", help="Agent to use"),
    model: str = typer.Option(None, "--model", "-m", help="Model to use"),
    variant: str = typer.Option(None, "--variant", help="Model variant"),
    title: str = typer.Option(None, "--title", help="Session title"),
    share: bool = typer.Option(False, "--share", help="Share the session"),
    continue_: bool = typer.Option(False, "--continue", help="Continue the last session"),
    session: str = typer.Option(None, "--session", help="Session id"),
    run_format: str = typer.Option(None, "--run-format", help="Run output format: default|json"),
    port: int = typer.Option(None, "--port", help="Local server port"),
    source: str = typer.Option(None, "--source", help="Source tag, prefixes the slug"),
    workdir: str = typer.Option(None, "--workdir", "-w", help="Working directory (default: current)"),
    attach: str = typer.Option(None, "--attach", help="Attach URL, e.g. http://localhost:4096"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Schedule a recurring job."""
    _execute(
        lambda s: s.create_job(
            name,
            schedule,
            prompt=prompt,
            command=command,
            arguments=arguments,
            files=files or None,
            agent=agent,
            model=model,
            variant=variant,
            title=title,
            share=share or None,
            continue_=continue_ or None,
            session=session,
            run_format=run_format,
            port=port,
            source=source,
            workdir=workdir,
            attach_url=attach,
        ),
        as_json,
        verbose,
    )


@app.command("list")
def list_jobs(
    source: str = typer.Option(None, "--source", "-s", help="Only jobs from this source"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """List scheduled jobs."""
    _execute(lambda s: s.list_jobs(source=source), as_json, verbose)


@app.command()
def show(
    name: str = typer.Argument(..., help="Job name or slug"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Show a job's details."""
    _execute(lambda s: s.get_job(name), as_json, verbose, title=name)


@app.command()
def update(
    name: str = typer.Argument(..., help="Job name or slug"),
    schedule: str = typer.Option(None, "--schedule", help="New cron expression"),
    prompt: str = typer.Option(None, "--prompt", "-p", help="New prompt"),
    command: str = typer.Option(None, "--command", "-c", help="New agent command"),
    arguments: str = typer.Option(None, "--arguments", "-a", help="New arguments string"),
    files: List[str] = typer.Option(None, "--file", "-f", help="Replace attachments (repeatable)"),
    clear_files: bool = typer.Option(False, "--clear-files", help="Remove all attachments"),
    agent: str = typer.Option(None, "--agent", help="New agent"),
    model: str = typer.Option(None, "--model", "-m", help="New model"),
    variant: str = typer.Option(None, "--variant", help="New model variant"),
    title: str = typer.Option(None, "--title", help="New session title"),
    share: bool = typer.Option(False, "--share", help="Share the session"),
    no_share: bool = typer.Option(False, "--no-share", help="Stop sharing the session"),
    continue_: bool = typer.Option(False, "--continue", help="Continue the last session"),
    no_continue: bool = typer.Option(False, "--no-continue", help="Start a fresh session"),
    session: str = typer.Option(None, "--session", help="New session id"),
    run_format: str = typer.Option(None, "--run-format", help="default|json (empty clears)"),
    port: str = typer.Option(None, "--port", help="New port (empty clears)"),
    workdir: str = typer.Option(None, "--workdir", "-w", help="New working directory"),
    attach: str = typer.Option(None, "--attach", help="New attach URL (empty clears)"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Update a job and reinstall its schedule."""
    share_value = _flag(share, no_share)
    continue_value = _flag(continue_, no_continue)
    files_value: Any = [] if clear_files else (files or None)

    _execute(
        lambda s: s.update_job(
            name,
            schedule=schedule,
            prompt=prompt,
            command=command,
            arguments=arguments,
            files=files_value,
            agent=agent,
            model=model,
            variant=variant,
            title=title,
            share=share_value,
            continue_=continue_value,
            session=session,
            run_format=run_format,
            port=port,
            workdir=workdir,
            attach_url=attach,
        ),
        as_json,
        verbose,
    )


@app.command()
def delete(
    name: str = typer.Argument(..., help="Job name or slug"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Delete a job and its schedule. The log file is kept."""
    _execute(lambda s: s.delete_job(name), as_json, verbose)


# ━━━ Runs ━━━


@app.command()
def run(
    name: str = typer.Argument(..., help="Job name or slug"),
    prompt: str = typer.Option(None, "--prompt", "-p", help="Override prompt for this run"),
    command: str = typer.Option(None, "--command", "-c", help="Override command"),
    arguments: str = typer.Option(None, "--arguments", "-a", help="Override arguments"),
    files: List[str] = typer.Option(None, "--file", "-f", help="Override attachments"),
    agent: str = typer.Option(None, "--agent", help="Override agent"),
    model: str = typer.Option(None, "--model", "-m", help="Override model"),
    title: str = typer.Option(None, "--title", help="Override session title"),
    session: str = typer.Option(None, "--session", help="Override session id"),
    attach: str = typer.Option(None, "--attach", help="Override attach URL"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Run a job now and wait for it to finish. Ctrl-C stops the run."""

    async def _go() -> tuple[OperationResult, Any]:
        service = build_service(verbose)
        result = await service.run_job(
            name,
            prompt=prompt,
            command=command,
            arguments=arguments,
            files=files or None,
            agent=agent,
            model=model,
            title=title,
            session=session,
            attach_url=attach,
        )
        if not result.success:
            return result, None
        await service.drain()
        return result, await service.store.get(result.data["job"]["slug"])

    result, finished = asyncio.run(_go())
    _print_result(result, as_json)
    if not result.success:
        raise typer.Exit(1)

    if finished is not None and not as_json:
        status = finished.last_run_status.value if finished.last_run_status else "unknown"
        colour = "green" if status == "success" else "red"
        console.print(
            f"[{colour}]Run {status}[/{colour}]"
            + (f" [dim]({escape(finished.last_run_error)})[/dim]" if finished.last_run_error else "")
        )
        if status != "success":
            raise typer.Exit(1)


@app.command()
def logs(
    name: str = typer.Argument(..., help="Job name or slug"),
    lines: int = typer.Option(None, "--lines", "-n", help="Number of lines to show (default 200)"),
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Show the latest run log of a job."""
    _execute(lambda s: s.job_logs(name, lines=lines), as_json, verbose)


# ━━━ Info ━━━


@app.command()
def version(
    as_json: bool = typer.Option(False, "--json", help="Print JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Show agentcron and agent executable versions."""
    _execute(lambda s: s.get_version(), as_json, verbose)


@app.command()
def config(
    as_json: bool = typer.Option(False, "--json", help="Print JSON only"),
) -> None:
    """Show the effective configuration."""
    if as_json:
        typer.echo(AgentCronConfig.load().model_dump_json(indent=2))
        return

    config_path = default_user_config_path()
    console.print(Panel("[bold]agentcron Configuration[/bold]", border_style="cyan"))
    console.print()

    console.print(f"[bold]Config file:[/bold] {config_path}")
    if not config_path.exists():
        console.print("[dim]Not found. Using defaults.[/dim]")
    console.print()

    effective = AgentCronConfig.load()
    console.print_json(effective.model_dump_json())


if __name__ == "__main__":
    app()
