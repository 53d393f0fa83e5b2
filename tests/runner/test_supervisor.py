"""Tests for agentcron/runner/supervisor.py"""
from __future__ import annotations

import asyncio
import sys

import pytest

from agentcron.core.config import ExecutableConfig
from agentcron.core.errors import MissingPromptError, RunSpecError, SpawnError
from agentcron.core.events import EventType
from agentcron.core.types import RunSource, RunStatus
from agentcron.runner.supervisor import RunSupervisor
from agentcron.scheduler.invocation import InvocationBuilder
from agentcron.scheduler.job import Job, RunSpec


@pytest.fixture
def events(bus):
    seen = []

    async def record(event):
        seen.append(event)

    bus.on("run:*", record)
    return seen


@pytest.fixture
def supervisor(store, builder, config, bus, spawner):
    return RunSupervisor(store, builder, config, bus=bus, spawn=spawner)


async def _saved(store, **kwargs):
    kwargs.setdefault("run", RunSpec(prompt="find standing desk deals"))
    kwargs.setdefault("workdir", "/tmp/w")
    job = Job(slug="standing-desk", name="Standing Desk", schedule="0 9 * * *", **kwargs)
    return await store.save(job)


@pytest.mark.asyncio
class TestRunNow:
    async def test_success(self, supervisor, store, spawner, events, config):
        job = await _saved(store)
        handle = await supervisor.run_now(job)

        assert handle.pid == 4242
        assert handle.job.last_run_status is RunStatus.RUNNING
        assert handle.job.last_run_source is RunSource.MANUAL
        assert handle.job.last_run_at == handle.started_at

        outcome = await handle.wait()
        assert outcome.status is RunStatus.SUCCESS
        assert outcome.exit_code == 0

        stored = await store.get("standing-desk")
        assert stored.last_run_status is RunStatus.SUCCESS
        assert stored.last_run_exit_code == 0
        assert stored.last_run_error is None

        log = (config.get_logs_dir() / "standing-desk.log").read_text()
        assert f"=== Manual run {handle.started_at} ===" in log
        assert "hello from the agent" in log
        assert "=== Run complete (0) " in log

        assert [e.type for e in events] == [
            EventType.RUN_SPAWNING,
            EventType.RUN_STARTED,
            EventType.RUN_COMPLETE,
        ]
        assert all(e.data["slug"] == "standing-desk" for e in events)

    async def test_spawn_arguments(self, supervisor, store, spawner):
        await (await supervisor.run_now(await _saved(store))).wait()
        call = spawner.calls[0]

        assert call["argv"] == ["/usr/local/bin/opencode", "run", "--", "find standing desk deals"]
        assert call["cwd"] == "/tmp/w"
        assert '"question": "deny"' in call["env"]["OPENCODE_PERMISSION"]

    async def test_non_zero_exit(self, supervisor, store, spawner, events, config):
        spawner.returncode = 1
        spawner.stderr = b"boom\n"
        outcome = await (await supervisor.run_now(await _saved(store))).wait()

        assert outcome.status is RunStatus.FAILED
        stored = await store.get("standing-desk")
        assert stored.last_run_status is RunStatus.FAILED
        assert stored.last_run_exit_code == 1
        assert stored.last_run_error == "Exit code 1"
        assert events[-1].type == EventType.RUN_FAILED

        log = (config.get_logs_dir() / "standing-desk.log").read_text()
        assert "boom" in log
        assert "=== Run complete (1) " in log

    async def test_killed_by_signal(self, supervisor, store, spawner, config):
        spawner.returncode = -9
        outcome = await (await supervisor.run_now(await _saved(store))).wait()

        assert outcome.exit_code is None
        assert outcome.error == "Exit code unknown (signal 9)"
        assert "=== Run complete (unknown) " in (config.get_logs_dir() / "standing-desk.log").read_text()

    async def test_spawn_failure(self, supervisor, store, spawner, events, config):
        spawner.error = FileNotFoundError("No such file or directory: 'opencode'")
        job = await _saved(store)

        with pytest.raises(SpawnError) as exc:
            await supervisor.run_now(job)
        assert exc.value.slug == "standing-desk"

        stored = await store.get("standing-desk")
        assert stored.last_run_status is RunStatus.FAILED
        assert stored.last_run_exit_code is None
        assert "No such file" in stored.last_run_error
        assert [e.type for e in events] == [EventType.RUN_SPAWNING, EventType.RUN_FAILED]
        assert "=== Run error " in (config.get_logs_dir() / "standing-desk.log").read_text()

    async def test_unexpected_spawn_hook_error(self, supervisor, store, spawner, config):
        spawner.error = RuntimeError("hook broke")
        with pytest.raises(SpawnError, match="hook broke"):
            await supervisor.run_now(await _saved(store))

        stored = await store.get("standing-desk")
        assert stored.last_run_status is RunStatus.FAILED
        assert stored.last_run_error == "hook broke"
        assert "hook broke" in (config.get_logs_dir() / "standing-desk.log").read_text()

    async def test_stream_failure_stops_the_child(self, supervisor, store, spawner, events, config):
        process = spawner.hold()
        process.stdout.set_exception(OSError("disk full"))

        outcome = await (await supervisor.run_now(await _saved(store))).wait()

        assert outcome.status is RunStatus.FAILED
        assert outcome.error == "disk full"
        assert process.killed
        assert process.returncode == -9
        assert (await store.get("standing-desk")).last_run_error == "disk full"
        assert events[-1].type == EventType.RUN_FAILED

        log = (config.get_logs_dir() / "standing-desk.log").read_text()
        assert "=== Run error " in log
        assert "disk full" in log

    async def test_cancelled_run_is_recorded(self, supervisor, store, spawner, events, config):
        spawner.hold(b"partial output\n")
        handle = await supervisor.run_now(await _saved(store))

        path = config.get_logs_dir() / "standing-desk.log"
        for _ in range(200):
            if "partial output" in path.read_text():
                break
            await asyncio.sleep(0.01)

        handle.task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await handle.wait()

        assert spawner.process.killed
        stored = await store.get("standing-desk")
        assert stored.last_run_status is RunStatus.FAILED
        assert stored.last_run_error == "Run cancelled before the process exited"
        assert events[-1].type == EventType.RUN_FAILED

        log = path.read_text()
        assert "partial output" in log
        assert "=== Run cancelled " in log

    async def test_log_is_appended(self, supervisor, store, config):
        job = await _saved(store)
        await (await supervisor.run_now(job)).wait()
        await (await supervisor.run_now(job)).wait()

        log = (config.get_logs_dir() / "standing-desk.log").read_text()
        assert log.count("=== Manual run ") == 2
        assert log.count("=== Run complete (0) ") == 2

    async def test_overrides(self, supervisor, store, spawner):
        job = await _saved(store)
        await (await supervisor.run_now(job, {"prompt": "just today", "model": "m"})).wait()

        assert spawner.calls[0]["argv"][-4:] == ["--model", "m", "--", "just today"]
        assert (await store.get("standing-desk")).run.prompt == "find standing desk deals"

    async def test_invalid_override_touches_nothing(self, supervisor, store, spawner, config):
        job = await _saved(store)
        with pytest.raises(RunSpecError):
            await supervisor.run_now(job, {"command": "review"})

        assert spawner.calls == []
        assert not (config.get_logs_dir() / "standing-desk.log").exists()
        assert (await store.get("standing-desk")).last_run_status is None

    async def test_legacy_job_without_prompt(self, supervisor, store, spawner):
        store.put_raw("old", {"slug": "old", "name": "Old", "schedule": "0 9 * * *"})
        job = await store.get("old")

        with pytest.raises(MissingPromptError):
            await supervisor.run_now(job)

        await (await supervisor.run_now(job, {"prompt": "rescued"})).wait()
        assert spawner.calls[0]["argv"][-1] == "rescued"

    async def test_job_deleted_mid_run(self, supervisor, store):
        job = await _saved(store)
        handle = await supervisor.run_now(job)
        await store.delete("standing-desk")

        outcome = await handle.wait()
        assert outcome.status is RunStatus.SUCCESS
        assert await store.get("standing-desk") is None


@pytest.mark.asyncio
async def test_real_process(store, config, bus, tmp_path):
    """End to end with a real child process and the default spawner."""
    config.executable = ExecutableConfig(path=sys.executable)
    supervisor = RunSupervisor(store, InvocationBuilder(config), config, bus=bus)
    job = await _saved(store, run=RunSpec(command="ignored", arguments="x"), workdir=str(tmp_path))
    # python has no script named "run" in tmp_path, so it exits 2
    outcome = await (await supervisor.run_now(job)).wait()

    assert outcome.status is RunStatus.FAILED
    assert outcome.exit_code == 2
    log = (config.get_logs_dir() / "standing-desk.log").read_text()
    assert "=== Run complete (2) " in log
