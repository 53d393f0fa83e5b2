"""Tests for agentcron/backends/systemd.py"""
from __future__ import annotations

import pytest

from agentcron.backends.systemd import SystemdBackend, quote_exec_arg
from agentcron.core.errors import CronError, InstallError
from agentcron.scheduler.job import Job, RunSpec


@pytest.fixture
def backend(config, runner, builder):
    return SystemdBackend(config, runner=runner, builder=builder)


def _job(schedule="0 9 * * *", **kwargs):
    kwargs.setdefault("run", RunSpec(prompt="find standing desk deals"))
    return Job(slug="standing-desk", name="Standing Desk", schedule=schedule, workdir="/tmp/work", **kwargs)


class TestQuoting:
    def test_plain(self):
        assert quote_exec_arg("run") == '"run"'

    def test_escapes(self):
        assert quote_exec_arg('say "hi"') == '"say \\"hi\\""'
        assert quote_exec_arg("a\\b") == '"a\\\\b"'
        assert quote_exec_arg("line1\nline2") == '"line1\\nline2"'

    def test_specifiers_and_variables_are_doubled(self):
        assert quote_exec_arg("100% of $HOME") == '"100%% of $$HOME"'


class TestRender:
    def test_service(self, backend, config):
        service = backend.render_service(_job())
        log = config.get_logs_dir() / "standing-desk.log"

        assert "Description=OpenCode Job: Standing Desk" in service
        assert "Type=oneshot" in service
        assert "WorkingDirectory=/tmp/work" in service
        assert 'Environment="PATH=/opt/homebrew/bin:' in service
        assert 'ExecStart="/usr/local/bin/opencode" "run" "--" "find standing desk deals"' in service
        assert f"StandardOutput=append:{log}" in service
        assert f"StandardError=append:{log}" in service
        assert "WantedBy=default.target" in service

    def test_timer(self, backend):
        timer = backend.render_timer(_job())
        assert "OnCalendar=* *-*-* 09:00:00\n" in timer
        assert "Persistent=true" in timer
        assert "WantedBy=timers.target" in timer

    def test_timer_with_union(self, backend):
        timer = backend.render_timer(_job(schedule="0 9 1 * 1"))
        lines = [line for line in timer.splitlines() if line.startswith("OnCalendar=")]
        assert lines == ["OnCalendar=* *-*-01 09:00:00", "OnCalendar=Mon *-*-* 09:00:00"]

    def test_render_paths(self, backend, config):
        files = backend.render(_job())
        assert set(files) == {
            config.get_systemd_unit_dir() / "opencode-job-standing-desk.service",
            config.get_systemd_unit_dir() / "opencode-job-standing-desk.timer",
        }


@pytest.mark.asyncio
class TestInstall:
    async def test_install(self, backend, runner):
        await backend.install(_job())

        assert backend.service_path("standing-desk").exists()
        assert backend.timer_path("standing-desk").exists()
        assert runner.calls == [
            ["systemctl", "--user", "daemon-reload"],
            ["systemctl", "--user", "enable", "opencode-job-standing-desk.timer"],
            ["systemctl", "--user", "start", "opencode-job-standing-desk.timer"],
        ]

    async def test_invalid_schedule_writes_nothing(self, backend, runner):
        with pytest.raises(CronError):
            await backend.install(_job(schedule="61 9 * * *"))
        assert runner.calls == []
        assert not backend.service_path("standing-desk").exists()
        assert not backend.timer_path("standing-desk").exists()

    async def test_enable_failure_raises(self, backend, runner):
        runner.fail_on.add("enable")
        with pytest.raises(InstallError) as exc:
            await backend.install(_job())
        assert exc.value.unit == "opencode-job-standing-desk"

    async def test_uninstall(self, backend, runner):
        await backend.install(_job())
        runner.calls.clear()
        await backend.uninstall("standing-desk")

        assert not backend.service_path("standing-desk").exists()
        assert not backend.timer_path("standing-desk").exists()
        assert runner.calls == [
            ["systemctl", "--user", "stop", "opencode-job-standing-desk.timer"],
            ["systemctl", "--user", "disable", "opencode-job-standing-desk.timer"],
            ["systemctl", "--user", "daemon-reload"],
        ]

    async def test_uninstall_missing_units(self, backend, runner):
        runner.fail_on.update({"stop", "disable"})
        await backend.uninstall("ghost")
        assert len(runner.calls) == 3
