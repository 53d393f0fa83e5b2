"""Shared test fixtures for agentcron."""

import asyncio

import pytest

from agentcron.backends.commands import CommandResult, CommandRunner
from agentcron.core.bus import EventBus
from agentcron.core.config import (
    AgentCronConfig,
    ExecutableConfig,
    LaunchdConfig,
    PathsConfig,
    SystemdConfig,
)
from agentcron.core.errors import InstallError
from agentcron.scheduler.invocation import InvocationBuilder
from agentcron.scheduler.store import InMemoryJobStore

OPENCODE = "/usr/local/bin/opencode"


class RecordingRunner(CommandRunner):
    """Records service-control commands instead of running them."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[list[str]] = []
        self.fail_on: set[str] = set()  # fail any command containing one of these words
        self.fail_times: int | None = None  # None: fail every time

    async def run(self, args, check=True, unit="", env=None):
        self.calls.append(list(args))
        failed = any(word in args for word in self.fail_on)
        if failed and self.fail_times is not None:
            failed = self.fail_times > 0
            self.fail_times -= 1
        result = CommandResult(args=list(args), returncode=1 if failed else 0, stderr="boom" if failed else "")
        if check and failed:
            raise InstallError(f"{' '.join(args)} failed: boom", unit=unit, command=list(args))
        return result


class FakeProcess:
    """Stands in for asyncio.subprocess.Process. Create inside a running loop.

    With eof=False the output streams stay open and wait() blocks until kill().
    """

    def __init__(self, stdout=b"", stderr=b"", returncode=0, pid=4242, eof=True):
        self.pid = pid
        self.returncode = None
        self.killed = False
        self._exit = returncode
        self._exited = asyncio.Event()
        self.stdout = asyncio.StreamReader()
        self.stdout.feed_data(stdout)
        self.stderr = asyncio.StreamReader()
        self.stderr.feed_data(stderr)
        if eof:
            self.stdout.feed_eof()
            self.stderr.feed_eof()
            self._exited.set()

    def kill(self):
        self.killed = True
        self._exit = -9
        self._exited.set()

    async def wait(self):
        await self._exited.wait()
        self.returncode = self._exit
        return self._exit


class FakeSpawner:
    """Callable spawn hook for RunSupervisor."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.stdout = b"hello from the agent\n"
        self.stderr = b""
        self.returncode = 0
        self.error: Exception | None = None
        self.process: FakeProcess | None = None  # returned as-is when set

    def hold(self, stdout=b"") -> FakeProcess:
        """Next spawn returns a process that keeps running until killed."""
        self.process = FakeProcess(stdout, eof=False)
        return self.process

    async def __call__(self, argv, cwd, env):
        self.calls.append({"argv": list(argv), "cwd": cwd, "env": env})
        if self.error is not None:
            raise self.error
        if self.process is not None:
            return self.process
        return FakeProcess(self.stdout, self.stderr, self.returncode)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the host's overrides out of executable resolution."""
    monkeypatch.delenv("OPENCODE_SCHEDULER_OPENCODE_PATH", raising=False)
    monkeypatch.delenv("OPENCODE_PERMISSION", raising=False)


@pytest.fixture
def config(tmp_path):
    """Config with every directory under tmp_path and a fixed executable."""
    return AgentCronConfig(
        paths=PathsConfig(jobs_dir=str(tmp_path / "jobs"), logs_dir=str(tmp_path / "logs")),
        executable=ExecutableConfig(path=OPENCODE),
        launchd=LaunchdConfig(agents_dir=str(tmp_path / "LaunchAgents")),
        systemd=SystemdConfig(unit_dir=str(tmp_path / "systemd")),
    )


@pytest.fixture
def bus():
    """Create a fresh event bus."""
    return EventBus()


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def builder(config):
    return InvocationBuilder(config)


@pytest.fixture
def runner():
    return RecordingRunner()


@pytest.fixture
def spawner():
    return FakeSpawner()
