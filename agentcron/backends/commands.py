"""
Service-control commands (launchctl, systemctl) run as async subprocesses.

Backends never shell out directly; they take a CommandRunner so tests can
record the calls instead of touching the host's service manager.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from agentcron.core.errors import InstallError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CommandResult:
    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """
    Runs a command to completion.

    ``check=True`` turns a non-zero exit (or a missing binary) into
    InstallError carrying the command and its stderr.
    """

    def __init__(self, timeout: int = 30) -> None:
        self._timeout = timeout

    async def run(
        self,
        args: list[str],
        check: bool = True,
        unit: str = "",
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        logger.debug(f"Running {' '.join(args)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            if check:
                raise InstallError(
                    f"Failed to run {args[0]}: {e}", unit=unit, command=args
                ) from e
            logger.debug(f"Ignoring failure to start {args[0]}: {e}")
            return CommandResult(args=args, returncode=127, stderr=str(e))

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=self._timeout
            )
            returncode = process.returncode
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            stdout, stderr = b"", f"timed out after {self._timeout}s".encode()
            returncode = -1

        result = CommandResult(
            args=args,
            returncode=returncode if returncode is not None else -1,
            stdout=stdout.decode("utf-8", errors="replace").strip(),
            stderr=stderr.decode("utf-8", errors="replace").strip(),
        )

        if check and not result.ok:
            detail = result.stderr or result.stdout or f"exit code {result.returncode}"
            raise InstallError(
                f"{' '.join(args)} failed: {detail}",
                unit=unit,
                command=args,
                details={"returncode": result.returncode, "stderr": result.stderr},
            )
        if not result.ok:
            logger.debug(f"Ignored failure of {' '.join(args)}: {result.stderr}")
        return result
