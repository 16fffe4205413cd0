"""Launch the profiled command as a child process."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog

log = structlog.get_logger()


class LaunchError(RuntimeError):
    """The requested command could not be started."""


class CommandLauncher:
    """Runs one command with inherited stdout/stderr."""

    def __init__(self, argv: Sequence[str]) -> None:
        if not argv:
            raise ValueError("a non-empty command must be specified")
        self.argv = list(argv)
        self._process: asyncio.subprocess.Process | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    async def start(self) -> int:
        """Start the command and return its PID.

        Raises:
            LaunchError: If the program is missing or not executable.
        """
        if self._process is not None:
            return self._process.pid

        try:
            self._process = await asyncio.create_subprocess_exec(*self.argv)
        except FileNotFoundError as e:
            raise LaunchError(f"failed to start command: {self.argv[0]}: not found") from e
        except PermissionError as e:
            raise LaunchError(f"failed to start command: {self.argv[0]}: permission denied") from e
        except OSError as e:
            raise LaunchError(f"failed to start command: {e}") from e

        log.info("command_started", argv=self.argv, pid=self._process.pid)
        return self._process.pid

    async def wait(self) -> int:
        """Wait for the command to exit and return its exit status."""
        if self._process is None:
            raise RuntimeError("command was never started")
        returncode = await self._process.wait()
        log.info("command_exited", pid=self._process.pid, returncode=returncode)
        return returncode

    async def terminate(self, timeout: float = 5.0) -> None:
        """Terminate the command if it is still running, killing it after `timeout`."""
        if self._process is None or self._process.returncode is not None:
            return
        try:
            self._process.terminate()
            await asyncio.wait_for(self._process.wait(), timeout=timeout)
        except ProcessLookupError:
            pass
        except asyncio.TimeoutError:
            try:
                self._process.kill()
            except ProcessLookupError:
                return
            await self._process.wait()
