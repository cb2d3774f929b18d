"""Async subprocess execution with a fixed timeout."""

import asyncio
import os
import shlex
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from autodeploy.core.exceptions import CommandError
from autodeploy.utils.logging import DEPLOYMENT_LOGGER, get_logger

# Default timeout for external commands (5 minutes)
DEFAULT_TIMEOUT = 300.0


@dataclass
class CommandResult:
    """Result of running an external command."""

    args: list[str]
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def command(self) -> str:
        return shlex.join(self.args)

    @property
    def output(self) -> str:
        """Combined stderr and stdout for error reporting."""
        parts = []
        if self.stderr:
            parts.append(self.stderr)
        if self.stdout:
            parts.append(self.stdout)
        return "\n".join(parts)

    def check(self) -> "CommandResult":
        """Raise CommandError unless the command succeeded."""
        if not self.ok:
            raise CommandError(
                self.command,
                self.returncode,
                output=self.output,
                timed_out=self.timed_out,
            )
        return self


class CommandRunner:
    """Runs external processes for deployment steps."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout
        self.logger = get_logger(f"{DEPLOYMENT_LOGGER}.process")

    async def run(
        self,
        args: Sequence[str],
        cwd: Path | str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command and capture its output.

        Args:
            args: Program and arguments
            cwd: Working directory
            env: Extra environment variables merged over os.environ
            timeout: Timeout in seconds (defaults to the runner's timeout)

        Returns:
            CommandResult; a missing executable is reported as exit code 127,
            one that cannot be executed as 126
        """
        args = list(args)
        timeout = timeout or self.timeout
        cmd = shlex.join(args)
        start = time.perf_counter()

        self.logger.info(
            "process.running",
            cmd=cmd,
            cwd=str(cwd) if cwd else None,
        )

        child_env = None
        if env:
            child_env = {**os.environ, **env}

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(cwd) if cwd else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=child_env,
            )
        except FileNotFoundError as e:
            self.logger.error("process.not_found", cmd=cmd, error=str(e))
            return CommandResult(args=args, returncode=127, stderr=str(e))
        except OSError as e:
            # Not executable or otherwise unable to spawn
            self.logger.error("process.spawn_failed", cmd=cmd, error=str(e))
            return CommandResult(args=args, returncode=126, stderr=str(e))

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            self.logger.error("process.timed_out", cmd=cmd, timeout=timeout)
            return CommandResult(
                args=args,
                returncode=process.returncode,
                stderr=f"Command timed out after {timeout} seconds",
                duration_ms=int((time.perf_counter() - start) * 1000),
                timed_out=True,
            )

        result = CommandResult(
            args=args,
            returncode=process.returncode,
            stdout=stdout.decode(errors="replace") if stdout else "",
            stderr=stderr.decode(errors="replace") if stderr else "",
            duration_ms=int((time.perf_counter() - start) * 1000),
        )

        if result.ok:
            self.logger.info(
                "process.succeeded",
                cmd=cmd,
                duration_ms=result.duration_ms,
            )
            self.logger.debug("process.stdout", cmd=cmd, stdout=result.stdout[-2000:])
        else:
            self.logger.error(
                "process.failed",
                cmd=cmd,
                returncode=result.returncode,
                error_preview=result.output[:500],
            )

        return result

    async def check(
        self,
        args: Sequence[str],
        cwd: Path | str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command and raise CommandError if it fails."""
        result = await self.run(args, cwd=cwd, env=env, timeout=timeout)
        return result.check()
