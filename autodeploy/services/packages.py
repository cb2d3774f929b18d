"""Dependency installation and build commands."""

import shlex
from pathlib import Path

from autodeploy.services.process import CommandResult, CommandRunner


class PackageBuilder:
    """Runs the project's install and build commands in the checkout."""

    def __init__(
        self,
        path: Path,
        runner: CommandRunner,
        install_command: str = "npm ci --production --silent",
        build_command: str = "npm run build",
    ):
        self.path = path
        self.runner = runner
        self.install_args = shlex.split(install_command)
        self.build_args = shlex.split(build_command)

    @property
    def tool(self) -> str:
        """Executable name of the package manager."""
        return self.install_args[0]

    async def install(self) -> CommandResult:
        """Install production dependencies. Raises CommandError on failure."""
        return await self.runner.check(self.install_args, cwd=self.path)

    async def build(self) -> CommandResult:
        """Run the build step. Raises CommandError on failure."""
        return await self.runner.check(self.build_args, cwd=self.path)
