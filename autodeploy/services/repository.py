"""Git operations on the deployed checkout."""

from datetime import datetime
from pathlib import Path

from autodeploy.services.process import CommandResult, CommandRunner
from autodeploy.utils.logging import DEPLOYMENT_LOGGER, get_logger


class GitRepository:
    """A local git checkout that tracks a remote branch."""

    def __init__(
        self,
        path: Path,
        runner: CommandRunner,
        remote: str = "origin",
        branch: str = "main",
    ):
        self.path = path
        self.runner = runner
        self.remote = remote
        self.branch = branch
        self.logger = get_logger(f"{DEPLOYMENT_LOGGER}.repository")

    async def _git(self, *args: str) -> CommandResult:
        return await self.runner.run(["git", *args], cwd=self.path)

    async def is_repository(self) -> bool:
        result = await self._git("rev-parse", "--git-dir")
        return result.ok

    async def status(self) -> CommandResult:
        return await self._git("status", "--porcelain")

    async def head(self) -> str | None:
        """Current HEAD commit id, or None if it cannot be read."""
        result = await self._git("rev-parse", "HEAD")
        return result.stdout.strip() if result.ok else None

    async def sync_to_remote(self) -> str | None:
        """Discard local state and reset to the remote tracking branch.

        Stashes uncommitted changes, fetches, hard-resets to
        ``<remote>/<branch>`` and removes untracked files.

        Returns:
            The new HEAD commit id

        Raises:
            CommandError: If any git command fails
        """
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        self.logger.info("repository.stashing", path=str(self.path))
        (await self._git("stash", "push", "-m", f"Auto-stash before deployment {stamp}")).check()

        self.logger.info("repository.fetching", remote=self.remote)
        (await self._git("fetch", self.remote)).check()

        target = f"{self.remote}/{self.branch}"
        self.logger.info("repository.resetting", target=target)
        (await self._git("reset", "--hard", target)).check()

        (await self._git("clean", "-fd")).check()

        return await self.head()
