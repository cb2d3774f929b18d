"""Pre-flight checks run before the first deployment attempt."""

import shutil
from dataclasses import dataclass, field

import httpx

from autodeploy.core.exceptions import PreflightError
from autodeploy.services.repository import GitRepository
from autodeploy.utils.logging import DEPLOYMENT_LOGGER, get_logger


@dataclass
class CheckResult:
    """Outcome of a single pre-flight check."""

    name: str
    passed: bool
    message: str = ""


@dataclass
class PreflightReport:
    """Outcome of all pre-flight checks."""

    checks: list[CheckResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def first_failure(self) -> CheckResult | None:
        return next((c for c in self.checks if not c.passed), None)


class PreflightChecker:
    """Verifies the host can deploy before anything is modified.

    Checks, in order: required tools on PATH, the checkout is a git
    repository in a usable state, and the remote host is reachable.
    """

    def __init__(
        self,
        repository: GitRepository,
        tools: list[str],
        remote_host: str,
        check_network: bool = True,
        network_timeout: float = 10.0,
    ):
        self.repository = repository
        self.tools = tools
        self.remote_host = remote_host
        self.check_network = check_network
        self.network_timeout = network_timeout
        self.logger = get_logger(f"{DEPLOYMENT_LOGGER}.preflight")

    async def run(self) -> PreflightReport:
        """Run all checks and report each result. Stops at the first failure."""
        report = PreflightReport()

        for tool in self.tools:
            found = shutil.which(tool) is not None
            report.checks.append(
                CheckResult(f"tool:{tool}", found, "" if found else f"{tool} is not installed")
            )
            if not found:
                return self._finish(report)

        is_repo = await self.repository.is_repository()
        report.checks.append(
            CheckResult(
                "repository",
                is_repo,
                "" if is_repo else f"Not in a git repository: {self.repository.path}",
            )
        )
        if not is_repo:
            return self._finish(report)

        status = await self.repository.status()
        report.checks.append(
            CheckResult(
                "repository_state",
                status.ok,
                "" if status.ok else "Git repository is in a bad state",
            )
        )
        if not status.ok:
            return self._finish(report)

        if self.check_network:
            reachable, message = await self._check_network()
            report.checks.append(CheckResult("network", reachable, message))

        return self._finish(report)

    async def _check_network(self) -> tuple[bool, str]:
        url = f"https://{self.remote_host}"
        try:
            async with httpx.AsyncClient(timeout=self.network_timeout) as client:
                await client.head(url)
        except httpx.HTTPError as e:
            return False, f"No network connectivity to {self.remote_host}: {e}"
        return True, ""

    def _finish(self, report: PreflightReport) -> PreflightReport:
        failure = report.first_failure
        if failure:
            self.logger.error("preflight.failed", check=failure.name, error=failure.message)
        else:
            self.logger.info("preflight.passed", checks=len(report.checks))
        return report

    async def ensure(self) -> PreflightReport:
        """Run all checks and raise PreflightError on the first failure."""
        report = await self.run()
        failure = report.first_failure
        if failure:
            raise PreflightError(failure.name, failure.message)
        return report
