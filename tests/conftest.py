"""Pytest configuration and fixtures."""

import asyncio
from pathlib import Path
from typing import Callable

import pytest
from httpx import ASGITransport, AsyncClient

from autodeploy.api.deps import get_deployer
from autodeploy.config import Settings
from autodeploy.core.backups import BackupManager
from autodeploy.core.events import EventBus
from autodeploy.core.exceptions import CommandError, PreflightError
from autodeploy.core.orchestrator import DeploymentOrchestrator
from autodeploy.core.records import DeploymentRecordStore
from autodeploy.main import app
from autodeploy.services.process import CommandResult
from autodeploy.services.service_manager import SimulatedServiceManager

WEBHOOK_SECRET = "test-webhook-secret"
API_TOKEN = "test-api-token"


class FakeRunner:
    """Records commands and returns canned results keyed by command prefix."""

    def __init__(self):
        self.commands: list[list[str]] = []
        self.results: dict[tuple[str, ...], CommandResult] = {}

    def fail(self, *prefix: str, returncode: int = 1, stderr: str = "boom") -> None:
        self.results[prefix] = CommandResult(args=list(prefix), returncode=returncode, stderr=stderr)

    async def run(self, args, cwd=None, env=None, timeout=None) -> CommandResult:
        args = list(args)
        self.commands.append(args)
        for prefix, result in self.results.items():
            if tuple(args[: len(prefix)]) == prefix:
                return CommandResult(args=args, returncode=result.returncode, stderr=result.stderr)
        stdout = "abc123\n" if args[:2] == ["git", "rev-parse"] else ""
        return CommandResult(args=args, returncode=0, stdout=stdout)

    async def check(self, args, cwd=None, env=None, timeout=None) -> CommandResult:
        return (await self.run(args, cwd=cwd, env=env, timeout=timeout)).check()


class FakeRepository:
    """Stands in for the git checkout."""

    def __init__(self, path: Path, head: str = "abc123"):
        self.path = path
        self.head_commit = head
        self.syncs = 0

    async def is_repository(self) -> bool:
        return True

    async def sync_to_remote(self) -> str:
        self.syncs += 1
        return self.head_commit


class FakeBuilder:
    """Writes a build into dist/ instead of running npm.

    ``version`` is written into dist/index.js. With ``produce_entry`` off the
    build leaves dist/ non-empty but without the entry artifact.
    """

    def __init__(self, path: Path):
        self.path = path
        self.version = "v2"
        self.produce_entry = True
        self.install_error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()
        self.installs = 0

    @property
    def tool(self) -> str:
        return "npm"

    async def install(self) -> None:
        self.installs += 1
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.install_error is not None:
            raise self.install_error

    async def build(self) -> None:
        dist = self.path / "dist"
        dist.mkdir(exist_ok=True)
        entry = dist / "index.js"
        if self.produce_entry:
            entry.write_text(self.version)
        else:
            if entry.exists():
                entry.unlink()
            (dist / "chunk.js").write_text("partial")


class FakePreflight:
    def __init__(self, error: PreflightError | None = None):
        self.error = error
        self.calls = 0

    async def ensure(self) -> None:
        self.calls += 1
        if self.error is not None:
            raise self.error

    async def run(self):
        raise NotImplementedError


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def repo_dir(tmp_path: Path) -> Path:
    """A checkout with an existing build (v1) and dependency tree."""
    repo = tmp_path / "repo"
    (repo / "dist").mkdir(parents=True)
    (repo / "dist" / "index.js").write_text("v1")
    (repo / "node_modules" / "left-pad").mkdir(parents=True)
    (repo / "node_modules" / "left-pad" / "index.js").write_text("module.exports = 1")
    (repo / "package.json").write_text('{"name": "gateway"}')
    return repo


@pytest.fixture
def test_settings(tmp_path: Path, repo_dir: Path) -> Settings:
    """Settings pointing at temporary directories."""
    return Settings(
        app_env="development",
        repo_dir=str(repo_dir),
        backup_dir=str(tmp_path / "backups"),
        service_backend="simulated",
        service_settle_seconds=0,
        preflight_check_network=False,
        github_webhook_secret=WEBHOOK_SECRET,
        deploy_api_token=API_TOKEN,
        auto_restart=False,
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def service() -> SimulatedServiceManager:
    return SimulatedServiceManager("void-main", running=True)


@pytest.fixture
def builder(repo_dir: Path) -> FakeBuilder:
    return FakeBuilder(repo_dir)


@pytest.fixture
def preflight() -> FakePreflight:
    return FakePreflight()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def make_orchestrator(
    test_settings: Settings,
    repo_dir: Path,
    fake_runner: FakeRunner,
    service: SimulatedServiceManager,
    builder: FakeBuilder,
    preflight: FakePreflight,
    events: EventBus,
) -> Callable[..., DeploymentOrchestrator]:
    """Factory for orchestrators wired to fakes and temporary directories."""

    def _make(**overrides) -> DeploymentOrchestrator:
        kwargs = dict(
            settings=test_settings,
            runner=fake_runner,
            repository=FakeRepository(repo_dir),
            builder=builder,
            service=service,
            events=events,
            preflight=preflight,
            sleep=no_sleep,
        )
        kwargs.update(overrides)
        return DeploymentOrchestrator(**kwargs)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator) -> DeploymentOrchestrator:
    return make_orchestrator()


@pytest.fixture
def backups(orchestrator: DeploymentOrchestrator) -> BackupManager:
    return orchestrator.backups


@pytest.fixture
def records(orchestrator: DeploymentOrchestrator) -> DeploymentRecordStore:
    return orchestrator.records


@pytest.fixture
async def client(orchestrator: DeploymentOrchestrator) -> AsyncClient:
    """Create an async test client bound to the test orchestrator."""
    app.dependency_overrides[get_deployer] = lambda: orchestrator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    # Let any background deployment finish before the loop closes
    await orchestrator.wait()
    app.dependency_overrides.clear()


@pytest.fixture
def command_error() -> CommandError:
    return CommandError("npm ci --production --silent", 1, output="npm ERR! missing lockfile")
