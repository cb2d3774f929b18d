"""Unit tests for the deployment orchestrator."""

import asyncio
from pathlib import Path

import pytest

from autodeploy.core.exceptions import (
    DeploymentFailedError,
    DeploymentInProgressError,
    PreflightError,
    ServiceControlError,
)
from autodeploy.core.orchestrator import DeploymentOrchestrator, PipelineStep
from autodeploy.models.deployment import CommitInfo, DeploymentState, StepStatus
from autodeploy.services.process import CommandRunner
from autodeploy.services.service_manager import OpenRCServiceManager, SimulatedServiceManager

COMMIT = CommitInfo(id="abc123", message="Fix sensor polling", author="dev", branch="main")


class BrokenStopService(SimulatedServiceManager):
    async def stop(self) -> None:
        raise ServiceControlError(self.name, "stop", "permission denied")


class UnrecoverableService(SimulatedServiceManager):
    async def start(self) -> None:
        self.history.append("start")
        raise ServiceControlError(self.name, "start", "crashed on boot")


class UnspawnableStopService(SimulatedServiceManager):
    async def stop(self) -> None:
        raise PermissionError(13, "Permission denied", "doas")


class CrashingService(SimulatedServiceManager):
    """Starts, then dies before the settle period ends."""

    async def start(self) -> None:
        self.history.append("start")
        self.running = False


class TestSuccessfulDeployment:
    """Tests for the happy path."""

    @pytest.mark.asyncio
    async def test_deploy_records_success(self, orchestrator: DeploymentOrchestrator, repo_dir: Path):
        record = await orchestrator.deploy(COMMIT)

        assert record.success is True
        assert record.commit == "abc123"
        assert record.message == "Fix sensor polling"
        assert record.error is None

        stored = orchestrator.records.load()
        assert stored.commit == "abc123"
        assert stored.success is True
        assert (repo_dir / "dist" / "index.js").read_text() == "v2"

    @pytest.mark.asyncio
    async def test_state_and_service(self, orchestrator: DeploymentOrchestrator, service: SimulatedServiceManager):
        await orchestrator.deploy(COMMIT)

        assert orchestrator.state == DeploymentState.SUCCEEDED
        assert orchestrator.in_progress is False
        assert service.history == ["stop", "start"]
        assert await service.is_running() is True

    @pytest.mark.asyncio
    async def test_all_steps_completed_in_order(self, orchestrator: DeploymentOrchestrator):
        await orchestrator.deploy(COMMIT)

        attempt = orchestrator.current_attempt
        assert list(attempt.steps) == [step.name for step in orchestrator.steps]
        assert all(info.status == StepStatus.COMPLETED for info in attempt.steps.values())
        assert attempt.completed_at is not None

    @pytest.mark.asyncio
    async def test_backup_taken_before_update(self, orchestrator: DeploymentOrchestrator):
        record = await orchestrator.deploy(COMMIT)

        backup = Path(record.backup_path)
        assert (backup / "dist" / "index.js").read_text() == "v1"
        assert orchestrator.backups.last_backup().path == backup

    @pytest.mark.asyncio
    async def test_stop_failure_is_not_fatal(self, make_orchestrator):
        orchestrator = make_orchestrator(service=BrokenStopService("void-main", running=True))

        record = await orchestrator.deploy(COMMIT)

        assert record.success is True

    @pytest.mark.asyncio
    async def test_stop_that_cannot_spawn_is_not_fatal(self, make_orchestrator):
        orchestrator = make_orchestrator(service=UnspawnableStopService("void-main", running=True))

        record = await orchestrator.deploy(COMMIT)

        assert record.success is True
        assert orchestrator.current_attempt.steps["stop_service"].status == StepStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_stopped_service_is_started(self, make_orchestrator):
        service = SimulatedServiceManager("void-main", running=False)
        orchestrator = make_orchestrator(service=service)

        await orchestrator.deploy(COMMIT)

        assert service.history == ["start"]
        assert service.running is True

    @pytest.mark.asyncio
    async def test_events_published(self, orchestrator: DeploymentOrchestrator, events):
        queue = events.subscribe()

        await orchestrator.deploy(COMMIT)

        received = []
        while not queue.empty():
            received.append(queue.get_nowait())
        assert received[0].event_type == "step_started"
        assert received[0].data["step"] == "backup"
        assert received[-1].event_type == "deployment_succeeded"
        assert received[-1].data["commit"] == "abc123"


class TestRetention:
    @pytest.mark.asyncio
    async def test_keeps_five_newest_backups(self, orchestrator: DeploymentOrchestrator):
        backup_paths = []
        for i in range(7):
            record = await orchestrator.deploy(CommitInfo(id=f"c{i}", branch="main"))
            backup_paths.append(record.backup_path)

        remaining = [str(s.path) for s in orchestrator.backups.list_snapshots()]
        assert remaining == backup_paths[-5:]


class TestRollback:
    """Tests for failures and rollback."""

    @pytest.mark.asyncio
    async def test_validation_failure_restores_this_attempts_backup(
        self, orchestrator: DeploymentOrchestrator, builder, repo_dir: Path
    ):
        # A successful deploy leaves v2 in place; the next attempt's backup holds v2
        await orchestrator.deploy(CommitInfo(id="good1", branch="main"))
        builder.produce_entry = False

        with pytest.raises(DeploymentFailedError) as exc_info:
            await orchestrator.deploy(COMMIT)

        record = exc_info.value.record
        assert record.success is False
        assert record.failed_step == "validate_build"
        assert record.error
        assert record.backup_path == orchestrator.current_attempt.backup_path
        assert (repo_dir / "dist" / "index.js").read_text() == "v2"
        assert not (repo_dir / "dist" / "chunk.js").exists()

    @pytest.mark.asyncio
    async def test_failure_record_persisted_and_service_restarted(
        self, orchestrator: DeploymentOrchestrator, builder, command_error, service
    ):
        builder.install_error = command_error

        with pytest.raises(DeploymentFailedError):
            await orchestrator.deploy(COMMIT)

        stored = orchestrator.records.load()
        assert stored.commit == "abc123"
        assert stored.success is False
        assert stored.failed_step == "install_dependencies"
        assert "exit code 1" in stored.error
        assert orchestrator.state == DeploymentState.FAILED
        assert orchestrator.current_attempt.rolled_back is True
        assert service.running is True

    @pytest.mark.asyncio
    async def test_steps_after_failure_do_not_run(self, orchestrator: DeploymentOrchestrator, builder, command_error):
        builder.install_error = command_error

        with pytest.raises(DeploymentFailedError):
            await orchestrator.deploy(COMMIT)

        steps = orchestrator.current_attempt.steps
        assert steps["install_dependencies"].status == StepStatus.FAILED
        assert steps["install_dependencies"].completed_at is not None
        for name in ("build", "validate_build", "record_success", "start_service", "prune_backups"):
            assert steps[name].status == StepStatus.SKIPPED
            assert steps[name].started_at is None

    @pytest.mark.asyncio
    async def test_service_not_running_after_settle(self, make_orchestrator):
        orchestrator = make_orchestrator(service=CrashingService("void-main", running=True))

        with pytest.raises(DeploymentFailedError) as exc_info:
            await orchestrator.deploy(COMMIT)

        assert exc_info.value.record.failed_step == "start_service"
        assert "failed to start properly" in exc_info.value.record.error
        # The failure record replaces the success record written earlier
        assert orchestrator.records.load().success is False

    @pytest.mark.asyncio
    async def test_unrecoverable_service_is_reported(self, make_orchestrator, builder):
        builder.produce_entry = False
        orchestrator = make_orchestrator(service=UnrecoverableService("void-main", running=True))

        with pytest.raises(DeploymentFailedError) as exc_info:
            await orchestrator.deploy(COMMIT)

        error = exc_info.value.record.error
        assert "validate_build" in error
        assert "service restart after rollback failed" in error
        assert orchestrator.in_progress is False

    @pytest.mark.asyncio
    async def test_unexecutable_privilege_helper_still_records_failure(self, make_orchestrator, builder, tmp_path: Path):
        helper = tmp_path / "doas"
        helper.write_text("#!/bin/sh\nexec \"$@\"\n")
        helper.chmod(0o644)
        builder.produce_entry = False
        service = OpenRCServiceManager("void-main", CommandRunner(timeout=10), privilege=[str(helper)])
        orchestrator = make_orchestrator(service=service)

        with pytest.raises(DeploymentFailedError) as exc_info:
            await orchestrator.deploy(COMMIT)

        stored = orchestrator.records.load()
        assert stored is not None
        assert stored.success is False
        assert stored.failed_step == "validate_build"
        assert "service restart after rollback failed" in exc_info.value.record.error
        assert orchestrator.state == DeploymentState.FAILED

    @pytest.mark.asyncio
    async def test_backup_failure_skips_restore(self, orchestrator: DeploymentOrchestrator, repo_dir: Path):
        async def _failing_backup(attempt):
            raise OSError("disk full")

        orchestrator.steps[0] = PipelineStep("backup", _failing_backup)

        with pytest.raises(DeploymentFailedError) as exc_info:
            await orchestrator.deploy(COMMIT)

        record = exc_info.value.record
        assert record.failed_step == "backup"
        assert record.backup_path is None
        assert "disk full" in record.error
        assert (repo_dir / "dist" / "index.js").read_text() == "v1"


class TestStateMachine:
    """Tests for mutual exclusion and state transitions."""

    @pytest.mark.asyncio
    async def test_second_trigger_rejected_while_running(self, orchestrator: DeploymentOrchestrator, builder):
        builder.gate = asyncio.Event()
        first = orchestrator.trigger(COMMIT)
        await builder.entered.wait()

        assert orchestrator.in_progress is True
        with pytest.raises(DeploymentInProgressError):
            orchestrator.trigger(CommitInfo(id="def456", branch="main"))

        assert orchestrator.current_attempt.commit.id == "abc123"
        builder.gate.set()
        record = await first
        assert record.commit == "abc123"
        assert builder.installs == 1

    @pytest.mark.asyncio
    async def test_can_deploy_again_after_completion(self, orchestrator: DeploymentOrchestrator):
        await orchestrator.deploy(COMMIT)
        record = await orchestrator.deploy(CommitInfo(id="def456", branch="main"))

        assert record.commit == "def456"

    @pytest.mark.asyncio
    async def test_flag_cleared_after_unexpected_exception(self, orchestrator: DeploymentOrchestrator):
        def _broken_save(record):
            raise RuntimeError("records unavailable")

        async def _failing_step(attempt):
            raise ValueError("injected")

        orchestrator.steps = [PipelineStep("injected", _failing_step)]
        orchestrator.records.save = _broken_save

        with pytest.raises(RuntimeError):
            await orchestrator.deploy(COMMIT)

        assert orchestrator.in_progress is False
        assert orchestrator.state == DeploymentState.FAILED

    @pytest.mark.asyncio
    async def test_flag_cleared_after_cancellation(self, orchestrator: DeploymentOrchestrator):
        orchestrator.trigger(COMMIT).cancel()
        await orchestrator.wait()

        assert orchestrator.in_progress is False
        assert orchestrator.state == DeploymentState.FAILED

    def test_trigger_requires_running_loop(self, orchestrator: DeploymentOrchestrator):
        with pytest.raises(RuntimeError):
            orchestrator.trigger(COMMIT)

        assert orchestrator.state == DeploymentState.IDLE

    @pytest.mark.asyncio
    async def test_status_reflects_last_record(self, orchestrator: DeploymentOrchestrator):
        before = orchestrator.status()
        assert before.state == DeploymentState.IDLE
        assert before.last_deployment is None
        assert before.webhook_configured is True

        await orchestrator.deploy(COMMIT)

        after = orchestrator.status()
        assert after.deployment_in_progress is False
        assert after.last_deployment.commit == "abc123"


class TestPreflight:
    """Tests for pre-flight handling."""

    @pytest.mark.asyncio
    async def test_runs_once(self, orchestrator: DeploymentOrchestrator, preflight):
        await orchestrator.deploy(COMMIT)
        await orchestrator.deploy(COMMIT)

        assert preflight.calls == 1

    @pytest.mark.asyncio
    async def test_failure_modifies_nothing(
        self, orchestrator: DeploymentOrchestrator, preflight, service, test_settings, repo_dir: Path
    ):
        preflight.error = PreflightError("tool:npm", "npm is not installed")

        with pytest.raises(PreflightError):
            await orchestrator.deploy(COMMIT)

        assert orchestrator.in_progress is False
        assert orchestrator.records.load() is None
        assert orchestrator.backups.list_snapshots() == []
        assert service.history == []
        assert (repo_dir / "dist" / "index.js").read_text() == "v1"

    @pytest.mark.asyncio
    async def test_retried_after_failure(self, orchestrator: DeploymentOrchestrator, preflight):
        preflight.error = PreflightError("network", "unreachable")
        with pytest.raises(PreflightError):
            await orchestrator.deploy(COMMIT)

        preflight.error = None
        record = await orchestrator.deploy(COMMIT)

        assert record.success is True
        assert preflight.calls == 2
