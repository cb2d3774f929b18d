"""Deployment Orchestrator.

Runs the update-or-rollback cycle against the local checkout and the
managed service. The orchestrator owns the deployment state; at most one
attempt runs at a time and a second trigger is rejected, not queued.

Pipeline steps, strictly sequential:
1. backup - snapshot build output and dependencies
2. stop_service - best effort, failures are logged and ignored
3. update_source - stash, fetch, hard reset, clean
4. install_dependencies / build
5. validate_build - output dir non-empty and entry artifact present
6. record_success - persist the deployment record
7. start_service - start, settle, confirm still running
8. prune_backups - keep the newest snapshots

The first failing step hands over to the rollback handler.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

from autodeploy.config import Settings, settings as default_settings
from autodeploy.core.backups import BackupManager
from autodeploy.core.events import EventBus, get_event_bus
from autodeploy.core.exceptions import (
    AutoDeployError,
    BackupError,
    DeploymentFailedError,
    DeploymentInProgressError,
    PreflightError,
    StepFailedError,
)
from autodeploy.core.preflight import PreflightChecker
from autodeploy.core.records import DeploymentRecordStore
from autodeploy.models.deployment import (
    BackupSnapshot,
    CommitInfo,
    DeploymentAttempt,
    DeploymentRecord,
    DeploymentState,
    DeploymentStatus,
    StepStatus,
)
from autodeploy.services.packages import PackageBuilder
from autodeploy.services.process import CommandRunner
from autodeploy.services.repository import GitRepository
from autodeploy.services.service_manager import ServiceManager, get_service_manager
from autodeploy.utils.logging import DEPLOYMENT_LOGGER, get_logger

StepFunc = Callable[[DeploymentAttempt], Awaitable[None]]


@dataclass
class PipelineStep:
    """A named pipeline step."""

    name: str
    run: StepFunc


class DeploymentOrchestrator:
    """Owns the deployment state machine: idle -> running -> succeeded | failed."""

    def __init__(
        self,
        settings: Settings | None = None,
        runner: CommandRunner | None = None,
        repository: GitRepository | None = None,
        builder: PackageBuilder | None = None,
        service: ServiceManager | None = None,
        backups: BackupManager | None = None,
        records: DeploymentRecordStore | None = None,
        events: EventBus | None = None,
        preflight: PreflightChecker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or default_settings
        self.logger = get_logger(f"{DEPLOYMENT_LOGGER}.orchestrator")

        repo_path = self.settings.repo_path
        self.runner = runner or CommandRunner(timeout=self.settings.command_timeout_seconds)
        self.repository = repository or GitRepository(
            repo_path,
            self.runner,
            remote=self.settings.git_remote,
            branch=self.settings.deploy_branch,
        )
        self.builder = builder or PackageBuilder(
            repo_path,
            self.runner,
            install_command=self.settings.install_command,
            build_command=self.settings.build_command,
        )
        self.service = service or get_service_manager(self.settings, self.runner)
        self.backups = backups or BackupManager(
            root=self.settings.resolve_path(self.settings.backup_dir),
            source=repo_path,
            directories=[self.settings.build_output_dir, self.settings.dependency_dir],
            files=self.settings.backup_files,
            pointer_file=self.settings.resolve_path(self.settings.last_backup_file),
        )
        self.records = records or DeploymentRecordStore(
            self.settings.resolve_path(self.settings.deployment_info_file)
        )
        self.events = events or get_event_bus()
        self.preflight = preflight or PreflightChecker(
            self.repository,
            tools=["git", self.builder.tool],
            remote_host=self.settings.remote_host,
            check_network=self.settings.preflight_check_network,
        )
        self._sleep = sleep

        self.build_output = self.settings.resolve_path(self.settings.build_output_dir)
        self.entry_artifact = self.settings.resolve_path(self.settings.entry_artifact)

        self._state = DeploymentState.IDLE
        self._attempt: DeploymentAttempt | None = None
        self._task: asyncio.Task[DeploymentRecord] | None = None
        self._preflight_passed = False

        self.steps: list[PipelineStep] = [
            PipelineStep("backup", self._backup),
            PipelineStep("stop_service", self._stop_service),
            PipelineStep("update_source", self._update_source),
            PipelineStep("install_dependencies", self._install_dependencies),
            PipelineStep("build", self._build),
            PipelineStep("validate_build", self._validate_build),
            PipelineStep("record_success", self._record_success),
            PipelineStep("start_service", self._start_service),
            PipelineStep("prune_backups", self._prune_backups),
        ]

    @property
    def state(self) -> DeploymentState:
        return self._state

    @property
    def in_progress(self) -> bool:
        return self._state == DeploymentState.RUNNING

    @property
    def current_attempt(self) -> DeploymentAttempt | None:
        return self._attempt

    @property
    def webhook_configured(self) -> bool:
        return bool(self.settings.github_webhook_secret)

    def status(self) -> DeploymentStatus:
        """Current state plus the last persisted deployment record."""
        return DeploymentStatus(
            deployment_in_progress=self.in_progress,
            state=self._state,
            last_deployment=self.records.load(),
            webhook_configured=self.webhook_configured,
            current_attempt=self._attempt,
        )

    def trigger(self, commit: CommitInfo) -> "asyncio.Task[DeploymentRecord]":
        """Start a deployment attempt in the background.

        The running check and the state change happen synchronously, before
        anything is awaited, so two triggers can never both start.

        Raises:
            DeploymentInProgressError: If an attempt is already running
        """
        if self._state == DeploymentState.RUNNING:
            self.logger.warning(
                "orchestrator.trigger_rejected",
                reason="deployment_in_progress",
                commit=commit.id,
            )
            raise DeploymentInProgressError()

        attempt = DeploymentAttempt(commit=commit)
        coro = self._run(attempt)
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            raise

        self._state = DeploymentState.RUNNING
        self._attempt = attempt
        self._task = task
        task.add_done_callback(self._log_outcome)
        return task

    async def deploy(self, commit: CommitInfo) -> DeploymentRecord:
        """Trigger a deployment and wait for its outcome.

        Raises:
            DeploymentInProgressError: If an attempt is already running
            PreflightError: If a pre-flight check failed
            DeploymentFailedError: If a step failed and the attempt was rolled back
        """
        return await self.trigger(commit)

    async def wait(self) -> None:
        """Wait for the current background attempt, ignoring its outcome."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def run_preflight(self) -> None:
        """Run pre-flight checks now. Raises PreflightError on failure."""
        await self.preflight.ensure()
        self._preflight_passed = True

    async def _run(self, attempt: DeploymentAttempt) -> DeploymentRecord:
        succeeded = False
        try:
            if not self._preflight_passed:
                try:
                    await self.run_preflight()
                except PreflightError as e:
                    attempt.error = e.message
                    await self.events.publish_deployment_finished(attempt.commit.id, False, e.message)
                    raise

            record = await self._execute(attempt)
            succeeded = True
            return record
        finally:
            attempt.finish()
            self._state = DeploymentState.SUCCEEDED if succeeded else DeploymentState.FAILED

    async def _execute(self, attempt: DeploymentAttempt) -> DeploymentRecord:
        commit = attempt.commit
        self.logger.info(
            "orchestrator.deployment.started",
            commit=commit.id,
            message=commit.message,
            author=commit.author,
            branch=commit.branch,
        )

        for index, step in enumerate(self.steps):
            try:
                await self._run_step(attempt, step)
            except StepFailedError as e:
                for skipped in self.steps[index + 1 :]:
                    attempt.update_step(skipped.name, StepStatus.SKIPPED)
                record = await self._rollback(attempt, e)
                raise DeploymentFailedError(record) from e

        record = self.records.load() or self._success_record(attempt)
        self.logger.info(
            "orchestrator.deployment.completed",
            commit=commit.id,
            duration_ms=attempt.duration_ms,
        )
        await self.events.publish_deployment_finished(commit.id, True)
        return record

    async def _run_step(self, attempt: DeploymentAttempt, step: PipelineStep) -> None:
        attempt.update_step(step.name, StepStatus.IN_PROGRESS)
        await self.events.publish_step_started(step.name)
        self.logger.info("orchestrator.step.started", step=step.name)

        try:
            await step.run(attempt)
        except StepFailedError as e:
            error = e
        except Exception as e:
            message = e.message if isinstance(e, AutoDeployError) else str(e) or type(e).__name__
            error = StepFailedError(step.name, message)
        else:
            attempt.update_step(step.name, StepStatus.COMPLETED)
            duration_ms = attempt.steps[step.name].duration_ms or 0
            self.logger.info("orchestrator.step.completed", step=step.name, duration_ms=duration_ms)
            await self.events.publish_step_completed(step.name, duration_ms)
            return

        attempt.update_step(step.name, StepStatus.FAILED, error=error.message)
        self.logger.error("orchestrator.step.failed", step=step.name, error=error.reason)
        await self.events.publish_step_failed(step.name, error.message)
        raise error

    # Steps

    async def _backup(self, attempt: DeploymentAttempt) -> None:
        snapshot = await asyncio.to_thread(self.backups.create)
        attempt.backup_path = str(snapshot.path)

    async def _stop_service(self, attempt: DeploymentAttempt) -> None:
        try:
            if not await self.service.is_running():
                self.logger.warning("orchestrator.service_not_running", service=self.service.name)
                return
            await self.service.stop()
        except (AutoDeployError, OSError) as e:
            self.logger.warning(
                "orchestrator.service_stop_failed",
                service=self.service.name,
                error=getattr(e, "message", str(e)),
                action="continuing",
            )

    async def _update_source(self, attempt: DeploymentAttempt) -> None:
        head = await self.repository.sync_to_remote()
        self.logger.info("orchestrator.source_updated", head=head)

    async def _install_dependencies(self, attempt: DeploymentAttempt) -> None:
        await self.builder.install()

    async def _build(self, attempt: DeploymentAttempt) -> None:
        await self.builder.build()

    async def _validate_build(self, attempt: DeploymentAttempt) -> None:
        if not self.build_output.is_dir() or not any(self.build_output.iterdir()):
            raise StepFailedError(
                "validate_build",
                f"build output directory is missing or empty: {self.build_output}",
            )
        if not self.entry_artifact.is_file():
            raise StepFailedError(
                "validate_build",
                f"entry artifact not found: {self.entry_artifact}",
            )

    async def _record_success(self, attempt: DeploymentAttempt) -> None:
        self.records.save(self._success_record(attempt))

    async def _start_service(self, attempt: DeploymentAttempt) -> None:
        await self.service.start()
        await self._sleep(self.settings.service_settle_seconds)
        if not await self.service.is_running():
            raise StepFailedError("start_service", "service failed to start properly")
        self.logger.info("orchestrator.service_running", service=self.service.name)

    async def _prune_backups(self, attempt: DeploymentAttempt) -> None:
        await asyncio.to_thread(self.backups.prune, self.settings.backup_retention)

    def _success_record(self, attempt: DeploymentAttempt) -> DeploymentRecord:
        return DeploymentRecord.from_commit(
            attempt.commit,
            success=True,
            backup_path=attempt.backup_path,
            duration_ms=attempt.duration_ms,
        )

    # Rollback

    async def _rollback(self, attempt: DeploymentAttempt, failure: StepFailedError) -> DeploymentRecord:
        """Restore this attempt's backup, restart the service and record the failure."""
        attempt.rolled_back = True
        errors = [failure.message]

        self.logger.warning("orchestrator.rollback.started", backup=attempt.backup_path)
        await self.events.publish_rollback_started(attempt.backup_path)

        if attempt.backup_path is None:
            # The backup step itself failed, so nothing was modified yet
            self.logger.error("orchestrator.rollback.no_backup")
        else:
            snapshot = BackupSnapshot(path=Path(attempt.backup_path), created_at=attempt.started_at)
            try:
                await asyncio.to_thread(self.backups.restore, snapshot)
            except BackupError as e:
                self.logger.error("orchestrator.rollback.restore_failed", error=e.message)
                errors.append(f"restore failed: {e.message}")

        try:
            await self.service.start()
            self.logger.info("orchestrator.rollback.service_restored", service=self.service.name)
        except (AutoDeployError, OSError) as e:
            message = getattr(e, "message", str(e))
            self.logger.critical(
                "orchestrator.rollback.service_unrecoverable",
                service=self.service.name,
                error=message,
            )
            errors.append(f"service restart after rollback failed: {message}")

        record = DeploymentRecord.from_commit(
            attempt.commit,
            success=False,
            error="; ".join(errors),
            failed_step=failure.step,
            backup_path=attempt.backup_path,
            duration_ms=attempt.duration_ms,
        )
        self.records.save(record)

        self.logger.error(
            "orchestrator.deployment.rolled_back",
            commit=attempt.commit.id,
            failed_step=failure.step,
            error=record.error,
        )
        await self.events.publish_deployment_finished(attempt.commit.id, False, record.error)
        return record

    def _log_outcome(self, task: "asyncio.Task[DeploymentRecord]") -> None:
        # Retrieve the exception so background failures are never unobserved
        if task.cancelled():
            # A task cancelled before its first step never reaches _run's finally
            if task is self._task and self._state == DeploymentState.RUNNING:
                self._state = DeploymentState.FAILED
            self.logger.warning("orchestrator.deployment.cancelled")
            return
        exc = task.exception()
        if exc is None:
            return
        if isinstance(exc, AutoDeployError):
            self.logger.error(
                "orchestrator.deployment.ended_with_error",
                error=exc.message,
                error_type=type(exc).__name__,
            )
        else:
            self.logger.error(
                "orchestrator.deployment.crashed",
                error=str(exc),
                exc_info=exc,
            )


# Singleton instance
_orchestrator: DeploymentOrchestrator | None = None


def get_orchestrator() -> DeploymentOrchestrator:
    """Get the process-wide deployment orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = DeploymentOrchestrator()
    return _orchestrator
