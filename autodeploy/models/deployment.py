"""Deployment data models."""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Timezone-aware current UTC time used for every deployment timestamp."""
    return datetime.now(timezone.utc)


class DeploymentState(str, Enum):
    """Orchestrator state."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Individual pipeline step status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class CommitInfo(BaseModel):
    """Commit metadata supplied by whoever triggered the deployment."""

    id: str = "manual"
    message: str = "Manual deployment"
    author: str = "Manual"
    branch: str = "main"

    @classmethod
    def manual(cls, branch: str) -> "CommitInfo":
        """Placeholder metadata for manual triggers."""
        return cls(branch=branch)


class DeploymentRecord(BaseModel):
    """Outcome of the last deployment attempt, persisted as JSON."""

    timestamp: datetime = Field(default_factory=utc_now)
    commit: str
    message: str
    author: str
    branch: str
    success: bool
    error: str | None = None
    failed_step: str | None = None
    backup_path: str | None = None
    duration_ms: int | None = None

    @classmethod
    def from_commit(cls, commit: CommitInfo, **kwargs: Any) -> "DeploymentRecord":
        return cls(
            commit=commit.id,
            message=commit.message,
            author=commit.author,
            branch=commit.branch,
            **kwargs,
        )


class BackupSnapshot(BaseModel):
    """A point-in-time copy of build output and dependencies."""

    path: Path
    created_at: datetime

    @property
    def name(self) -> str:
        return self.path.name


class StepInfo(BaseModel):
    """Information about a pipeline step."""

    status: StepStatus = StepStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    error: str | None = None


class DeploymentAttempt(BaseModel):
    """In-memory state of a single deployment attempt."""

    commit: CommitInfo
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None

    current_step: str | None = None
    steps: dict[str, StepInfo] = Field(default_factory=dict)

    backup_path: str | None = None
    rolled_back: bool = False
    error: str | None = None

    @property
    def duration_ms(self) -> int:
        end = self.completed_at or utc_now()
        return int((end - self.started_at).total_seconds() * 1000)

    def update_step(
        self,
        step: str,
        status: StepStatus,
        error: str | None = None,
    ) -> None:
        """Update a step's status."""
        now = utc_now()

        if step not in self.steps:
            self.steps[step] = StepInfo()

        step_info = self.steps[step]
        step_info.status = status

        if status == StepStatus.IN_PROGRESS:
            step_info.started_at = now
            self.current_step = step
        elif status in (StepStatus.COMPLETED, StepStatus.FAILED):
            step_info.completed_at = now
            if step_info.started_at:
                step_info.duration_ms = int(
                    (now - step_info.started_at).total_seconds() * 1000
                )
            if status == StepStatus.FAILED:
                step_info.error = error
                self.error = error

    def finish(self) -> None:
        self.completed_at = utc_now()
        self.current_step = None


class DeploymentStatus(BaseModel):
    """Snapshot of orchestrator state for status callers."""

    model_config = ConfigDict(populate_by_name=True)

    deployment_in_progress: bool = Field(alias="deploymentInProgress")
    state: DeploymentState
    last_deployment: DeploymentRecord | None = Field(
        default=None, alias="lastDeployment"
    )
    webhook_configured: bool = Field(alias="webhookConfigured")
    current_attempt: DeploymentAttempt | None = Field(
        default=None, alias="currentAttempt"
    )


# Webhook payload (GitHub push event)


class CommitAuthor(BaseModel):
    name: str = "unknown"
    email: str | None = None


class HeadCommit(BaseModel):
    id: str
    message: str = ""
    author: CommitAuthor = Field(default_factory=CommitAuthor)


class Repository(BaseModel):
    name: str | None = None
    full_name: str | None = None
    clone_url: str | None = None


class PushPayload(BaseModel):
    """The subset of a push webhook payload that deployments use."""

    model_config = ConfigDict(extra="ignore")

    ref: str
    repository: Repository = Field(default_factory=Repository)
    head_commit: HeadCommit | None = None

    @property
    def branch(self) -> str:
        return self.ref.removeprefix("refs/heads/")

    def to_commit(self) -> CommitInfo:
        """Commit metadata for the deployment record."""
        if self.head_commit is None:
            return CommitInfo(id="unknown", message="unknown", author="unknown", branch=self.branch)
        return CommitInfo(
            id=self.head_commit.id,
            message=self.head_commit.message,
            author=self.head_commit.author.name,
            branch=self.branch,
        )
