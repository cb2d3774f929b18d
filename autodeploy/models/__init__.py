"""Data models for autodeploy."""

from autodeploy.models.deployment import (
    BackupSnapshot,
    CommitInfo,
    DeploymentAttempt,
    DeploymentRecord,
    DeploymentState,
    DeploymentStatus,
    PushPayload,
    StepInfo,
    StepStatus,
)

__all__ = [
    # State
    "DeploymentState",
    "DeploymentStatus",
    "DeploymentAttempt",
    "StepInfo",
    "StepStatus",
    # Persisted records
    "DeploymentRecord",
    "BackupSnapshot",
    # Triggers
    "CommitInfo",
    "PushPayload",
]
