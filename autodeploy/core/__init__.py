"""Core functionality for autodeploy.

The orchestrator lives in autodeploy.core.orchestrator; it depends on
autodeploy.services, which imports the exceptions exported here.
"""

from autodeploy.core.exceptions import (
    AutoDeployError,
    BackupError,
    CommandError,
    DeploymentFailedError,
    DeploymentInProgressError,
    PreflightError,
    ServiceControlError,
    SignatureVerificationError,
    StepFailedError,
)
from autodeploy.core.backups import BackupManager
from autodeploy.core.events import EventBus, get_event_bus
from autodeploy.core.records import DeploymentRecordStore
from autodeploy.core.webhook import WebhookVerifier

__all__ = [
    "AutoDeployError",
    "BackupError",
    "CommandError",
    "DeploymentFailedError",
    "DeploymentInProgressError",
    "PreflightError",
    "ServiceControlError",
    "SignatureVerificationError",
    "StepFailedError",
    "BackupManager",
    "DeploymentRecordStore",
    "EventBus",
    "get_event_bus",
    "WebhookVerifier",
]
