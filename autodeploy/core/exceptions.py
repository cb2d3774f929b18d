"""Custom exceptions for autodeploy."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from autodeploy.models.deployment import DeploymentRecord


class AutoDeployError(Exception):
    """Base exception for autodeploy."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class SignatureVerificationError(AutoDeployError):
    """Webhook signature did not match."""

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class DeploymentInProgressError(AutoDeployError):
    """A deployment is already running."""

    def __init__(self):
        super().__init__("Deployment already in progress")


class PreflightError(AutoDeployError):
    """A pre-flight check failed before anything was changed."""

    def __init__(self, check: str, message: str):
        super().__init__(
            f"Pre-flight check '{check}' failed: {message}",
            {"check": check},
        )
        self.check = check


class CommandError(AutoDeployError):
    """An external command exited non-zero or timed out."""

    def __init__(
        self,
        command: str,
        returncode: int | None,
        output: str = "",
        timed_out: bool = False,
    ):
        if timed_out:
            message = f"Command timed out: {command}"
        else:
            message = f"Command failed with exit code {returncode}: {command}"
        details: dict[str, Any] = {"command": command, "returncode": returncode}
        if output:
            details["output"] = output[-1000:]
        super().__init__(message, details)
        self.command = command
        self.returncode = returncode
        self.output = output
        self.timed_out = timed_out


class ServiceControlError(AutoDeployError):
    """The managed service could not be started or stopped."""

    def __init__(self, service: str, action: str, message: str):
        super().__init__(
            f"Service '{service}' {action} failed: {message}",
            {"service": service, "action": action},
        )
        self.service = service
        self.action = action


class BackupError(AutoDeployError):
    """Creating or restoring a backup snapshot failed."""

    pass


class StepFailedError(AutoDeployError):
    """A pipeline step failed."""

    def __init__(self, step: str, message: str):
        super().__init__(
            f"Step '{step}' failed: {message}",
            {"step": step},
        )
        self.step = step
        self.reason = message


class DeploymentFailedError(AutoDeployError):
    """A deployment attempt failed and was rolled back."""

    def __init__(self, record: "DeploymentRecord"):
        super().__init__(
            record.error or "Deployment failed",
            {"commit": record.commit, "failed_step": record.failed_step},
        )
        self.record = record
