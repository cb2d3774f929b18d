"""Managed OS service control.

The backend is chosen once from configuration at startup:

- ``openrc``: ``rc-service <name> status|start|stop`` (Alpine)
- ``systemd``: ``systemctl is-active|start|stop <name>``
- ``simulated``: in-memory state for hosts without an init system
"""

import shlex
import shutil
from abc import ABC, abstractmethod

from autodeploy.config import Settings
from autodeploy.core.exceptions import ServiceControlError
from autodeploy.services.process import CommandRunner
from autodeploy.utils.logging import DEPLOYMENT_LOGGER, get_logger


def detect_privilege_command() -> list[str]:
    """Prefer doas, then sudo, else run service commands directly."""
    for candidate in ("doas", "sudo"):
        if shutil.which(candidate):
            return [candidate]
    return []


class ServiceManager(ABC):
    """Interface for controlling the managed service."""

    def __init__(self, name: str):
        self.name = name
        self.logger = get_logger(f"{DEPLOYMENT_LOGGER}.service")

    @property
    @abstractmethod
    def backend(self) -> str:
        """Backend identifier."""
        pass

    @abstractmethod
    async def is_running(self) -> bool:
        """Check whether the service is currently running."""
        pass

    @abstractmethod
    async def start(self) -> None:
        """Start the service. Raises ServiceControlError on failure."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the service. Raises ServiceControlError on failure."""
        pass


class CommandServiceManager(ServiceManager):
    """Service manager that shells out to the host init system."""

    def __init__(
        self,
        name: str,
        runner: CommandRunner,
        privilege: list[str] | None = None,
    ):
        super().__init__(name)
        self.runner = runner
        self.privilege = detect_privilege_command() if privilege is None else privilege

    @abstractmethod
    def status_args(self) -> list[str]:
        pass

    @abstractmethod
    def action_args(self, action: str) -> list[str]:
        pass

    async def is_running(self) -> bool:
        result = await self.runner.run(self.status_args())
        return result.ok

    async def _control(self, action: str) -> None:
        self.logger.info("service.control", service=self.name, action=action)
        result = await self.runner.run([*self.privilege, *self.action_args(action)])
        if not result.ok:
            raise ServiceControlError(
                self.name, action, result.output.strip() or f"exit code {result.returncode}"
            )

    async def start(self) -> None:
        await self._control("start")

    async def stop(self) -> None:
        await self._control("stop")


class OpenRCServiceManager(CommandServiceManager):
    """OpenRC (rc-service) backend."""

    @property
    def backend(self) -> str:
        return "openrc"

    def status_args(self) -> list[str]:
        return ["rc-service", self.name, "status"]

    def action_args(self, action: str) -> list[str]:
        return ["rc-service", self.name, action]


class SystemdServiceManager(CommandServiceManager):
    """systemd (systemctl) backend."""

    @property
    def backend(self) -> str:
        return "systemd"

    def status_args(self) -> list[str]:
        return ["systemctl", "is-active", "--quiet", self.name]

    def action_args(self, action: str) -> list[str]:
        return ["systemctl", action, self.name]


class SimulatedServiceManager(ServiceManager):
    """In-memory service for development hosts and tests."""

    def __init__(self, name: str, running: bool = False):
        super().__init__(name)
        self.running = running
        self.history: list[str] = []

    @property
    def backend(self) -> str:
        return "simulated"

    async def is_running(self) -> bool:
        return self.running

    async def start(self) -> None:
        self.history.append("start")
        self.running = True
        self.logger.info("service.simulated_start", service=self.name)

    async def stop(self) -> None:
        self.history.append("stop")
        self.running = False
        self.logger.info("service.simulated_stop", service=self.name)


def get_service_manager(settings: Settings, runner: CommandRunner) -> ServiceManager:
    """Factory function to create the configured service manager."""
    privilege = None
    if settings.service_privilege_command is not None:
        privilege = shlex.split(settings.service_privilege_command)

    if settings.service_backend == "systemd":
        return SystemdServiceManager(settings.service_name, runner, privilege)
    if settings.service_backend == "simulated":
        return SimulatedServiceManager(settings.service_name)
    return OpenRCServiceManager(settings.service_name, runner, privilege)
