"""External collaborators driven by the deployment pipeline."""

from autodeploy.services.packages import PackageBuilder
from autodeploy.services.process import CommandResult, CommandRunner
from autodeploy.services.repository import GitRepository
from autodeploy.services.service_manager import (
    OpenRCServiceManager,
    ServiceManager,
    SimulatedServiceManager,
    SystemdServiceManager,
    get_service_manager,
)

__all__ = [
    "CommandResult",
    "CommandRunner",
    "GitRepository",
    "PackageBuilder",
    "ServiceManager",
    "OpenRCServiceManager",
    "SystemdServiceManager",
    "SimulatedServiceManager",
    "get_service_manager",
]
