"""Deployment orchestration: create, update and upgrade BOSH deployments."""

from deployer.errors import (
    DeployerError,
    TaskInProgressError,
    DeploymentNotFoundError,
    PendingChangesNotAppliedError,
    OperationAlreadyCompletedError,
    ServiceError,
    DeployError,
)
from deployer.generator import (
    AdapterError,
    AdapterNotImplementedError,
    PlanNotFoundError,
    GenerateManifestProperties,
    GeneratedManifest,
    ServiceAdapterManifestGenerator,
)
from deployer.pre_upgrade import PreUpgrade
from deployer.deployer import Deployer

__all__ = [
    "DeployerError",
    "TaskInProgressError",
    "DeploymentNotFoundError",
    "PendingChangesNotAppliedError",
    "OperationAlreadyCompletedError",
    "ServiceError",
    "DeployError",
    "AdapterError",
    "AdapterNotImplementedError",
    "PlanNotFoundError",
    "GenerateManifestProperties",
    "GeneratedManifest",
    "ServiceAdapterManifestGenerator",
    "PreUpgrade",
    "Deployer",
]
