"""Errors raised by deployment operations.

Callers map these to user-facing behaviour (HTTP status, errand exit code,
bulk-upgrade retry); nothing here is retried.
"""


class DeployerError(Exception):
    """Base exception for deployer errors."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class TaskInProgressError(DeployerError):
    """A BOSH task is still running for the deployment; try again later."""

    def __init__(self, deployment_name: str, message: str = "task in progress"):
        self.deployment_name = deployment_name
        super().__init__("E409", message)


class DeploymentNotFoundError(DeployerError):
    """The director has no deployment with this name."""

    def __init__(self, deployment_name: str):
        self.deployment_name = deployment_name
        super().__init__("E404", f"bosh deployment '{deployment_name}' not found")


class PendingChangesNotAppliedError(DeployerError):
    """The catalog would change the deployed manifest; upgrade first."""

    def __init__(self, deployment_name: str):
        self.deployment_name = deployment_name
        super().__init__("E412", f"There are pending changes for deployment '{deployment_name}'")


class OperationAlreadyCompletedError(DeployerError):
    """The upgrade would change nothing."""

    def __init__(self, deployment_name: str):
        self.deployment_name = deployment_name
        super().__init__("E208", f"instance is already up to date: {deployment_name}")


class ServiceError(DeployerError):
    """The director could not be queried."""

    def __init__(self, message: str):
        super().__init__("E503", message)


class DeployError(DeployerError):
    """A collaborator failed during an operation.

    The underlying exception is chained as __cause__.
    """

    def __init__(self, operation: str, deployment_name: str, message: str):
        self.operation = operation
        self.deployment_name = deployment_name
        super().__init__("E500", f"{operation} of deployment {deployment_name} failed: {message}")
