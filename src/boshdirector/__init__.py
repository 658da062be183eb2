"""BOSH director access: task/event records and the director HTTP client."""

from boshdirector.tasks import (
    TASK_QUEUED,
    TASK_PROCESSING,
    TASK_CANCELLING,
    TASK_DONE,
    TASK_ERROR,
    TASK_CANCELLED,
    TASK_TIMEOUT,
    BoshConfig,
    BoshEvent,
    BoshTask,
    BoshTasks,
)
from boshdirector.client import BoshDirectorClient, BoshRequestError

__all__ = [
    "TASK_QUEUED",
    "TASK_PROCESSING",
    "TASK_CANCELLING",
    "TASK_DONE",
    "TASK_ERROR",
    "TASK_CANCELLED",
    "TASK_TIMEOUT",
    "BoshConfig",
    "BoshEvent",
    "BoshTask",
    "BoshTasks",
    "BoshDirectorClient",
    "BoshRequestError",
]
