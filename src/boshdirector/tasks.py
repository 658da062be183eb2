"""BOSH task and event records as observed by the broker.

Tasks are owned and mutated by the director; the broker only reads them.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional

# Task states reported by the director
TASK_QUEUED = 'queued'
TASK_PROCESSING = 'processing'
TASK_CANCELLING = 'cancelling'
TASK_DONE = 'done'
TASK_ERROR = 'error'
TASK_CANCELLED = 'cancelled'
TASK_TIMEOUT = 'timeout'

# State classification
TASK_COMPLETE = 'complete'
TASK_INCOMPLETE = 'incomplete'
TASK_FAILED = 'failed'
TASK_UNKNOWN = 'unknown'

_STATE_TYPES = {
    TASK_DONE: TASK_COMPLETE,
    TASK_QUEUED: TASK_INCOMPLETE,
    TASK_PROCESSING: TASK_INCOMPLETE,
    TASK_CANCELLING: TASK_INCOMPLETE,
    TASK_ERROR: TASK_FAILED,
    TASK_CANCELLED: TASK_FAILED,
    TASK_TIMEOUT: TASK_FAILED,
}


@dataclass
class BoshTask:
    """A single director task.

    Attributes:
        id: Task ID (0 means "no task")
        state: Director state string (queued, processing, done, ...)
        description: Human readable description
        result: Director result message
        context_id: Correlates a deploy task with its errand tasks
    """
    id: int = 0
    state: str = ''
    description: str = ''
    result: str = ''
    context_id: str = ''

    @property
    def state_type(self) -> str:
        return _STATE_TYPES.get(self.state, TASK_UNKNOWN)

    @property
    def is_empty(self) -> bool:
        return self == BoshTask()

    def to_log(self) -> str:
        return json.dumps({
            'ID': self.id,
            'State': self.state,
            'Description': self.description,
            'Result': self.result,
        }, separators=(',', ':'))

    @classmethod
    def from_dict(cls, data: dict) -> 'BoshTask':
        """Create BoshTask from a director JSON object."""
        return cls(
            id=int(data.get('id', 0) or 0),
            state=data.get('state', '') or '',
            description=data.get('description', '') or '',
            result=data.get('result', '') or '',
            context_id=data.get('context_id', '') or '',
        )


class BoshTasks(list):
    """List of tasks with state filters."""

    def _with_state_type(self, state_type: str) -> 'BoshTasks':
        return BoshTasks(t for t in self if t.state_type == state_type)

    def incomplete_tasks(self) -> 'BoshTasks':
        return self._with_state_type(TASK_INCOMPLETE)

    def done_tasks(self) -> 'BoshTasks':
        return self._with_state_type(TASK_COMPLETE)

    def all_tasks_are_done(self) -> bool:
        """True if every task finished successfully (False for no tasks)."""
        return len(self) > 0 and len(self.done_tasks()) == len(self)

    def to_log(self) -> str:
        return '[' + ','.join(t.to_log() for t in self) + ']'

    @classmethod
    def from_list(cls, data: Optional[list]) -> 'BoshTasks':
        return cls(BoshTask.from_dict(item) for item in (data or []))


@dataclass
class BoshEvent:
    """A director event (e.g. a deployment update).

    Attributes:
        id: Event ID
        task_id: ID of the task that produced the event, as a string
        action: Event action (create, update, delete, run)
        object_type: Object the event refers to (deployment, errand, ...)
        deployment: Deployment name
        timestamp: Unix timestamp
    """
    id: str = ''
    task_id: str = ''
    action: str = ''
    object_type: str = ''
    deployment: str = ''
    timestamp: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> 'BoshEvent':
        return cls(
            id=str(data.get('id', '')),
            task_id=str(data.get('task') or data.get('task_id') or ''),
            action=data.get('action', '') or '',
            object_type=data.get('object_type', '') or '',
            deployment=data.get('deployment', '') or '',
            timestamp=int(data.get('timestamp', 0) or 0),
        )


@dataclass
class BoshConfig:
    """A named director config (e.g. a runtime config) for a deployment."""
    type: str
    name: str
    content: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'BoshConfig':
        return cls(
            type=data.get('type', ''),
            name=data.get('name', ''),
            content=data.get('content', ''),
        )
