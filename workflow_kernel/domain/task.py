"""
Workflow task types -- units of human/manual work spawned by actions.

Tasks belong to the instance that spawned them but outlive it: aborting
or failing the parent never deletes its tasks (they stay as an audit
record).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"
    DELEGATED = "delegated"
    ESCALATED = "escalated"


CLOSED_TASK_STATUSES: frozenset[TaskStatus] = frozenset({
    TaskStatus.COMPLETED,
    TaskStatus.REJECTED,
})

# Only pending tasks can be completed or rejected; re-delegation is allowed.
TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({
        TaskStatus.COMPLETED,
        TaskStatus.REJECTED,
        TaskStatus.DELEGATED,
        TaskStatus.ESCALATED,
    }),
    TaskStatus.DELEGATED: frozenset({
        TaskStatus.DELEGATED,
        TaskStatus.ESCALATED,
    }),
    TaskStatus.ESCALATED: frozenset({TaskStatus.ESCALATED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.REJECTED: frozenset(),
}


@dataclass(frozen=True)
class WorkflowTask:
    """Immutable snapshot of a task; updates go through the storage adapter."""

    id: UUID
    instance_id: UUID
    name: str
    created_at: datetime
    status: TaskStatus = TaskStatus.PENDING
    assigned_to: str | None = None
    description: str | None = None
    completed_at: datetime | None = None
    due_at: datetime | None = None
    data: dict[str, Any] = field(default_factory=dict)
    result: dict[str, Any] | None = None
    original_assignee: str | None = None
    delegated_to: str | None = None
    delegated_at: datetime | None = None
    delegation_reason: str | None = None
    escalated_to: str | None = None
    escalated_at: datetime | None = None
    escalation_reason: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_TASK_STATUSES
