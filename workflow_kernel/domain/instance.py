"""
Workflow instance types (``workflow_kernel.domain.instance``).

Responsibility
--------------
The runtime record of one execution of a ``WorkflowDefinition``: its
current state, lifecycle status, record-scoped data bag, append-only
history, and lifecycle timestamps.

Ownership
---------
Only ``workflow_services.engine.WorkflowEngine`` creates and mutates
instances.  Storage adapters serialize and deserialize them and bump the
optimistic ``revision`` on each successful update; they never change any
other field.

Invariants enforced
-------------------
* ``INSTANCE_TRANSITIONS`` defines the only valid status changes;
  terminal statuses have no outgoing edges.
* At most one of ``completed_at`` / ``failed_at`` / ``aborted_at`` is
  ever set, and setting one is irreversible.
* ``history`` is append-only.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from workflow_kernel.exceptions import InvalidInstanceStateError


class InstanceStatus(str, Enum):
    """Instance lifecycle status."""

    CREATED = "created"  # Allocated, initial onEnter not yet run
    RUNNING = "running"
    COMPLETED = "completed"  # Reached a final state
    FAILED = "failed"  # An action raised
    ABORTED = "aborted"  # Explicitly stopped


INSTANCE_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.CREATED: frozenset({
        InstanceStatus.RUNNING,
        InstanceStatus.ABORTED,
    }),
    InstanceStatus.RUNNING: frozenset({
        InstanceStatus.COMPLETED,
        InstanceStatus.FAILED,
        InstanceStatus.ABORTED,
    }),
    InstanceStatus.COMPLETED: frozenset(),
    InstanceStatus.FAILED: frozenset(),
    InstanceStatus.ABORTED: frozenset(),
}

TERMINAL_STATUSES: frozenset[InstanceStatus] = frozenset({
    InstanceStatus.COMPLETED,
    InstanceStatus.FAILED,
    InstanceStatus.ABORTED,
})

ABORT_TRANSITION = "abort"


@dataclass(frozen=True)
class HistoryEntry:
    """One append-only history record.

    Regular transitions have ``from_state != to_state`` or a declared
    transition name; abort and failure records keep ``from_state ==
    to_state`` and carry ``data["reason"]`` or ``error`` respectively.
    """

    from_state: str
    to_state: str
    transition: str
    timestamp: datetime
    triggered_by: str | None = None
    data: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_state": self.from_state,
            "to_state": self.to_state,
            "transition": self.transition,
            "timestamp": self.timestamp.isoformat(),
            "triggered_by": self.triggered_by,
            "data": self.data,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        ts = data["timestamp"]
        return cls(
            from_state=data["from_state"],
            to_state=data["to_state"],
            transition=data["transition"],
            timestamp=ts if isinstance(ts, datetime) else datetime.fromisoformat(ts),
            triggered_by=data.get("triggered_by"),
            data=data.get("data"),
            error=data.get("error"),
        )


@dataclass
class WorkflowInstance:
    """Mutable runtime record of one workflow execution."""

    id: UUID
    workflow_id: str
    version: str
    current_state: str
    created_at: datetime
    status: InstanceStatus = InstanceStatus.CREATED
    data: dict[str, Any] = field(default_factory=dict)
    history: list[HistoryEntry] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    aborted_at: datetime | None = None
    started_by: str | None = None
    completed_by: str | None = None
    error: dict[str, Any] | None = None
    revision: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def terminal_at(self) -> datetime | None:
        return self.completed_at or self.failed_at or self.aborted_at

    def copy(self) -> WorkflowInstance:
        """Deep copy; storage adapters hand these out instead of shared state."""
        return copy.deepcopy(self)

    # ------------------------------------------------------------------
    # Lifecycle mutators (called by the engine only)
    # ------------------------------------------------------------------

    def _move_to(self, new_status: InstanceStatus, operation: str) -> None:
        if new_status not in INSTANCE_TRANSITIONS[self.status]:
            raise InvalidInstanceStateError(str(self.id), self.status.value, operation)
        if new_status in TERMINAL_STATUSES and self.terminal_at is not None:
            raise InvalidInstanceStateError(str(self.id), self.status.value, operation)
        self.status = new_status

    def mark_running(self, at: datetime) -> None:
        self._move_to(InstanceStatus.RUNNING, "start")
        self.started_at = at

    def mark_completed(self, at: datetime, by: str | None = None) -> None:
        self._move_to(InstanceStatus.COMPLETED, "complete")
        self.completed_at = at
        self.completed_by = by

    def mark_failed(self, at: datetime, error: dict[str, Any]) -> None:
        self._move_to(InstanceStatus.FAILED, "fail")
        self.failed_at = at
        self.error = error

    def mark_aborted(self, at: datetime, by: str | None = None) -> None:
        self._move_to(InstanceStatus.ABORTED, "abort")
        self.aborted_at = at
        self.completed_by = by

    def append_history(self, entry: HistoryEntry) -> None:
        self.history.append(entry)
