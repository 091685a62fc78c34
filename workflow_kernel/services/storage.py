"""
workflow_kernel.services.storage -- Persistence adapter contract.

Responsibility:
    Defines the ``WorkflowStorage`` protocol through which the service layer
    saves and loads definitions, instances, and tasks, plus the
    ``InMemoryWorkflowStorage`` adapter used by unit tests and embedded
    hosts.  The engine never talks to storage; only the service does.

Architecture position:
    Kernel > Services.  May import from domain/ and exceptions.

Invariants enforced:
    - Adapters never mutate the objects handed to them and never hand out
      shared mutable state: every read returns a fresh copy.
    - ``update_instance`` is a compare-and-swap on ``revision``: a
      mismatched ``expected_revision`` raises
      ``ConcurrentModificationError`` and stores nothing.  A successful
      update returns the stored instance with ``revision + 1``.
    - Identity fields (``id``, ``workflow_id``, ``version``,
      ``created_at``, ``revision``) cannot be changed through
      ``update_instance``.

Failure modes:
    - InstanceNotFoundError / TaskNotFoundError on updates of unknown ids.
    - DuplicateDefinitionError when a different definition is saved under an
      existing (workflow_id, version).
    - ConcurrentModificationError on a stale ``expected_revision``.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, fields, replace
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from workflow_kernel.domain.codec import definition_fingerprint
from workflow_kernel.domain.instance import InstanceStatus, WorkflowInstance
from workflow_kernel.domain.task import WorkflowTask
from workflow_kernel.domain.workflow import WorkflowDefinition
from workflow_kernel.exceptions import (
    ConcurrentModificationError,
    DuplicateDefinitionError,
    InstanceNotFoundError,
    TaskNotFoundError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.utils.hashing import hash_payload

logger = get_logger("services.storage")

IMMUTABLE_INSTANCE_FIELDS: frozenset[str] = frozenset({
    "id",
    "workflow_id",
    "version",
    "created_at",
    "revision",
})

MUTABLE_INSTANCE_FIELDS: tuple[str, ...] = tuple(
    f.name for f in fields(WorkflowInstance) if f.name not in IMMUTABLE_INSTANCE_FIELDS
)

IMMUTABLE_TASK_FIELDS: frozenset[str] = frozenset({"id", "instance_id", "created_at"})

SORT_FIELDS: frozenset[str] = frozenset({"created_at", "started_at", "completed_at"})


def instance_updates(instance: WorkflowInstance) -> dict[str, Any]:
    """Every mutable field of ``instance`` as an ``update_instance`` payload."""
    return {name: getattr(instance, name) for name in MUTABLE_INSTANCE_FIELDS}


def definition_checksum(definition: WorkflowDefinition) -> str:
    return hash_payload(definition_fingerprint(definition))


@dataclass(frozen=True)
class InstanceQuery:
    """Filter, paging and ordering for ``query_instances``.

    ``status`` accepts a single status or any iterable of statuses.
    Instances whose sort field is unset are ordered last in both
    directions.
    """

    workflow_id: str | None = None
    status: InstanceStatus | str | Iterable[InstanceStatus | str] | None = None
    started_by: str | None = None
    limit: int = 50
    skip: int = 0
    sort_by: str = "created_at"
    sort_order: str = "desc"

    def __post_init__(self) -> None:
        if self.sort_by not in SORT_FIELDS:
            raise ValueError(
                f"sort_by must be one of {sorted(SORT_FIELDS)}, got {self.sort_by!r}"
            )
        if self.sort_order not in ("asc", "desc"):
            raise ValueError(f"sort_order must be 'asc' or 'desc', got {self.sort_order!r}")
        if self.limit < 0 or self.skip < 0:
            raise ValueError("limit and skip must be non-negative")

    @property
    def statuses(self) -> frozenset[InstanceStatus] | None:
        if self.status is None:
            return None
        if isinstance(self.status, (str, InstanceStatus)):
            return frozenset({InstanceStatus(self.status)})
        return frozenset(InstanceStatus(s) for s in self.status)


@runtime_checkable
class WorkflowStorage(Protocol):
    """Persistence boundary between the service layer and a data store."""

    # Definitions
    def save_definition(self, definition: WorkflowDefinition) -> bool: ...

    def get_definition(
        self, workflow_id: str, version: str | None = None,
    ) -> WorkflowDefinition | None: ...

    def list_definitions(self) -> list[WorkflowDefinition]:
        """Latest version of every workflow, ordered by workflow id."""
        ...

    # Instances
    def save_instance(self, instance: WorkflowInstance) -> WorkflowInstance: ...

    def get_instance(self, instance_id: UUID) -> WorkflowInstance | None: ...

    def update_instance(
        self,
        instance_id: UUID,
        updates: Mapping[str, Any],
        expected_revision: int | None = None,
    ) -> WorkflowInstance: ...

    def query_instances(self, query: InstanceQuery) -> list[WorkflowInstance]: ...

    # Tasks
    def save_task(self, task: WorkflowTask) -> WorkflowTask: ...

    def get_task(self, task_id: UUID) -> WorkflowTask | None: ...

    def get_instance_tasks(self, instance_id: UUID) -> list[WorkflowTask]: ...

    def update_task(self, task_id: UUID, updates: Mapping[str, Any]) -> WorkflowTask: ...

    # Unit of work
    def commit(self) -> None:
        """Make every write so far durable, even if the caller later rolls back."""
        ...


def check_instance_updates(updates: Mapping[str, Any]) -> None:
    forbidden = IMMUTABLE_INSTANCE_FIELDS.intersection(updates)
    if forbidden:
        raise ValueError(f"Cannot update immutable instance fields: {sorted(forbidden)}")
    unknown = set(updates) - set(MUTABLE_INSTANCE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown instance fields: {sorted(unknown)}")


def check_task_updates(updates: Mapping[str, Any]) -> None:
    forbidden = IMMUTABLE_TASK_FIELDS.intersection(updates)
    if forbidden:
        raise ValueError(f"Cannot update immutable task fields: {sorted(forbidden)}")
    known = {f.name for f in fields(WorkflowTask)}
    unknown = set(updates) - known
    if unknown:
        raise ValueError(f"Unknown task fields: {sorted(unknown)}")


def sort_instances(
    instances: list[WorkflowInstance], sort_by: str, descending: bool,
) -> list[WorkflowInstance]:
    present = [i for i in instances if getattr(i, sort_by) is not None]
    missing = [i for i in instances if getattr(i, sort_by) is None]
    present.sort(key=lambda i: getattr(i, sort_by), reverse=descending)
    return present + missing


class InMemoryWorkflowStorage:
    """Dictionary-backed ``WorkflowStorage``.

    Thread-safe; every value is deep-copied on the way in and on the way
    out so callers can never alias stored state.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        # workflow_id -> {version: (definition, checksum)}, insertion ordered
        self._definitions: dict[str, dict[str, tuple[WorkflowDefinition, str]]] = {}
        self._instances: dict[UUID, WorkflowInstance] = {}
        self._tasks: dict[UUID, WorkflowTask] = {}

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def save_definition(self, definition: WorkflowDefinition) -> bool:
        """Store a definition version.

        Returns True if stored, False if an identical definition was
        already stored under the same version.
        """
        checksum = definition_checksum(definition)
        with self._lock:
            versions = self._definitions.setdefault(definition.id, {})
            existing = versions.get(definition.version)
            if existing is not None:
                if existing[1] == checksum:
                    return False
                raise DuplicateDefinitionError(definition.id, definition.version)
            versions[definition.version] = (copy.deepcopy(definition), checksum)
            return True

    def get_definition(
        self, workflow_id: str, version: str | None = None,
    ) -> WorkflowDefinition | None:
        with self._lock:
            versions = self._definitions.get(workflow_id)
            if not versions:
                return None
            if version is None:
                definition = list(versions.values())[-1][0]
            else:
                entry = versions.get(version)
                if entry is None:
                    return None
                definition = entry[0]
            return copy.deepcopy(definition)

    def list_definitions(self) -> list[WorkflowDefinition]:
        with self._lock:
            return [
                copy.deepcopy(list(versions.values())[-1][0])
                for _, versions in sorted(self._definitions.items())
                if versions
            ]

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def save_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        with self._lock:
            stored = instance.copy()
            self._instances[instance.id] = stored
            return stored.copy()

    def get_instance(self, instance_id: UUID) -> WorkflowInstance | None:
        with self._lock:
            stored = self._instances.get(instance_id)
            return stored.copy() if stored is not None else None

    def update_instance(
        self,
        instance_id: UUID,
        updates: Mapping[str, Any],
        expected_revision: int | None = None,
    ) -> WorkflowInstance:
        check_instance_updates(updates)
        with self._lock:
            stored = self._instances.get(instance_id)
            if stored is None:
                raise InstanceNotFoundError(str(instance_id))
            if expected_revision is not None and stored.revision != expected_revision:
                logger.warning(
                    "instance_revision_conflict",
                    extra={
                        "instance_id": str(instance_id),
                        "expected_revision": expected_revision,
                        "actual_revision": stored.revision,
                    },
                )
                raise ConcurrentModificationError(
                    "WorkflowInstance", str(instance_id), expected_revision, stored.revision,
                )
            updated = stored.copy()
            for name, value in updates.items():
                setattr(updated, name, copy.deepcopy(value))
            updated.revision = stored.revision + 1
            self._instances[instance_id] = updated
            return updated.copy()

    def query_instances(self, query: InstanceQuery) -> list[WorkflowInstance]:
        statuses = query.statuses
        with self._lock:
            matched = [
                i for i in self._instances.values()
                if (query.workflow_id is None or i.workflow_id == query.workflow_id)
                and (statuses is None or i.status in statuses)
                and (query.started_by is None or i.started_by == query.started_by)
            ]
            ordered = sort_instances(matched, query.sort_by, query.sort_order == "desc")
            page = ordered[query.skip:query.skip + query.limit]
            return [i.copy() for i in page]

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def save_task(self, task: WorkflowTask) -> WorkflowTask:
        with self._lock:
            self._tasks[task.id] = copy.deepcopy(task)
            return copy.deepcopy(task)

    def get_task(self, task_id: UUID) -> WorkflowTask | None:
        with self._lock:
            stored = self._tasks.get(task_id)
            return copy.deepcopy(stored) if stored is not None else None

    def get_instance_tasks(self, instance_id: UUID) -> list[WorkflowTask]:
        with self._lock:
            tasks = [t for t in self._tasks.values() if t.instance_id == instance_id]
            tasks.sort(key=lambda t: t.created_at)
            return copy.deepcopy(tasks)

    def update_task(self, task_id: UUID, updates: Mapping[str, Any]) -> WorkflowTask:
        check_task_updates(updates)
        with self._lock:
            stored = self._tasks.get(task_id)
            if stored is None:
                raise TaskNotFoundError(str(task_id))
            updated = replace(stored, **copy.deepcopy(dict(updates)))
            self._tasks[task_id] = updated
            return copy.deepcopy(updated)

    def commit(self) -> None:
        # Writes are applied immediately.
        return None
