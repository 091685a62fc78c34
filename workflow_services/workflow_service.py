"""
workflow_services.workflow_service -- Registration, persistence and lifecycle.

Responsibility:
    The host-facing entry point.  Registers validated definitions, loads
    and saves instances through a ``WorkflowStorage`` adapter around every
    ``WorkflowEngine`` operation, persists tasks spawned by actions,
    manages the human task lifecycle, and publishes lifecycle events on an
    optional ``EventBus``.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  The only
    component that talks to both the engine and storage.

Invariants enforced:
    - Registration rejects any definition with structural errors
      (``InvalidDefinitionError``) before it reaches storage.
    - Operations on one instance id are serialized with an in-process
      lock; across processes the storage compare-and-swap on ``revision``
      rejects the slower writer with ``ConcurrentModificationError``.
    - A failed action leaves the instance persisted as ``failed`` and
      committed (``WorkflowStorage.commit``) before the error reaches the
      caller, so a rollback of the surrounding unit of work keeps it.
    - Guard rejections, unknown guards and terminated/not-found errors
      persist nothing.

Failure modes:
    - DefinitionNotFoundError / InstanceNotFoundError / TaskNotFoundError.
    - InvalidTaskStateError on a task operation its status does not allow.
    - Everything ``WorkflowEngine`` raises, unchanged.

Usage:
    service = WorkflowService(InMemoryWorkflowStorage(), bus=EventBus())
    service.register_workflow(parse_workflow_yaml(text))
    instance = service.start_workflow("expense_approval", {"amount": 120})
    instance = service.execute_transition(instance.id, "submit", triggered_by="alice")
"""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

from workflow_config.loader import load_definitions_dir
from workflow_config.settings import EngineSettings
from workflow_config.validator import analyze_definition
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.instance import InstanceStatus, WorkflowInstance
from workflow_kernel.domain.task import TASK_TRANSITIONS, TaskStatus, WorkflowTask
from workflow_kernel.domain.workflow import WorkflowDefinition
from workflow_kernel.exceptions import (
    DefinitionNotFoundError,
    InstanceNotFoundError,
    InvalidDefinitionError,
    InvalidTaskStateError,
    TaskNotFoundError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.services.storage import InstanceQuery, WorkflowStorage, instance_updates
from workflow_services.engine import (
    ACTION_FAILURES,
    ExecutionResult,
    OutcomeSink,
    WorkflowEngine,
)
from workflow_services.event_bus import EventBus

logger = get_logger("services.workflow")

EVENT_STARTED = "workflow.started"
EVENT_TRANSITION = "workflow.transition"
EVENT_COMPLETED = "workflow.completed"
EVENT_FAILED = "workflow.failed"
EVENT_ABORTED = "workflow.aborted"
EVENT_TASK_CREATED = "workflow.task.created"
EVENT_TASK_COMPLETED = "workflow.task.completed"


def _instance_event(instance: WorkflowInstance, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "instance_id": str(instance.id),
        "workflow_id": instance.workflow_id,
        "version": instance.version,
        "status": instance.status.value,
        "current_state": instance.current_state,
    }
    payload.update(extra)
    return payload


def _task_event(task: WorkflowTask) -> dict[str, Any]:
    return {
        "task_id": str(task.id),
        "instance_id": str(task.instance_id),
        "name": task.name,
        "status": task.status.value,
        "assigned_to": task.assigned_to,
    }


class WorkflowService:
    """Orchestrates definitions, instances and tasks over a storage adapter."""

    def __init__(
        self,
        storage: WorkflowStorage,
        engine: WorkflowEngine | None = None,
        clock: Clock | None = None,
        bus: EventBus | None = None,
        settings: EngineSettings | None = None,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._clock = clock or SystemClock()
        self._storage = storage
        self._engine = engine or WorkflowEngine(
            clock=self._clock,
            action_timeout=self._settings.action_timeout_seconds,
        )
        self._bus = bus
        self._locks: dict[UUID, list] = {}
        self._locks_guard = threading.Lock()

    @property
    def engine(self) -> WorkflowEngine:
        return self._engine

    @property
    def storage(self) -> WorkflowStorage:
        return self._storage

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def register_workflow(self, definition: WorkflowDefinition) -> bool:
        """
        Validate and store a definition version.

        Returns True if stored, False if the identical definition was
        already registered.

        Raises:
            InvalidDefinitionError: structural errors; nothing is stored.
            DuplicateDefinitionError: same id and version, different content.
        """
        with LogContext.bind(workflow_id=definition.id):
            result = analyze_definition(definition)
            if not result.is_valid:
                logger.warning(
                    "workflow_registration_rejected",
                    extra={"version": definition.version, "errors": result.errors},
                )
                raise InvalidDefinitionError(definition.id, result.errors)
            for warning in result.warnings:
                logger.warning(
                    "workflow_definition_warning",
                    extra={"version": definition.version, "warning": warning},
                )

            stored = self._storage.save_definition(definition)
            logger.info(
                "workflow_registered" if stored else "workflow_already_registered",
                extra={"version": definition.version},
            )
            return stored

    def register_definitions_dir(self, directory: Path | str | None = None) -> list[WorkflowDefinition]:
        """Register every definition file in ``directory`` (default: settings)."""
        directory = directory or self._settings.definitions_dir
        if directory is None:
            raise ValueError("No definitions directory given or configured")
        definitions = load_definitions_dir(directory)
        for definition in definitions:
            self.register_workflow(definition)
        return definitions

    def get_workflow(self, workflow_id: str, version: str | None = None) -> WorkflowDefinition:
        definition = self._storage.get_definition(workflow_id, version)
        if definition is None:
            raise DefinitionNotFoundError(workflow_id, version)
        return definition

    def list_workflows(self) -> list[WorkflowDefinition]:
        """Latest version of each registered workflow."""
        return self._storage.list_definitions()

    # ------------------------------------------------------------------
    # Instance lifecycle
    # ------------------------------------------------------------------

    def start_workflow(
        self,
        workflow_id: str,
        data: Mapping[str, Any] | None = None,
        started_by: str | None = None,
        version: str | None = None,
        outcome_sink: OutcomeSink | None = None,
    ) -> WorkflowInstance:
        """
        Create, persist and start an instance of the latest (or given) version.

        The instance is persisted in ``created`` status first, so a failing
        initial ``on_enter`` still leaves a stored ``failed`` instance.
        """
        definition = self.get_workflow(workflow_id, version)
        instance = self._engine.create_instance(definition, data, started_by)
        with self._instance_lock(instance.id), self._bind(instance, started_by):
            stored = self._storage.save_instance(instance)
            try:
                result = self._engine.start_instance(instance, definition, outcome_sink)
            except ACTION_FAILURES:
                self._persist_failure(instance, stored.revision)
                raise
            saved = self._commit(result, stored.revision)
            self._publish(EVENT_STARTED, _instance_event(saved, started_by=started_by))
            if saved.status == InstanceStatus.COMPLETED:
                self._publish(EVENT_COMPLETED, _instance_event(saved, completed_by=saved.completed_by))
            return saved

    def execute_transition(
        self,
        instance_id: UUID,
        transition_name: str,
        triggered_by: str | None = None,
        data: Mapping[str, Any] | None = None,
        outcome_sink: OutcomeSink | None = None,
    ) -> WorkflowInstance:
        """Fire a named transition and persist the result."""
        with self._instance_lock(instance_id):
            instance = self._load_instance(instance_id)
            definition = self.get_workflow(instance.workflow_id, instance.version)
            revision = instance.revision
            with self._bind(instance, triggered_by):
                try:
                    result = self._engine.fire_transition(
                        instance, definition, transition_name,
                        triggered_by=triggered_by, data=data, outcome_sink=outcome_sink,
                    )
                except ACTION_FAILURES:
                    self._persist_failure(instance, revision)
                    raise
                return self._commit_transition(result, revision, triggered_by)

    def advance_workflow(
        self,
        instance_id: UUID,
        triggered_by: str | None = None,
        outcome_sink: OutcomeSink | None = None,
    ) -> WorkflowInstance | None:
        """Fire the first transition whose guards pass.

        Returns the persisted instance, or None if no transition passed
        (nothing is written).
        """
        with self._instance_lock(instance_id):
            instance = self._load_instance(instance_id)
            definition = self.get_workflow(instance.workflow_id, instance.version)
            revision = instance.revision
            with self._bind(instance, triggered_by):
                try:
                    result = self._engine.advance(
                        instance, definition, triggered_by=triggered_by, outcome_sink=outcome_sink,
                    )
                except ACTION_FAILURES:
                    self._persist_failure(instance, revision)
                    raise
                if result is None:
                    return None
                return self._commit_transition(result, revision, triggered_by)

    def abort_workflow(
        self,
        instance_id: UUID,
        reason: str | None = None,
        aborted_by: str | None = None,
    ) -> WorkflowInstance:
        with self._instance_lock(instance_id):
            instance = self._load_instance(instance_id)
            revision = instance.revision
            with self._bind(instance, aborted_by):
                result = self._engine.abort_instance(instance, reason, aborted_by)
                saved = self._commit(result, revision)
                self._publish(
                    EVENT_ABORTED,
                    _instance_event(saved, reason=reason, aborted_by=aborted_by),
                )
                return saved

    # ------------------------------------------------------------------
    # Instance queries
    # ------------------------------------------------------------------

    def get_workflow_status(self, instance_id: UUID) -> WorkflowInstance:
        return self._load_instance(instance_id)

    def query_workflows(
        self,
        query: InstanceQuery | None = None,
        **filters: Any,
    ) -> list[WorkflowInstance]:
        """Query instances with an ``InstanceQuery`` or its fields as keywords."""
        if query is None:
            filters.setdefault("limit", self._settings.instance_query_limit)
            query = InstanceQuery(**filters)
        return self._storage.query_instances(query)

    def get_available_transitions(
        self, instance_id: UUID, evaluate_guards: bool = False,
    ) -> list[str]:
        instance = self._load_instance(instance_id)
        definition = self.get_workflow(instance.workflow_id, instance.version)
        return self._engine.get_available_transitions(instance, definition, evaluate_guards)

    def can_execute_transition(self, instance_id: UUID, transition_name: str) -> bool:
        instance = self._load_instance(instance_id)
        definition = self.get_workflow(instance.workflow_id, instance.version)
        return self._engine.can_execute_transition(instance, definition, transition_name)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(
        self,
        instance_id: UUID,
        name: str,
        assigned_to: str | None = None,
        data: Mapping[str, Any] | None = None,
        description: str | None = None,
        due_at: datetime | None = None,
    ) -> WorkflowTask:
        self._load_instance(instance_id)
        task = WorkflowTask(
            id=uuid4(),
            instance_id=instance_id,
            name=name,
            created_at=self._clock.now(),
            assigned_to=assigned_to,
            description=description,
            due_at=due_at,
            data=dict(data or {}),
        )
        return self._save_task(task)

    def get_task(self, task_id: UUID) -> WorkflowTask:
        task = self._storage.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(str(task_id))
        return task

    def get_instance_tasks(self, instance_id: UUID) -> list[WorkflowTask]:
        return self._storage.get_instance_tasks(instance_id)

    def complete_task(
        self, task_id: UUID, result: Mapping[str, Any] | None = None,
    ) -> WorkflowTask:
        task = self._move_task(
            task_id, TaskStatus.COMPLETED, "complete",
            completed_at=self._clock.now(),
            result=dict(result) if result is not None else None,
        )
        self._publish(EVENT_TASK_COMPLETED, _task_event(task))
        return task

    def reject_task(
        self, task_id: UUID, result: Mapping[str, Any] | None = None,
    ) -> WorkflowTask:
        task = self._move_task(
            task_id, TaskStatus.REJECTED, "reject",
            completed_at=self._clock.now(),
            result=dict(result) if result is not None else None,
        )
        self._publish(EVENT_TASK_COMPLETED, _task_event(task))
        return task

    def delegate_task(
        self,
        task_id: UUID,
        delegate_to: str,
        delegated_by: str | None = None,
        reason: str | None = None,
    ) -> WorkflowTask:
        """Hand a pending (or already delegated) task to someone else.

        ``original_assignee`` keeps the first assignee across re-delegations.
        """
        current = self.get_task(task_id)
        task = self._move_task(
            task_id, TaskStatus.DELEGATED, "delegate",
            current=current,
            original_assignee=current.original_assignee or current.assigned_to,
            assigned_to=delegate_to,
            delegated_to=delegate_to,
            delegated_at=self._clock.now(),
            delegation_reason=reason,
        )
        logger.info(
            "task_delegated",
            extra={"task_id": str(task_id), "delegate_to": delegate_to, "delegated_by": delegated_by},
        )
        return task

    def escalate_task(
        self,
        task_id: UUID,
        escalate_to: str,
        reason: str | None = None,
    ) -> WorkflowTask:
        task = self._move_task(
            task_id, TaskStatus.ESCALATED, "escalate",
            assigned_to=escalate_to,
            escalated_to=escalate_to,
            escalated_at=self._clock.now(),
            escalation_reason=reason,
        )
        logger.info(
            "task_escalated",
            extra={"task_id": str(task_id), "escalate_to": escalate_to},
        )
        return task

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _instance_lock(self, instance_id: UUID) -> Iterator[None]:
        # Entries live only while some caller holds or waits for them.
        with self._locks_guard:
            entry = self._locks.setdefault(instance_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[instance_id]

    @staticmethod
    def _bind(instance: WorkflowInstance, actor: str | None):
        return LogContext.bind(
            workflow_id=instance.workflow_id,
            instance_id=str(instance.id),
            actor_id=actor,
        )

    def _load_instance(self, instance_id: UUID) -> WorkflowInstance:
        instance = self._storage.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFoundError(str(instance_id))
        return instance

    def _commit(self, result: ExecutionResult, expected_revision: int) -> WorkflowInstance:
        instance = result.instance
        saved = self._storage.update_instance(
            instance.id, instance_updates(instance), expected_revision,
        )
        for task in result.spawned_tasks:
            self._save_task(task)
        return saved

    def _commit_transition(
        self, result: ExecutionResult, expected_revision: int, triggered_by: str | None,
    ) -> WorkflowInstance:
        saved = self._commit(result, expected_revision)
        self._publish(
            EVENT_TRANSITION,
            _instance_event(
                saved,
                transition=result.transition,
                from_state=result.from_state,
                to_state=result.to_state,
                triggered_by=triggered_by,
            ),
        )
        if saved.status == InstanceStatus.COMPLETED:
            self._publish(EVENT_COMPLETED, _instance_event(saved, completed_by=saved.completed_by))
        return saved

    def _persist_failure(self, instance: WorkflowInstance, expected_revision: int) -> None:
        saved = self._storage.update_instance(
            instance.id, instance_updates(instance), expected_revision,
        )
        self._storage.commit()
        self._publish(EVENT_FAILED, _instance_event(saved, error=saved.error))

    def _save_task(self, task: WorkflowTask) -> WorkflowTask:
        saved = self._storage.save_task(task)
        logger.info(
            "task_created",
            extra={"task_id": str(saved.id), "task_name": saved.name, "assigned_to": saved.assigned_to},
        )
        self._publish(EVENT_TASK_CREATED, _task_event(saved))
        return saved

    def _move_task(
        self,
        task_id: UUID,
        new_status: TaskStatus,
        operation: str,
        current: WorkflowTask | None = None,
        **updates: Any,
    ) -> WorkflowTask:
        task = current or self.get_task(task_id)
        if new_status not in TASK_TRANSITIONS[task.status]:
            raise InvalidTaskStateError(str(task_id), task.status.value, operation)
        return self._storage.update_task(task_id, {"status": new_status, **updates})

    def _publish(self, event_type: str, data: dict[str, Any]) -> None:
        if self._bus is not None:
            self._bus.publish(event_type, data)
