"""
workflow_kernel.services.sql_storage -- SQLAlchemy persistence adapter.

Responsibility:
    ``WorkflowStorage`` implementation backed by the ORM models in
    ``workflow_kernel.models``.  Translates between domain objects and rows
    (``current_state`` columns, JSON history) so the engine and service
    never see column names.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - ``update_instance`` issues ``UPDATE ... WHERE id = :id AND revision =
      :expected``; zero affected rows means another writer got there first
      and raises ``ConcurrentModificationError``.  This holds across
      processes sharing the database.
    - The adapter flushes but never commits on its own; transaction
      boundaries belong to the caller (see ``workflow_kernel.db.session_scope``).
      ``commit()`` is the one exception, called by the service so a failed
      instance is durable before the error propagates.

Failure modes:
    - InstanceNotFoundError / TaskNotFoundError on updates of unknown ids.
    - DuplicateDefinitionError on a conflicting (workflow_id, version).
    - ConcurrentModificationError on a stale revision.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.instance import WorkflowInstance
from workflow_kernel.domain.task import WorkflowTask
from workflow_kernel.domain.workflow import WorkflowDefinition
from workflow_kernel.exceptions import (
    ConcurrentModificationError,
    DuplicateDefinitionError,
    InstanceNotFoundError,
    TaskNotFoundError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.definition import WorkflowDefinitionModel
from workflow_kernel.models.instance import WorkflowInstanceModel
from workflow_kernel.models.task import WorkflowTaskModel
from workflow_kernel.services.storage import (
    InstanceQuery,
    check_instance_updates,
    check_task_updates,
    definition_checksum,
)

logger = get_logger("services.sql_storage")


class SqlWorkflowStorage:
    """``WorkflowStorage`` over a SQLAlchemy session."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def save_definition(self, definition: WorkflowDefinition) -> bool:
        checksum = definition_checksum(definition)
        existing = self._session.execute(
            select(WorkflowDefinitionModel).where(
                WorkflowDefinitionModel.workflow_id == definition.id,
                WorkflowDefinitionModel.version == definition.version,
            )
        ).scalar_one_or_none()
        if existing is not None:
            if existing.checksum == checksum:
                return False
            raise DuplicateDefinitionError(definition.id, definition.version)

        last_sequence = self._session.execute(
            select(func.max(WorkflowDefinitionModel.sequence)).where(
                WorkflowDefinitionModel.workflow_id == definition.id,
            )
        ).scalar()
        model = WorkflowDefinitionModel.from_dto(
            definition,
            sequence=(last_sequence or 0) + 1,
            checksum=checksum,
            created_at=self._clock.now(),
        )
        self._session.add(model)
        self._session.flush()
        logger.debug(
            "definition_saved",
            extra={"workflow_id": definition.id, "version": definition.version},
        )
        return True

    def get_definition(
        self, workflow_id: str, version: str | None = None,
    ) -> WorkflowDefinition | None:
        stmt = select(WorkflowDefinitionModel).where(
            WorkflowDefinitionModel.workflow_id == workflow_id,
        )
        if version is not None:
            stmt = stmt.where(WorkflowDefinitionModel.version == version)
        stmt = stmt.order_by(WorkflowDefinitionModel.sequence.desc()).limit(1)
        model = self._session.execute(stmt).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_definitions(self) -> list[WorkflowDefinition]:
        latest = (
            select(
                WorkflowDefinitionModel.workflow_id,
                func.max(WorkflowDefinitionModel.sequence).label("sequence"),
            )
            .group_by(WorkflowDefinitionModel.workflow_id)
            .subquery()
        )
        models = self._session.execute(
            select(WorkflowDefinitionModel)
            .join(
                latest,
                (WorkflowDefinitionModel.workflow_id == latest.c.workflow_id)
                & (WorkflowDefinitionModel.sequence == latest.c.sequence),
            )
            .order_by(WorkflowDefinitionModel.workflow_id)
        ).scalars().all()
        return [m.to_dto() for m in models]

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def save_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        model = self._session.get(WorkflowInstanceModel, instance.id)
        if model is None:
            model = WorkflowInstanceModel.from_dto(instance)
            self._session.add(model)
        else:
            for name, value in WorkflowInstanceModel.column_values(instance).items():
                setattr(model, name, value)
            model.revision = instance.revision
        self._session.flush()
        return model.to_dto()

    def get_instance(self, instance_id: UUID) -> WorkflowInstance | None:
        model = self._session.get(
            WorkflowInstanceModel, instance_id, populate_existing=True,
        )
        return model.to_dto() if model is not None else None

    def update_instance(
        self,
        instance_id: UUID,
        updates: Mapping[str, Any],
        expected_revision: int | None = None,
    ) -> WorkflowInstance:
        check_instance_updates(updates)
        current = self.get_instance(instance_id)
        if current is None:
            raise InstanceNotFoundError(str(instance_id))
        if expected_revision is not None and current.revision != expected_revision:
            raise ConcurrentModificationError(
                "WorkflowInstance", str(instance_id), expected_revision, current.revision,
            )

        for name, value in updates.items():
            setattr(current, name, value)
        values = WorkflowInstanceModel.column_values(current)
        values["revision"] = current.revision + 1

        result = self._session.execute(
            update(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.id == instance_id,
                WorkflowInstanceModel.revision == current.revision,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            actual = self.get_instance(instance_id)
            actual_revision = actual.revision if actual is not None else -1
            logger.warning(
                "instance_revision_conflict",
                extra={
                    "instance_id": str(instance_id),
                    "expected_revision": current.revision,
                    "actual_revision": actual_revision,
                },
            )
            raise ConcurrentModificationError(
                "WorkflowInstance", str(instance_id), current.revision, actual_revision,
            )

        stored = self.get_instance(instance_id)
        if stored is None:
            raise InstanceNotFoundError(str(instance_id))
        return stored

    def query_instances(self, query: InstanceQuery) -> list[WorkflowInstance]:
        stmt = select(WorkflowInstanceModel)
        if query.workflow_id is not None:
            stmt = stmt.where(WorkflowInstanceModel.workflow_id == query.workflow_id)
        statuses = query.statuses
        if statuses is not None:
            stmt = stmt.where(
                WorkflowInstanceModel.status.in_(sorted(s.value for s in statuses))
            )
        if query.started_by is not None:
            stmt = stmt.where(WorkflowInstanceModel.started_by == query.started_by)

        column = getattr(WorkflowInstanceModel, query.sort_by)
        ordering = column.desc() if query.sort_order == "desc" else column.asc()
        stmt = stmt.order_by(ordering.nulls_last()).offset(query.skip).limit(query.limit)

        models = self._session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalars().all()
        return [m.to_dto() for m in models]

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def save_task(self, task: WorkflowTask) -> WorkflowTask:
        model = self._session.get(WorkflowTaskModel, task.id)
        if model is None:
            model = WorkflowTaskModel.from_dto(task)
            self._session.add(model)
        else:
            model.apply_dto(task)
        self._session.flush()
        return model.to_dto()

    def get_task(self, task_id: UUID) -> WorkflowTask | None:
        model = self._session.get(WorkflowTaskModel, task_id)
        return model.to_dto() if model is not None else None

    def get_instance_tasks(self, instance_id: UUID) -> list[WorkflowTask]:
        models = self._session.execute(
            select(WorkflowTaskModel)
            .where(WorkflowTaskModel.instance_id == instance_id)
            .order_by(WorkflowTaskModel.created_at)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def update_task(self, task_id: UUID, updates: Mapping[str, Any]) -> WorkflowTask:
        check_task_updates(updates)
        model = self._session.get(WorkflowTaskModel, task_id)
        if model is None:
            raise TaskNotFoundError(str(task_id))
        model.apply_dto(replace(model.to_dto(), **dict(updates)))
        self._session.flush()
        return model.to_dto()

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def commit(self) -> None:
        """Commit the caller's session.

        Only used for records that must outlive a rollback of the
        surrounding unit of work, such as a failed instance.
        """
        self._session.commit()
