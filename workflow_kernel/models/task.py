"""ORM model for workflow tasks (``WorkflowTask`` persisted one row per task)."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UUIDString
from workflow_kernel.models._types import as_utc

if TYPE_CHECKING:
    from workflow_kernel.domain.task import WorkflowTask


class WorkflowTaskModel(Base):
    """Persistent task spawned by a workflow instance.

    ``instance_id`` is indexed but not a foreign key: tasks outlive the
    instance record they were spawned for.
    """

    __tablename__ = "workflow_tasks"

    __table_args__ = (
        Index("ix_workflow_tasks_instance_id", "instance_id"),
        Index("ix_workflow_tasks_assigned_to", "assigned_to"),
    )

    instance_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    assigned_to: Mapped[str | None] = mapped_column(String(200), nullable=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    due_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    original_assignee: Mapped[str | None] = mapped_column(String(200), nullable=True)
    delegated_to: Mapped[str | None] = mapped_column(String(200), nullable=True)
    delegated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    delegation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    escalated_to: Mapped[str | None] = mapped_column(String(200), nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    escalation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> WorkflowTask:
        from workflow_kernel.domain.task import TaskStatus, WorkflowTask

        return WorkflowTask(
            id=self.id,
            instance_id=self.instance_id,
            name=self.name,
            description=self.description,
            status=TaskStatus(self.status),
            assigned_to=self.assigned_to,
            data=dict(self.data or {}),
            result=dict(self.result) if self.result is not None else None,
            created_at=as_utc(self.created_at),
            completed_at=as_utc(self.completed_at),
            due_at=as_utc(self.due_at),
            original_assignee=self.original_assignee,
            delegated_to=self.delegated_to,
            delegated_at=as_utc(self.delegated_at),
            delegation_reason=self.delegation_reason,
            escalated_to=self.escalated_to,
            escalated_at=as_utc(self.escalated_at),
            escalation_reason=self.escalation_reason,
        )

    def apply_dto(self, dto: WorkflowTask) -> None:
        self.name = dto.name
        self.description = dto.description
        self.status = dto.status.value
        self.assigned_to = dto.assigned_to
        self.data = dict(dto.data)
        self.result = dict(dto.result) if dto.result is not None else None
        self.completed_at = dto.completed_at
        self.due_at = dto.due_at
        self.original_assignee = dto.original_assignee
        self.delegated_to = dto.delegated_to
        self.delegated_at = dto.delegated_at
        self.delegation_reason = dto.delegation_reason
        self.escalated_to = dto.escalated_to
        self.escalated_at = dto.escalated_at
        self.escalation_reason = dto.escalation_reason

    @classmethod
    def from_dto(cls, dto: WorkflowTask) -> WorkflowTaskModel:
        model = cls(
            id=dto.id,
            instance_id=dto.instance_id,
            created_at=dto.created_at,
        )
        model.apply_dto(dto)
        return model
