"""
ORM model for workflow instances.

Contract:
    ``WorkflowInstanceModel`` mirrors ``WorkflowInstance`` field for field
    (snake_case columns, JSON for ``data``, ``history`` and ``error``).
    ``to_dto()`` / ``from_dto()`` round-trip; ``column_values()`` gives the
    mutable columns for compare-and-swap UPDATE statements.

Invariants enforced:
    ``revision`` is only ever bumped by the storage adapter.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base
from workflow_kernel.models._types import as_utc

if TYPE_CHECKING:
    from workflow_kernel.domain.instance import WorkflowInstance


class WorkflowInstanceModel(Base):
    """Persistent workflow instance."""

    __tablename__ = "workflow_instances"

    __table_args__ = (
        Index("ix_workflow_instances_workflow_id", "workflow_id"),
        Index("ix_workflow_instances_status", "status"),
        Index("ix_workflow_instances_started_by", "started_by"),
        Index("ix_workflow_instances_created_at", "created_at"),
    )

    workflow_id: Mapped[str] = mapped_column(String(200), nullable=False)
    version: Mapped[str] = mapped_column(String(50), nullable=False)
    current_state: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    history: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    error: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    failed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    aborted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    started_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    completed_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def to_dto(self) -> WorkflowInstance:
        from workflow_kernel.domain.instance import (
            HistoryEntry,
            InstanceStatus,
            WorkflowInstance,
        )

        history = []
        for raw in self.history or ():
            entry = HistoryEntry.from_dict(raw)
            history.append(
                HistoryEntry(
                    from_state=entry.from_state,
                    to_state=entry.to_state,
                    transition=entry.transition,
                    timestamp=as_utc(entry.timestamp),
                    triggered_by=entry.triggered_by,
                    data=entry.data,
                    error=entry.error,
                )
            )

        return WorkflowInstance(
            id=self.id,
            workflow_id=self.workflow_id,
            version=self.version,
            current_state=self.current_state,
            status=InstanceStatus(self.status),
            data=dict(self.data or {}),
            history=history,
            created_at=as_utc(self.created_at),
            started_at=as_utc(self.started_at),
            completed_at=as_utc(self.completed_at),
            failed_at=as_utc(self.failed_at),
            aborted_at=as_utc(self.aborted_at),
            started_by=self.started_by,
            completed_by=self.completed_by,
            error=dict(self.error) if self.error is not None else None,
            revision=self.revision,
        )

    @staticmethod
    def column_values(dto: WorkflowInstance) -> dict:
        """Column values for every mutable field of ``dto`` (not ``revision``)."""
        return {
            "current_state": dto.current_state,
            "status": dto.status.value,
            "data": dict(dto.data),
            "history": [entry.to_dict() for entry in dto.history],
            "error": dict(dto.error) if dto.error is not None else None,
            "started_at": dto.started_at,
            "completed_at": dto.completed_at,
            "failed_at": dto.failed_at,
            "aborted_at": dto.aborted_at,
            "started_by": dto.started_by,
            "completed_by": dto.completed_by,
        }

    @classmethod
    def from_dto(cls, dto: WorkflowInstance) -> WorkflowInstanceModel:
        return cls(
            id=dto.id,
            workflow_id=dto.workflow_id,
            version=dto.version,
            created_at=dto.created_at,
            revision=dto.revision,
            **cls.column_values(dto),
        )
