"""
ORM model for registered workflow definitions.

Contract:
    One row per (workflow_id, version).  The definition itself is stored as
    its canonical document (``workflow_kernel.domain.codec``) alongside a
    SHA-256 checksum of that document, so re-registering an identical
    definition can be detected without rebuilding it.

Invariants enforced:
    ``(workflow_id, version)`` is UNIQUE.
    ``sequence`` increases per workflow_id in registration order; the
    highest sequence is the latest version.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base

if TYPE_CHECKING:
    from workflow_kernel.domain.workflow import WorkflowDefinition


class WorkflowDefinitionModel(Base):
    """Persistent workflow definition version."""

    __tablename__ = "workflow_definitions"

    __table_args__ = (
        UniqueConstraint("workflow_id", "version", name="uq_workflow_definition_version"),
        Index("ix_workflow_definitions_workflow_seq", "workflow_id", "sequence"),
    )

    workflow_id: Mapped[str] = mapped_column(String(200), nullable=False)
    version: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    document: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_dto(self) -> WorkflowDefinition:
        from workflow_kernel.domain.codec import definition_from_dict

        return definition_from_dict(self.document)

    @classmethod
    def from_dto(
        cls,
        dto: WorkflowDefinition,
        sequence: int,
        checksum: str,
        created_at: datetime,
    ) -> WorkflowDefinitionModel:
        from workflow_kernel.domain.codec import definition_to_dict

        return cls(
            workflow_id=dto.id,
            version=dto.version,
            name=dto.name,
            sequence=sequence,
            checksum=checksum,
            document=definition_to_dict(dto),
            created_at=created_at,
        )
