"""
SQLAlchemy ORM models for workflow persistence.

Importing this package registers every workflow table on
``workflow_kernel.db.base.Base.metadata``.
"""

from workflow_kernel.models.definition import WorkflowDefinitionModel
from workflow_kernel.models.instance import WorkflowInstanceModel
from workflow_kernel.models.task import WorkflowTaskModel

__all__ = [
    "WorkflowDefinitionModel",
    "WorkflowInstanceModel",
    "WorkflowTaskModel",
]
