"""
Kernel services: persistence adapters.

``WorkflowStorage`` is the only boundary through which workflow state
reaches a data store.
"""

from workflow_kernel.services.sql_storage import SqlWorkflowStorage
from workflow_kernel.services.storage import (
    InMemoryWorkflowStorage,
    InstanceQuery,
    WorkflowStorage,
    instance_updates,
)

__all__ = [
    "InMemoryWorkflowStorage",
    "InstanceQuery",
    "SqlWorkflowStorage",
    "WorkflowStorage",
    "instance_updates",
]
