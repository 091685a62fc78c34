"""
Pure domain layer.

Data transfer objects and lifecycle rules with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

Definitions, flows and tasks are immutable; ``WorkflowInstance`` is the one
mutable record and only the engine mutates it.
"""

from workflow_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from workflow_kernel.domain.codec import definition_from_dict, definition_to_dict
from workflow_kernel.domain.flow import Flow, FlowEdge, FlowNode
from workflow_kernel.domain.instance import (
    INSTANCE_TRANSITIONS,
    TERMINAL_STATUSES,
    HistoryEntry,
    InstanceStatus,
    WorkflowInstance,
)
from workflow_kernel.domain.task import TASK_TRANSITIONS, TaskStatus, WorkflowTask
from workflow_kernel.domain.template import interpolate
from workflow_kernel.domain.workflow import (
    ActionInvocation,
    GuardInvocation,
    TransitionSpec,
    WorkflowDefinition,
    WorkflowState,
    WorkflowTrigger,
    WorkflowType,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "definition_from_dict",
    "definition_to_dict",
    "Flow",
    "FlowEdge",
    "FlowNode",
    "INSTANCE_TRANSITIONS",
    "TERMINAL_STATUSES",
    "HistoryEntry",
    "InstanceStatus",
    "WorkflowInstance",
    "TASK_TRANSITIONS",
    "TaskStatus",
    "WorkflowTask",
    "interpolate",
    "ActionInvocation",
    "GuardInvocation",
    "TransitionSpec",
    "WorkflowDefinition",
    "WorkflowState",
    "WorkflowTrigger",
    "WorkflowType",
]
