"""
Workflow services -- stateful orchestration over engines + kernel.

- ``engine``: ``WorkflowEngine``, the instance runtime.
- ``workflow_service``: registration, persistence, lifecycle events, tasks.
- ``event_bus``: synchronous in-process publish/subscribe.
- ``trigger_bridge``: record hooks -> ``workflow.trigger`` -> new instances.
"""

from workflow_services.engine import ExecutionResult, WorkflowEngine
from workflow_services.event_bus import Event, EventBus
from workflow_services.trigger_bridge import EventTriggerBridge, TriggerMatcher
from workflow_services.workflow_service import WorkflowService

__all__ = [
    "Event",
    "EventBus",
    "EventTriggerBridge",
    "ExecutionResult",
    "TriggerMatcher",
    "WorkflowEngine",
    "WorkflowService",
]
