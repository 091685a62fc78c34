"""
Event trigger bridge -- data lifecycle events in, workflow instances out.

Two stages joined only by the bus:

1. ``EventTriggerBridge`` listens to the host's record hooks
   (``data.afterCreate`` / ``data.afterUpdate``) and republishes each one
   as a generic ``workflow.trigger`` event ``{type, data}``.  It knows
   nothing about definitions or the engine.
2. ``TriggerMatcher`` listens to ``workflow.trigger``, finds every
   registered definition whose ``triggers`` match the event type and
   object name, and starts one instance of each through
   ``WorkflowService``.

Hook payload shape: ``{"object": "expense", "record": {...}}``.  A payload
without ``record`` is taken to be the record itself.  The record becomes
the new instance's data.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from workflow_kernel.domain.instance import WorkflowInstance
from workflow_kernel.exceptions import WorkflowKernelError
from workflow_kernel.logging_config import get_logger
from workflow_services.event_bus import Event, EventBus
from workflow_services.workflow_service import WorkflowService

logger = get_logger("services.trigger")

TRIGGER_EVENT = "workflow.trigger"
TRIGGER_ACTOR = "system:trigger"

HOOK_EVENTS: dict[str, str] = {
    "data.afterCreate": "data.create",
    "data.afterUpdate": "data.update",
}


class EventTriggerBridge:
    """Republishes host record hooks as ``workflow.trigger`` events."""

    def __init__(self, bus: EventBus, hooks: Mapping[str, str] | None = None) -> None:
        self._bus = bus
        self._hooks = dict(HOOK_EVENTS if hooks is None else hooks)
        self._unsubscribers: list[Callable[[], None]] = []

    def attach(self) -> None:
        if self._unsubscribers:
            return
        for hook, trigger_type in self._hooks.items():
            self._unsubscribers.append(
                self._bus.subscribe(hook, self._forwarder(trigger_type))
            )

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def _forwarder(self, trigger_type: str) -> Callable[[Event], None]:
        def forward(event: Event) -> None:
            self._bus.publish(TRIGGER_EVENT, {"type": trigger_type, "data": event.data})

        return forward


def split_payload(payload: Mapping[str, Any]) -> tuple[str | None, dict[str, Any]]:
    """``(object_name, record)`` from a hook payload."""
    object_name = payload.get("object")
    record = payload["record"] if "record" in payload else payload
    return object_name, dict(record or {})


class TriggerMatcher:
    """Starts instances of every definition whose triggers match an event."""

    def __init__(self, service: WorkflowService, started_by: str = TRIGGER_ACTOR) -> None:
        self._service = service
        self._started_by = started_by
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self, bus: EventBus) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = bus.subscribe(TRIGGER_EVENT, self.handle)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def handle(self, event: Event) -> list[WorkflowInstance]:
        trigger_type = event.data.get("type")
        if not trigger_type:
            logger.warning("trigger_without_type", extra={"event_data": event.data})
            return []
        return self.match(str(trigger_type), event.data.get("data") or {})

    def match(self, trigger_type: str, payload: Mapping[str, Any]) -> list[WorkflowInstance]:
        """
        Start one instance per matching definition (latest version).

        A definition whose start fails is logged and skipped; the other
        matches still start.
        """
        object_name, record = split_payload(payload)
        started: list[WorkflowInstance] = []
        for definition in self._service.list_workflows():
            if not definition.matches_trigger(trigger_type, object_name):
                continue
            try:
                instance = self._service.start_workflow(
                    definition.id,
                    data=record,
                    started_by=self._started_by,
                    version=definition.version,
                )
            except WorkflowKernelError:
                logger.exception(
                    "triggered_start_failed",
                    extra={
                        "trigger_type": trigger_type,
                        "object": object_name,
                        "workflow_id": definition.id,
                    },
                )
                continue
            logger.info(
                "workflow_triggered",
                extra={
                    "trigger_type": trigger_type,
                    "object": object_name,
                    "workflow_id": definition.id,
                    "instance_id": str(instance.id),
                },
            )
            started.append(instance)
        return started
