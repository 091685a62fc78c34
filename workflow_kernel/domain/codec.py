"""
Canonical dict codec for workflow definitions.

``definition_to_dict`` produces the canonical JSON-safe document stored by
persistence adapters and accepted back by ``definition_from_dict``.  The
authoring formats (YAML shorthand, camelCase keys) are handled by
``workflow_config.loader``, which builds the same domain objects.
"""

from __future__ import annotations

from typing import Any

from workflow_kernel.domain.workflow import (
    ActionInvocation,
    GuardInvocation,
    TransitionSpec,
    WorkflowDefinition,
    WorkflowState,
    WorkflowTrigger,
    WorkflowType,
)


def action_to_dict(action: ActionInvocation) -> dict[str, Any]:
    out: dict[str, Any] = {"type": action.type}
    if action.params:
        out["params"] = dict(action.params)
    if action.timeout is not None:
        out["timeout"] = action.timeout
    return out


def guard_to_dict(guard: GuardInvocation) -> dict[str, Any]:
    out: dict[str, Any] = {"type": guard.type}
    if guard.params:
        out["params"] = dict(guard.params)
    return out


def action_from_dict(data: dict[str, Any]) -> ActionInvocation:
    return ActionInvocation(
        type=data["type"],
        params=dict(data.get("params") or {}),
        timeout=data.get("timeout"),
    )


def guard_from_dict(data: dict[str, Any]) -> GuardInvocation:
    return GuardInvocation(type=data["type"], params=dict(data.get("params") or {}))


def trigger_to_dict(trigger: WorkflowTrigger) -> dict[str, Any]:
    return {"event": trigger.event, "object": trigger.object}


def trigger_from_dict(data: dict[str, Any]) -> WorkflowTrigger:
    return WorkflowTrigger(event=data["event"], object=data.get("object"))


def _transition_to_dict(spec: TransitionSpec) -> dict[str, Any]:
    out: dict[str, Any] = {"target": spec.target}
    if spec.guards:
        out["guards"] = [guard_to_dict(g) for g in spec.guards]
    if spec.actions:
        out["actions"] = [action_to_dict(a) for a in spec.actions]
    if spec.metadata:
        out["metadata"] = dict(spec.metadata)
    return out


def _state_to_dict(state: WorkflowState) -> dict[str, Any]:
    return {
        "initial": state.initial,
        "final": state.final,
        "on_enter": [action_to_dict(a) for a in state.on_enter],
        "on_exit": [action_to_dict(a) for a in state.on_exit],
        "transitions": {
            name: _transition_to_dict(spec) for name, spec in state.transitions.items()
        },
        "metadata": dict(state.metadata),
    }


def definition_to_dict(definition: WorkflowDefinition) -> dict[str, Any]:
    """Serialize a definition to its canonical document (state order kept)."""
    return {
        "id": definition.id,
        "name": definition.name,
        "version": definition.version,
        "type": definition.type.value,
        "description": definition.description,
        "initial_state": definition.initial_state,
        "triggers": [trigger_to_dict(t) for t in definition.triggers],
        "metadata": dict(definition.metadata),
        "states": {name: _state_to_dict(s) for name, s in definition.states.items()},
    }


def definition_from_dict(data: dict[str, Any]) -> WorkflowDefinition:
    """Rebuild a definition from ``definition_to_dict`` output.

    Raises:
        KeyError: if a required key is missing.
    """
    states: dict[str, WorkflowState] = {}
    for name, raw in data["states"].items():
        states[name] = WorkflowState(
            name=name,
            initial=bool(raw.get("initial", False)),
            final=bool(raw.get("final", False)),
            on_enter=tuple(action_from_dict(a) for a in raw.get("on_enter") or ()),
            on_exit=tuple(action_from_dict(a) for a in raw.get("on_exit") or ()),
            transitions={
                t_name: TransitionSpec(
                    target=t["target"],
                    guards=tuple(guard_from_dict(g) for g in t.get("guards") or ()),
                    actions=tuple(action_from_dict(a) for a in t.get("actions") or ()),
                    metadata=dict(t.get("metadata") or {}),
                )
                for t_name, t in (raw.get("transitions") or {}).items()
            },
            metadata=dict(raw.get("metadata") or {}),
        )
    return WorkflowDefinition(
        id=data["id"],
        name=data["name"],
        version=str(data["version"]),
        initial_state=data["initial_state"],
        states=states,
        type=WorkflowType(data.get("type", WorkflowType.SEQUENTIAL.value)),
        description=data.get("description"),
        triggers=tuple(trigger_from_dict(t) for t in data.get("triggers") or ()),
        metadata=dict(data.get("metadata") or {}),
    )


def definition_fingerprint(definition: WorkflowDefinition) -> dict[str, Any]:
    """Hashable view of a definition that also captures declaration order.

    Canonical JSON sorts keys, but state and transition order is meaningful
    (implicit advancement tries transitions in declared order), so the
    order is recorded explicitly alongside the document.
    """
    return {
        "document": definition_to_dict(definition),
        "order": [
            [name, list(state.transitions)] for name, state in definition.states.items()
        ],
    }
