"""
Flow converter -- WorkflowDefinition <-> Flow graph.

Contract:
    ``legacy_to_flow(definition)`` builds one node per state (``start`` for
    the initial state, ``end`` for final states, ``state`` otherwise) and
    one edge per transition (``label`` = transition name, ``condition`` =
    the guard name, or guard names joined with `` && ``).

    ``flow_to_legacy(flow, workflow_id=..., workflow_type=...)`` is the
    inverse.  For any valid definition ``d``::

        flow_to_legacy(legacy_to_flow(d)) == d

    Entry/exit actions, state metadata, guard parameters and transition
    actions travel in the node/edge ``config``; the workflow id, type,
    exact version string, triggers and metadata travel in ``Flow.config``,
    so a definition edited visually and saved back re-imports unchanged
    and stays bound to its triggers.  An initial state that is also final
    becomes a ``start`` node with ``config["final"] = True``.

    ``validate_flow(flow)`` returns human-readable problems and never
    raises; editors show them inline.

Architecture:
    workflow_engines.  Pure functions; imports only kernel domain types.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from workflow_kernel.domain.codec import (
    action_from_dict,
    action_to_dict,
    guard_from_dict,
    guard_to_dict,
    trigger_from_dict,
    trigger_to_dict,
)
from workflow_kernel.domain.flow import (
    NODE_END,
    NODE_START,
    NODE_STATE,
    NODE_TYPES,
    Flow,
    FlowEdge,
    FlowNode,
)
from workflow_kernel.domain.workflow import (
    ActionInvocation,
    GuardInvocation,
    TransitionSpec,
    WorkflowDefinition,
    WorkflowState,
    WorkflowTrigger,
    WorkflowType,
)

GUARD_SEPARATOR = " && "
FLOW_TYPE = "autolaunched"

_LEADING_INT = re.compile(r"^\s*(\d+)")


def _flow_version(version: str) -> int:
    match = _LEADING_INT.match(str(version))
    if match is None:
        return 1
    return int(match.group(1)) or 1


def _node_type(state: WorkflowState) -> str:
    if state.initial:
        return NODE_START
    if state.final:
        return NODE_END
    return NODE_STATE


def _node_config(state: WorkflowState) -> dict[str, Any]:
    config: dict[str, Any] = {}
    if state.initial and state.final:
        config["final"] = True
    if state.on_enter:
        config["on_enter"] = [action_to_dict(a) for a in state.on_enter]
    if state.on_exit:
        config["on_exit"] = [action_to_dict(a) for a in state.on_exit]
    if state.metadata:
        config["metadata"] = dict(state.metadata)
    return config


def _edge_config(spec: TransitionSpec) -> dict[str, Any]:
    config: dict[str, Any] = {}
    if any(g.params for g in spec.guards):
        config["guards"] = [guard_to_dict(g) for g in spec.guards]
    if spec.actions:
        config["actions"] = [action_to_dict(a) for a in spec.actions]
    if spec.metadata:
        config["metadata"] = dict(spec.metadata)
    return config


def _flow_config(definition: WorkflowDefinition) -> dict[str, Any]:
    config: dict[str, Any] = {
        "workflow_id": definition.id,
        "workflow_type": definition.type.value,
        "version": definition.version,
    }
    if definition.triggers:
        config["triggers"] = [trigger_to_dict(t) for t in definition.triggers]
    if definition.metadata:
        config["metadata"] = dict(definition.metadata)
    return config


def legacy_to_flow(definition: WorkflowDefinition) -> Flow:
    """Convert a definition to its flow graph view."""
    node_ids: dict[str, str] = {}
    nodes: list[FlowNode] = []
    for index, (name, state) in enumerate(definition.states.items()):
        node_id = f"node_{index}"
        node_ids[name] = node_id
        nodes.append(
            FlowNode(
                id=node_id,
                label=name,
                type=_node_type(state),
                config=_node_config(state),
            )
        )

    edges: list[FlowEdge] = []
    for source, transition_name, spec in definition.iter_transitions():
        target_id = node_ids.get(spec.target)
        if target_id is None:
            continue
        condition = GUARD_SEPARATOR.join(g.type for g in spec.guards) or None
        edges.append(
            FlowEdge(
                id=f"edge_{len(edges)}",
                source=node_ids[source],
                target=target_id,
                label=transition_name,
                condition=condition,
                config=_edge_config(spec),
            )
        )

    return Flow(
        name=definition.name,
        label=definition.name,
        type=FLOW_TYPE,
        version=_flow_version(definition.version),
        nodes=tuple(nodes),
        edges=tuple(edges),
        description=definition.description,
        config=_flow_config(definition),
    )


def _actions(raw: Any) -> tuple[ActionInvocation, ...]:
    out = []
    for item in raw or ():
        if isinstance(item, str):
            out.append(ActionInvocation(type=item))
        else:
            out.append(action_from_dict(item))
    return tuple(out)


def _triggers(raw: Any) -> tuple[WorkflowTrigger, ...]:
    out = []
    for item in raw or ():
        if isinstance(item, str):
            out.append(WorkflowTrigger(event=item))
        elif isinstance(item, Mapping) and item.get("event"):
            out.append(trigger_from_dict(dict(item)))
    return tuple(out)


def _edge_guards(edge: FlowEdge) -> tuple[GuardInvocation, ...]:
    raw = edge.config.get("guards")
    if raw:
        return tuple(
            GuardInvocation(type=g) if isinstance(g, str) else guard_from_dict(g)
            for g in raw
        )
    if not edge.condition:
        return ()
    return tuple(
        GuardInvocation(type=part.strip())
        for part in edge.condition.split("&&")
        if part.strip()
    )


def flow_to_legacy(
    flow: Flow,
    workflow_id: str | None = None,
    workflow_type: WorkflowType | str | None = None,
    version: str | None = None,
) -> WorkflowDefinition:
    """Convert a flow graph back to a definition.

    Edges whose source or target node is unknown are dropped; run
    ``validate_flow`` first to report them.  Explicit arguments win; then
    the values recorded in ``flow.config`` by ``legacy_to_flow``; then the
    flow name, ``sequential`` and ``str(flow.version)``.  Triggers and
    definition metadata come back from ``flow.config`` as well.
    """
    recorded = flow.config
    names = {node.id: node.label for node in flow.nodes}

    transitions: dict[str, dict[str, TransitionSpec]] = {n.label: {} for n in flow.nodes}
    for edge in flow.edges:
        source = names.get(edge.source)
        target = names.get(edge.target)
        if source is None or target is None:
            continue
        name = edge.label or f"to_{target}"
        transitions[source][name] = TransitionSpec(
            target=target,
            guards=_edge_guards(edge),
            actions=_actions(edge.config.get("actions")),
            metadata=dict(edge.config.get("metadata") or {}),
        )

    states: dict[str, WorkflowState] = {}
    initial_state = ""
    for node in flow.nodes:
        config = node.config
        is_start = node.type == NODE_START
        if is_start:
            initial_state = node.label
        states[node.label] = WorkflowState(
            name=node.label,
            initial=is_start,
            final=node.type == NODE_END or bool(config.get("final")),
            on_enter=_actions(config.get("on_enter", config.get("onEnter"))),
            on_exit=_actions(config.get("on_exit", config.get("onExit"))),
            transitions=transitions[node.label],
            metadata=dict(config.get("metadata") or {}),
        )

    if not initial_state and states:
        initial_state = next(iter(states))

    if version is None:
        version = str(recorded.get("version") or flow.version)
    return WorkflowDefinition(
        id=workflow_id or str(recorded.get("workflow_id") or flow.name),
        name=flow.name,
        version=version,
        initial_state=initial_state,
        states=states,
        type=WorkflowType(
            workflow_type or recorded.get("workflow_type") or WorkflowType.SEQUENTIAL
        ),
        description=flow.description,
        triggers=_triggers(recorded.get("triggers")),
        metadata=dict(recorded.get("metadata") or {}),
    )


def _raw_shape_errors(raw: Mapping[str, Any]) -> list[str]:
    """Problems in editor JSON that ``Flow.from_dict`` would silently skip."""
    errors: list[str] = []
    nodes = raw.get("nodes")
    if nodes is not None and not isinstance(nodes, (list, tuple)):
        errors.append("Flow nodes must be an array")
    elif nodes:
        errors.extend(
            f"Node at index {i} is not an object"
            for i, node in enumerate(nodes) if not isinstance(node, Mapping)
        )
    edges = raw.get("edges")
    if not isinstance(edges, (list, tuple)):
        errors.append("Flow must have an edges array")
    else:
        errors.extend(
            f"Edge at index {i} is not an object"
            for i, edge in enumerate(edges) if not isinstance(edge, Mapping)
        )
    return errors


def validate_flow(flow: Flow | Mapping[str, Any]) -> list[str]:
    """Return every structural problem found in ``flow`` (empty if none).

    Accepts a ``Flow`` or the editor's raw JSON mapping.
    """
    errors: list[str] = []

    if isinstance(flow, Mapping):
        errors.extend(_raw_shape_errors(flow))
        flow = Flow.from_dict(flow)

    if not flow.name:
        errors.append("Flow must have a name")
    if not flow.nodes:
        errors.append("Flow must have at least one node")

    start_nodes = [n for n in flow.nodes if n.type == NODE_START]
    end_nodes = [n for n in flow.nodes if n.type == NODE_END]
    if not start_nodes:
        errors.append("Flow must have at least one start node")
    if len(start_nodes) > 1:
        errors.append("Flow should have exactly one start node")
    if not end_nodes:
        errors.append("Flow must have at least one end node")

    for node in flow.nodes:
        if node.type not in NODE_TYPES:
            errors.append(f"Node {node.label} ({node.id}) has unknown type: {node.type}")

    node_ids = {n.id for n in flow.nodes}
    for edge in flow.edges:
        if edge.source not in node_ids:
            errors.append(f"Edge {edge.id} references unknown source node: {edge.source}")
        if edge.target not in node_ids:
            errors.append(f"Edge {edge.id} references unknown target node: {edge.target}")

    targets = {e.target for e in flow.edges}
    sources = {e.source for e in flow.edges}
    for node in flow.nodes:
        if node.type != NODE_START and node.id not in targets:
            errors.append(f"Node {node.label} ({node.id}) has no incoming edges")
    for node in flow.nodes:
        if node.type != NODE_END and not node.config.get("final") and node.id not in sources:
            errors.append(f"Node {node.label} ({node.id}) has no outgoing edges")

    return errors
