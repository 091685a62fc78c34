"""
Flow graph types -- the node/edge view of a workflow used by visual editors.

A Flow has no runtime semantics of its own; it is converted to and from a
``WorkflowDefinition`` by ``workflow_engines.flow_converter``.  The
``to_dict`` / ``from_dict`` pair is the JSON shape exchanged with the
editor.  ``from_dict`` is lenient (missing keys become empty values, and
non-object array elements are skipped) so that ``validate_flow`` can report
problems instead of the parser raising.  ``Flow.config`` carries the
definition-level fields the graph itself cannot express.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

NODE_START = "start"
NODE_STATE = "state"
NODE_END = "end"

NODE_TYPES: frozenset[str] = frozenset({NODE_START, NODE_STATE, NODE_END})


def _mapping(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _items(value: Any) -> list[Mapping[str, Any]]:
    """Mapping elements of a JSON array; anything else is skipped."""
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, Mapping)]


@dataclass(frozen=True)
class FlowNode:
    id: str
    label: str
    type: str
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "label": self.label, "type": self.type, "config": self.config}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FlowNode:
        return cls(
            id=str(data.get("id", "")),
            label=str(data.get("label", "")),
            type=str(data.get("type", NODE_STATE)),
            config=_mapping(data.get("config")),
        )


@dataclass(frozen=True)
class FlowEdge:
    id: str
    source: str
    target: str
    label: str | None = None
    condition: str | None = None
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "source": self.source, "target": self.target}
        if self.label is not None:
            out["label"] = self.label
        if self.condition is not None:
            out["condition"] = self.condition
        if self.config:
            out["config"] = self.config
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FlowEdge:
        return cls(
            id=str(data.get("id", "")),
            source=str(data.get("source", "")),
            target=str(data.get("target", "")),
            label=_optional_str(data.get("label")),
            condition=_optional_str(data.get("condition")),
            config=_mapping(data.get("config")),
        )


@dataclass(frozen=True)
class Flow:
    name: str
    label: str
    type: str
    version: int
    nodes: tuple[FlowNode, ...] = ()
    edges: tuple[FlowEdge, ...] = ()
    description: str | None = None
    config: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "label": self.label,
            "type": self.type,
            "version": self.version,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }
        if self.description is not None:
            out["description"] = self.description
        if self.config:
            out["config"] = self.config
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Flow:
        try:
            version = int(data.get("version", 1))
        except (TypeError, ValueError, OverflowError):
            version = 1
        return cls(
            name=str(data.get("name") or ""),
            label=str(data.get("label") or data.get("name") or ""),
            type=str(data.get("type") or "autolaunched"),
            version=version,
            nodes=tuple(FlowNode.from_dict(n) for n in _items(data.get("nodes"))),
            edges=tuple(FlowEdge.from_dict(e) for e in _items(data.get("edges"))),
            description=_optional_str(data.get("description")),
            config=_mapping(data.get("config")),
        )
