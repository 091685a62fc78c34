"""
Definition Loader (``workflow_config.loader``).

Responsibility
--------------
Parses declarative workflow documents (YAML text, YAML/JSON files, or
already-decoded dicts) into ``WorkflowDefinition`` objects, and dumps
definitions back to their canonical document form.

Architecture position
---------------------
**Config layer** -- authoring-time tooling.  Depends on the kernel domain
types only; no engine, storage or service imports.  State-machine
semantics (one initial state, a final state, valid targets) are checked
by ``workflow_config.validator`` at registration, not here.

Accepted document shape
-----------------------
::

    name: Expense Approval            # required
    id: expense_approval              # optional, derived from name
    version: "1.0.0"                  # optional, default "1.0.0"
    type: approval                    # approval|sequential|parallel|conditional
    triggers:
      - {event: data.create, object: expense}
    states:
      draft:
        initial: true
        on_enter: [log]               # or onEnter; string or {type, params, timeout}
        transitions:
          submit: pending             # shorthand target
          cancel:
            target: cancelled
            guards: [always]          # string or {type, params}
            actions: [{type: log, params: {message: "..."}}]
      pending: {final: true}

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong document shape (no name, no states, transition without target,
  action without type)  -> ``InvalidDefinitionError``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from workflow_kernel.domain.codec import definition_to_dict
from workflow_kernel.domain.workflow import (
    ActionInvocation,
    GuardInvocation,
    TransitionSpec,
    WorkflowDefinition,
    WorkflowState,
    WorkflowTrigger,
    WorkflowType,
)
from workflow_kernel.exceptions import InvalidDefinitionError
from workflow_kernel.logging_config import get_logger

logger = get_logger("config.loader")

DEFAULT_VERSION = "1.0.0"
DEFINITION_SUFFIXES: tuple[str, ...] = (".yaml", ".yml", ".json")

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def workflow_id_from_name(name: str) -> str:
    """``"Expense Approval (v2)"`` -> ``"expense_approval_v2"``."""
    return _NON_ALNUM.sub("_", name.lower()).strip("_")


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def parse_action(raw: Any, where: str, workflow_id: str) -> ActionInvocation:
    if isinstance(raw, str):
        return ActionInvocation(type=raw)
    if isinstance(raw, Mapping) and raw.get("type"):
        timeout = raw.get("timeout")
        return ActionInvocation(
            type=str(raw["type"]),
            params=dict(raw.get("params") or {}),
            timeout=float(timeout) if timeout is not None else None,
        )
    raise InvalidDefinitionError(workflow_id, [f"Action in {where} must have a type: {raw!r}"])


def parse_guard(raw: Any, where: str, workflow_id: str) -> GuardInvocation:
    if isinstance(raw, str):
        return GuardInvocation(type=raw)
    if isinstance(raw, Mapping) and raw.get("type"):
        return GuardInvocation(type=str(raw["type"]), params=dict(raw.get("params") or {}))
    raise InvalidDefinitionError(workflow_id, [f"Guard in {where} must have a type: {raw!r}"])


def parse_transition(
    name: str, raw: Any, state_name: str, workflow_id: str,
) -> TransitionSpec:
    """Parse a transition; a bare string is shorthand for ``{target: ...}``."""
    where = f'transition "{name}" of state "{state_name}"'
    if isinstance(raw, str):
        return TransitionSpec(target=raw)
    if not isinstance(raw, Mapping) or not raw.get("target"):
        raise InvalidDefinitionError(
            workflow_id, [f'Transition "{name}" must have a target state'],
        )
    return TransitionSpec(
        target=str(raw["target"]),
        guards=tuple(parse_guard(g, where, workflow_id) for g in _as_list(raw.get("guards"))),
        actions=tuple(
            parse_action(a, where, workflow_id) for a in _as_list(raw.get("actions"))
        ),
        metadata=dict(raw.get("metadata") or {}),
    )


def parse_state(name: str, raw: Any, workflow_id: str) -> WorkflowState:
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise InvalidDefinitionError(workflow_id, [f'State "{name}" must be a mapping'])
    where = f'state "{name}"'
    transitions_raw = raw.get("transitions") or {}
    if not isinstance(transitions_raw, Mapping):
        raise InvalidDefinitionError(
            workflow_id, [f'Transitions of state "{name}" must be a mapping'],
        )
    return WorkflowState(
        name=name,
        initial=bool(raw.get("initial", False)),
        final=bool(raw.get("final", False)),
        on_enter=tuple(
            parse_action(a, where, workflow_id)
            for a in _as_list(_first(raw, "on_enter", "onEnter"))
        ),
        on_exit=tuple(
            parse_action(a, where, workflow_id)
            for a in _as_list(_first(raw, "on_exit", "onExit"))
        ),
        transitions={
            str(t_name): parse_transition(str(t_name), t_raw, name, workflow_id)
            for t_name, t_raw in transitions_raw.items()
        },
        metadata=dict(raw.get("metadata") or {}),
    )


def parse_definition(data: Mapping[str, Any], workflow_id: str | None = None) -> WorkflowDefinition:
    """
    Parse a decoded workflow document.

    ``workflow_id`` overrides the document's ``id``; with neither, the id is
    derived from ``name``.  The initial state is the first state flagged
    ``initial`` (falling back to an explicit ``initial_state`` key).

    Raises:
        InvalidDefinitionError: if the document shape is wrong.
    """
    if not isinstance(data, Mapping):
        raise InvalidDefinitionError(workflow_id or "", ["Invalid workflow document"])

    name = data.get("name")
    wid = workflow_id or data.get("id") or (workflow_id_from_name(str(name)) if name else "")
    if not name:
        raise InvalidDefinitionError(wid, ["Workflow definition must have a name"])

    states_raw = data.get("states")
    if not isinstance(states_raw, Mapping) or not states_raw:
        raise InvalidDefinitionError(wid, ["Workflow definition must have at least one state"])

    states = {
        str(s_name): parse_state(str(s_name), s_raw, wid)
        for s_name, s_raw in states_raw.items()
    }

    initial_state = next((n for n, s in states.items() if s.initial), None)
    if initial_state is None:
        initial_state = str(_first(data, "initial_state", "initialState") or "")

    try:
        wf_type = WorkflowType(data.get("type") or WorkflowType.SEQUENTIAL.value)
    except ValueError:
        raise InvalidDefinitionError(
            wid, [f"Unknown workflow type: {data.get('type')!r}"],
        ) from None

    triggers = []
    for raw in _as_list(data.get("triggers")):
        if isinstance(raw, str):
            triggers.append(WorkflowTrigger(event=raw))
        elif isinstance(raw, Mapping) and raw.get("event"):
            obj = raw.get("object")
            triggers.append(WorkflowTrigger(event=str(raw["event"]), object=obj))
        else:
            raise InvalidDefinitionError(wid, [f"Trigger must have an event: {raw!r}"])

    version = data.get("version")
    return WorkflowDefinition(
        id=str(wid),
        name=str(name),
        version=str(version) if version is not None else DEFAULT_VERSION,
        initial_state=initial_state,
        states=states,
        type=wf_type,
        description=data.get("description"),
        triggers=tuple(triggers),
        metadata=dict(data.get("metadata") or {}),
    )


def parse_workflow_yaml(text: str, workflow_id: str | None = None) -> WorkflowDefinition:
    """
    Parse a YAML workflow document.

    Raises:
        yaml.YAMLError: if ``text`` is not valid YAML.
        InvalidDefinitionError: if the document shape is wrong.
    """
    data = yaml.safe_load(text)
    if not isinstance(data, Mapping):
        raise InvalidDefinitionError(workflow_id or "", ["Invalid YAML workflow definition"])
    return parse_definition(data, workflow_id)


def load_definition_file(path: Path | str) -> WorkflowDefinition:
    """Load one definition from a ``.yaml``/``.yml``/``.json`` file.

    JSON is a subset of YAML, so one parser serves both.
    """
    path = Path(path)
    with open(path) as f:
        definition = parse_workflow_yaml(f.read())
    logger.info(
        "definition_loaded",
        extra={"path": str(path), "workflow_id": definition.id, "version": definition.version},
    )
    return definition


def load_definitions_dir(directory: Path | str) -> list[WorkflowDefinition]:
    """Load every definition file directly under ``directory``, sorted by file name."""
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Definitions directory not found: {directory}")
    return [
        load_definition_file(p)
        for p in sorted(directory.iterdir())
        if p.is_file() and p.suffix.lower() in DEFINITION_SUFFIXES
    ]


def dump_definition(definition: WorkflowDefinition) -> dict[str, Any]:
    """Canonical document for ``definition``; ``parse_definition`` accepts it back."""
    return definition_to_dict(definition)


def dump_definition_yaml(definition: WorkflowDefinition) -> str:
    return yaml.safe_dump(dump_definition(definition), sort_keys=False)
