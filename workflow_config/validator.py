"""
Definition Validator (``workflow_config.validator``).

Responsibility
--------------
Structural validation of a ``WorkflowDefinition`` before registration.
Registration refuses any definition with errors; warnings are logged but
do not block.

Architecture position
---------------------
**Config layer** -- registration-time validation.  Called by
``WorkflowService.register_workflow``.  Pure; no engine or storage
imports.

Invariants enforced
-------------------
Errors:
* id, name and version are present; at least one state exists.
* Exactly one state is flagged ``initial`` and it is ``initial_state``.
* At least one state is flagged ``final``.
* Every transition target names a declared state.
* State keys match state names; action/guard types are non-empty;
  action timeouts are positive.

Warnings:
* States unreachable from the initial state.
* Non-final states without outgoing transitions (instances would stall).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from workflow_kernel.domain.workflow import WorkflowDefinition


@dataclass
class DefinitionValidationResult:
    """
    Result of definition validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    * Warnings do not block registration.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _reachable(definition: WorkflowDefinition) -> set[str]:
    seen: set[str] = set()
    frontier = [definition.initial_state] if definition.initial_state in definition.states else []
    while frontier:
        name = frontier.pop()
        if name in seen:
            continue
        seen.add(name)
        for spec in definition.states[name].transitions.values():
            if spec.target in definition.states and spec.target not in seen:
                frontier.append(spec.target)
    return seen


def analyze_definition(definition: WorkflowDefinition) -> DefinitionValidationResult:
    """Run every structural check and return errors and warnings."""
    result = DefinitionValidationResult()
    errors = result.errors

    if not definition.id:
        errors.append("Workflow must have an ID")
    if not definition.name:
        errors.append("Workflow must have a name")
    if not definition.version:
        errors.append("Workflow must have a version")
    if not definition.states:
        errors.append("Workflow must have at least one state")
        return result

    initial_states = definition.initial_states
    if not definition.initial_state or not initial_states:
        errors.append("Workflow must have an initial state")
    elif len(initial_states) > 1:
        errors.append(
            f"Workflow must have exactly one initial state, found {len(initial_states)}: "
            + ", ".join(initial_states)
        )
    if definition.initial_state and definition.initial_state not in definition.states:
        errors.append(f'Initial state "{definition.initial_state}" does not exist')
    elif definition.initial_state and not definition.states[definition.initial_state].initial:
        errors.append(f'Initial state "{definition.initial_state}" is not flagged initial')

    if not definition.final_states:
        errors.append("Workflow must have at least one final state")

    for state_name, state in definition.states.items():
        if state.name != state_name:
            errors.append(f'State key "{state_name}" does not match state name "{state.name}"')
        for action in (*state.on_enter, *state.on_exit):
            if not action.type:
                errors.append(f'Action in state "{state_name}" has no type')
            elif action.timeout is not None and action.timeout <= 0:
                errors.append(
                    f'Action "{action.type}" in state "{state_name}" must have a positive timeout'
                )
        for transition_name, spec in state.transitions.items():
            if not transition_name:
                errors.append(f'State "{state_name}" has a transition with no name')
            if spec.target not in definition.states:
                errors.append(
                    f'Invalid transition "{transition_name}" in state "{state_name}": '
                    f'target state "{spec.target}" does not exist'
                )
            for guard in spec.guards:
                if not guard.type:
                    errors.append(
                        f'Guard on transition "{transition_name}" in state "{state_name}" '
                        "has no type"
                    )
            for action in spec.actions:
                if not action.type:
                    errors.append(
                        f'Action on transition "{transition_name}" in state "{state_name}" '
                        "has no type"
                    )
                elif action.timeout is not None and action.timeout <= 0:
                    errors.append(
                        f'Action "{action.type}" on transition "{transition_name}" '
                        "must have a positive timeout"
                    )

    reachable = _reachable(definition)
    if reachable:
        for state_name in definition.states:
            if state_name not in reachable:
                result.warnings.append(f'State "{state_name}" is unreachable from the initial state')
    for state_name, state in definition.states.items():
        if not state.final and not state.transitions:
            result.warnings.append(f'Non-final state "{state_name}" has no outgoing transitions')

    return result


def validate_definition(definition: WorkflowDefinition) -> list[str]:
    """Errors only; an empty list means the definition may be registered."""
    return analyze_definition(definition).errors
