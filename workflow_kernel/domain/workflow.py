"""
Canonical workflow definition types (``workflow_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing a workflow as a state machine: states,
guarded transitions, and the actions run on state entry/exit.  A
definition is validated once at registration and never mutated after;
changing a process means registering a new version.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, or outer packages.

Invariants (checked by ``workflow_config.validator``)
-----------------------------------------------------
* Exactly one state has ``initial=True`` and it is ``initial_state``.
* At least one state has ``final=True``.
* Every transition target names a declared state.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class WorkflowType(str, Enum):
    """Kind of process a definition models (descriptive only)."""

    APPROVAL = "approval"
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"


@dataclass(frozen=True)
class ActionInvocation:
    """A named side effect with parameters, resolved by ``type`` at run time.

    ``timeout`` bounds this invocation in seconds; ``None`` defers to the
    engine-wide setting.
    """

    type: str
    params: dict[str, Any] = field(default_factory=dict)
    timeout: float | None = None


@dataclass(frozen=True)
class GuardInvocation:
    """A named boolean predicate with parameters, resolved by ``type``."""

    type: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TransitionSpec:
    """An outgoing edge of a state.

    Guards are ANDed.  ``actions`` run after the source state's
    ``on_exit`` and before the target state's ``on_enter``.
    """

    target: str
    guards: tuple[GuardInvocation, ...] = ()
    actions: tuple[ActionInvocation, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkflowState:
    """A named state with entry/exit actions and outgoing transitions."""

    name: str
    initial: bool = False
    final: bool = False
    on_enter: tuple[ActionInvocation, ...] = ()
    on_exit: tuple[ActionInvocation, ...] = ()
    transitions: dict[str, TransitionSpec] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WorkflowTrigger:
    """Start criteria: a lifecycle event type and an optional object name."""

    event: str
    object: str | None = None

    def matches(self, event_type: str, object_name: str | None) -> bool:
        if self.event != event_type:
            return False
        return self.object is None or self.object == object_name


@dataclass(frozen=True)
class WorkflowDefinition:
    """A versioned state machine definition.

    Contract: frozen; running instances stay bound to the ``version``
    they were created against.
    """

    id: str
    name: str
    version: str
    initial_state: str
    states: dict[str, WorkflowState]
    type: WorkflowType = WorkflowType.SEQUENTIAL
    description: str | None = None
    triggers: tuple[WorkflowTrigger, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    def state(self, name: str) -> WorkflowState:
        """Return the named state.

        Raises:
            KeyError: if the state is not declared.
        """
        try:
            return self.states[name]
        except KeyError:
            raise KeyError(
                f"State '{name}' is not declared in workflow '{self.id}'"
            ) from None

    @property
    def initial_states(self) -> tuple[str, ...]:
        return tuple(n for n, s in self.states.items() if s.initial)

    @property
    def final_states(self) -> tuple[str, ...]:
        return tuple(n for n, s in self.states.items() if s.final)

    def iter_transitions(self) -> Iterator[tuple[str, str, TransitionSpec]]:
        """Yield ``(source_state, transition_name, spec)`` in declared order."""
        for state_name, state in self.states.items():
            for transition_name, spec in state.transitions.items():
                yield state_name, transition_name, spec

    def matches_trigger(self, event_type: str, object_name: str | None) -> bool:
        return any(t.matches(event_type, object_name) for t in self.triggers)
