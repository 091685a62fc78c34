"""
Hypothesis properties over randomly generated definitions.

- Flow conversion round-trips a whole definition, triggers and version included.
- A rejected guard leaves the instance exactly as it was.
- Once terminal, an instance never changes again.
- Interpolation leaves placeholder-free text alone.
"""

from __future__ import annotations

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from workflow_engines.flow_converter import flow_to_legacy, legacy_to_flow
from workflow_engines.registry import default_registry
from workflow_kernel.domain.clock import DeterministicClock
from workflow_kernel.domain.template import interpolate
from workflow_kernel.domain.workflow import (
    GuardInvocation,
    TransitionSpec,
    WorkflowDefinition,
    WorkflowState,
    WorkflowTrigger,
    WorkflowType,
)
from workflow_kernel.exceptions import (
    GuardRejectedError,
    InstanceTerminatedError,
    TransitionNotFoundError,
)
from workflow_services.engine import WorkflowEngine

FUZZ_SETTINGS = settings(
    max_examples=75,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

_names = st.from_regex(r"[a-z][a-z0-9_]{0,8}", fullmatch=True)
_json_scalars = st.one_of(
    st.none(), st.booleans(), st.integers(-1000, 1000), st.text(max_size=10),
)
_data = st.dictionaries(st.text(min_size=1, max_size=8), _json_scalars, max_size=5)
_triggers = st.builds(WorkflowTrigger, event=_names, object=st.none() | _names)


@st.composite
def guards(draw):
    kind = draw(st.sampled_from(["always", "never", "greaterThan", "fieldEquals"]))
    if kind in ("always", "never"):
        return GuardInvocation(type=kind)
    return GuardInvocation(
        type=kind,
        params={"field": draw(_names), "value": draw(st.integers(-10, 10))},
    )


@st.composite
def definitions(draw):
    state_names = draw(st.lists(_names, min_size=2, max_size=6, unique=True))
    final_names = set(draw(st.lists(st.sampled_from(state_names[1:]), min_size=1, unique=True)))
    states = {}
    for index, name in enumerate(state_names):
        transitions = {}
        if name not in final_names:
            transition_names = draw(st.lists(_names, min_size=1, max_size=3, unique=True))
            for transition_name in transition_names:
                transitions[transition_name] = TransitionSpec(
                    target=draw(st.sampled_from(state_names)),
                    guards=tuple(draw(st.lists(guards(), max_size=2))),
                )
        states[name] = WorkflowState(
            name=name,
            initial=index == 0,
            final=name in final_names,
            transitions=transitions,
        )
    return WorkflowDefinition(
        id="fuzz",
        name="fuzz",
        version=draw(st.sampled_from(["1", "1.0.0", "2.3-beta", "v7"])),
        initial_state=state_names[0],
        states=states,
        type=draw(st.sampled_from(list(WorkflowType))),
        triggers=tuple(draw(st.lists(_triggers, max_size=2))),
        metadata=draw(_data),
    )


def _engine() -> WorkflowEngine:
    return WorkflowEngine(registry=default_registry(), clock=DeterministicClock())


@pytest.mark.slow
class TestWorkflowProperties:

    @FUZZ_SETTINGS
    @given(definition=definitions())
    def test_flow_round_trip(self, definition):
        restored = flow_to_legacy(legacy_to_flow(definition))
        assert restored == definition
        assert restored.triggers == definition.triggers
        assert restored.version == definition.version

    @FUZZ_SETTINGS
    @given(data=_data, extra_guards=st.lists(guards(), max_size=2))
    def test_rejected_guard_is_a_no_op(self, data, extra_guards):
        definition = WorkflowDefinition(
            id="gate",
            name="gate",
            version="1",
            initial_state="open",
            states={
                "open": WorkflowState(
                    name="open",
                    initial=True,
                    transitions={
                        "pass": TransitionSpec(
                            target="done",
                            guards=(*extra_guards, GuardInvocation(type="never")),
                        ),
                    },
                ),
                "done": WorkflowState(name="done", final=True),
            },
        )
        engine = _engine()
        instance = engine.create_instance(definition, data)
        engine.start_instance(instance, definition)
        before = instance.copy()

        with pytest.raises(GuardRejectedError):
            engine.fire_transition(instance, definition, "pass")

        assert instance == before
        assert engine.advance(instance, definition) is None
        assert instance == before

    @FUZZ_SETTINGS
    @given(
        definition=definitions(),
        data=_data,
        steps=st.lists(st.one_of(_names, st.just("<abort>"), st.just("<advance>")), max_size=12),
    )
    def test_terminal_is_irreversible(self, definition, data, steps):
        engine = _engine()
        instance = engine.create_instance(definition, data)
        engine.start_instance(instance, definition)

        terminal_snapshot = instance.copy() if instance.is_terminal else None
        for step in steps:
            if terminal_snapshot is not None:
                with pytest.raises(InstanceTerminatedError):
                    if step == "<abort>":
                        engine.abort_instance(instance)
                    elif step == "<advance>":
                        engine.advance(instance, definition)
                    else:
                        engine.fire_transition(instance, definition, step)
                assert instance == terminal_snapshot
                continue

            try:
                if step == "<abort>":
                    engine.abort_instance(instance)
                elif step == "<advance>":
                    engine.advance(instance, definition)
                else:
                    engine.fire_transition(instance, definition, step)
            except (GuardRejectedError, TransitionNotFoundError):
                pass

            if instance.is_terminal:
                terminal_snapshot = instance.copy()

    @FUZZ_SETTINGS
    @given(text=st.text().filter(lambda s: "{{" not in s), data=_data)
    def test_interpolate_without_placeholders_is_identity(self, text, data):
        assert interpolate(text, data) == text
