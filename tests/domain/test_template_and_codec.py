"""Template interpolation and the canonical definition codec."""

import json
from decimal import Decimal

import pytest

from workflow_kernel.domain.codec import (
    definition_fingerprint,
    definition_from_dict,
    definition_to_dict,
)
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
from workflow_kernel.services.storage import definition_checksum
from workflow_kernel.utils.hashing import canonicalize_json, hash_payload


class TestInterpolate:

    def test_simple_placeholder(self):
        assert (
            interpolate("Sending email to {{email}}: Welcome", {"email": "test@example.com"})
            == "Sending email to test@example.com: Welcome"
        )

    def test_whitespace_and_dotted_path(self):
        data = {"customer": {"name": "Ada"}}
        assert interpolate("Hi {{ customer.name }}", data) == "Hi Ada"

    def test_unresolved_placeholder_left_untouched(self):
        assert interpolate("Hi {{missing}}", {}) == "Hi {{missing}}"

    def test_non_string_values_are_stringified(self):
        assert interpolate("{{n}} items, ok={{flag}}", {"n": 3, "flag": True}) == "3 items, ok=True"

    def test_callable_lookup_none_counts_as_unresolved(self):
        lookup = {"a": "x"}.get
        assert interpolate("{{a}}/{{b}}", lookup) == "x/{{b}}"

    def test_falsy_values_still_substituted(self):
        assert interpolate("[{{zero}}][{{empty}}]", {"zero": 0, "empty": ""}) == "[0][]"


def _definition() -> WorkflowDefinition:
    return WorkflowDefinition(
        id="expense",
        name="Expense",
        version="2.1.0",
        initial_state="draft",
        type=WorkflowType.APPROVAL,
        description="Expense approval",
        triggers=(WorkflowTrigger(event="data.create", object="expense"),),
        metadata={"owner": "finance"},
        states={
            "draft": WorkflowState(
                name="draft",
                initial=True,
                on_exit=(ActionInvocation(type="log", params={"message": "bye"}),),
                transitions={
                    "submit": TransitionSpec(
                        target="done",
                        guards=(GuardInvocation(type="greaterThan", params={"field": "amount", "value": 0}),),
                        actions=(ActionInvocation(type="webhook", params={"url": "http://x"}, timeout=2.5),),
                        metadata={"button": "Submit"},
                    ),
                    "cancel": TransitionSpec(target="done"),
                },
            ),
            "done": WorkflowState(name="done", final=True, metadata={"color": "green"}),
        },
    )


class TestDefinitionCodec:

    def test_round_trip_is_lossless(self):
        definition = _definition()
        assert definition_from_dict(definition_to_dict(definition)) == definition

    def test_document_is_json_safe(self):
        document = definition_to_dict(_definition())
        assert json.loads(json.dumps(document)) == document

    def test_round_trip_keeps_declaration_order(self):
        restored = definition_from_dict(definition_to_dict(_definition()))
        assert list(restored.states) == ["draft", "done"]
        assert list(restored.states["draft"].transitions) == ["submit", "cancel"]

    def test_fingerprint_captures_transition_order(self):
        definition = _definition()
        draft = definition.states["draft"]
        reordered_draft = WorkflowState(
            name="draft",
            initial=True,
            on_exit=draft.on_exit,
            transitions={
                "cancel": draft.transitions["cancel"],
                "submit": draft.transitions["submit"],
            },
        )
        reordered = WorkflowDefinition(
            id=definition.id,
            name=definition.name,
            version=definition.version,
            initial_state="draft",
            type=definition.type,
            description=definition.description,
            triggers=definition.triggers,
            metadata=definition.metadata,
            states={"draft": reordered_draft, "done": definition.states["done"]},
        )
        assert definition_fingerprint(reordered) != definition_fingerprint(definition)


class TestHashing:

    def test_key_order_does_not_matter(self):
        assert hash_payload({"a": 1, "b": [1, 2]}) == hash_payload({"b": [1, 2], "a": 1})

    def test_list_order_matters(self):
        assert hash_payload({"a": [1, 2]}) != hash_payload({"a": [2, 1]})

    def test_decimal_normalized(self):
        assert hash_payload({"v": Decimal("1.50")}) == hash_payload({"v": Decimal("1.5")})

    def test_canonical_form(self):
        assert canonicalize_json({"b": WorkflowType.APPROVAL, "a": None}) == '{"a":null,"b":"approval"}'

    def test_unsupported_type_rejected(self):
        with pytest.raises(TypeError):
            hash_payload({"x": object()})

    def test_checksum_is_stable_and_content_sensitive(self):
        definition = _definition()
        assert definition_checksum(definition) == definition_checksum(_definition())
        assert len(definition_checksum(definition)) == 64
        renamed = definition_from_dict({**definition_to_dict(definition), "name": "Other"})
        assert definition_checksum(renamed) != definition_checksum(definition)
