import threading

import pytest

from workflow_engines.registry import (
    ActionHandler,
    FunctionAction,
    GuardHandler,
    HandlerRegistry,
    default_registry,
)
from workflow_kernel.exceptions import (
    DuplicateHandlerError,
    UnknownActionTypeError,
    UnknownGuardTypeError,
)


class _Recorder:
    def __init__(self):
        self.calls = []

    def invoke(self, ctx, params):
        self.calls.append(dict(params))


def test_register_and_resolve_handler_object():
    registry = HandlerRegistry()
    recorder = _Recorder()
    registry.register_action("record", recorder)

    assert registry.get_action("record") is recorder
    assert isinstance(recorder, ActionHandler)


def test_plain_callables_are_wrapped():
    registry = HandlerRegistry()
    registry.register_guard("yes", lambda ctx, params: 1)
    registry.register_action("noop", lambda ctx, params: None)

    guard = registry.get_guard("yes")
    assert isinstance(guard, GuardHandler)
    assert guard.evaluate(None, {}) is True
    assert isinstance(registry.get_action("noop"), FunctionAction)


def test_decorator_registration():
    registry = HandlerRegistry()

    @registry.guard("is_big")
    def is_big(ctx, params):
        return params["n"] > 10

    assert registry.get_guard("is_big").evaluate(None, {"n": 11}) is True
    assert is_big(None, {"n": 1}) is False


def test_duplicate_name_rejected_unless_replace():
    registry = HandlerRegistry()
    registry.register_action("a", lambda ctx, params: None)
    with pytest.raises(DuplicateHandlerError) as exc_info:
        registry.register_action("a", lambda ctx, params: None)
    assert exc_info.value.code == "DUPLICATE_HANDLER"

    replacement = _Recorder()
    registry.register_action("a", replacement, replace=True)
    assert registry.get_action("a") is replacement


def test_unknown_names_carry_available_handlers():
    registry = HandlerRegistry()
    registry.register_action("b", lambda ctx, params: None)
    registry.register_action("a", lambda ctx, params: None)

    with pytest.raises(UnknownActionTypeError) as exc_info:
        registry.get_action("missing")
    assert exc_info.value.available == ("a", "b")

    with pytest.raises(UnknownGuardTypeError):
        registry.get_guard("missing")


def test_non_callable_rejected():
    with pytest.raises(TypeError):
        HandlerRegistry().register_action("bad", 42)


def test_default_registry_is_fresh_each_time():
    first = default_registry()
    first.register_action("custom", lambda ctx, params: None)
    assert not default_registry().has_action("custom")


def test_default_registry_contents():
    registry = default_registry()
    for name in ("log", "sendEmail", "send_email", "updateRecord", "update_record",
                 "webhook", "assign_task"):
        assert registry.has_action(name)
    for name in ("fieldEquals", "greaterThan", "always", "never"):
        assert registry.has_guard(name)


def test_concurrent_registration_keeps_every_handler():
    registry = HandlerRegistry()

    def register(i):
        registry.register_action(f"action_{i}", lambda ctx, params: None)

    threads = [threading.Thread(target=register, args=(i,)) for i in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(registry.list_actions()) == 50
