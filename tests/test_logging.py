"""Structured JSON logging: formatter output, LogContext, configuration."""

import json
import logging
import threading
from io import StringIO
from uuid import uuid4

import pytest

from workflow_kernel.domain.instance import InstanceStatus
from workflow_kernel.exceptions import ConcurrentModificationError, GuardRejectedError
from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture
def stream():
    """Fresh kernel logging that writes into a StringIO; suite config restored after."""
    reset_logging()
    buffer = StringIO()
    configure_logging(stream=buffer)
    yield buffer
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _lines(stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


class TestStructuredFormatter:

    def test_envelope(self, stream):
        get_logger("engine").info("instance_started")

        [record] = _lines(stream)
        assert record["message"] == "instance_started"
        assert record["level"] == "INFO"
        assert record["logger"] == "workflow_kernel.engine"
        assert record["ts"].endswith("+00:00")

    def test_extra_and_context_are_top_level(self, stream):
        with LogContext.bind(workflow_id="expense_approval", instance_id="inst-1"):
            get_logger("engine").info(
                "workflow_transition", extra={"from_state": "draft", "revision": 3},
            )

        [record] = _lines(stream)
        assert record["workflow_id"] == "expense_approval"
        assert record["instance_id"] == "inst-1"
        assert record["from_state"] == "draft"
        assert record["revision"] == 3

    def test_extra_does_not_override_context(self, stream):
        with LogContext.bind(instance_id="bound"):
            get_logger("x").info("m", extra={"instance_id": "explicit"})
        assert _lines(stream)[0]["instance_id"] == "bound"

    def test_non_json_values(self, stream):
        task_id = uuid4()
        get_logger("x").info(
            "task_created",
            extra={"task_id": task_id, "status": InstanceStatus.RUNNING, "tags": {"b", "a"}},
        )

        [record] = _lines(stream)
        assert record["task_id"] == str(task_id)
        assert record["status"] == "running"
        assert record["tags"] == ["a", "b"]

    def test_plain_exception(self, stream):
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("x").exception("failed")

        [record] = _lines(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record
        assert "Traceback" in record["traceback"]

    def test_kernel_exception_attributes(self, stream):
        try:
            raise GuardRejectedError("inst-1", "approve", "canApprove")
        except GuardRejectedError:
            get_logger("x").warning("transition_rejected", exc_info=True)

        [record] = _lines(stream)
        assert record["exc_code"] == "GUARD_REJECTED"
        assert record["exc_transition"] == "approve"
        assert record["exc_guard"] == "canApprove"

    def test_concurrency_error_revisions(self, stream):
        try:
            raise ConcurrentModificationError("WorkflowInstance", "i", 2, 3)
        except ConcurrentModificationError:
            get_logger("x").error("update_conflict", exc_info=True)

        record = _lines(stream)[0]
        assert record["exc_expected_revision"] == 2
        assert record["exc_actual_revision"] == 3

    def test_level_threshold(self, stream):
        log = get_logger("x")
        log.debug("hidden")
        log.info("shown")
        assert [r["message"] for r in _lines(stream)] == ["shown"]

    def test_formatter_standalone(self):
        record = logging.LogRecord("workflow_kernel.t", logging.INFO, __file__, 1, "hi %s", ("there",), None)
        assert json.loads(StructuredFormatter().format(record))["message"] == "hi there"


class TestLogContext:

    def test_set_merges(self):
        LogContext.set(correlation_id="c")
        LogContext.set(workflow_id="w", actor_id=None)
        assert LogContext.get_all() == {"correlation_id": "c", "workflow_id": "w"}

    def test_values_are_stringified(self):
        instance_id = uuid4()
        LogContext.set(instance_id=instance_id)
        assert LogContext.get_all() == {"instance_id": str(instance_id)}

    def test_bind_restores_previous_values(self):
        LogContext.set(instance_id="outer")
        with LogContext.bind(instance_id="inner", actor_id="bob") as ctx:
            assert ctx.get_all() == {"instance_id": "inner", "actor_id": "bob"}
        assert LogContext.get_all() == {"instance_id": "outer"}

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(workflow_id="wf"):
                raise RuntimeError
        assert LogContext.get_all() == {}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError, match="colour"):
            LogContext.set(colour="red")

    def test_clear(self):
        LogContext.set(trace_id="t")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_threads_do_not_share_context(self):
        LogContext.set(actor_id="main")

        def worker():
            LogContext.set(actor_id="worker")

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert LogContext.get_all() == {"actor_id": "main"}


class TestConfigureLogging:

    def test_second_call_is_noop(self, stream):
        other = StringIO()
        configure_logging(stream=other, level=logging.DEBUG)

        get_logger("x").debug("still filtered")
        get_logger("x").info("kept")

        kernel = logging.getLogger("workflow_kernel")
        assert len(kernel.handlers) == 1
        assert other.getvalue() == ""
        assert [r["message"] for r in _lines(stream)] == ["kept"]

    def test_custom_handler_gets_formatter(self):
        reset_logging()
        buffer = StringIO()
        try:
            configure_logging(handler=logging.StreamHandler(buffer), level=logging.DEBUG)
            get_logger("deep.nested").debug("hierarchy")
            assert _lines(buffer)[0]["logger"] == "workflow_kernel.deep.nested"
        finally:
            reset_logging()
            configure_logging(level=logging.DEBUG)

    def test_reset_removes_handlers(self, stream):
        reset_logging()
        kernel = logging.getLogger("workflow_kernel")
        assert kernel.handlers == []
        assert kernel.propagate is True
