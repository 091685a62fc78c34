"""
Pytest fixtures for the workflow kernel test suite.

Provides:
- Structured-log capture (``captured_logs``)
- A deterministic clock
- In-memory and SQLite-backed storage adapters
- Sample definitions (approval, onboarding)
"""

import json
import logging
from io import StringIO

import pytest

from workflow_config.loader import parse_workflow_yaml
from workflow_engines.registry import default_registry
from workflow_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from workflow_kernel.domain.clock import DeterministicClock
from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from workflow_kernel.services.sql_storage import SqlWorkflowStorage
from workflow_kernel.services.storage import InMemoryWorkflowStorage
from workflow_services.engine import WorkflowEngine
from workflow_services.event_bus import EventBus
from workflow_services.workflow_service import WorkflowService


APPROVAL_YAML = """
name: Expense Approval
id: expense_approval
version: "1.0.0"
type: approval
triggers:
  - event: data.create
    object: expense
states:
  draft:
    initial: true
    transitions:
      submit:
        target: pending_approval
        guards: [canSubmit]
  pending_approval:
    on_enter:
      - type: log
        params:
          message: "Expense {{title}} awaiting approval"
    transitions:
      approve: approved
      reject: rejected
  approved:
    final: true
  rejected:
    final: true
"""

ONBOARDING_YAML = """
name: Employee Onboarding
id: onboarding
states:
  start:
    initial: true
    on_enter:
      - type: log
        params:
          message: "Sending email to {{email}}: Welcome"
    transitions:
      finish: done
  done:
    final: true
"""


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture workflow_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.start_workflow("onboarding", {"email": "a@b.c"})
            logs = captured_logs()
            assert any(r["message"] == "workflow_transition" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("workflow_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def registry():
    """Standard library plus a ``canSubmit`` guard driven by ``data.can_submit``."""
    reg = default_registry()
    reg.register_guard(
        "canSubmit",
        lambda ctx, params: ctx.get_data("can_submit") is not False,
    )
    return reg


@pytest.fixture
def engine(registry, deterministic_clock):
    eng = WorkflowEngine(registry=registry, clock=deterministic_clock)
    yield eng
    eng.shutdown()


@pytest.fixture
def approval_yaml():
    return APPROVAL_YAML


@pytest.fixture
def onboarding_yaml():
    return ONBOARDING_YAML


@pytest.fixture
def approval_definition():
    return parse_workflow_yaml(APPROVAL_YAML)


@pytest.fixture
def onboarding_definition():
    return parse_workflow_yaml(ONBOARDING_YAML)


@pytest.fixture
def memory_storage():
    return InMemoryWorkflowStorage()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def published(bus):
    """Every event published on ``bus``, in order."""
    events = []
    bus.subscribe("*", events.append)
    return events


@pytest.fixture
def service(memory_storage, engine, deterministic_clock, bus):
    return WorkflowService(memory_storage, engine=engine, clock=deterministic_clock, bus=bus)


# =============================================================================
# SQLite-backed storage
# =============================================================================


@pytest.fixture
def sql_session():
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    session = get_session()
    yield session
    session.rollback()
    session.close()
    drop_tables()
    reset_engine()


@pytest.fixture
def sql_storage(sql_session, deterministic_clock):
    return SqlWorkflowStorage(sql_session, clock=deterministic_clock)
