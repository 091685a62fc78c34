"""SQLAlchemy adapter specifics: conditional UPDATE, transactions, service wiring."""

from uuid import uuid4

import pytest
from sqlalchemy import select

from workflow_kernel.db.engine import get_session, session_scope
from workflow_kernel.domain.instance import InstanceStatus, WorkflowInstance
from workflow_kernel.domain.workflow import (
    ActionInvocation,
    TransitionSpec,
    WorkflowDefinition,
    WorkflowState,
)
from workflow_kernel.exceptions import (
    ActionExecutionError,
    ConcurrentModificationError,
    InstanceNotFoundError,
)
from workflow_kernel.models.instance import WorkflowInstanceModel
from workflow_kernel.services.sql_storage import SqlWorkflowStorage
from workflow_services.workflow_service import WorkflowService


def _instance(clock) -> WorkflowInstance:
    return WorkflowInstance(
        id=uuid4(),
        workflow_id="wf",
        version="1",
        current_state="draft",
        created_at=clock.now(),
    )


def test_conditional_update_catches_interleaved_writer(sql_storage, deterministic_clock, monkeypatch):
    instance = _instance(deterministic_clock)
    sql_storage.save_instance(instance)
    stale = sql_storage.get_instance(instance.id)
    sql_storage.update_instance(instance.id, {"data": {"winner": True}}, 0)

    real_get = sql_storage.get_instance
    reads = iter([stale])
    monkeypatch.setattr(
        sql_storage, "get_instance", lambda iid: next(reads, None) or real_get(iid),
    )

    with pytest.raises(ConcurrentModificationError) as exc_info:
        sql_storage.update_instance(instance.id, {"data": {"loser": True}}, 0)

    assert exc_info.value.actual_revision == 1
    assert real_get(instance.id).data == {"winner": True}


def test_adapter_flushes_but_never_commits(sql_session, deterministic_clock):
    storage = SqlWorkflowStorage(sql_session, clock=deterministic_clock)
    instance = _instance(deterministic_clock)
    storage.save_instance(instance)

    sql_session.rollback()

    assert storage.get_instance(instance.id) is None


def test_session_scope_commits(sql_session, deterministic_clock):
    instance = _instance(deterministic_clock)
    with session_scope() as session:
        SqlWorkflowStorage(session, clock=deterministic_clock).save_instance(instance)

    other = get_session()
    try:
        row = other.execute(
            select(WorkflowInstanceModel).where(WorkflowInstanceModel.id == instance.id)
        ).scalar_one()
        assert row.current_state == "draft"
        assert row.revision == 0
    finally:
        other.close()


def test_session_scope_rolls_back_on_error(sql_session, deterministic_clock):
    instance = _instance(deterministic_clock)
    with pytest.raises(RuntimeError):
        with session_scope() as session:
            SqlWorkflowStorage(session, clock=deterministic_clock).save_instance(instance)
            raise RuntimeError("abort unit of work")

    with get_session() as other:
        assert SqlWorkflowStorage(other).get_instance(instance.id) is None


def test_service_over_sql(sql_storage, engine, deterministic_clock, approval_definition):
    service = WorkflowService(sql_storage, engine=engine, clock=deterministic_clock)
    service.register_workflow(approval_definition)

    instance = service.start_workflow("expense_approval", {"title": "Taxi"}, started_by="alice")
    service.execute_transition(instance.id, "submit", triggered_by="alice")
    task = service.create_task(instance.id, "Approve", assigned_to="bob")
    service.complete_task(task.id, {"approved": True})
    done = service.execute_transition(instance.id, "approve", triggered_by="bob")

    assert done.status == InstanceStatus.COMPLETED
    assert done.revision == 3
    assert [h.transition for h in done.history] == ["submit", "approve"]
    assert service.get_workflow_status(instance.id) == done
    [stored_task] = service.get_instance_tasks(instance.id)
    assert stored_task.result == {"approved": True}


def test_failed_start_survives_scope_rollback(sql_session, engine, deterministic_clock):
    def boom(ctx, params):
        raise ZeroDivisionError("division by zero")

    engine.registry.register_action("boom", boom)
    definition = WorkflowDefinition(
        id="fails", name="fails", version="1", initial_state="a",
        states={
            "a": WorkflowState(
                name="a", initial=True, on_enter=(ActionInvocation(type="boom"),),
                transitions={"go": TransitionSpec(target="b")},
            ),
            "b": WorkflowState(name="b", final=True),
        },
    )

    with pytest.raises(ActionExecutionError):
        with session_scope() as session:
            service = WorkflowService(
                SqlWorkflowStorage(session, clock=deterministic_clock),
                engine=engine, clock=deterministic_clock,
            )
            service.register_workflow(definition)
            service.start_workflow("fails", started_by="alice")

    with session_scope() as session:
        service = WorkflowService(SqlWorkflowStorage(session), engine=engine)
        [stored] = service.query_workflows(workflow_id="fails")
        assert stored.status == InstanceStatus.FAILED
        assert stored.error["action"] == "boom"
        assert stored.started_by == "alice"


def test_failed_transition_survives_scope_rollback(sql_session, engine, deterministic_clock, approval_definition):
    def boom(ctx, params):
        raise RuntimeError("mail server down")

    engine.registry.register_action("log", boom, replace=True)
    with session_scope() as session:
        service = WorkflowService(SqlWorkflowStorage(session), engine=engine, clock=deterministic_clock)
        service.register_workflow(approval_definition)
        instance_id = service.start_workflow("expense_approval").id

    with pytest.raises(ActionExecutionError):
        with session_scope() as session:
            service = WorkflowService(SqlWorkflowStorage(session), engine=engine, clock=deterministic_clock)
            service.execute_transition(instance_id, "submit", triggered_by="alice")

    with session_scope() as session:
        stored = SqlWorkflowStorage(session).get_instance(instance_id)
        assert stored.status == InstanceStatus.FAILED
        assert stored.current_state == "draft"
        assert stored.revision == 2


def test_commit_makes_writes_durable(sql_session, deterministic_clock):
    storage = SqlWorkflowStorage(sql_session, clock=deterministic_clock)
    instance = _instance(deterministic_clock)
    storage.save_instance(instance)
    storage.commit()

    sql_session.rollback()

    assert storage.get_instance(instance.id) == instance


def test_update_reports_row_missing_after_write(sql_storage, deterministic_clock, monkeypatch):
    instance = _instance(deterministic_clock)
    sql_storage.save_instance(instance)

    real_get = sql_storage.get_instance
    reads = iter([real_get(instance.id)])
    monkeypatch.setattr(sql_storage, "get_instance", lambda iid: next(reads, None))

    with pytest.raises(InstanceNotFoundError):
        sql_storage.update_instance(instance.id, {"current_state": "b"})
