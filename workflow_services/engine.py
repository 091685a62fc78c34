"""
workflow_services.engine -- Instance runtime.

Responsibility:
    Creates, starts, advances and aborts ``WorkflowInstance`` objects
    against a ``WorkflowDefinition``: evaluates guards, runs actions through
    the ``HandlerRegistry``, records history, and moves the lifecycle
    status.  Never touches storage; the caller persists what it returns.

Architecture position:
    Services layer.  May import from workflow_engines/ (registry, context)
    and workflow_kernel/ (domain, exceptions, logging).

Invariants enforced:
    - Terminal instances (completed/failed/aborted) accept no operation:
      ``InstanceTerminatedError`` and the instance is left as it was.
    - A rejected guard on an explicit transition raises
      ``GuardRejectedError`` and changes nothing; on ``advance`` it simply
      means "stay put".  Guards see a copy of the instance, so they cannot
      mutate it.
    - An unknown guard raises ``UnknownGuardTypeError`` before any action
      runs; the instance is untouched and not failed.
    - Transitions are all-or-nothing.  If any action fails (raises, times
      out, or names an unknown type) ``current_state``, ``data`` and
      ``history`` are restored to their pre-transition values, the
      instance is marked failed with the error recorded, a failure history
      entry is appended, spawned tasks are discarded, and the error is
      re-raised.
    - Order within a transition: source ``on_exit`` -> transition
      ``actions`` -> move state + history entry -> target ``on_enter`` ->
      completed if the target is final.

Concurrency:
    Synchronous per instance; the caller serializes operations on one
    instance id.  Actions with a timeout run on an engine-owned thread
    pool so the wait can be bounded; the timed-out action's context is
    closed so it can no longer write into the instance.
"""

from __future__ import annotations

import contextvars
import copy
import time
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any
from uuid import UUID, uuid4

from workflow_engines.context import ExecutionContext
from workflow_engines.registry import HandlerRegistry, default_registry
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.instance import (
    ABORT_TRANSITION,
    HistoryEntry,
    InstanceStatus,
    WorkflowInstance,
)
from workflow_kernel.domain.task import WorkflowTask
from workflow_kernel.domain.workflow import (
    ActionInvocation,
    TransitionSpec,
    WorkflowDefinition,
)
from workflow_kernel.exceptions import (
    ActionExecutionError,
    ActionTimeoutError,
    GuardRejectedError,
    InstanceTerminatedError,
    InvalidDefinitionError,
    InvalidInstanceStateError,
    TransitionNotFoundError,
    UnknownActionTypeError,
    UnknownGuardTypeError,
    WorkflowKernelError,
)
from workflow_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.engine")
action_logger = get_logger("engine.actions")

START_TRANSITION = "start"

TRACE_TYPE_WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"
OUTCOME_STARTED = "started"
OUTCOME_SUCCESS = "success"
OUTCOME_COMPLETED = "completed"
OUTCOME_GUARD_REJECTED = "guard_rejected"
OUTCOME_UNKNOWN_GUARD = "unknown_guard"
OUTCOME_NO_TRANSITION = "no_transition"
OUTCOME_ACTION_FAILED = "action_failed"
OUTCOME_ABORTED = "aborted"

OutcomeSink = Callable[[dict], None]

ACTION_FAILURES = (ActionExecutionError, UnknownActionTypeError)


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one successful engine operation.

    ``instance`` is the (mutated) instance passed in; ``spawned_tasks``
    are the tasks actions created during the operation, not yet persisted.
    """

    instance: WorkflowInstance
    outcome: str
    transition: str | None = None
    from_state: str | None = None
    to_state: str | None = None
    spawned_tasks: tuple[WorkflowTask, ...] = ()

    @property
    def completed(self) -> bool:
        return self.instance.status == InstanceStatus.COMPLETED


def _emit_workflow_trace(
    definition_id: str,
    version: str,
    instance_id: UUID,
    transition: str | None,
    from_state: str,
    outcome: str,
    duration_ms: float,
    to_state: str | None = None,
    reason: str | None = None,
    outcome_sink: OutcomeSink | None = None,
) -> None:
    """Emit a structured workflow transition record for traceability."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_WORKFLOW_TRANSITION,
        "workflow": definition_id,
        "version": version,
        "instance_id": str(instance_id),
        "transition": transition,
        "from_state": from_state,
        "outcome": outcome,
        "duration_ms": round(duration_ms, 3),
    }
    if to_state is not None:
        record["to_state"] = to_state
    if reason is not None:
        record["reason"] = reason
    for key, value in LogContext.get_all().items():
        record.setdefault(key, value)
    logger.info("workflow_transition", extra=record)
    if outcome_sink is not None:
        outcome_sink({**record, "message": "workflow_transition"})


def _ensure_bound(instance: WorkflowInstance, definition: WorkflowDefinition) -> None:
    if instance.workflow_id != definition.id or instance.version != definition.version:
        raise ValueError(
            f"Instance {instance.id} is bound to {instance.workflow_id} v{instance.version}, "
            f"not {definition.id} v{definition.version}"
        )


def _ensure_not_terminated(instance: WorkflowInstance) -> None:
    if instance.is_terminal:
        raise InstanceTerminatedError(str(instance.id), instance.status.value)


class WorkflowEngine:
    """Runs workflow instances against their definitions."""

    def __init__(
        self,
        registry: HandlerRegistry | None = None,
        clock: Clock | None = None,
        action_timeout: float | None = None,
        max_action_workers: int = 8,
    ) -> None:
        self._registry = registry or default_registry()
        self._clock = clock or SystemClock()
        self._action_timeout = action_timeout
        self._max_action_workers = max_action_workers
        self._pool: ThreadPoolExecutor | None = None

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    def shutdown(self) -> None:
        """Release the action thread pool (abandoned timed-out actions are not waited for)."""
        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)
            self._pool = None

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def create_instance(
        self,
        definition: WorkflowDefinition,
        data: Mapping[str, Any] | None = None,
        started_by: str | None = None,
        instance_id: UUID | None = None,
    ) -> WorkflowInstance:
        """Allocate an instance in ``created`` status at the initial state."""
        if definition.initial_state not in definition.states:
            raise InvalidDefinitionError(
                definition.id,
                [f'Initial state "{definition.initial_state}" does not exist'],
            )
        return WorkflowInstance(
            id=instance_id or uuid4(),
            workflow_id=definition.id,
            version=definition.version,
            current_state=definition.initial_state,
            created_at=self._clock.now(),
            data=copy.deepcopy(dict(data or {})),
            started_by=started_by,
        )

    def start_instance(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        outcome_sink: OutcomeSink | None = None,
    ) -> ExecutionResult:
        """
        ``created -> running`` and run the initial state's ``on_enter``.

        An initial state that is also final completes the instance.  If an
        action fails the instance is marked failed (``started_at`` stays
        set) and the error is re-raised.
        """
        t0 = time.monotonic()
        _ensure_bound(instance, definition)
        _ensure_not_terminated(instance)
        if instance.status != InstanceStatus.CREATED:
            raise InvalidInstanceStateError(str(instance.id), instance.status.value, "start")

        state = definition.state(instance.current_state)
        snapshot = self._snapshot(instance)
        tasks: list[WorkflowTask] = []

        instance.mark_running(self._clock.now())
        try:
            self._run_actions(
                state.on_enter, instance, definition, state.name, START_TRANSITION,
                instance.started_by, None, tasks,
            )
        except ACTION_FAILURES as exc:
            self._fail(instance, snapshot, exc, START_TRANSITION, instance.started_by)
            _emit_workflow_trace(
                definition.id, definition.version, instance.id, START_TRANSITION,
                state.name, OUTCOME_ACTION_FAILED, (time.monotonic() - t0) * 1000,
                reason=str(exc), outcome_sink=outcome_sink,
            )
            raise

        outcome = OUTCOME_STARTED
        if state.final:
            instance.mark_completed(self._clock.now(), instance.started_by)
            outcome = OUTCOME_COMPLETED

        _emit_workflow_trace(
            definition.id, definition.version, instance.id, START_TRANSITION,
            state.name, outcome, (time.monotonic() - t0) * 1000,
            to_state=state.name, outcome_sink=outcome_sink,
        )
        return ExecutionResult(
            instance=instance,
            outcome=outcome,
            transition=START_TRANSITION,
            to_state=state.name,
            spawned_tasks=tuple(tasks),
        )

    def fire_transition(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        transition_name: str,
        triggered_by: str | None = None,
        data: Mapping[str, Any] | None = None,
        outcome_sink: OutcomeSink | None = None,
    ) -> ExecutionResult:
        """
        Fire a named transition from the current state.

        Raises:
            InstanceTerminatedError: instance is completed/failed/aborted.
            InvalidInstanceStateError: instance has not been started.
            TransitionNotFoundError: no such transition on the current state.
            UnknownGuardTypeError: a guard name is not registered.
            GuardRejectedError: a guard returned False.
            ActionExecutionError / ActionTimeoutError / UnknownActionTypeError:
                an action failed; the instance is now failed.
        """
        t0 = time.monotonic()
        _ensure_bound(instance, definition)
        _ensure_not_terminated(instance)
        if instance.status != InstanceStatus.RUNNING:
            raise InvalidInstanceStateError(
                str(instance.id), instance.status.value, "fire transition on",
            )

        state = definition.state(instance.current_state)
        spec = state.transitions.get(transition_name)
        if spec is None:
            _emit_workflow_trace(
                definition.id, definition.version, instance.id, transition_name,
                state.name, OUTCOME_NO_TRANSITION, (time.monotonic() - t0) * 1000,
                reason=f"No transition '{transition_name}' from '{state.name}'",
                outcome_sink=outcome_sink,
            )
            raise TransitionNotFoundError(str(instance.id), state.name, transition_name)

        rejected_by = self._rejecting_guard(
            instance, definition, transition_name, spec, t0, outcome_sink,
        )
        if rejected_by is not None:
            _emit_workflow_trace(
                definition.id, definition.version, instance.id, transition_name,
                state.name, OUTCOME_GUARD_REJECTED, (time.monotonic() - t0) * 1000,
                reason=f"Guard not satisfied: {rejected_by}", outcome_sink=outcome_sink,
            )
            raise GuardRejectedError(str(instance.id), transition_name, rejected_by)

        return self._apply(
            instance, definition, transition_name, spec, triggered_by,
            dict(data) if data is not None else None, t0, outcome_sink,
        )

    def advance(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        triggered_by: str | None = None,
        outcome_sink: OutcomeSink | None = None,
    ) -> ExecutionResult | None:
        """
        Implicit transition: fire the first declared transition of the
        current state whose guards all pass.

        Returns None (instance untouched) when no transition passes.
        """
        t0 = time.monotonic()
        _ensure_bound(instance, definition)
        _ensure_not_terminated(instance)
        if instance.status != InstanceStatus.RUNNING:
            raise InvalidInstanceStateError(str(instance.id), instance.status.value, "advance")

        state = definition.state(instance.current_state)
        for transition_name, spec in state.transitions.items():
            if self._rejecting_guard(
                instance, definition, transition_name, spec, t0, outcome_sink,
            ) is None:
                return self._apply(
                    instance, definition, transition_name, spec, triggered_by,
                    None, t0, outcome_sink,
                )

        _emit_workflow_trace(
            definition.id, definition.version, instance.id, None,
            state.name, OUTCOME_NO_TRANSITION, (time.monotonic() - t0) * 1000,
            reason="No transition passed its guards", outcome_sink=outcome_sink,
        )
        return None

    def abort_instance(
        self,
        instance: WorkflowInstance,
        reason: str | None = None,
        aborted_by: str | None = None,
        outcome_sink: OutcomeSink | None = None,
    ) -> ExecutionResult:
        """
        Abort a created or running instance.

        No state's ``on_exit`` runs.  A synthetic ``abort`` history entry
        (``from_state == to_state``) records the reason.
        """
        t0 = time.monotonic()
        _ensure_not_terminated(instance)
        now = self._clock.now()
        instance.mark_aborted(now, aborted_by)
        instance.append_history(
            HistoryEntry(
                from_state=instance.current_state,
                to_state=instance.current_state,
                transition=ABORT_TRANSITION,
                timestamp=now,
                triggered_by=aborted_by,
                data={"reason": reason},
            )
        )
        _emit_workflow_trace(
            instance.workflow_id, instance.version, instance.id, ABORT_TRANSITION,
            instance.current_state, OUTCOME_ABORTED, (time.monotonic() - t0) * 1000,
            reason=reason, outcome_sink=outcome_sink,
        )
        return ExecutionResult(
            instance=instance,
            outcome=OUTCOME_ABORTED,
            transition=ABORT_TRANSITION,
            from_state=instance.current_state,
            to_state=instance.current_state,
        )

    # ------------------------------------------------------------------
    # Queries (never raise for lifecycle reasons)
    # ------------------------------------------------------------------

    def get_available_transitions(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        evaluate_guards: bool = False,
    ) -> list[str]:
        """Transition names declared on the current state, in declared order.

        Empty unless the instance is running.  With ``evaluate_guards`` only
        transitions whose guards currently pass are listed.
        """
        if instance.status != InstanceStatus.RUNNING:
            return []
        state = definition.states.get(instance.current_state)
        if state is None:
            return []
        if not evaluate_guards:
            return list(state.transitions)
        return [
            name for name in state.transitions
            if self.can_execute_transition(instance, definition, name)
        ]

    def can_execute_transition(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        transition_name: str,
    ) -> bool:
        """True if ``fire_transition`` would pass its guards right now."""
        if instance.status != InstanceStatus.RUNNING:
            return False
        state = definition.states.get(instance.current_state)
        if state is None or transition_name not in state.transitions:
            return False
        try:
            return self._rejecting_guard(
                instance, definition, transition_name, state.transitions[transition_name],
            ) is None
        except UnknownGuardTypeError:
            logger.warning(
                "guard_not_registered",
                extra={"transition": transition_name, "instance_id": str(instance.id)},
            )
            return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        transition_name: str,
        spec: TransitionSpec,
        triggered_by: str | None,
        transition_data: dict[str, Any] | None,
        t0: float,
        outcome_sink: OutcomeSink | None,
    ) -> ExecutionResult:
        source = definition.state(instance.current_state)
        target = definition.state(spec.target)
        snapshot = self._snapshot(instance)
        tasks: list[WorkflowTask] = []

        try:
            self._run_actions(
                source.on_exit, instance, definition, source.name, transition_name,
                triggered_by, transition_data, tasks,
            )
            self._run_actions(
                spec.actions, instance, definition, source.name, transition_name,
                triggered_by, transition_data, tasks,
            )
            instance.current_state = target.name
            instance.append_history(
                HistoryEntry(
                    from_state=source.name,
                    to_state=target.name,
                    transition=transition_name,
                    timestamp=self._clock.now(),
                    triggered_by=triggered_by,
                    data=transition_data,
                )
            )
            self._run_actions(
                target.on_enter, instance, definition, target.name, transition_name,
                triggered_by, transition_data, tasks,
            )
        except ACTION_FAILURES as exc:
            self._fail(instance, snapshot, exc, transition_name, triggered_by)
            _emit_workflow_trace(
                definition.id, definition.version, instance.id, transition_name,
                source.name, OUTCOME_ACTION_FAILED, (time.monotonic() - t0) * 1000,
                to_state=target.name, reason=str(exc), outcome_sink=outcome_sink,
            )
            raise

        outcome = OUTCOME_SUCCESS
        if target.final:
            instance.mark_completed(self._clock.now(), triggered_by)
            outcome = OUTCOME_COMPLETED

        _emit_workflow_trace(
            definition.id, definition.version, instance.id, transition_name,
            source.name, outcome, (time.monotonic() - t0) * 1000,
            to_state=target.name, outcome_sink=outcome_sink,
        )
        return ExecutionResult(
            instance=instance,
            outcome=outcome,
            transition=transition_name,
            from_state=source.name,
            to_state=target.name,
            spawned_tasks=tuple(tasks),
        )

    def _rejecting_guard(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        transition_name: str,
        spec: TransitionSpec,
        t0: float | None = None,
        outcome_sink: OutcomeSink | None = None,
    ) -> str | None:
        """Name of the first guard that rejects, or None if all pass.

        Every guard name is resolved before any is evaluated.  A guard that
        raises counts as a rejection.
        """
        try:
            handlers = [(g, self._registry.get_guard(g.type)) for g in spec.guards]
        except UnknownGuardTypeError as exc:
            if t0 is not None:
                _emit_workflow_trace(
                    definition.id, definition.version, instance.id, transition_name,
                    instance.current_state, OUTCOME_UNKNOWN_GUARD,
                    (time.monotonic() - t0) * 1000, reason=str(exc),
                    outcome_sink=outcome_sink,
                )
            raise

        if not handlers:
            return None

        ctx = ExecutionContext(
            instance=instance.copy(),
            definition=definition,
            state=instance.current_state,
            clock=self._clock,
            logger=action_logger,
            transition=transition_name,
        )
        for guard, handler in handlers:
            try:
                passed = bool(handler.evaluate(ctx, guard.params))
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "guard_evaluation_error",
                    extra={"guard_name": guard.type, "error": str(exc)},
                )
                passed = False
            if not passed:
                return guard.type
        return None

    def _run_actions(
        self,
        actions: tuple[ActionInvocation, ...],
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        state_name: str,
        transition_name: str | None,
        triggered_by: str | None,
        transition_data: dict[str, Any] | None,
        tasks: list[WorkflowTask],
    ) -> None:
        for action in actions:
            ctx = ExecutionContext(
                instance=instance,
                definition=definition,
                state=state_name,
                clock=self._clock,
                logger=action_logger,
                transition=transition_name,
                triggered_by=triggered_by,
                transition_data=transition_data,
                spawned_tasks=tasks,
            )
            self._invoke_action(action, ctx)

    def _invoke_action(self, action: ActionInvocation, ctx: ExecutionContext) -> None:
        handler = self._registry.get_action(action.type)
        timeout = action.timeout if action.timeout is not None else self._action_timeout
        instance_id = str(ctx.instance.id)
        try:
            if timeout is None:
                handler.invoke(ctx, action.params)
                return
            future = self._action_pool().submit(
                contextvars.copy_context().run, handler.invoke, ctx, action.params,
            )
            try:
                future.result(timeout=timeout)
            except FuturesTimeoutError:
                if future.done():
                    raise
                ctx.close()
                future.cancel()
                raise ActionTimeoutError(action.type, instance_id, timeout) from None
        except ActionExecutionError:
            raise
        except Exception as exc:
            raise ActionExecutionError(action.type, instance_id, exc) from exc

    def _action_pool(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self._max_action_workers,
                thread_name_prefix="workflow-action",
            )
        return self._pool

    @staticmethod
    def _snapshot(instance: WorkflowInstance) -> tuple[str, dict[str, Any], int]:
        return instance.current_state, copy.deepcopy(instance.data), len(instance.history)

    def _fail(
        self,
        instance: WorkflowInstance,
        snapshot: tuple[str, dict[str, Any], int],
        exc: WorkflowKernelError,
        transition_name: str,
        triggered_by: str | None,
    ) -> None:
        state, data, history_len = snapshot
        instance.current_state = state
        instance.data = data
        del instance.history[history_len:]

        now = self._clock.now()
        instance.mark_failed(
            now,
            {
                "code": exc.code,
                "message": str(exc),
                "action": getattr(exc, "action_type", None),
                "transition": transition_name,
            },
        )
        instance.append_history(
            HistoryEntry(
                from_state=state,
                to_state=state,
                transition=transition_name,
                timestamp=now,
                triggered_by=triggered_by,
                error=str(exc),
            )
        )
        logger.error(
            "workflow_action_failed",
            extra={
                "instance_id": str(instance.id),
                "transition": transition_name,
                "error_code": exc.code,
                "error": str(exc),
            },
        )
