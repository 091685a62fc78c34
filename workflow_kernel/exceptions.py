"""
Typed Exception Hierarchy for the Workflow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the engine (API layer, trigger matcher, automation) must react
to failures precisely: a guard rejection means "ask again later", a
terminated instance means "stop", an action failure means "a human should
look".  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from WorkflowKernelError:

    WorkflowKernelError (base)
    |
    +-- DefinitionError
    |   +-- InvalidDefinitionError
    |   +-- DuplicateDefinitionError
    |   +-- DefinitionNotFoundError
    |
    +-- HandlerError
    |   +-- UnknownActionTypeError
    |   +-- UnknownGuardTypeError
    |   +-- DuplicateHandlerError
    |
    +-- TransitionError
    |   +-- GuardRejectedError
    |   +-- TransitionNotFoundError
    |
    +-- InstanceError
    |   +-- InstanceTerminatedError
    |   +-- InvalidInstanceStateError
    |   +-- InstanceNotFoundError
    |
    +-- ActionError
    |   +-- ActionExecutionError
    |       +-- ActionTimeoutError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- TaskError
        +-- TaskNotFoundError
        +-- InvalidTaskStateError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                     | When Raised
-------------|--------------------------|--------------------------------------------
Definition   | INVALID_DEFINITION       | Registration-time structural failure
             | DUPLICATE_DEFINITION     | Same id+version registered with new content
             | DEFINITION_NOT_FOUND     | No definition for id (and version)
-------------|--------------------------|--------------------------------------------
Handler      | UNKNOWN_ACTION_TYPE      | Action name not in the registry
             | UNKNOWN_GUARD_TYPE       | Guard name not in the registry
             | DUPLICATE_HANDLER        | Name already registered
-------------|--------------------------|--------------------------------------------
Transition   | GUARD_REJECTED           | Explicit transition blocked by a guard
             | TRANSITION_NOT_FOUND     | Transition not declared on current state
-------------|--------------------------|--------------------------------------------
Instance     | INSTANCE_TERMINATED      | Operation on completed/failed/aborted
             | INVALID_INSTANCE_STATE   | Operation not valid for current status
             | INSTANCE_NOT_FOUND       | Instance ID doesn't exist
-------------|--------------------------|--------------------------------------------
Action       | ACTION_EXECUTION_ERROR   | Action raised; instance marked failed
             | ACTION_TIMEOUT           | Action exceeded its time bound
-------------|--------------------------|--------------------------------------------
Concurrency  | CONCURRENT_MODIFICATION  | Revision mismatch on instance update
-------------|--------------------------|--------------------------------------------
Task         | TASK_NOT_FOUND           | Task ID doesn't exist
             | INVALID_TASK_STATE       | Task operation not valid for its status

===============================================================================
HANDLING PATTERNS
===============================================================================

1. GUARD REJECTION IS NOT A SYSTEM FAILURE:

    try:
        service.execute_transition(instance_id, "approve")
    except GuardRejectedError as e:
        return {"error": e.code, "guard": e.guard}

2. ACTION FAILURES ARE SURFACED, NEVER ABSORBED:

    except ActionExecutionError as e:
        # The instance is already persisted as failed.
        alert(e.instance_id, e.action_type, e.cause)

3. CONCURRENT MODIFICATION IS RETRYABLE:

    except ConcurrentModificationError:
        reload_and_retry()
"""


class WorkflowKernelError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses must have a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"


# Definition-related exceptions


class DefinitionError(WorkflowKernelError):
    """Base exception for definition errors."""

    code: str = "DEFINITION_ERROR"


class InvalidDefinitionError(DefinitionError):
    """Definition failed structural validation at registration time."""

    code: str = "INVALID_DEFINITION"

    def __init__(self, workflow_id: str, errors: list[str]):
        self.workflow_id = workflow_id
        self.errors = list(errors)
        super().__init__(
            f"Invalid workflow definition '{workflow_id}': " + "; ".join(self.errors)
        )


class DuplicateDefinitionError(DefinitionError):
    """A different definition is already registered under this id and version."""

    code: str = "DUPLICATE_DEFINITION"

    def __init__(self, workflow_id: str, version: str):
        self.workflow_id = workflow_id
        self.version = version
        super().__init__(
            f"Workflow '{workflow_id}' version {version} is already registered "
            "with different content; register a new version instead"
        )


class DefinitionNotFoundError(DefinitionError):
    """No definition registered for the given id (and version)."""

    code: str = "DEFINITION_NOT_FOUND"

    def __init__(self, workflow_id: str, version: str | None = None):
        self.workflow_id = workflow_id
        self.version = version
        suffix = f" v{version}" if version else ""
        super().__init__(f"Workflow definition not found: {workflow_id}{suffix}")


# Handler registry exceptions


class HandlerError(WorkflowKernelError):
    """Base exception for action/guard resolution errors."""

    code: str = "HANDLER_ERROR"


class UnknownActionTypeError(HandlerError):
    """Action type is not registered."""

    code: str = "UNKNOWN_ACTION_TYPE"

    def __init__(self, action_type: str, available: tuple[str, ...] = ()):
        self.action_type = action_type
        self.available = available
        super().__init__(
            f"Unknown action type '{action_type}'. Available: {list(available)}"
        )


class UnknownGuardTypeError(HandlerError):
    """Guard type is not registered."""

    code: str = "UNKNOWN_GUARD_TYPE"

    def __init__(self, guard_type: str, available: tuple[str, ...] = ()):
        self.guard_type = guard_type
        self.available = available
        super().__init__(
            f"Unknown guard type '{guard_type}'. Available: {list(available)}"
        )


class DuplicateHandlerError(HandlerError):
    """A handler with this name is already registered."""

    code: str = "DUPLICATE_HANDLER"

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"{kind.capitalize()} '{name}' is already registered")


# Transition exceptions


class TransitionError(WorkflowKernelError):
    """Base exception for transition errors."""

    code: str = "TRANSITION_ERROR"


class GuardRejectedError(TransitionError):
    """An explicitly requested transition was blocked by a guard."""

    code: str = "GUARD_REJECTED"

    def __init__(self, instance_id: str, transition: str, guard: str):
        self.instance_id = instance_id
        self.transition = transition
        self.guard = guard
        super().__init__(
            f"Transition '{transition}' on instance {instance_id} "
            f"blocked by guard '{guard}'"
        )


class TransitionNotFoundError(TransitionError):
    """Transition is not declared on the instance's current state."""

    code: str = "TRANSITION_NOT_FOUND"

    def __init__(self, instance_id: str, state: str, transition: str):
        self.instance_id = instance_id
        self.state = state
        self.transition = transition
        super().__init__(
            f"Transition '{transition}' not available in state '{state}' "
            f"(instance {instance_id})"
        )


# Instance exceptions


class InstanceError(WorkflowKernelError):
    """Base exception for instance lifecycle errors."""

    code: str = "INSTANCE_ERROR"


class InstanceTerminatedError(InstanceError):
    """Instance is completed, failed or aborted; no further operations."""

    code: str = "INSTANCE_TERMINATED"

    def __init__(self, instance_id: str, status: str):
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Workflow instance {instance_id} is terminated (status={status})")


class InvalidInstanceStateError(InstanceError):
    """Operation is not valid for the instance's current (non-terminal) status."""

    code: str = "INVALID_INSTANCE_STATE"

    def __init__(self, instance_id: str, status: str, operation: str):
        self.instance_id = instance_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} workflow instance {instance_id} in status: {status}"
        )


class InstanceNotFoundError(InstanceError):
    """Instance with given ID was not found."""

    code: str = "INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Workflow instance not found: {instance_id}")


# Action exceptions


class ActionError(WorkflowKernelError):
    """Base exception for action execution errors."""

    code: str = "ACTION_ERROR"


class ActionExecutionError(ActionError):
    """An action raised while running; wraps the underlying error."""

    code: str = "ACTION_EXECUTION_ERROR"

    def __init__(self, action_type: str, instance_id: str, cause: BaseException):
        self.action_type = action_type
        self.instance_id = instance_id
        self.cause = cause
        super().__init__(
            f"Action '{action_type}' failed on instance {instance_id}: "
            f"{type(cause).__name__}: {cause}"
        )


class ActionTimeoutError(ActionExecutionError):
    """An action exceeded its configured time bound."""

    code: str = "ACTION_TIMEOUT"

    def __init__(self, action_type: str, instance_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            action_type,
            instance_id,
            TimeoutError(f"exceeded {timeout}s"),
        )


# Concurrency exceptions


class ConcurrencyError(WorkflowKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Optimistic revision check failed on update."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_revision: int,
        actual_revision: int,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_revision = expected_revision
        self.actual_revision = actual_revision
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            f"expected revision {expected_revision}, found {actual_revision}"
        )


# Task exceptions


class TaskError(WorkflowKernelError):
    """Base exception for workflow task errors."""

    code: str = "TASK_ERROR"


class TaskNotFoundError(TaskError):
    """Task with given ID was not found."""

    code: str = "TASK_NOT_FOUND"

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class InvalidTaskStateError(TaskError):
    """Task operation is not valid for the task's status."""

    code: str = "INVALID_TASK_STATE"

    def __init__(self, task_id: str, status: str, operation: str):
        self.task_id = task_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} task {task_id} in status: {status}")
