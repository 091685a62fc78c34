"""
HandlerRegistry -- name -> handler tables for actions and guards.

Contract:
    ``ActionHandler.invoke(ctx, params)`` performs a side effect; any
    exception it raises fails the surrounding engine operation.
    ``GuardHandler.evaluate(ctx, params)`` returns a bool.  Plain callables
    with the same signatures are accepted and wrapped.

    ``default_registry()`` returns a FRESH registry seeded with the standard
    library; there is no process-global registry, so hosts and tests can
    extend or override one without affecting another.

Architecture:
    workflow_engines.  Imports only from workflow_kernel (domain,
    exceptions, logging) and stdlib.

Invariants enforced:
    - One handler per name per kind; re-registering raises
      ``DuplicateHandlerError`` unless ``replace=True``.
    - Lookups of unregistered names raise ``UnknownActionTypeError`` /
      ``UnknownGuardTypeError`` carrying the available names.
    - All table access is serialized by a lock, so handlers may be
      registered while other threads resolve names.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from workflow_kernel.exceptions import (
    DuplicateHandlerError,
    UnknownActionTypeError,
    UnknownGuardTypeError,
)
from workflow_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from workflow_engines.context import ExecutionContext
    from workflow_engines.standard_library import Mailer, WebhookClient

logger = get_logger("engines.registry")


@runtime_checkable
class ActionHandler(Protocol):
    def invoke(self, ctx: ExecutionContext, params: Mapping[str, Any]) -> None: ...


@runtime_checkable
class GuardHandler(Protocol):
    def evaluate(self, ctx: ExecutionContext, params: Mapping[str, Any]) -> bool: ...


class FunctionAction:
    """Adapts ``fn(ctx, params)`` to ``ActionHandler``."""

    def __init__(self, fn: Callable[[ExecutionContext, Mapping[str, Any]], Any]):
        self.fn = fn

    def invoke(self, ctx: ExecutionContext, params: Mapping[str, Any]) -> None:
        self.fn(ctx, params)

    def __repr__(self) -> str:
        return f"FunctionAction({getattr(self.fn, '__name__', self.fn)!r})"


class FunctionGuard:
    """Adapts ``fn(ctx, params) -> bool`` to ``GuardHandler``."""

    def __init__(self, fn: Callable[[ExecutionContext, Mapping[str, Any]], bool]):
        self.fn = fn

    def evaluate(self, ctx: ExecutionContext, params: Mapping[str, Any]) -> bool:
        return bool(self.fn(ctx, params))

    def __repr__(self) -> str:
        return f"FunctionGuard({getattr(self.fn, '__name__', self.fn)!r})"


def _as_action(handler: ActionHandler | Callable[..., Any]) -> ActionHandler:
    if isinstance(handler, ActionHandler):
        return handler
    if callable(handler):
        return FunctionAction(handler)
    raise TypeError(f"Action handler must define invoke() or be callable: {handler!r}")


def _as_guard(handler: GuardHandler | Callable[..., bool]) -> GuardHandler:
    if isinstance(handler, GuardHandler):
        return handler
    if callable(handler):
        return FunctionGuard(handler)
    raise TypeError(f"Guard handler must define evaluate() or be callable: {handler!r}")


class HandlerRegistry:
    """Concurrency-safe tables of action and guard handlers keyed by name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._actions: dict[str, ActionHandler] = {}
        self._guards: dict[str, GuardHandler] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_action(
        self,
        name: str,
        handler: ActionHandler | Callable[..., Any],
        *,
        replace: bool = False,
    ) -> None:
        """Register an action handler under ``name``.

        Raises:
            DuplicateHandlerError: If ``name`` is taken and ``replace`` is False.
        """
        wrapped = _as_action(handler)
        with self._lock:
            if name in self._actions and not replace:
                raise DuplicateHandlerError("action", name)
            self._actions[name] = wrapped
        logger.debug("action_registered", extra={"handler_name": name, "replace": replace})

    def register_guard(
        self,
        name: str,
        handler: GuardHandler | Callable[..., bool],
        *,
        replace: bool = False,
    ) -> None:
        """Register a guard handler under ``name``.

        Raises:
            DuplicateHandlerError: If ``name`` is taken and ``replace`` is False.
        """
        wrapped = _as_guard(handler)
        with self._lock:
            if name in self._guards and not replace:
                raise DuplicateHandlerError("guard", name)
            self._guards[name] = wrapped
        logger.debug("guard_registered", extra={"handler_name": name, "replace": replace})

    def action(self, name: str, *, replace: bool = False) -> Callable:
        """Decorator form of ``register_action``."""

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.register_action(name, fn, replace=replace)
            return fn

        return decorator

    def guard(self, name: str, *, replace: bool = False) -> Callable:
        """Decorator form of ``register_guard``."""

        def decorator(fn: Callable[..., bool]) -> Callable[..., bool]:
            self.register_guard(name, fn, replace=replace)
            return fn

        return decorator

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def get_action(self, name: str) -> ActionHandler:
        """
        Raises:
            UnknownActionTypeError: If no action is registered under ``name``.
        """
        with self._lock:
            handler = self._actions.get(name)
            if handler is None:
                raise UnknownActionTypeError(name, tuple(sorted(self._actions)))
            return handler

    def get_guard(self, name: str) -> GuardHandler:
        """
        Raises:
            UnknownGuardTypeError: If no guard is registered under ``name``.
        """
        with self._lock:
            handler = self._guards.get(name)
            if handler is None:
                raise UnknownGuardTypeError(name, tuple(sorted(self._guards)))
            return handler

    def has_action(self, name: str) -> bool:
        with self._lock:
            return name in self._actions

    def has_guard(self, name: str) -> bool:
        with self._lock:
            return name in self._guards

    def list_actions(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._actions))

    def list_guards(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._guards))


def default_registry(
    mailer: Mailer | None = None,
    webhook_client: WebhookClient | None = None,
) -> HandlerRegistry:
    """Return a fresh HandlerRegistry seeded with the standard library."""
    from workflow_engines.standard_library import register_standard_library

    registry = HandlerRegistry()
    register_standard_library(registry, mailer=mailer, webhook_client=webhook_client)
    return registry
