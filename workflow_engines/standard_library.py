"""
Standard actions and guards seeded into every ``default_registry()``.

Actions:
    log           -- interpolate ``message`` from instance data and log it.
    sendEmail     -- interpolate ``to``/``subject``/``body`` and hand them to
                     the injected ``Mailer`` (default: log only).
    updateRecord  -- merge ``params`` into instance data.
    webhook       -- hand ``method``/``url``/``payload`` to the injected
                     ``WebhookClient`` (default: log only).
    assign_task   -- spawn a ``WorkflowTask`` through the context.

Guards:
    fieldEquals   -- strict equality of ``get_data(field)`` and ``value``.
    greaterThan   -- ``get_data(field) > value``; False unless both sides
                     are finite real numbers (bools excluded).
    always / never.

camelCase and snake_case spellings are both registered.
"""

from __future__ import annotations

import logging
import math
import numbers
from collections.abc import Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from workflow_kernel.domain.template import interpolate
from workflow_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from workflow_engines.context import ExecutionContext
    from workflow_engines.registry import HandlerRegistry

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


# =============================================================================
# Injectable collaborators
# =============================================================================


@runtime_checkable
class Mailer(Protocol):
    def send(self, to: str, subject: str, body: str | None = None) -> None: ...


@runtime_checkable
class WebhookClient(Protocol):
    def request(
        self, method: str, url: str, payload: Mapping[str, Any] | None = None,
    ) -> Any: ...


class LoggingMailer:
    """Mailer that only logs ``Sending email to {to}: {subject}``."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or get_logger("actions.email")

    def send(self, to: str, subject: str, body: str | None = None) -> None:
        self._logger.info(
            f"Sending email to {to}: {subject}",
            extra={"email_to": to, "email_subject": subject},
        )


class LoggingWebhookClient:
    """Webhook client that only logs the request it would have made."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or get_logger("actions.webhook")

    def request(
        self, method: str, url: str, payload: Mapping[str, Any] | None = None,
    ) -> None:
        self._logger.info(
            f"Sending webhook {method} to {url}",
            extra={"webhook_method": method, "webhook_url": url},
        )


def _render(value: Any, ctx: ExecutionContext) -> Any:
    """Interpolate strings, recursing into lists and mappings."""
    if isinstance(value, str):
        return interpolate(value, ctx.get_data)
    if isinstance(value, Mapping):
        return {k: _render(v, ctx) for k, v in value.items()}
    if isinstance(value, list):
        return [_render(v, ctx) for v in value]
    return value


def _required(params: Mapping[str, Any], key: str, action: str) -> Any:
    if key not in params or params[key] is None:
        raise ValueError(f"Action '{action}' requires parameter '{key}'")
    return params[key]


# =============================================================================
# Actions
# =============================================================================


def log_action(ctx: ExecutionContext, params: Mapping[str, Any]) -> None:
    message = interpolate(str(params.get("message", "")), ctx.get_data)
    level = _LEVELS.get(str(params.get("level", "info")).lower(), logging.INFO)
    ctx.logger.log(
        level,
        message,
        extra={"action": "log", "state": ctx.state},
    )


class SendEmailAction:
    def __init__(self, mailer: Mailer | None = None) -> None:
        self.mailer = mailer or LoggingMailer()

    def invoke(self, ctx: ExecutionContext, params: Mapping[str, Any]) -> None:
        to = interpolate(str(_required(params, "to", "sendEmail")), ctx.get_data)
        subject = interpolate(str(params.get("subject", "")), ctx.get_data)
        body = params.get("body")
        if body is not None:
            body = interpolate(str(body), ctx.get_data)
        self.mailer.send(to, subject, body)


def update_record_action(ctx: ExecutionContext, params: Mapping[str, Any]) -> None:
    ctx.update_data(dict(params))


class WebhookAction:
    def __init__(self, client: WebhookClient | None = None) -> None:
        self.client = client or LoggingWebhookClient()

    def invoke(self, ctx: ExecutionContext, params: Mapping[str, Any]) -> None:
        url = interpolate(str(_required(params, "url", "webhook")), ctx.get_data)
        method = str(params.get("method", "POST")).upper()
        payload = params.get("payload", params.get("body"))
        if payload is not None:
            payload = _render(payload, ctx)
        self.client.request(method, url, payload)


def assign_task_action(ctx: ExecutionContext, params: Mapping[str, Any]) -> None:
    name = interpolate(str(_required(params, "name", "assign_task")), ctx.get_data)
    assignee = params.get("assigned_to", params.get("assignee"))
    if assignee is not None:
        assignee = interpolate(str(assignee), ctx.get_data)
    description = params.get("description")
    if description is not None:
        description = interpolate(str(description), ctx.get_data)
    due_at = params.get("due_at")
    if isinstance(due_at, str):
        due_at = datetime.fromisoformat(due_at)
    ctx.create_task(
        name,
        assigned_to=assignee,
        data=_render(dict(params.get("data") or {}), ctx),
        description=description,
        due_at=due_at,
    )


# =============================================================================
# Guards
# =============================================================================


def _strict_equals(left: Any, right: Any) -> bool:
    # True == 1 in Python; a boolean only equals a boolean here.
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, numbers.Real) and isinstance(right, numbers.Real):
        return left == right
    return type(left) is type(right) and left == right


def _finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    return math.isfinite(value)


def field_equals_guard(ctx: ExecutionContext, params: Mapping[str, Any]) -> bool:
    return _strict_equals(ctx.get_data(str(params["field"])), params.get("value"))


def greater_than_guard(ctx: ExecutionContext, params: Mapping[str, Any]) -> bool:
    actual = ctx.get_data(str(params["field"]))
    threshold = params.get("value")
    if not (_finite_number(actual) and _finite_number(threshold)):
        return False
    return actual > threshold


def always_guard(ctx: ExecutionContext, params: Mapping[str, Any]) -> bool:
    return True


def never_guard(ctx: ExecutionContext, params: Mapping[str, Any]) -> bool:
    return False


# =============================================================================
# Registration
# =============================================================================


def register_standard_library(
    registry: HandlerRegistry,
    mailer: Mailer | None = None,
    webhook_client: WebhookClient | None = None,
) -> None:
    """Register every standard action and guard on ``registry``."""
    send_email = SendEmailAction(mailer)
    webhook = WebhookAction(webhook_client)

    registry.register_action("log", log_action)
    registry.register_action("sendEmail", send_email)
    registry.register_action("send_email", send_email)
    registry.register_action("updateRecord", update_record_action)
    registry.register_action("update_record", update_record_action)
    registry.register_action("webhook", webhook)
    registry.register_action("assign_task", assign_task_action)
    registry.register_action("assignTask", assign_task_action)

    registry.register_guard("fieldEquals", field_equals_guard)
    registry.register_guard("field_equals", field_equals_guard)
    registry.register_guard("greaterThan", greater_than_guard)
    registry.register_guard("greater_than", greater_than_guard)
    registry.register_guard("always", always_guard)
    registry.register_guard("never", never_guard)
