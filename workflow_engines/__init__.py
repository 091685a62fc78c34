"""
Pure workflow engines.

Everything here is I/O-free apart from the standard library's injectable
mailer and webhook client (whose defaults only log):

- ``registry``: name -> handler tables for actions and guards.
- ``standard_library``: the built-in actions and guards.
- ``flow_converter``: definition <-> flow graph mapping and validation.
- ``context``: the ``ExecutionContext`` handed to every handler.
"""

from workflow_engines.context import ExecutionContext
from workflow_engines.flow_converter import flow_to_legacy, legacy_to_flow, validate_flow
from workflow_engines.registry import (
    ActionHandler,
    GuardHandler,
    HandlerRegistry,
    default_registry,
)

__all__ = [
    "ActionHandler",
    "ExecutionContext",
    "GuardHandler",
    "HandlerRegistry",
    "default_registry",
    "flow_to_legacy",
    "legacy_to_flow",
    "validate_flow",
]
