"""
``{{field}}`` template interpolation.

Kept as an isolated pure function so the state-machine core never parses
strings.  Placeholders may contain surrounding whitespace
(``{{ email }}``) and dotted paths into nested mappings
(``{{ customer.email }}``).  A placeholder whose path does not resolve is
left in the output unchanged.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*\}\}")

_MISSING = object()

DataLookup = Mapping[str, Any] | Callable[[str], Any]


def _resolve(path: str, lookup: DataLookup) -> Any:
    head, *rest = path.split(".")
    if callable(lookup) and not isinstance(lookup, Mapping):
        value = lookup(head)
        if value is None:
            return _MISSING
    else:
        value = lookup.get(head, _MISSING)
    for part in rest:
        if not isinstance(value, Mapping) or part not in value:
            return _MISSING
        value = value[part]
    return value


def interpolate(template: str, lookup: DataLookup) -> str:
    """Replace ``{{path}}`` placeholders with values from ``lookup``.

    ``lookup`` is either a mapping or a ``key -> value`` callable (such as
    ``ExecutionContext.get_data``); for callables a ``None`` result counts
    as unresolved.
    """

    def _sub(match: re.Match[str]) -> str:
        value = _resolve(match.group(1), lookup)
        if value is _MISSING:
            return match.group(0)
        return str(value)

    return _PLACEHOLDER.sub(_sub, template)

