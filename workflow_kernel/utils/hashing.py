"""
Deterministic content hashing.

Registered definitions are fingerprinted so an identical re-registration is
recognised as a no-op and a conflicting one is rejected.  The digest must
not depend on dict insertion order, process, or platform.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _encode(obj: Any) -> Any:
    # Guard params may carry Decimal thresholds; 1.50 and 1.5 hash alike.
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=repr)
    raise TypeError(f"Cannot hash value of type {type(obj).__name__}")


def canonicalize_json(data: Any) -> str:
    """Compact JSON with sorted keys."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def hash_payload(payload: Any) -> str:
    """SHA-256 hex digest of ``canonicalize_json(payload)``."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()
