"""
Engine settings (``workflow_config.settings``).

``EngineSettings`` is read once at host start-up from an optional YAML
file, then overridden by ``WORKFLOW_*`` environment variables::

    database_url: sqlite:///workflows.db
    action_timeout_seconds: 30
    log_level: INFO
    definitions_dir: ./workflows
    instance_query_limit: 50

Environment variables: ``WORKFLOW_DATABASE_URL``,
``WORKFLOW_ACTION_TIMEOUT_SECONDS`` (empty or ``none`` clears it),
``WORKFLOW_LOG_LEVEL``, ``WORKFLOW_DEFINITIONS_DIR``,
``WORKFLOW_INSTANCE_QUERY_LIMIT``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

ENV_PREFIX = "WORKFLOW_"


@dataclass(frozen=True)
class EngineSettings:
    database_url: str = "sqlite:///:memory:"
    action_timeout_seconds: float | None = None
    log_level: str = "INFO"
    definitions_dir: Path | None = None
    instance_query_limit: int = 50

    def __post_init__(self) -> None:
        if self.action_timeout_seconds is not None and self.action_timeout_seconds <= 0:
            raise ValueError("action_timeout_seconds must be positive or None")
        if self.instance_query_limit <= 0:
            raise ValueError("instance_query_limit must be positive")


def _coerce(name: str, value: Any) -> Any:
    if name == "action_timeout_seconds":
        if value is None or (isinstance(value, str) and value.strip().lower() in ("", "none")):
            return None
        return float(value)
    if name == "instance_query_limit":
        return int(value)
    if name == "definitions_dir":
        return Path(value) if value not in (None, "") else None
    if name == "log_level":
        return str(value).upper()
    return str(value)


def load_settings(
    path: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> EngineSettings:
    """
    Build settings from defaults, then the YAML file, then the environment.

    Raises:
        FileNotFoundError: if ``path`` is given but missing.
        yaml.YAMLError: if the file is not valid YAML.
        ValueError: on unknown keys or out-of-range values.
    """
    env = os.environ if env is None else env
    names = {f.name for f in fields(EngineSettings)}
    values: dict[str, Any] = {}

    if path is not None:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, Mapping):
            raise ValueError(f"Settings file {path} must contain a mapping")
        unknown = set(raw) - names
        if unknown:
            raise ValueError(f"Unknown settings in {path}: {sorted(unknown)}")
        values.update({k: _coerce(k, v) for k, v in raw.items()})

    for name in names:
        key = ENV_PREFIX + name.upper()
        if key in env:
            values[name] = _coerce(name, env[key])

    return replace(EngineSettings(), **values)
