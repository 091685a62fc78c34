"""
ExecutionContext -- what an action or guard handler sees.

Contract:
    The engine builds one context per action/guard invocation.  Handlers
    read instance data through ``get_data``, write through ``set_data`` /
    ``update_data``, and spawn tasks through ``create_task``; they never
    touch storage.  Spawned tasks are collected on the context and only
    survive if the whole operation succeeds.

    After ``close()`` (the engine calls it when an action times out) every
    mutator raises ``RuntimeError``, so an abandoned worker thread cannot
    write into an instance that has already been rolled back.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from workflow_kernel.domain.clock import Clock
from workflow_kernel.domain.instance import WorkflowInstance
from workflow_kernel.domain.task import WorkflowTask
from workflow_kernel.domain.workflow import WorkflowDefinition

_MISSING = object()


@dataclass
class ExecutionContext:
    instance: WorkflowInstance
    definition: WorkflowDefinition
    state: str
    clock: Clock
    logger: logging.Logger
    transition: str | None = None
    triggered_by: str | None = None
    transition_data: dict[str, Any] | None = None
    spawned_tasks: list[WorkflowTask] = field(default_factory=list)
    _closed: threading.Event = field(default_factory=threading.Event, repr=False)

    def get_data(self, key: str | None = None) -> Any:
        """Return the value under ``key`` (``None`` if absent).

        Without a key, returns a shallow copy of the whole data bag.
        A key not present verbatim is tried as a dotted path into nested
        mappings (``customer.email``).
        """
        data = self.instance.data
        if key is None:
            return dict(data)
        if key in data:
            return data[key]
        value: Any = data
        for part in key.split("."):
            if not isinstance(value, Mapping) or part not in value:
                return None
            value = value[part]
        return value

    def has_data(self, key: str) -> bool:
        return key in self.instance.data

    def set_data(self, key: str, value: Any) -> None:
        self._check_open()
        self.instance.data[key] = value

    def update_data(self, values: Mapping[str, Any]) -> None:
        self._check_open()
        self.instance.data.update(values)

    def create_task(
        self,
        name: str,
        assigned_to: str | None = None,
        data: Mapping[str, Any] | None = None,
        description: str | None = None,
        due_at: datetime | None = None,
    ) -> WorkflowTask:
        self._check_open()
        task = WorkflowTask(
            id=uuid4(),
            instance_id=self.instance.id,
            name=name,
            created_at=self.clock.now(),
            assigned_to=assigned_to,
            description=description,
            due_at=due_at,
            data=dict(data or {}),
        )
        self.spawned_tasks.append(task)
        return task

    def close(self) -> None:
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def _check_open(self) -> None:
        if self._closed.is_set():
            raise RuntimeError(
                f"Execution context for instance {self.instance.id} is closed"
            )
