"""
AUTOBOT Store

Persistence for tasks, plans and gate execution records.

Write failures are never swallowed here: a run whose audit trail can't
be written must abort rather than carry on with holes in it.
"""

from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from autobot.state import (
    GateExecutionRecord,
    Plan,
    PlanTask,
    Repository,
    Task,
)


class StoreError(Exception):
    """A persistence read or write could not be completed."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TaskStore(ABC):
    """Persistence port used by the gate engine."""

    # -- tasks / repositories ------------------------------------------------

    @abstractmethod
    def get_task(self, task_id: str) -> Task | None: ...

    @abstractmethod
    def save_task(self, task: Task) -> Task: ...

    @abstractmethod
    def update_task(self, task_id: str, **fields: Any) -> Task: ...

    @abstractmethod
    def get_repository(self, repository_id: str) -> Repository | None: ...

    @abstractmethod
    def save_repository(self, repository: Repository) -> Repository: ...

    # -- gate execution records ----------------------------------------------

    @abstractmethod
    def create_execution(self, record: GateExecutionRecord) -> GateExecutionRecord: ...

    @abstractmethod
    def complete_execution(self, record_id: str, **fields: Any) -> GateExecutionRecord: ...

    @abstractmethod
    def delete_executions(self, run_id: str) -> int: ...

    @abstractmethod
    def list_executions(self, run_id: str) -> list[GateExecutionRecord]: ...

    # -- plans ---------------------------------------------------------------

    @abstractmethod
    def get_plan(self, plan_id: str) -> Plan | None: ...

    @abstractmethod
    def save_plan(self, plan: Plan) -> Plan: ...

    @abstractmethod
    def update_plan(self, plan_id: str, **fields: Any) -> Plan: ...

    @abstractmethod
    def find_plan_task_for_task(self, task_id: str) -> PlanTask | None: ...

    @abstractmethod
    def save_plan_task(self, plan_task: PlanTask) -> PlanTask: ...

    @abstractmethod
    def update_plan_task(self, plan_task_id: str, **fields: Any) -> PlanTask: ...


class _Snapshot(BaseModel):
    repositories: dict[str, Repository] = Field(default_factory=dict)
    tasks: dict[str, Task] = Field(default_factory=dict)
    executions: dict[str, GateExecutionRecord] = Field(default_factory=dict)
    plans: dict[str, Plan] = Field(default_factory=dict)
    plan_tasks: dict[str, PlanTask] = Field(default_factory=dict)


def _apply(model: BaseModel, fields: dict[str, Any]) -> Any:
    """Return a validated copy of `model` with `fields` applied."""
    unknown = set(fields) - set(type(model).model_fields)
    if unknown:
        raise StoreError(f"Unknown fields for {type(model).__name__}: {sorted(unknown)}")
    return type(model).model_validate({**model.model_dump(), **fields})


class InMemoryStore(TaskStore):
    def __init__(self):
        self._data = _Snapshot()
        self._lock = threading.RLock()

    def _flush(self) -> None:
        """Hook for durable subclasses; called after every mutation."""
        pass

    # -- tasks / repositories ------------------------------------------------

    def get_task(self, task_id: str) -> Task | None:
        return self._data.tasks.get(task_id)

    def save_task(self, task: Task) -> Task:
        with self._lock:
            self._data.tasks[task.id] = task
            self._flush()
        return task

    def update_task(self, task_id: str, **fields: Any) -> Task:
        with self._lock:
            task = self._data.tasks.get(task_id)
            if task is None:
                raise StoreError(f"Task not found: {task_id}")
            fields.setdefault("updated_at", _now())
            updated = _apply(task, fields)
            self._data.tasks[task_id] = updated
            self._flush()
        return updated

    def get_repository(self, repository_id: str) -> Repository | None:
        return self._data.repositories.get(repository_id)

    def save_repository(self, repository: Repository) -> Repository:
        with self._lock:
            self._data.repositories[repository.id] = repository
            self._flush()
        return repository

    # -- gate execution records ----------------------------------------------

    def create_execution(self, record: GateExecutionRecord) -> GateExecutionRecord:
        with self._lock:
            if record.id in self._data.executions:
                raise StoreError(f"Execution record already exists: {record.id}")
            self._data.executions[record.id] = record
            self._flush()
        return record

    def complete_execution(self, record_id: str, **fields: Any) -> GateExecutionRecord:
        with self._lock:
            record = self._data.executions.get(record_id)
            if record is None:
                raise StoreError(f"Execution record not found: {record_id}")
            if record.is_terminal:
                raise StoreError(
                    f"Execution record {record_id} already {record.status}; "
                    "terminal status is written once"
                )
            fields.setdefault("completed_at", _now())
            updated = _apply(record, fields)
            if not updated.is_terminal:
                raise StoreError(f"Execution record {record_id} must complete with a terminal status")
            self._data.executions[record_id] = updated
            self._flush()
        return updated

    def delete_executions(self, run_id: str) -> int:
        with self._lock:
            doomed = [k for k, r in self._data.executions.items() if r.run_id == run_id]
            for key in doomed:
                del self._data.executions[key]
            if doomed:
                self._flush()
        return len(doomed)

    def list_executions(self, run_id: str) -> list[GateExecutionRecord]:
        records = [r for r in self._data.executions.values() if r.run_id == run_id]
        return sorted(records, key=lambda r: (r.order, r.created_at))

    # -- plans ---------------------------------------------------------------

    def get_plan(self, plan_id: str) -> Plan | None:
        return self._data.plans.get(plan_id)

    def save_plan(self, plan: Plan) -> Plan:
        with self._lock:
            self._data.plans[plan.id] = plan
            self._flush()
        return plan

    def update_plan(self, plan_id: str, **fields: Any) -> Plan:
        with self._lock:
            plan = self._data.plans.get(plan_id)
            if plan is None:
                raise StoreError(f"Plan not found: {plan_id}")
            fields.setdefault("updated_at", _now())
            updated = _apply(plan, fields)
            self._data.plans[plan_id] = updated
            self._flush()
        return updated

    def find_plan_task_for_task(self, task_id: str) -> PlanTask | None:
        for plan_task in self._data.plan_tasks.values():
            if plan_task.task_id == task_id:
                return plan_task
        return None

    def save_plan_task(self, plan_task: PlanTask) -> PlanTask:
        with self._lock:
            self._data.plan_tasks[plan_task.id] = plan_task
            self._flush()
        return plan_task

    def update_plan_task(self, plan_task_id: str, **fields: Any) -> PlanTask:
        with self._lock:
            plan_task = self._data.plan_tasks.get(plan_task_id)
            if plan_task is None:
                raise StoreError(f"Plan task not found: {plan_task_id}")
            fields.setdefault("updated_at", _now())
            updated = _apply(plan_task, fields)
            self._data.plan_tasks[plan_task_id] = updated
            self._flush()
        return updated


class JsonStore(InMemoryStore):
    """
    InMemoryStore backed by a single JSON document.

    The whole document is rewritten (via a temp file + rename) after
    every mutation.
    """

    def __init__(self, path: Path):
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            try:
                self._data = _Snapshot.model_validate_json(self.path.read_text(encoding="utf-8"))
            except ValueError as e:
                raise StoreError(f"Corrupt store file {self.path}: {e}") from e
            logger.debug(f"[STORE] Loaded {self.path}")

    def _flush(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(
                json.dumps(self._data.model_dump(mode="json"), indent=2),
                encoding="utf-8",
            )
            tmp.replace(self.path)
        except OSError as e:
            raise StoreError(f"Failed to write store {self.path}: {e}") from e


# ---------------------------------------------------------------------------
# QA status query
# ---------------------------------------------------------------------------

class QAStatus(BaseModel):
    has_run: bool
    passed: bool = False
    gates: list[GateExecutionRecord] = Field(default_factory=list)


def qa_status(store: TaskStore, run_id: str) -> QAStatus:
    """Current gate records for a run, in gate order."""
    gates = store.list_executions(run_id)
    if not gates:
        return QAStatus(has_run=False)
    passed = all(g.status in ("passed", "skipped") for g in gates)
    return QAStatus(has_run=True, passed=passed, gates=gates)
