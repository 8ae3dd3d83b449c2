from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

TaskStatus = Literal[
    "pending",
    "pre_flight",
    "running",
    "waiting_qa",
    "qa_running",
    "qa_failed",
    "waiting_approval",
    "approved",
    "completed",
    "rejected",
    "failed",
    "cancelled",
]
GateStatus = Literal["running", "passed", "failed", "skipped"]
PlanStatus = Literal["draft", "ready", "running", "paused", "completed", "failed"]
PlanTaskStatus = Literal["pending", "running", "completed", "failed", "skipped"]

SKIPPED_OUTPUT = "Skipped due to previous gate failure"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class FileChange(BaseModel):
    path: str
    status: Literal["added", "modified", "deleted", "renamed"] = "modified"
    additions: int = 0
    deletions: int = 0
    old_path: str | None = None
    patch: str = ""


class Repository(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: str = ""
    path: str


class Task(BaseModel):
    """A unit of automated work whose code change is being gated."""
    id: str = Field(default_factory=_new_id)
    session_id: str | None = None
    repository_id: str
    prompt: str = ""
    status: TaskStatus = "pending"
    current_qa_attempt: int = 1
    files_changed: list[FileChange] = Field(default_factory=list)
    diff_content: str | None = None
    committed_sha: str | None = None
    commit_message: str | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    completed_at: datetime | None = None


class Plan(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str = ""
    status: PlanStatus = "draft"
    current_task_id: str | None = None
    updated_at: datetime = Field(default_factory=_now)


class PlanTask(BaseModel):
    """A plan step, optionally linked to the Task that executes it."""
    id: str = Field(default_factory=_new_id)
    plan_id: str
    task_id: str | None = None
    title: str = ""
    status: PlanTaskStatus = "pending"
    commit_sha: str | None = None
    completed_at: datetime | None = None
    updated_at: datetime = Field(default_factory=_now)


class GateExecutionRecord(BaseModel):
    """
    Audit row for one gate in one run.

    Written as `running` when the gate starts (or is skipped) and moved
    to a terminal status exactly once.
    """
    id: str = Field(default_factory=_new_id)
    run_id: str
    gate_name: str
    command: str
    order: int = 0
    status: GateStatus = "running"
    output: str | None = None
    error: str | None = None
    errors: list[str] = Field(default_factory=list)
    exit_code: int | None = None
    duration: int | None = None
    created_at: datetime = Field(default_factory=_now)
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != "running"


class GateResult(BaseModel):
    gate_name: str
    status: GateStatus
    output: str = ""
    errors: list[str] = Field(default_factory=list)
    duration: int = 0
    execution_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in ("passed", "skipped")


def all_passed(results: list[GateResult]) -> bool:
    """True iff every gate passed or was skipped."""
    return all(r.ok for r in results)


class QARunResult(BaseModel):
    results: list[GateResult] = Field(default_factory=list)
    passed: bool = False


class RetryOutcome(BaseModel):
    passed: bool
    attempt: int
    results: list[GateResult] = Field(default_factory=list)
