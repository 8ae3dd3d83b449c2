"""
AUTOBOT Controller — QA Lifecycle

It is NOT smart. It is deterministic.

Responsibilities:
  - Load the task and its repository
  - Clear the previous run's gate records
  - Run the gates (single pass or bounded retry)
  - Publish progress
  - Move the task to its post-QA status
  - For plan steps: auto-commit, complete the step, resume the plan

It never edits code. It only gates and transitions.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from loguru import logger

from autobot.config_loader import ConfigResolver, EngineSettings
from autobot.event_bus import QA_UPDATE, TASK_UPDATE, EventBus
from autobot.gate_executor import CommandRunnerFn, GateExecutor
from autobot.ports import (
    CommitMessageGenerator,
    Committer,
    PlanResumer,
    Reinvoker,
)
from autobot.retry import RetryCoordinator, TaskNotFoundError
from autobot.runner import run_command
from autobot.sequencer import GateSequencer
from autobot.state import (
    PlanTask,
    QARunResult,
    Repository,
    RetryOutcome,
    Task,
    TaskStatus,
    all_passed,
)
from autobot.store import TaskStore
from autobot.workspace import BasicCommitMessageGenerator, GitCommitter, basic_commit_message

__all__ = ["Controller", "TaskNotFoundError"]

RESUMABLE_PLAN_STATUSES = ("paused", "failed")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Controller:
    """
    The AUTOBOT QA lifecycle controller.

    Pipeline: Load → Clear → Gates (→ Retry) → Publish → Transition
              (→ Commit → Complete plan step → Resume plan)
    """

    def __init__(
        self,
        store: TaskStore,
        settings: EngineSettings | None = None,
        bus: EventBus | None = None,
        runner: CommandRunnerFn = run_command,
        message_generator: CommitMessageGenerator | None = None,
        committer: Committer | None = None,
        plan_resumer: PlanResumer | None = None,
        reinvoker: Reinvoker | None = None,
    ):
        self.store = store
        self.settings = settings or EngineSettings.from_env()
        self.bus = bus or EventBus()

        translator = self.settings.translator()
        self.resolver = ConfigResolver(translator, load_timeout=self.settings.config_timeout)
        self.executor = GateExecutor(store, translator, runner)
        self.sequencer = GateSequencer(self.resolver, self.executor)
        self.retry = RetryCoordinator(store, self.resolver, self.sequencer, reinvoker, self.bus)

        self.message_generator = message_generator or BasicCommitMessageGenerator()
        self.committer = committer or GitCommitter(translator)
        self.plan_resumer = plan_resumer

    # -----------------------------------------------------------------------
    # Entry points
    # -----------------------------------------------------------------------

    def run_gates_for_task(self, task_id: str) -> QARunResult:
        """Single gate pass for a task. No status changes."""
        _, repository = self._load(task_id)
        results = self.sequencer.run_all(task_id, repository.path)
        return QARunResult(results=results, passed=all_passed(results))

    def run_gates_with_retry(self, task_id: str, repo_path: str) -> RetryOutcome:
        """Bounded retry loop; leaves the task in waiting_approval or qa_failed."""
        return self.retry.run_with_retry(task_id, repo_path)

    def run_task_qa_gates(self, task_id: str, retry: bool = False) -> QARunResult:
        """Run QA for a task and drive it to its post-QA status."""
        task, repository = self._load(task_id)
        repo_path = repository.path

        cleared = self.store.delete_executions(task_id)
        if cleared:
            logger.debug(f"[QA] Cleared {cleared} stale gate records for task {task_id}")

        if retry:
            # Each attempt publishes its own qa_running.
            outcome = self.retry.run_with_retry(task_id, repo_path, finalize=False)
            results, passed = outcome.results, outcome.passed
        else:
            self._emit_status(task, "qa_running")
            results = self.sequencer.run_all(task_id, repo_path)
            passed = all_passed(results)

        for result in results:
            self.bus.emit(
                QA_UPDATE,
                task_id=task_id,
                session_id=task.session_id,
                gate_name=result.gate_name,
                status=result.status,
                output=result.output,
                errors=result.errors,
            )

        if not passed:
            logger.warning(f"[QA] Task {task_id}: gates failed")
            self._transition(task, "qa_failed")
            return QARunResult(results=results, passed=False)

        plan_task = self.store.find_plan_task_for_task(task_id)
        if plan_task is None:
            logger.info(f"[QA] Task {task_id}: gates passed, waiting for approval")
            self._transition(task, "waiting_approval")
        else:
            logger.info(f"[QA] Task {task_id}: gates passed, auto-approving plan step {plan_task.id}")
            self._auto_approve(task_id, repo_path, plan_task)

        return QARunResult(results=results, passed=True)

    def run_repository_gates(self, repo_path: str, gate_name: str | None = None) -> QARunResult:
        """Ad-hoc run against a repository, outside any task."""
        run_id = f"repo-{uuid.uuid4()}"
        if gate_name:
            results = [self.sequencer.run_gate(run_id, repo_path, gate_name)]
        else:
            results = self.sequencer.run_all(run_id, repo_path)
        return QARunResult(results=results, passed=all_passed(results))

    # -----------------------------------------------------------------------
    # Plan auto-approval
    # -----------------------------------------------------------------------

    def _auto_approve(self, task_id: str, repo_path: str, plan_task: PlanTask) -> None:
        task = self.store.get_task(task_id)

        if not task.files_changed:
            logger.info(f"[QA] Task {task_id}: no file changes, completing without commit")
            self._transition(task, "completed", completed_at=_now())
            self._complete_plan_step(plan_task, commit_sha=None)
            return

        try:
            if task.diff_content:
                message = self.message_generator.generate(
                    task.prompt, task.files_changed, task.diff_content, repo_path
                )
            else:
                logger.warning(f"[QA] Task {task_id}: no stored diff, using basic commit message")
                message = basic_commit_message(task.prompt, task.files_changed)
            commit = self.committer.commit(repo_path, task.files_changed, message)
        except Exception as e:
            # The QA pass stands; a human can still approve and commit.
            logger.warning(f"[QA] Task {task_id}: auto-commit failed ({e}), falling back to manual approval")
            self._transition(task, "waiting_approval")
            return

        self._transition(
            task,
            "completed",
            committed_sha=commit.sha,
            commit_message=commit.message,
            completed_at=_now(),
        )
        self._complete_plan_step(plan_task, commit_sha=commit.sha)

    def _complete_plan_step(self, plan_task: PlanTask, commit_sha: str | None) -> None:
        self.store.update_plan_task(
            plan_task.id,
            status="completed",
            commit_sha=commit_sha,
            completed_at=_now(),
        )

        plan = self.store.get_plan(plan_task.plan_id)
        if plan is None:
            logger.warning(f"[QA] Plan {plan_task.plan_id} for step {plan_task.id} not found")
            return
        if plan.status not in RESUMABLE_PLAN_STATUSES or plan.current_task_id != plan_task.id:
            return
        if self.plan_resumer is None:
            logger.warning(f"[QA] Plan {plan.id} is {plan.status} on this step but no resumer is configured")
            return

        # The resumer must see `running`, never the stale paused/failed status.
        self.store.update_plan(plan.id, status="running")
        logger.info(f"[QA] Plan {plan.id} was {plan.status} on step {plan_task.id}; resuming")
        try:
            self.plan_resumer.resume(plan.id)
        except Exception as e:
            logger.error(f"[QA] Failed to resume plan {plan.id}: {e}")

    # -----------------------------------------------------------------------
    # Utilities
    # -----------------------------------------------------------------------

    def _load(self, task_id: str) -> tuple[Task, Repository]:
        task = self.store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        repository = self.store.get_repository(task.repository_id)
        if repository is None:
            raise TaskNotFoundError(
                f"Repository {task.repository_id} for task {task_id} not found"
            )
        return task, repository

    def _transition(self, task: Task, status: TaskStatus, **fields) -> None:
        self.store.update_task(task.id, status=status, **fields)
        self._emit_status(task, status)

    def _emit_status(self, task: Task, status: TaskStatus) -> None:
        self.bus.emit(TASK_UPDATE, task_id=task.id, session_id=task.session_id, status=status)
