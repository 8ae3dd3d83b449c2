"""
AUTOBOT Retry Coordinator

Bounded QA loop: run the whole gate sequence, and on failure hand the
failed gates' output back to the code-editing agent before trying again.
Every attempt re-runs every enabled gate, not just the ones that failed.
"""

from __future__ import annotations

from loguru import logger

from autobot.config_loader import ConfigResolver
from autobot.event_bus import TASK_UPDATE, EventBus
from autobot.ports import LoggingReinvoker, Reinvoker, RetryFeedback
from autobot.sequencer import GateSequencer
from autobot.state import GateResult, RetryOutcome, Task, TaskStatus, all_passed
from autobot.store import TaskStore


class TaskNotFoundError(Exception):
    pass


def format_error_feedback(failed: list[GateResult]) -> str:
    blocks = []
    for gate in failed:
        errors = gate.errors or [gate.output]
        blocks.append(f"{gate.gate_name} errors:\n" + "\n".join(errors))
    return "\n\n".join(blocks)


def build_retry_prompt(
    original_prompt: str,
    failed: list[GateResult],
    attempt: int,
    max_retries: int,
) -> str:
    sections = []
    for gate in failed:
        errors = "\n".join(gate.errors) or gate.output
        sections.append(f"### {gate.gate_name} Failed:\n```\n{errors}\n```")
    details = "\n\n".join(sections)
    return f"""# QA Gate Retry (Attempt {attempt + 1}/{max_retries})

Your previous changes for the following task had QA gate failures:

**Original Task:** {original_prompt}

## Failed QA Gates:

{details}

## Instructions:

Please fix ONLY the issues reported by the failed QA gates above. Do not make any other changes.

Focus on:
1. Reading the error messages carefully
2. Identifying the exact files and lines that need to be fixed
3. Making minimal, targeted changes to resolve the failures
4. Ensuring your fixes don't break other parts of the code

The QA gates will run again automatically after you make your changes."""


class RetryCoordinator:
    def __init__(
        self,
        store: TaskStore,
        resolver: ConfigResolver,
        sequencer: GateSequencer,
        reinvoker: Reinvoker | None = None,
        bus: EventBus | None = None,
    ):
        self.store = store
        self.resolver = resolver
        self.sequencer = sequencer
        self.reinvoker = reinvoker or LoggingReinvoker()
        self.bus = bus

    def run_with_retry(self, task_id: str, repo_path: str, finalize: bool = True) -> RetryOutcome:
        """
        Run gates until they pass or max_retries is reached.

        With finalize=False the task is left in qa_running and the caller
        owns the post-QA transition.
        """
        task = self.store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")

        max_retries = self.resolver.resolve(repo_path).max_retries
        results: list[GateResult] = []

        for attempt in range(1, max_retries + 1):
            logger.info(f"[RETRY] Task {task_id}: QA attempt {attempt}/{max_retries}")
            # Only the latest attempt's records describe the change as it is now.
            self.store.delete_executions(task_id)
            self._set_status(task, "qa_running", current_qa_attempt=attempt)

            results = self.sequencer.run_all(task_id, repo_path)

            if all_passed(results):
                logger.info(f"[RETRY] Task {task_id}: QA passed on attempt {attempt}")
                if finalize:
                    self._set_status(task, "waiting_approval")
                return RetryOutcome(passed=True, attempt=attempt, results=results)

            if attempt >= max_retries:
                logger.warning(f"[RETRY] Task {task_id}: max QA attempts ({max_retries}) reached")
                if finalize:
                    self._set_status(task, "qa_failed")
                return RetryOutcome(passed=False, attempt=attempt, results=results)

            failed = [r for r in results if r.status == "failed"]
            self.reinvoker.reinvoke(RetryFeedback(
                task_id=task_id,
                attempt=attempt,
                max_retries=max_retries,
                feedback=format_error_feedback(failed),
                prompt=build_retry_prompt(task.prompt, failed, attempt, max_retries),
            ))

        # max_retries is always >= 1, so the loop returns before this.
        return RetryOutcome(passed=False, attempt=max_retries, results=results)

    def _set_status(self, task: Task, status: TaskStatus, **fields) -> None:
        self.store.update_task(task.id, status=status, **fields)
        if self.bus:
            self.bus.emit(TASK_UPDATE, task_id=task.id, session_id=task.session_id, status=status)
