"""
AUTOBOT Collaborator Ports

The gate engine reaches outside itself through these interfaces only.
Plan resumption in particular is a port so that "QA finished a plan
step" never imports the plan scheduler that started the QA run.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from loguru import logger
from pydantic import BaseModel

from autobot.event_bus import PLAN_RESUME, EventBus
from autobot.state import FileChange


class CommitResult(BaseModel):
    sha: str
    message: str
    files_committed: list[str] = []


class RetryFeedback(BaseModel):
    """Everything the code-editing agent needs to fix a failed QA attempt."""
    task_id: str
    attempt: int
    max_retries: int
    feedback: str
    prompt: str


class CommitMessageGenerator(ABC):
    @abstractmethod
    def generate(
        self,
        prompt: str,
        files_changed: list[FileChange],
        diff: str,
        repo_path: str,
    ) -> str:
        """Return a commit message for the change."""
        ...


class Committer(ABC):
    @abstractmethod
    def commit(self, repo_path: str, files_changed: list[FileChange], message: str) -> CommitResult:
        """Stage `files_changed` and commit them with `message`."""
        ...


class PlanResumer(ABC):
    @abstractmethod
    def resume(self, plan_id: str) -> None:
        """Continue executing a plan that was blocked on a finished step."""
        ...


class Reinvoker(ABC):
    @abstractmethod
    def reinvoke(self, feedback: RetryFeedback) -> None:
        """Ask the code-editing agent to fix the failures before the next attempt."""
        ...


class LoggingReinvoker(Reinvoker):
    """Records the retry feedback without re-running any agent."""

    def reinvoke(self, feedback: RetryFeedback) -> None:
        logger.info(
            f"[RETRY] QA retry {feedback.attempt}/{feedback.max_retries} "
            f"for task {feedback.task_id}"
        )
        logger.debug(f"[RETRY] Feedback for the agent:\n{feedback.feedback}")


class EventPlanResumer(PlanResumer):
    """Publishes a plan:resume event for whichever scheduler is listening."""

    def __init__(self, bus: EventBus):
        self.bus = bus

    def resume(self, plan_id: str) -> None:
        logger.info(f"[PLAN] Requesting resume of plan {plan_id}")
        self.bus.emit(PLAN_RESUME, plan_id=plan_id, status="running")
