"""
AUTOBOT Workspace Git Operations

Default commit collaborators for the auto-approval path: a plain commit
message built from the task itself, and a committer that stages exactly
the files the task changed and commits them in the repository.
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

from loguru import logger

from autobot.ports import CommitMessageGenerator, Committer, CommitResult
from autobot.sandbox import PathTranslator
from autobot.state import FileChange


class WorkspaceError(Exception):
    pass


def basic_commit_message(prompt: str, files_changed: list[FileChange]) -> str:
    """Build a commit message from the task prompt and file stats alone."""
    file_count = len(files_changed)
    insertions = sum(f.additions for f in files_changed)
    deletions = sum(f.deletions for f in files_changed)
    subject = prompt if len(prompt) <= 50 else prompt[:50] + "..."

    body = [
        "",
        f"{file_count} file{'' if file_count == 1 else 's'} changed",
        f"+{insertions} insertions, -{deletions} deletions",
        "",
        "Files modified:",
        *(f"- {f.path} ({f.status})" for f in files_changed),
    ]
    return subject + "\n" + "\n".join(body)


class BasicCommitMessageGenerator(CommitMessageGenerator):
    def generate(
        self,
        prompt: str,
        files_changed: list[FileChange],
        diff: str,
        repo_path: str,
    ) -> str:
        return basic_commit_message(prompt, files_changed)


def _git_safe_env() -> dict[str, str]:
    # Sandboxed checkouts are often owned by another uid, and may have no identity.
    env = dict(os.environ)
    env.update({
        "GIT_CONFIG_COUNT": "3",
        "GIT_CONFIG_KEY_0": "safe.directory",
        "GIT_CONFIG_VALUE_0": "*",
        "GIT_CONFIG_KEY_1": "user.name",
        "GIT_CONFIG_VALUE_1": env.get("AUTOBOT_GIT_NAME", "Autobot"),
        "GIT_CONFIG_KEY_2": "user.email",
        "GIT_CONFIG_VALUE_2": env.get("AUTOBOT_GIT_EMAIL", "autobot@example.com"),
    })
    return env


class GitCommitter(Committer):
    """Commits a task's changed files in the (sandbox-translated) repository."""

    def __init__(self, translator: PathTranslator | None = None):
        self.translator = translator or PathTranslator()

    def commit(self, repo_path: str, files_changed: list[FileChange], message: str) -> CommitResult:
        cwd = Path(self.translator.translate(repo_path))
        logger.info(f"[WORKSPACE] Committing {len(files_changed)} files in {cwd}")

        for change in files_changed:
            if change.status == "deleted":
                self._git(cwd, "rm", "--", change.path)
            else:
                self._git(cwd, "add", "--", change.path)

        self._git(cwd, "commit", "-F", "-", stdin=message)
        sha = self._git(cwd, "rev-parse", "HEAD").strip()
        logger.info(f"[WORKSPACE] Commit SHA: {sha}")

        return CommitResult(
            sha=sha,
            message=message,
            files_committed=[f.path for f in files_changed],
        )

    @staticmethod
    def _git(cwd: Path, *args: str, stdin: str | None = None) -> str:
        cmd = ["git", *args]
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=30,
                env=_git_safe_env(),
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise WorkspaceError(f"Git failed: {' '.join(cmd)}\n{e}") from e
        if result.returncode != 0:
            raise WorkspaceError(f"Git failed: {' '.join(cmd)}\n{result.stderr}")
        return result.stdout
