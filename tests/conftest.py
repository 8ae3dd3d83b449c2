import json
from pathlib import Path

import pytest

from autobot.config_loader import EngineSettings
from autobot.runner import CommandError, CommandResult
from autobot.state import Repository, Task
from autobot.store import InMemoryStore


class FakeRunner:
    """Stands in for run_command: commands listed in `failures` raise, the rest pass."""

    def __init__(self, failures=None, outputs=None):
        self.failures = failures or {}
        self.outputs = outputs or {}
        self.calls: list[tuple[str, str, int]] = []

    def __call__(self, command, cwd, timeout_ms):
        self.calls.append((command, cwd, timeout_ms))
        if command in self.failures:
            raise self.failures[command]
        return CommandResult(stdout=self.outputs.get(command, ""), stderr="")

    @property
    def commands(self) -> list[str]:
        return [c[0] for c in self.calls]


def write_config(repo: Path, gates, max_retries=None) -> Path:
    data = {"version": "1.0", "qaGates": gates}
    if max_retries is not None:
        data["maxRetries"] = max_retries
    path = repo / ".autobot.json"
    path.write_text(json.dumps(data))
    return path


def gate_failure(stderr="src/a.ts:1 error\nsrc/b.ts:2 error", exit_code=1) -> CommandError:
    return CommandError(
        f"Command failed with exit code {exit_code}",
        stdout="",
        stderr=stderr,
        exit_code=exit_code,
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def repo(tmp_path):
    path = tmp_path / "repo"
    path.mkdir()
    return path


@pytest.fixture
def task(store, repo):
    repository = store.save_repository(Repository(name="repo", path=str(repo)))
    return store.save_task(Task(
        repository_id=repository.id,
        session_id="session-1",
        prompt="Add a health check endpoint",
        status="waiting_qa",
    ))
