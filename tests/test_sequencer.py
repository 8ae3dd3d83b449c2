import pytest

from autobot.config_loader import ConfigResolver
from autobot.gate_executor import GateExecutor
from autobot.sequencer import GateNotFoundError, GateSequencer
from conftest import FakeRunner, gate_failure, write_config


def _sequencer(store, runner):
    return GateSequencer(ConfigResolver(), GateExecutor(store, runner=runner))


def test_runs_enabled_gates_in_order(store, repo):
    write_config(repo, [
        {"name": "Tests", "command": "test", "order": 3},
        {"name": "Lint", "command": "lint", "order": 1},
        {"name": "Disabled", "command": "nope", "order": 2, "enabled": False},
    ])
    runner = FakeRunner()

    results = _sequencer(store, runner).run_all("task-1", str(repo))

    assert [r.gate_name for r in results] == ["Lint", "Tests"]
    assert runner.commands == ["lint", "test"]


def test_blocking_failure_skips_the_rest(store, repo):
    write_config(repo, [
        {"name": "Lint", "command": "lint", "order": 1},
        {"name": "Types", "command": "types", "order": 2},
        {"name": "Tests", "command": "test", "order": 3, "failOnError": False},
    ])
    runner = FakeRunner(failures={"lint": gate_failure()})

    results = _sequencer(store, runner).run_all("task-1", str(repo))

    assert [r.status for r in results] == ["failed", "skipped", "skipped"]
    assert runner.commands == ["lint"]
    assert [r.status for r in store.list_executions("task-1")] == ["failed", "skipped", "skipped"]


def test_non_blocking_failure_keeps_going(store, repo):
    write_config(repo, [
        {"name": "Tests", "command": "test", "order": 1, "failOnError": False},
        {"name": "Build", "command": "build", "order": 2},
    ])
    runner = FakeRunner(failures={"test": gate_failure()})

    results = _sequencer(store, runner).run_all("task-1", str(repo))

    assert [r.status for r in results] == ["failed", "passed"]
    assert runner.commands == ["test", "build"]


def test_no_enabled_gates_is_an_empty_run(store, repo):
    write_config(repo, [{"name": "Off", "command": "off", "enabled": False}])
    assert _sequencer(store, FakeRunner()).run_all("task-1", str(repo)) == []


def test_run_gate_ignores_enabled_flag(store, repo):
    write_config(repo, [
        {"name": "Lint", "command": "lint", "order": 1},
        {"name": "Build", "command": "build", "order": 2, "enabled": False},
    ])
    runner = FakeRunner()

    result = _sequencer(store, runner).run_gate("run-1", str(repo), "Build")

    assert result.status == "passed"
    assert runner.commands == ["build"]


def test_run_gate_unknown_name(store, repo):
    write_config(repo, [{"name": "Lint", "command": "lint"}])
    with pytest.raises(GateNotFoundError):
        _sequencer(store, FakeRunner()).run_gate("run-1", str(repo), "Deploy")
