import pytest

from autobot.controller import Controller, TaskNotFoundError
from autobot.event_bus import QA_UPDATE, TASK_UPDATE, EventBus
from autobot.ports import CommitMessageGenerator, Committer, CommitResult, PlanResumer
from autobot.state import FileChange, GateExecutionRecord, Plan, PlanTask, Task
from conftest import FakeRunner, gate_failure, write_config


class FakeMessageGenerator(CommitMessageGenerator):
    def __init__(self):
        self.calls = 0

    def generate(self, prompt, files_changed, diff, repo_path):
        self.calls += 1
        return f"feat: {prompt}"


class FakeCommitter(Committer):
    def __init__(self, error=None):
        self.error = error
        self.commits = []

    def commit(self, repo_path, files_changed, message):
        if self.error:
            raise self.error
        self.commits.append((repo_path, [f.path for f in files_changed], message))
        return CommitResult(sha="abc123", message=message, files_committed=[f.path for f in files_changed])


class StoreReadingResumer(PlanResumer):
    """Records the plan status visible in the store when resume is called."""

    def __init__(self, store, error=None):
        self.store = store
        self.error = error
        self.seen = []

    def resume(self, plan_id):
        self.seen.append((plan_id, self.store.get_plan(plan_id).status))
        if self.error:
            raise self.error


@pytest.fixture
def bus():
    bus = EventBus()
    bus.events = []
    bus.subscribe(bus.events.append)
    return bus


@pytest.fixture
def gates(repo):
    write_config(repo, [
        {"name": "Lint", "command": "lint", "order": 1},
        {"name": "Tests", "command": "test", "order": 2},
    ], max_retries=2)


def _controller(store, settings, bus, runner=None, **kwargs):
    kwargs.setdefault("committer", FakeCommitter())
    kwargs.setdefault("message_generator", FakeMessageGenerator())
    return Controller(store, settings, bus, runner=runner or FakeRunner(), **kwargs)


def _plan_step(store, task, plan_status="running", current=True):
    plan = store.save_plan(Plan(title="Refactor", status=plan_status))
    step = store.save_plan_task(PlanTask(plan_id=plan.id, task_id=task.id, status="running"))
    if current:
        store.update_plan(plan.id, current_task_id=step.id)
    return plan, step


def _with_changes(store, task, diff="diff --git a/src/app.ts b/src/app.ts"):
    return store.update_task(
        task.id,
        files_changed=[FileChange(path="src/app.ts", additions=3, deletions=1)],
        diff_content=diff,
    )


def test_unknown_task_mutates_nothing(store, settings, bus):
    with pytest.raises(TaskNotFoundError):
        _controller(store, settings, bus).run_task_qa_gates("missing")
    assert bus.events == []


def test_task_with_missing_repository(store, settings, bus):
    task = store.save_task(Task(repository_id="gone", status="waiting_qa"))

    with pytest.raises(TaskNotFoundError):
        _controller(store, settings, bus).run_task_qa_gates(task.id)
    assert store.get_task(task.id).status == "waiting_qa"


def test_pass_without_plan_waits_for_approval(store, settings, bus, task, gates):
    result = _controller(store, settings, bus).run_task_qa_gates(task.id)

    assert result.passed is True
    assert store.get_task(task.id).status == "waiting_approval"

    task_updates = [e.status for e in bus.events if e.event_type == TASK_UPDATE]
    assert task_updates == ["qa_running", "waiting_approval"]
    qa_updates = [(e.gate_name, e.status) for e in bus.events if e.event_type == QA_UPDATE]
    assert qa_updates == [("Lint", "passed"), ("Tests", "passed")]
    assert all(e.session_id == "session-1" for e in bus.events)


def test_failure_moves_to_qa_failed(store, settings, bus, task, gates):
    runner = FakeRunner(failures={"lint": gate_failure()})

    result = _controller(store, settings, bus, runner).run_task_qa_gates(task.id)

    assert result.passed is False
    assert [r.status for r in result.results] == ["failed", "skipped"]
    assert store.get_task(task.id).status == "qa_failed"


def test_stale_records_are_cleared(store, settings, bus, task, gates):
    stale = store.create_execution(GateExecutionRecord(run_id=task.id, gate_name="Old", command="old"))

    _controller(store, settings, bus).run_task_qa_gates(task.id)

    records = store.list_executions(task.id)
    assert stale.id not in [r.id for r in records]
    assert [r.gate_name for r in records] == ["Lint", "Tests"]


def test_store_failure_propagates(store, settings, bus, task, gates):
    def broken(record):
        raise OSError("disk full")

    store.create_execution = broken

    with pytest.raises(OSError):
        _controller(store, settings, bus).run_task_qa_gates(task.id)


def test_plan_step_without_changes_completes_without_commit(store, settings, bus, task, gates):
    plan, step = _plan_step(store, task)
    committer = FakeCommitter()

    _controller(store, settings, bus, committer=committer).run_task_qa_gates(task.id)

    assert committer.commits == []
    updated = store.get_task(task.id)
    assert updated.status == "completed"
    assert updated.completed_at is not None
    assert store.find_plan_task_for_task(task.id).status == "completed"
    assert store.find_plan_task_for_task(task.id).commit_sha is None


def test_plan_step_commits_and_records_sha(store, settings, bus, task, gates, repo):
    _with_changes(store, task)
    plan, step = _plan_step(store, task)
    committer = FakeCommitter()
    generator = FakeMessageGenerator()

    _controller(store, settings, bus, committer=committer, message_generator=generator).run_task_qa_gates(task.id)

    assert generator.calls == 1
    assert committer.commits == [(str(repo), ["src/app.ts"], "feat: Add a health check endpoint")]
    updated = store.get_task(task.id)
    assert updated.status == "completed"
    assert updated.committed_sha == "abc123"
    assert updated.commit_message == "feat: Add a health check endpoint"
    assert store.find_plan_task_for_task(task.id).commit_sha == "abc123"
    # Running plans are left alone.
    assert store.get_plan(plan.id).status == "running"


def test_missing_diff_uses_basic_message(store, settings, bus, task, gates):
    _with_changes(store, task, diff=None)
    _plan_step(store, task)
    committer = FakeCommitter()
    generator = FakeMessageGenerator()

    _controller(store, settings, bus, committer=committer, message_generator=generator).run_task_qa_gates(task.id)

    assert generator.calls == 0
    message = committer.commits[0][2]
    assert message.startswith("Add a health check endpoint\n")
    assert "- src/app.ts (modified)" in message


def test_commit_failure_falls_back_to_approval(store, settings, bus, task, gates):
    _with_changes(store, task)
    plan, step = _plan_step(store, task, plan_status="paused")
    resumer = StoreReadingResumer(store)

    result = _controller(
        store, settings, bus,
        committer=FakeCommitter(error=RuntimeError("index.lock exists")),
        plan_resumer=resumer,
    ).run_task_qa_gates(task.id)

    assert result.passed is True
    assert store.get_task(task.id).status == "waiting_approval"
    assert store.find_plan_task_for_task(task.id).status == "running"
    assert resumer.seen == []
    assert store.get_plan(plan.id).status == "paused"


@pytest.mark.parametrize("plan_status", ["paused", "failed"])
def test_blocked_plan_is_running_before_resume(store, settings, bus, task, gates, plan_status):
    _with_changes(store, task)
    plan, step = _plan_step(store, task, plan_status=plan_status)
    resumer = StoreReadingResumer(store)

    _controller(store, settings, bus, plan_resumer=resumer).run_task_qa_gates(task.id)

    assert resumer.seen == [(plan.id, "running")]
    assert store.get_plan(plan.id).status == "running"


def test_plan_blocked_on_another_step_is_not_resumed(store, settings, bus, task, gates):
    plan, step = _plan_step(store, task, plan_status="paused", current=False)
    resumer = StoreReadingResumer(store)

    _controller(store, settings, bus, plan_resumer=resumer).run_task_qa_gates(task.id)

    assert resumer.seen == []
    assert store.get_plan(plan.id).status == "paused"


def test_resume_failure_is_not_raised(store, settings, bus, task, gates):
    plan, step = _plan_step(store, task, plan_status="failed")
    resumer = StoreReadingResumer(store, error=RuntimeError("scheduler offline"))

    result = _controller(store, settings, bus, plan_resumer=resumer).run_task_qa_gates(task.id)

    assert result.passed is True
    assert store.get_task(task.id).status == "completed"
    assert store.find_plan_task_for_task(task.id).status == "completed"


def test_retry_mode(store, settings, bus, task, gates):
    runner = FakeRunner(failures={"lint": gate_failure()})

    result = _controller(store, settings, bus, runner).run_task_qa_gates(task.id, retry=True)

    assert result.passed is False
    assert runner.commands == ["lint", "lint"]
    updated = store.get_task(task.id)
    assert updated.status == "qa_failed"
    assert updated.current_qa_attempt == 2


def test_run_gates_for_task_leaves_status_alone(store, settings, bus, task, gates):
    result = _controller(store, settings, bus).run_gates_for_task(task.id)

    assert result.passed is True
    assert store.get_task(task.id).status == "waiting_qa"


def test_run_repository_gates(store, settings, bus, repo, gates):
    runner = FakeRunner()
    controller = _controller(store, settings, bus, runner)

    assert controller.run_repository_gates(str(repo)).passed is True
    assert controller.run_repository_gates(str(repo), gate_name="Tests").passed is True
    assert runner.commands == ["lint", "test", "test"]
    assert bus.events == []


def _task_updates(bus):
    return [e.status for e in bus.events if e.event_type == TASK_UPDATE]


def test_retry_mode_plan_step_goes_straight_to_completed(store, settings, bus, task, gates):
    _plan_step(store, task)

    _controller(store, settings, bus).run_task_qa_gates(task.id, retry=True)

    assert _task_updates(bus) == ["qa_running", "completed"]
    assert store.get_task(task.id).status == "completed"


def test_retry_mode_failure_publishes_one_transition(store, settings, bus, task, repo):
    write_config(repo, [{"name": "Lint", "command": "lint"}], max_retries=1)
    runner = FakeRunner(failures={"lint": gate_failure()})

    _controller(store, settings, bus, runner).run_task_qa_gates(task.id, retry=True)

    assert _task_updates(bus) == ["qa_running", "qa_failed"]


def test_retry_mode_publishes_each_attempt(store, settings, bus, task, gates):
    runner = FakeRunner(failures={"lint": gate_failure()})

    _controller(store, settings, bus, runner).run_task_qa_gates(task.id, retry=True)

    assert _task_updates(bus) == ["qa_running", "qa_running", "qa_failed"]
