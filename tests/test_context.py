"""Tests for RepositoryContext state transitions and stale-result handling."""

import logging
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from git import Repo

from gitstage.core.command import CommandResult, CommandRunner
from gitstage.core.config import GitStageConfig
from gitstage.core.context import RepositoryContext
from gitstage.core.errors import (
    Busy,
    CommandTimeout,
    NoRepository,
    NotFound,
    SpawnFailure,
    Truncated,
)
from gitstage.models.change import FileStatus
from gitstage.models.state import ContextState


class ScriptedRunner(CommandRunner):
    """Serves canned status output per repository, optionally held on a gate."""

    def __init__(self):
        super().__init__(GitStageConfig(git_executable="git", timeout=5))
        self.outputs: Dict[Path, object] = {}
        self.after_add: Dict[Path, bytes] = {}
        self.gates: Dict[Path, threading.Event] = {}
        self.calls: List[tuple] = []

    def run(self, repo_path, args, timeout: Optional[float] = None):
        self.calls.append((repo_path, list(args)))
        gate = self.gates.get(repo_path)
        if gate is not None:
            assert gate.wait(5)
        if args[0] == "add":
            self.outputs[repo_path] = self.after_add[repo_path]
            return CommandResult(0, b"", b"", args)
        if args[0] == "reset":
            return CommandResult(0, b"", b"", args)
        output = self.outputs[repo_path]
        if isinstance(output, Exception):
            raise output
        return CommandResult(0, output, b"", args)


@pytest.fixture
def repos(tmp_path):
    a = (tmp_path / "repo-a").resolve()
    b = (tmp_path / "repo-b").resolve()
    a.mkdir()
    b.mkdir()
    return a, b


@pytest.fixture
def runner():
    return ScriptedRunner()


@pytest.fixture
def context(runner):
    ctx = RepositoryContext(runner=runner)
    yield ctx
    for gate in runner.gates.values():
        gate.set()
    ctx.shutdown()


def pump_until(context, predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        context.process_pending()
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_open_scans_and_becomes_ready(context, runner, repos):
    a, _ = repos
    runner.outputs[a] = b" M a.txt\0?? new.txt\0"
    notifications = []
    context.subscribe(notifications.append)

    context.open(a)
    assert context.state == ContextState.SCANNING
    assert context.wait(5)

    assert context.state == ContextState.READY
    assert context.repo_path == a
    assert context.generation == 1
    assert [r.path for r in context.records()] == [b"a.txt", b"new.txt"]

    states = [n.state for n in notifications]
    assert states == [ContextState.SCANNING, ContextState.READY]
    assert notifications[0].repo_path == a
    assert notifications[0].snapshot == ()
    ready = notifications[-1]
    assert ready.generation == 1
    assert [r.path for r in ready.snapshot] == [b"a.txt", b"new.txt"]


def test_refresh_publishes_diff_not_snapshot(context, runner, repos):
    a, _ = repos
    runner.outputs[a] = b" M a.txt\0"
    context.open(a)
    context.wait(5)
    notifications = []
    context.subscribe(notifications.append)

    runner.outputs[a] = b" M a.txt\0 M b.txt\0"
    context.refresh()
    context.wait(5)

    ready = notifications[-1]
    assert ready.state == ContextState.READY
    assert ready.generation == 2
    assert ready.snapshot is None
    assert ready.diff.added == {b"b.txt"}


def test_switch_repository_discards_late_result(context, runner, repos):
    """Test that a slow scan of A finishing after open(B) never touches B's model."""
    a, b = repos
    runner.outputs[a] = b" M from-a.txt\0"
    runner.outputs[b] = b" M from-b.txt\0"
    runner.gates[a] = threading.Event()
    notifications = []
    context.subscribe(notifications.append)

    context.open(a)
    context.open(b)
    assert pump_until(context, lambda: context.state == ContextState.READY)
    assert [r.path for r in context.records()] == [b"from-b.txt"]

    runner.gates[a].set()
    assert context.wait(5)

    assert context.repo_path == b
    assert context.generation == 1
    assert [r.path for r in context.records()] == [b"from-b.txt"]
    for notification in notifications:
        for rec in notification.snapshot or ():
            assert rec.path != b"from-a.txt"


def test_refresh_supersedes_inflight_scan(context, runner, repos):
    a, _ = repos
    runner.outputs[a] = b" M first.txt\0"
    runner.gates[a] = threading.Event()

    context.open(a)
    context.refresh()
    runner.outputs[a] = b" M second.txt\0"
    runner.gates[a].set()
    assert context.wait(5)

    assert context.generation == 1
    assert [r.path for r in context.records()] == [b"second.txt"]


def test_failed_refresh_keeps_previous_snapshot(context, runner, repos):
    a, _ = repos
    runner.outputs[a] = b" M a.txt\0"
    context.open(a)
    context.wait(5)

    runner.outputs[a] = b" M a.txt\0 M b.t"
    context.refresh()
    context.wait(5)

    assert context.state == ContextState.ERROR
    assert isinstance(context.last_error, Truncated)
    assert context.stale
    assert context.generation == 1
    assert [r.path for r in context.records()] == [b"a.txt"]

    runner.outputs[a] = b" M a.txt\0"
    context.refresh()
    context.wait(5)
    assert context.state == ContextState.READY
    assert not context.stale


@pytest.mark.parametrize("error", [SpawnFailure("git", "Permission denied"), CommandTimeout("git status", 5)])
def test_spawn_and_timeout_failures_enter_error(context, runner, repos, error):
    a, _ = repos
    runner.outputs[a] = error
    notifications = []
    context.subscribe(notifications.append)

    context.open(a)
    context.wait(5)

    assert context.state == ContextState.ERROR
    assert context.last_error is error
    assert notifications[-1].error is error
    assert notifications[-1].stale


def test_stage_rejected_outside_ready(context, runner, repos):
    a, _ = repos
    with pytest.raises(NoRepository):
        context.stage("a.txt")
    with pytest.raises(NoRepository):
        context.refresh()

    runner.outputs[a] = b" M a.txt\0"
    runner.gates[a] = threading.Event()
    context.open(a)
    with pytest.raises(Busy):
        context.stage("a.txt")
    assert context.state == ContextState.SCANNING

    runner.gates[a].set()
    context.wait(5)
    runner.outputs[a] = SpawnFailure("git", "gone")
    context.refresh()
    context.wait(5)
    with pytest.raises(NoRepository):
        context.unstage("a.txt")
    assert context.state == ContextState.ERROR


def test_stage_unknown_path_is_not_found(context, runner, repos):
    a, _ = repos
    runner.outputs[a] = b" M a.txt\0"
    context.open(a)
    context.wait(5)

    with pytest.raises(NotFound):
        context.stage("gone.txt")
    assert context.state == ContextState.READY


def test_stage_replaces_model_from_fresh_status(context, runner, repos):
    a, _ = repos
    runner.outputs[a] = b" M a.txt\0"
    runner.after_add[a] = b"M  a.txt\0"
    context.open(a)
    context.wait(5)

    context.stage("a.txt")
    assert context.wait(5)

    assert context.state == ContextState.READY
    assert context.generation == 2
    assert context.model.get("a.txt").index_status == FileStatus.MODIFIED
    assert [c[1][0] for c in runner.calls] == ["status", "add", "status"]


def test_second_mutation_while_outstanding_is_busy(context, runner, repos):
    a, _ = repos
    runner.outputs[a] = b" M a.txt\0 M b.txt\0"
    runner.after_add[a] = b"M  a.txt\0 M b.txt\0"
    context.open(a)
    context.wait(5)

    runner.gates[a] = threading.Event()
    context.stage("a.txt")
    with pytest.raises(Busy):
        context.stage("b.txt")
    with pytest.raises(Busy):
        context.unstage("a.txt")

    runner.gates[a].set()
    context.wait(5)
    context.stage("b.txt")
    assert context.wait(5)


def test_close_returns_to_empty(context, runner, repos):
    a, _ = repos
    runner.outputs[a] = b" M a.txt\0"
    runner.gates[a] = threading.Event()
    context.open(a)
    context.close()
    runner.gates[a].set()
    context.wait(5)

    assert context.state == ContextState.EMPTY
    assert context.model is None
    assert context.records() == ()


def test_wakeup_called_from_worker(runner, repos):
    a, _ = repos
    runner.outputs[a] = b""
    woke = threading.Event()
    context = RepositoryContext(runner=runner, wakeup=woke.set)
    try:
        context.open(a)
        assert woke.wait(5)
        assert context.process_pending() == 1
        assert context.state == ContextState.READY
        assert len(context.model) == 0
    finally:
        context.shutdown()


def test_real_repository_stage_and_unstage(temp_git_repo):
    (temp_git_repo / "a.txt").write_text("changed\n")
    with RepositoryContext(GitStageConfig()) as context:
        context.open(temp_git_repo)
        assert context.wait(10)
        before = context.model.get("a.txt").index_status

        context.stage("a.txt")
        context.wait(10)
        assert context.model.get("a.txt").staged

        context.unstage("a.txt")
        context.wait(10)
        assert context.model.get("a.txt").index_status == before
        assert context.generation == 3


def test_refresh_during_stage_still_stages(temp_git_repo):
    """Test that a refresh issued before the stage job starts does not drop the stage."""
    (temp_git_repo / "a.txt").write_text("changed\n")
    with RepositoryContext(GitStageConfig()) as context:
        context.open(temp_git_repo)
        assert context.wait(10)

        # Hold the repository's lane so both requests queue behind it.
        gate = threading.Event()
        context._pool.submit(context.repo_path, lambda: gate.wait(10))
        context.stage("a.txt")
        context.refresh()
        gate.set()
        assert context.wait(10)

        assert context.state == ContextState.READY
        assert [d.a_path for d in Repo(temp_git_repo).index.diff("HEAD")] == ["a.txt"]
        assert context.model.get("a.txt").index_status == FileStatus.MODIFIED
        assert context.generation == 2


def test_superseded_mutation_skips_only_the_status_read(context, runner, repos):
    a, _ = repos
    runner.outputs[a] = b" M a.txt\0"
    runner.after_add[a] = b"M  a.txt\0"
    context.open(a)
    context.wait(5)

    runner.gates[a] = threading.Event()
    context.stage("a.txt")
    context.refresh()
    runner.gates[a].set()
    assert context.wait(5)

    assert [c[1][0] for c in runner.calls] == ["status", "add", "status"]
    assert context.model.get("a.txt").staged


def test_scan_completion_logs_state_transition(context, runner, repos, caplog):
    a, _ = repos
    runner.outputs[a] = b""
    with caplog.at_level(logging.DEBUG, logger="gitstage.core.context"):
        context.open(a)
        context.wait(5)

    assert "State scanning -> ready" in caplog.text


def test_not_a_repository_enters_error(tmp_path):
    with RepositoryContext(GitStageConfig()) as context:
        context.open(tmp_path)
        context.wait(10)

        assert context.state == ContextState.ERROR
        assert "not a git repository" in str(context.last_error).lower()
