"""Tests for the worker loop."""

import logging
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import pytest

from agent_pool.core import worktrees as worktrees_mod
from agent_pool.core.dispatcher import Dispatcher
from agent_pool.core.messages import AUTONOMY_DIRECTIVE, create_task, response_queue_key
from agent_pool.core.pool import get_agent
from agent_pool.core.worker import ShutdownFlag, Worker, WorkerState
from agent_pool.integrations.agent_cli import ToolResult

from conftest import git


@pytest.fixture
def workspace(pool_repo):
    return worktrees_mod.create_workspace(pool_repo, "executor-1")


@pytest.fixture
def worker_config(config, workspace, bare_remote):
    return replace(config, workspace_path=Path(workspace.path), remote_url=bare_remote)


def make_worker(pool, worker_config, store, shutdown=None):
    return Worker(get_agent(pool, "executor-1"), worker_config, store, shutdown=shutdown, direct=True)


def ok_tool(output="done"):
    return lambda command, stdin, cwd, timeout: ToolResult(exit_code=0, output=output)


def collect(store, task_id):
    return store.pop(response_queue_key(task_id), 0)


class TestExecute:
    @patch("agent_pool.core.worker.run_agent_tool")
    def test_success_publishes_response(self, mock_run, pool, worker_config, store):
        mock_run.return_value = ToolResult(exit_code=0, output="All done")
        task_id = Dispatcher(pool, store, worker_config).dispatch("executor-1", "Say hi").task_id

        processed = make_worker(pool, worker_config, store).run(once=True)

        assert processed == 1
        response = collect(store, task_id)
        assert response.type == "response"
        assert response.content == "All done"
        assert response.to == "planner"
        assert response.sender == "executor-1"
        assert response.in_response_to == task_id

    @patch("agent_pool.core.worker.run_agent_tool")
    def test_prompt_and_command(self, mock_run, pool, worker_config, store, workspace):
        mock_run.return_value = ToolResult(exit_code=0, output="")
        Dispatcher(pool, store, worker_config).dispatch("executor-1", "Fix the bug")

        make_worker(pool, worker_config, store).run(once=True)

        command, stdin, cwd, timeout = mock_run.call_args.args
        assert command[0] == "claude"
        assert stdin.startswith("Fix the bug")
        assert stdin.endswith(AUTONOMY_DIRECTIVE)
        assert Path(cwd) == Path(workspace.path)
        assert timeout == worker_config.exec_timeout

    @patch("agent_pool.core.worker.run_agent_tool")
    def test_no_directive_without_auto_approve(self, mock_run, pool, worker_config, store):
        mock_run.return_value = ToolResult(exit_code=0, output="")
        Dispatcher(pool, store, worker_config).dispatch(
            "executor-1", "Just this", metadata={"autoApprove": False}
        )
        make_worker(pool, worker_config, store).run(once=True)
        assert mock_run.call_args.args[1] == "Just this"

    @patch("agent_pool.core.worker.run_agent_tool")
    def test_via_docker_exec(self, mock_run, pool, worker_config, store):
        mock_run.return_value = ToolResult(exit_code=0, output="")
        Dispatcher(pool, store, worker_config).dispatch("executor-1", "x")

        worker = Worker(get_agent(pool, "executor-1"), worker_config, store, direct=False)
        worker.run(once=True)

        command = mock_run.call_args.args[0]
        assert command[:3] == ["docker", "exec", "-i"]
        assert "apool-executor-1" in command
        container_at = command.index("apool-executor-1")
        assert command[container_at + 1:container_at + 5] == ["timeout", "-s", "KILL", "300"]
        assert mock_run.call_args.args[2] is None

    @patch("agent_pool.core.worker.run_agent_tool")
    def test_tool_failure_publishes_error(self, mock_run, pool, worker_config, store):
        mock_run.return_value = ToolResult(exit_code=2, output="bad flag")
        task_id = Dispatcher(pool, store, worker_config).dispatch("executor-1", "x").task_id

        make_worker(pool, worker_config, store).run(once=True)

        response = collect(store, task_id)
        assert response.type == "error"
        assert "status 2" in response.content
        assert "bad flag" in response.content

    @patch("agent_pool.core.worker.run_agent_tool")
    def test_timeout_publishes_error(self, mock_run, pool, worker_config, store):
        mock_run.return_value = ToolResult(exit_code=-1, output="", timed_out=True)
        task_id = Dispatcher(pool, store, worker_config).dispatch("executor-1", "x").task_id

        make_worker(pool, worker_config, store).run(once=True)

        response = collect(store, task_id)
        assert response.type == "error"
        assert "timed out" in response.content

    @patch("agent_pool.core.worker.run_agent_tool")
    def test_unexpected_exception_publishes_error(self, mock_run, pool, worker_config, store):
        mock_run.side_effect = RuntimeError("kaboom")
        task_id = Dispatcher(pool, store, worker_config).dispatch("executor-1", "x").task_id

        make_worker(pool, worker_config, store).run(once=True)

        response = collect(store, task_id)
        assert response.type == "error"
        assert "kaboom" in response.content

    def test_host_executor_creates_workspace(self, pool, config, store, pool_repo):
        expected = Path(pool_repo).resolve() / ".agentpool" / "worktrees" / "executor-1"
        seen = []

        def tool(command, stdin, cwd, timeout):
            seen.append(Path(cwd).resolve())
            return ToolResult(exit_code=0, output="done")

        task = create_task("planner", "executor-1", "x")
        worker = Worker(get_agent(pool, "executor-1"), config, store, direct=True)
        with patch("agent_pool.core.worker.run_agent_tool", tool):
            outcome = worker.handle(task)

        assert outcome.ok is True
        assert seen == [expected]
        assert [ws.agent_name for ws in worktrees_mod.list_workspaces(pool_repo)] == ["executor-1"]

    def test_response_expires(self, pool, worker_config, store, redis_client):
        task = create_task("planner", "executor-1", "x")
        worker = make_worker(pool, worker_config, store)
        with patch("agent_pool.core.worker.run_agent_tool", ok_tool()):
            worker.handle(task)
        ttl = redis_client.ttl(response_queue_key(task.id))
        assert 0 < ttl <= worker_config.response_ttl


class TestCommit:
    def test_changes_committed_and_pushed(self, pool, worker_config, store, workspace, bare_remote):
        def edit_files(command, stdin, cwd, timeout):
            Path(cwd, "hello.txt").write_text("hello")
            return ToolResult(exit_code=0, output="wrote hello.txt")

        task = create_task("planner", "executor-1", "Create hello.txt with a friendly greeting inside it please")
        with patch("agent_pool.core.worker.run_agent_tool", edit_files):
            outcome = make_worker(pool, worker_config, store).handle(task)

        assert outcome.committed is True
        assert outcome.pushed is True
        assert outcome.branch == "executor/executor-1"
        assert outcome.warnings == []

        message = git(["log", "-1", "--format=%B"], workspace.path)
        assert message.startswith("[executor-1] Create hello.txt with a friendly greeting inside i...")
        assert f"Task ID: {task.id}" in message
        assert git(["log", "-1", "--format=%an"], workspace.path) == "agent-pool executor-1"
        assert "hello.txt" in git(["ls-tree", "--name-only", "executor/executor-1"], bare_remote)

        response = collect(store, task.id)
        assert response.metadata["committed"] is True
        assert response.metadata["pushed"] is True

    def test_no_changes(self, pool, worker_config, store, workspace):
        task = create_task("planner", "executor-1", "Just look around")
        before = git(["rev-parse", "HEAD"], workspace.path)
        with patch("agent_pool.core.worker.run_agent_tool", ok_tool()):
            outcome = make_worker(pool, worker_config, store).handle(task)
        assert outcome.committed is False
        assert git(["rev-parse", "HEAD"], workspace.path) == before

    def test_metadata_dir_not_committed(self, pool, worker_config, store, workspace):
        def edit_files(command, stdin, cwd, timeout):
            Path(cwd, ".agentpool").mkdir(exist_ok=True)
            Path(cwd, ".agentpool", "state.json").write_text("{}")
            Path(cwd, "code.py").write_text("x = 1\n")
            return ToolResult(exit_code=0, output="")

        task = create_task("planner", "executor-1", "x")
        with patch("agent_pool.core.worker.run_agent_tool", edit_files):
            make_worker(pool, worker_config, store).handle(task)

        files = git(["ls-tree", "-r", "--name-only", "HEAD"], workspace.path).splitlines()
        assert "code.py" in files
        assert ".agentpool/state.json" not in files

    def test_push_failure_still_responds(self, pool, worker_config, store, workspace, caplog):
        config = replace(worker_config, remote_url=str(Path(workspace.path).parent / "missing.git"))

        def edit_files(command, stdin, cwd, timeout):
            Path(cwd, "change.txt").write_text("change")
            return ToolResult(exit_code=0, output="changed")

        task = create_task("planner", "executor-1", "Change something")
        with caplog.at_level(logging.WARNING, logger="agent_pool.core.worker"):
            with patch("agent_pool.core.worker.run_agent_tool", edit_files):
                outcome = make_worker(pool, config, store).handle(task)

        assert outcome.ok is True
        assert outcome.committed is True
        assert outcome.pushed is False
        assert len(outcome.warnings) == 1
        assert any("Push of executor/executor-1 failed" in r.message for r in caplog.records)

        response = collect(store, task.id)
        assert response.type == "response"
        assert response.content == "changed"
        assert response.metadata["pushed"] is False
        assert response.metadata["warnings"] == outcome.warnings

    def test_partial_changes_kept_on_failure(self, pool, worker_config, store, workspace):
        def half_done(command, stdin, cwd, timeout):
            Path(cwd, "partial.txt").write_text("half")
            return ToolResult(exit_code=1, output="crashed")

        task = create_task("planner", "executor-1", "x")
        with patch("agent_pool.core.worker.run_agent_tool", half_done):
            outcome = make_worker(pool, worker_config, store).handle(task)

        assert outcome.ok is False
        assert outcome.committed is True
        assert collect(store, task.id).type == "error"


class TestLoop:
    def test_fifo_order(self, pool, worker_config, store):
        shutdown = ShutdownFlag()
        seen = []

        def record(command, stdin, cwd, timeout):
            seen.append(stdin.split("\n")[0])
            if len(seen) == 3:
                shutdown.set()
            return ToolResult(exit_code=0, output="")

        dispatcher = Dispatcher(pool, store, worker_config)
        for content in ["one", "two", "three"]:
            dispatcher.dispatch("executor-1", content)

        with patch("agent_pool.core.worker.run_agent_tool", record):
            processed = make_worker(pool, worker_config, store, shutdown).run()

        assert processed == 3
        assert seen == ["one", "two", "three"]

    def test_only_own_queue(self, pool, worker_config, store):
        dispatcher = Dispatcher(pool, store, worker_config)
        dispatcher.dispatch("executor-2", "not mine")
        mine = dispatcher.dispatch("executor-1", "mine").task_id

        with patch("agent_pool.core.worker.run_agent_tool", ok_tool()):
            make_worker(pool, worker_config, store).run(once=True)

        assert collect(store, mine).type == "response"
        assert store.length("queue:executor-2") == 1

    def test_shutdown_finishes_in_flight_task(self, pool, worker_config, store):
        shutdown = ShutdownFlag()
        dispatcher = Dispatcher(pool, store, worker_config)
        first = dispatcher.dispatch("executor-1", "first").task_id
        second = dispatcher.dispatch("executor-1", "second").task_id

        def interrupted(command, stdin, cwd, timeout):
            Path(cwd, "work.txt").write_text("done")
            shutdown.set()
            return ToolResult(exit_code=0, output="finished")

        worker = make_worker(pool, worker_config, store, shutdown)
        with patch("agent_pool.core.worker.run_agent_tool", interrupted):
            processed = worker.run()

        assert processed == 1
        assert worker.state is WorkerState.STOPPED
        response = collect(store, first)
        assert response.type == "response"
        assert response.metadata["committed"] is True
        # The next task is left for the next worker.
        assert collect(store, second) is None
        assert store.length("queue:executor-1") == 1

    def test_draining_while_in_flight_task_finishes(self, pool, worker_config, store):
        shutdown = ShutdownFlag()
        worker = make_worker(pool, worker_config, store, shutdown)
        states = []

        def interrupted(command, stdin, cwd, timeout):
            states.append(worker.state)
            shutdown.set()
            return ToolResult(exit_code=0, output="finished")

        real_publish = Worker.publish

        def recording_publish(self, task, outcome):
            states.append(self.state)
            real_publish(self, task, outcome)

        Dispatcher(pool, store, worker_config).dispatch("executor-1", "x")
        with patch("agent_pool.core.worker.run_agent_tool", interrupted), \
                patch.object(Worker, "publish", recording_publish):
            worker.run()

        assert states == [WorkerState.EXECUTING, WorkerState.DRAINING]
        assert worker.state is WorkerState.STOPPED

    def test_malformed_message_skipped(self, pool, worker_config, store, redis_client):
        redis_client.rpush("queue:executor-1", "garbage")
        dispatcher = Dispatcher(pool, store, worker_config)
        task_id = dispatcher.dispatch("executor-1", "real").task_id

        worker = make_worker(pool, worker_config, store)
        assert worker.poll() is None
        with patch("agent_pool.core.worker.run_agent_tool", ok_tool()):
            worker.run(once=True)
        assert collect(store, task_id).type == "response"

    @patch("agent_pool.integrations.slack.send_message")
    def test_slack_notice(self, mock_send, pool, worker_config, store):
        config = replace(worker_config, slack_bot_token="xoxb-test", slack_channel="#agents")
        task = create_task("planner", "executor-1", "x")
        with patch("agent_pool.core.worker.run_agent_tool", ok_tool()):
            make_worker(pool, config, store).handle(task)

        token, channel, text, blocks = mock_send.call_args.args
        assert channel == "#agents"
        assert text == f"executor-1 completed {task.id}"
        assert task.id in blocks[0]["text"]["text"]

    @patch("agent_pool.integrations.slack.send_message")
    def test_slack_failure_does_not_affect_response(self, mock_send, pool, worker_config, store):
        from agent_pool.integrations.slack import SlackError

        mock_send.side_effect = SlackError("channel_not_found")
        config = replace(worker_config, slack_bot_token="xoxb-test", slack_channel="#agents")
        task = create_task("planner", "executor-1", "x")
        with patch("agent_pool.core.worker.run_agent_tool", ok_tool()):
            outcome = make_worker(pool, config, store).handle(task)

        assert outcome.published is True
        assert collect(store, task.id).type == "response"

    def test_signal_handler_sets_flag(self):
        import signal

        shutdown = ShutdownFlag()
        shutdown._handle_signal(signal.SIGTERM, None)
        assert shutdown.is_set()
