"""Worker loop: consume one agent's queue, run its tool, persist and report."""

import enum
import logging
import signal
import threading
from pathlib import Path

from agent_pool.config import Config
from agent_pool.core.messages import (
    build_prompt,
    create_response,
    response_queue_key,
    task_queue_key,
)
from agent_pool.core.models import AgentDescriptor, TaskMessage, TaskOutcome
from agent_pool.core.runtime import container_name
from agent_pool.core.worktrees import WorkspaceError, create_workspace
from agent_pool.integrations.agent_cli import in_container, run_agent_tool
from agent_pool.integrations.git import (
    GitError,
    add_all,
    commit,
    get_current_branch,
    get_status,
    push,
)
from agent_pool.integrations.queue_store import QueueStore

logger = logging.getLogger(__name__)

CONTAINER_WORKSPACE = "/workspace"


class ExecutionError(Exception):
    """Raised when the agent's tool fails or times out."""


class WorkerState(enum.Enum):
    IDLE = "idle"
    EXECUTING = "executing"
    COMMITTING = "committing"
    PUBLISHING = "publishing"
    DRAINING = "draining"
    STOPPED = "stopped"


class ShutdownFlag:
    """Cancellation flag checked by the worker after every bounded wait."""

    def __init__(self):
        self._event = threading.Event()

    def set(self):
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)

    def install_signal_handlers(self, signals=(signal.SIGINT, signal.SIGTERM)):
        """Route process signals to the flag instead of raising KeyboardInterrupt."""
        for sig in signals:
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame):
        if self.is_set():
            logger.info("Shutdown already requested")
            return
        logger.info(
            "Received %s, finishing the current task before exit",
            signal.Signals(signum).name,
        )
        self.set()


class Worker:
    """Long-running consumer bound to a single agent."""

    def __init__(
        self,
        agent: AgentDescriptor,
        config: Config,
        store: QueueStore,
        shutdown: ShutdownFlag | None = None,
        direct: bool | None = None,
    ):
        self.agent = agent
        self.config = config
        self.store = store
        self.shutdown = shutdown or ShutdownFlag()
        # Direct mode runs the tool in this process's environment; otherwise
        # it is run through `docker exec` in the agent's container.
        self.direct = config.inside_container if direct is None else direct
        self.queue = task_queue_key(agent.queue_name)
        self.workspace_path = self._resolve_workspace()
        self.state = WorkerState.IDLE

    def _resolve_workspace(self) -> Path:
        if self.config.workspace_path:
            return Path(self.config.workspace_path)
        if self.config.inside_container:
            return Path(CONTAINER_WORKSPACE)
        if self.agent.role == "executor":
            return self.config.worktree_base() / self.agent.name
        return Path(self.config.repo_path)

    @property
    def container(self) -> str:
        return container_name(self.config, self.agent)

    def _enter(self, state: WorkerState):
        # Everything after a shutdown request is the in-flight task draining.
        if self.shutdown.is_set():
            state = WorkerState.DRAINING
        self.state = state

    def ensure_workspace(self):
        """Create this executor's worktree on first use when running on the host."""
        if self.config.workspace_path or self.config.inside_container:
            return
        if self.agent.role != "executor" or self.workspace_path.exists():
            return
        ws = create_workspace(
            self.config.repo_path,
            self.agent.name,
            self.agent.branch,
            self.config.worktree_dir,
        )
        logger.info("Created workspace %s for %s", ws.path, self.agent.name)

    # ── Loop ────────────────────────────────────────────────────────────────

    def run(self, once: bool = False) -> int:
        """Process tasks until shutdown is requested. Returns the task count."""
        self.store.ping()
        logger.info(
            "Worker %s listening on %s (workspace %s)",
            self.agent.name, self.queue, self.workspace_path,
        )

        processed = 0
        while not self.shutdown.is_set():
            self._enter(WorkerState.IDLE)
            task = self.poll()
            if task is None:
                continue

            outcome = self.handle(task)
            processed += 1
            if not outcome.published:
                logger.error("Response for %s was not published", task.id)
            if once:
                break

        if self.shutdown.is_set():
            logger.info("Worker %s drained after %d task(s)", self.agent.name, processed)
        self.state = WorkerState.STOPPED
        logger.info("Worker %s stopped", self.agent.name)
        return processed

    def poll(self) -> TaskMessage | None:
        """Wait a bounded time for the next task."""
        try:
            task = self.store.pop(self.queue, self.config.poll_timeout)
        except ValueError:
            logger.exception("Discarding malformed message from %s", self.queue)
            return None
        if task is not None and task.type != "task":
            logger.warning("Ignoring %s message %s on %s", task.type, task.id, self.queue)
            return None
        return task

    def handle(self, task: TaskMessage) -> TaskOutcome:
        """Execute, commit and publish one task. Never raises."""
        outcome = TaskOutcome(task_id=task.id)
        logger.info("Task %s received from %s", task.id, task.sender)

        self._enter(WorkerState.EXECUTING)
        try:
            outcome.output = self.execute(task)
            outcome.ok = True
            logger.info("Task %s completed", task.id)
        except ExecutionError as e:
            outcome.error = str(e)
            logger.error("Task %s failed: %s", task.id, e)
        except Exception as e:
            outcome.error = f"Unexpected error: {e}"
            logger.exception("Task %s failed unexpectedly", task.id)

        self._enter(WorkerState.COMMITTING)
        try:
            self.commit_changes(task, outcome)
        except Exception as e:
            outcome.warnings.append(f"Commit step failed: {e}")
            logger.exception("Commit step failed for %s", task.id)

        self._enter(WorkerState.PUBLISHING)
        try:
            self.publish(task, outcome)
        except Exception:
            logger.exception("Could not publish response for %s", task.id)

        self._notify(task, outcome)
        self._enter(WorkerState.IDLE)
        return outcome

    # ── Steps ───────────────────────────────────────────────────────────────

    def execute(self, task: TaskMessage) -> str:
        prompt = build_prompt(task)
        provider = self.agent.provider
        command = provider.build_command(prompt, self.agent.model)
        stdin = prompt if provider.prompt_via_stdin else None

        try:
            self.ensure_workspace()
        except (WorkspaceError, GitError) as e:
            raise ExecutionError(f"Could not create workspace {self.workspace_path}: {e}") from e

        if self.direct:
            cwd = self.workspace_path
        else:
            command = in_container(
                self.container, command,
                workdir=CONTAINER_WORKSPACE, timeout=self.config.exec_timeout,
            )
            cwd = None

        result = run_agent_tool(command, stdin, cwd, self.config.exec_timeout)
        if result.timed_out:
            raise ExecutionError(
                f"{provider.command} timed out after {self.config.exec_timeout}s"
            )
        if result.exit_code != 0:
            tail = result.output.strip()[-2000:]
            raise ExecutionError(
                f"{provider.command} exited with status {result.exit_code}: {tail}"
            )
        return result.output

    def commit_changes(self, task: TaskMessage, outcome: TaskOutcome):
        """Commit and push workspace changes. Failures only add warnings."""
        cwd = self.workspace_path
        try:
            status = get_status(cwd)
            if not status:
                logger.info("No changes to commit for %s", task.id)
                return

            add_all(cwd, exclude=[self.config.metadata_dir])
            commit(
                cwd,
                _commit_message(self.agent.name, task),
                author_name=f"agent-pool {self.agent.name}",
                author_email=f"{self.agent.name}@agent-pool.local",
            )
            outcome.committed = True
            outcome.branch = get_current_branch(cwd) or self.agent.name
        except GitError as e:
            message = f"Could not commit changes: {e}"
            outcome.warnings.append(message)
            logger.warning("Task %s: %s", task.id, message)
            return

        self._push(outcome)

    def _push(self, outcome: TaskOutcome):
        cwd = self.workspace_path
        target = self.config.push_target
        timeout = self.config.push_timeout
        try:
            push(cwd, target, outcome.branch, timeout=timeout)
            outcome.pushed = True
        except GitError as first:
            logger.info("Push of %s failed, retrying as new branch: %s", outcome.branch, first)
            try:
                push(cwd, target, outcome.branch, set_upstream=True, timeout=timeout)
                outcome.pushed = True
            except GitError as e:
                message = f"Push of {outcome.branch} failed; commit kept locally: {e}"
                outcome.warnings.append(message)
                logger.warning("Task %s: %s", outcome.task_id, message)
                return
        logger.info("Pushed %s", outcome.branch)

    def publish(self, task: TaskMessage, outcome: TaskOutcome):
        """Emit the single response for ``task`` on its response queue."""
        metadata = {
            "branch": outcome.branch,
            "committed": outcome.committed,
            "pushed": outcome.pushed,
            "warnings": outcome.warnings,
        }
        if outcome.ok:
            response = create_response(task, self.agent.name, outcome.output, metadata=metadata)
        else:
            response = create_response(
                task, self.agent.name, outcome.error or "Task failed",
                error=True, metadata=metadata,
            )

        key = response_queue_key(task.id)
        self.store.push(key, response)
        self.store.expire(key, self.config.response_ttl)
        outcome.published = True
        logger.info("Published %s for %s", response.type, task.id)

    def _notify(self, task: TaskMessage, outcome: TaskOutcome):
        """Send a Slack notice (best-effort)."""
        if not (self.config.slack_bot_token and self.config.slack_channel):
            return
        try:
            from agent_pool.integrations.slack import format_task_outcome, send_message

            status = "completed" if outcome.ok else "failed"
            send_message(
                self.config.slack_bot_token,
                self.config.slack_channel,
                f"{self.agent.name} {status} {task.id}",
                format_task_outcome(self.agent.name, task, outcome),
            )
        except Exception:
            logger.exception("Failed to send Slack notification for %s", task.id)


def _commit_message(agent_name: str, task: TaskMessage) -> str:
    summary = " ".join(task.content.split())
    if len(summary) > 50:
        summary = summary[:50] + "..."
    return f"[{agent_name}] {summary}\n\nTask ID: {task.id}"
