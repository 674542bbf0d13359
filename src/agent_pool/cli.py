"""CLI entry point for the agent pool."""

import json
import logging
import sys

import click

from agent_pool.config import ConfigError, get_config
from agent_pool.core import queues as queues_mod
from agent_pool.core import worktrees as worktrees_mod
from agent_pool.core.dispatcher import Dispatcher
from agent_pool.core.pool import UnknownAgentError, get_agent, load_agent_pool
from agent_pool.core.runtime import Provisioner
from agent_pool.core.worker import ShutdownFlag, Worker
from agent_pool.integrations.docker import DockerError
from agent_pool.integrations.git import GitError
from agent_pool.integrations.queue_store import QueueStore, QueueStoreError

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@click.group()
@click.option("--log-level", default=None, help="Logging level (default: AP_LOG_LEVEL or INFO)")
def main(log_level):
    """agent-pool - dispatch tasks to a pool of AI coding agents"""
    level = (log_level or get_config().log_level).upper()
    logging.basicConfig(level=level, format=LOG_FORMAT)


# ── Lifecycle Commands ────────────────────────────────────────────────────────


@main.command("up")
def up_command():
    """Start the network, queue store and one container per agent."""
    config = get_config()
    pool = _load_pool(config)

    try:
        summary = Provisioner(pool, config).up()
    except DockerError as e:
        _fail(f"Docker error: {e}")

    click.echo(f"Network {config.network}: {summary.network}")
    click.echo(f"Queue store {config.redis_container}: {summary.queue_store}")
    for result in summary.agents:
        line = f"  {result.container_name}: {result.status}"
        if result.error:
            line += f" ({result.error})"
        click.echo(line)

    if summary.failed:
        _fail(f"{len(summary.failed)} agent(s) failed to start.")


@main.command("down")
def down_command():
    """Stop and remove all agent containers."""
    config = get_config()
    try:
        removed = Provisioner(None, config).down()
    except DockerError as e:
        _fail(f"Docker error: {e}")

    if not removed:
        click.echo("No agent containers found.")
        return
    for name in removed:
        click.echo(f"  Removed: {name}")


@main.command("status")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def status_command(json_output):
    """Show agent containers and pending queue depth."""
    config = get_config()
    pool = _load_pool(config)

    runtimes = None
    docker_error = None
    try:
        runtimes = Provisioner(pool, config).runtimes()
    except DockerError as e:
        docker_error = str(e)

    store = _connect(config)
    try:
        depths = queues_mod.queue_status(pool, store)
    except QueueStoreError as e:
        _fail(f"Queue store error: {e}")

    if json_output:
        click.echo(json.dumps({
            "containers": None if runtimes is None else [
                {"name": r.name, "agent": r.agent_name, "role": r.role, "status": r.status}
                for r in runtimes
            ],
            "docker_error": docker_error,
            "queues": [
                {"agent": d.agent_name, "role": d.role, "key": d.key, "pending": d.depth}
                for d in depths
            ],
        }, indent=2))
        return

    click.echo("Containers:")
    if docker_error:
        click.echo(f"  unavailable ({docker_error})")
    elif not runtimes:
        click.echo("  none")
    else:
        for r in runtimes:
            click.echo(f"  {r.name} [{r.role or '?'}] {r.status}")

    click.echo("Queues:")
    for d in depths:
        click.echo(f"  {d.agent_name} ({d.role}): {d.depth} pending")


# ── Worker / Dispatch Commands ────────────────────────────────────────────────


@main.command("worker")
@click.argument("agent_name", required=False)
@click.option("--once", is_flag=True, help="Process a single task, then exit")
@click.option(
    "--direct/--via-docker",
    default=None,
    help="Run the tool in this environment, or via docker exec (default: direct inside a container)",
)
def worker_command(agent_name, once, direct):
    """Run the worker loop for one agent (default: $AGENT_NAME)."""
    config = get_config()
    agent_name = agent_name or config.agent_name
    if not agent_name:
        _fail("No agent given and AGENT_NAME is not set.")

    pool = _load_pool(config)
    try:
        agent = get_agent(pool, agent_name)
    except UnknownAgentError as e:
        _fail(str(e))

    store = _connect(config)
    shutdown = ShutdownFlag()
    shutdown.install_signal_handlers()

    worker = Worker(agent, config, store, shutdown=shutdown, direct=direct)
    try:
        processed = worker.run(once=once)
    except QueueStoreError as e:
        _fail(f"Lost connection to queue store: {e}")
    finally:
        store.close()
    click.echo(f"Worker {agent.name} stopped after {processed} task(s).")


@main.command("dispatch")
@click.argument("agent_name")
@click.option("--message", "-m", default=None, help="Task content")
@click.option("--file", "-f", "task_file", type=click.File("r"), default=None, help="Read task content from a file")
@click.option("--wait", is_flag=True, help="Wait for the agent's response")
@click.option("--timeout", default=None, type=int, help="Seconds to wait (default: AP_DISPATCH_TIMEOUT)")
@click.option("--from", "sender", default="planner", help="Sender name recorded on the task")
def dispatch_command(agent_name, message, task_file, wait, timeout, sender):
    """Send a task to an agent's queue."""
    if message is None and task_file is None:
        _fail("Provide the task with --message or --file.")
    content = message if message is not None else task_file.read()

    config = get_config()
    pool = _load_pool(config)
    store = _connect(config)

    try:
        result = Dispatcher(pool, store, config).dispatch(
            agent_name, content, wait=wait, timeout=timeout, sender=sender
        )
    except UnknownAgentError as e:
        _fail(str(e))
    except ValueError as e:
        _fail(f"Error: {e}")
    except QueueStoreError as e:
        _fail(f"Queue store error: {e}")

    click.echo(f"Dispatched {result.task_id} to {result.queue}")
    if not wait:
        return

    if result.timed_out:
        _fail(f"Timed out waiting for a response to {result.task_id}.")

    response = result.response
    click.echo(response.content)
    warnings = response.metadata.get("warnings") or []
    for warning in warnings:
        click.echo(f"Warning: {warning}", err=True)
    if response.type == "error":
        sys.exit(1)


# ── Queue Commands ────────────────────────────────────────────────────────────


@main.group("queue")
def queue_group():
    """Inspect and clear task queues."""
    pass


@queue_group.command("status")
def queue_status():
    """Show pending tasks per agent."""
    config = get_config()
    pool = _load_pool(config)
    store = _connect(config)
    try:
        depths = queues_mod.queue_status(pool, store)
    except QueueStoreError as e:
        _fail(f"Queue store error: {e}")

    total = 0
    for d in depths:
        total += d.depth
        click.echo(f"  {d.key}: {d.depth}")
    click.echo(f"Total pending: {total}")


@queue_group.command("peek")
@click.argument("agent_name")
@click.option("--count", "-n", default=5, type=int, help="Number of tasks to show")
def queue_peek(agent_name, count):
    """Show the next tasks for an agent without removing them."""
    config = get_config()
    pool = _load_pool(config)
    store = _connect(config)
    try:
        tasks = queues_mod.peek_queue(pool, store, agent_name, count)
    except UnknownAgentError as e:
        _fail(str(e))
    except QueueStoreError as e:
        _fail(f"Queue store error: {e}")

    if not tasks:
        click.echo(f"Queue for {agent_name} is empty.")
        return
    for task in tasks:
        preview = task.content if len(task.content) <= 70 else task.content[:70] + "..."
        click.echo(f"  {task.id} from {task.sender}: {preview}")


@queue_group.command("clear")
@click.argument("agent_name")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def queue_clear(agent_name, yes):
    """Delete an agent's pending tasks ('all' clears every queue)."""
    config = get_config()
    pool = _load_pool(config)
    if not yes:
        click.confirm(f"Delete pending tasks for {agent_name}?", abort=True)

    store = _connect(config)
    try:
        deleted = queues_mod.clear_queue(pool, store, agent_name)
    except UnknownAgentError as e:
        _fail(str(e))
    except QueueStoreError as e:
        _fail(f"Queue store error: {e}")
    click.echo(f"Deleted {deleted} queue key(s).")


# ── Worktree Commands ─────────────────────────────────────────────────────────


@main.group("worktree")
def worktree_group():
    """Manage per-agent git worktrees."""
    pass


@worktree_group.command("setup")
def worktree_setup():
    """Create a worktree for every executor in the pool."""
    config = get_config()
    pool = _load_pool(config)
    results = worktrees_mod.setup_workspaces(pool, config.repo_path, config.worktree_dir)
    if not results:
        click.echo("No executors configured.")
        return

    failed = False
    for r in results:
        if r["status"] == "failed":
            failed = True
            click.echo(f"  {r['agent']}: failed ({r['error']})")
        else:
            click.echo(f"  {r['agent']}: {r['status']} {r['branch']} at {r['path']}")
    if failed:
        sys.exit(1)


@worktree_group.command("list")
def worktree_list():
    """List agent worktrees."""
    config = get_config()
    try:
        workspaces = worktrees_mod.list_workspaces(config.repo_path, config.worktree_dir)
    except GitError as e:
        _fail(f"Git error: {e}")
    if not workspaces:
        click.echo("No worktrees found.")
        return
    for ws in workspaces:
        click.echo(f"  {ws.agent_name}: {ws.branch} at {ws.path}")


@worktree_group.command("create")
@click.argument("agent_name")
@click.option("--branch", default=None, help="Branch name (default: executor/<agent>)")
@click.option("--base", "base_ref", default=None, help="Start point for a new branch")
def worktree_create(agent_name, branch, base_ref):
    """Create a worktree for an agent."""
    config = get_config()
    try:
        ws = worktrees_mod.create_workspace(
            config.repo_path, agent_name, branch, config.worktree_dir, base_ref=base_ref
        )
    except (worktrees_mod.WorkspaceError, GitError) as e:
        _fail(f"Error: {e}")

    verb = "Exists" if ws.already_existed else "Created"
    click.echo(f"{verb}: {ws.path} ({ws.branch})")


@worktree_group.command("remove")
@click.argument("agent_name")
@click.option("--force", is_flag=True, help="Remove even with uncommitted or unpushed work")
def worktree_remove(agent_name, force):
    """Remove an agent's worktree."""
    config = get_config()
    try:
        ws = worktrees_mod.get_workspace(config.repo_path, agent_name, config.worktree_dir)
        if ws is None:
            _fail(f"No worktree for {agent_name}.")
        worktrees_mod.remove_workspace(config.repo_path, ws.path, force=force)
    except (worktrees_mod.WorkspaceError, GitError) as e:
        _fail(f"Error: {e}")
    click.echo(f"Removed: {ws.path}")


@worktree_group.command("prune")
def worktree_prune():
    """Remove worktrees whose branch no longer exists."""
    config = get_config()
    try:
        results = worktrees_mod.prune_workspaces(config.repo_path, config.worktree_dir)
    except GitError as e:
        _fail(f"Git error: {e}")
    if not results:
        click.echo("Nothing to prune.")
        return
    for r in results:
        if r["removed"]:
            click.echo(f"  Removed: {r['path']} ({r['reason']})")
        else:
            click.echo(f"  Skipped {r['path']}: {r['reason']}")


# ── MCP Server Command ────────────────────────────────────────────────────────


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from agent_pool.mcp.server import mcp
    from agent_pool.mcp import prompts  # noqa: F401 - registers prompts

    mcp.run(transport="stdio")


# ── Helpers ───────────────────────────────────────────────────────────────────


def _fail(message: str):
    click.echo(message, err=True)
    sys.exit(1)


def _load_pool(config):
    try:
        return load_agent_pool(config.repo_path, config.pool_file)
    except ConfigError as e:
        _fail(f"Configuration error: {e}")


def _connect(config) -> QueueStore:
    try:
        return QueueStore.from_config(config)
    except QueueStoreError as e:
        _fail(f"Queue store unreachable at {config.redis_host}:{config.redis_port}: {e}")


if __name__ == "__main__":
    main()
