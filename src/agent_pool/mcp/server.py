"""MCP server giving a planner's CLI tool access to the agent pool."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import Context, FastMCP

from agent_pool.config import Config, get_config
from agent_pool.core import queues as queues_mod
from agent_pool.core import worktrees as worktrees_mod
from agent_pool.core.dispatcher import Dispatcher
from agent_pool.core.messages import response_queue_key
from agent_pool.core.models import AgentPool, TaskMessage
from agent_pool.core.pool import UnknownAgentError, load_agent_pool
from agent_pool.core.runtime import Provisioner
from agent_pool.integrations.docker import DockerError
from agent_pool.integrations.git import GitError
from agent_pool.integrations.queue_store import QueueStore, QueueStoreError


@dataclass
class AppContext:
    pool: AgentPool
    store: QueueStore
    config: Config


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Load the pool and connect to the queue store on startup."""
    config = get_config()
    pool = load_agent_pool(config.repo_path, config.pool_file)
    store = QueueStore.from_config(config)
    try:
        yield AppContext(pool=pool, store=store, config=config)
    finally:
        store.close()


# Tools run on the stdio server's only thread, so blocking waits are capped.
MAX_TOOL_WAIT = 30

mcp = FastMCP("agent-pool", lifespan=app_lifespan)


def _ctx(ctx: Context) -> AppContext:
    return ctx.request_context.lifespan_context


# ── Dispatch Tools ────────────────────────────────────────────────────────────


@mcp.tool()
def dispatch_task(
    ctx: Context,
    agent: str,
    content: str,
    wait: bool = False,
    timeout: int | None = None,
) -> dict:
    """Send a task to an agent's queue.

    With wait=True, block until the agent responds or the timeout (seconds)
    passes, at most MAX_TOOL_WAIT seconds. Otherwise, or after a timeout, use
    get_response later with the returned task_id.
    """
    app = _ctx(ctx)
    if wait:
        if timeout is None:
            timeout = app.config.dispatch_timeout
        timeout = min(timeout, MAX_TOOL_WAIT)
    dispatcher = Dispatcher(app.pool, app.store, app.config)
    try:
        result = dispatcher.dispatch(agent, content, wait=wait, timeout=timeout)
    except (UnknownAgentError, ValueError, QueueStoreError) as e:
        return {"error": str(e)}

    data = {"task_id": result.task_id, "queue": result.queue}
    if wait:
        data["timed_out"] = result.timed_out
        if result.response is not None:
            data["response"] = _message_to_dict(result.response)
    return data


@mcp.tool()
def get_response(ctx: Context, task_id: str, timeout: int = 0) -> dict:
    """Collect the response for a dispatched task.

    timeout=0 checks without waiting. Longer waits are capped at MAX_TOOL_WAIT
    seconds; call again if the response is still pending.
    """
    app = _ctx(ctx)
    timeout = min(timeout, MAX_TOOL_WAIT)
    dispatcher = Dispatcher(app.pool, app.store, app.config)
    try:
        response = dispatcher.wait_for_response(task_id, timeout)
    except QueueStoreError as e:
        return {"error": str(e)}
    if response is None:
        return {"task_id": task_id, "pending": True, "key": response_queue_key(task_id)}
    return _message_to_dict(response)


# ── Queue Tools ───────────────────────────────────────────────────────────────


@mcp.tool()
def queue_status(ctx: Context) -> list[dict]:
    """Pending task count for every agent."""
    app = _ctx(ctx)
    return [
        {"agent": d.agent_name, "role": d.role, "key": d.key, "pending": d.depth}
        for d in queues_mod.queue_status(app.pool, app.store)
    ]


@mcp.tool()
def peek_queue(ctx: Context, agent: str, count: int = 5) -> dict:
    """Show an agent's next tasks without removing them."""
    app = _ctx(ctx)
    try:
        tasks = queues_mod.peek_queue(app.pool, app.store, agent, count)
    except UnknownAgentError as e:
        return {"error": str(e)}
    return {"agent": agent, "tasks": [_message_to_dict(t) for t in tasks]}


# ── Workspace / Runtime Tools ─────────────────────────────────────────────────


@mcp.tool()
def list_workspaces(ctx: Context) -> list[dict] | dict:
    """List the executors' git worktrees and their branches."""
    config = _ctx(ctx).config
    try:
        workspaces = worktrees_mod.list_workspaces(config.repo_path, config.worktree_dir)
    except GitError as e:
        return {"error": str(e)}
    return [
        {"agent": ws.agent_name, "path": ws.path, "branch": ws.branch, "head": ws.head}
        for ws in workspaces
    ]


@mcp.tool()
def agent_runtimes(ctx: Context) -> list[dict] | dict:
    """Show the agent containers and their state."""
    app = _ctx(ctx)
    try:
        runtimes = Provisioner(app.pool, app.config).runtimes()
    except DockerError as e:
        return {"error": str(e)}
    return [
        {"name": r.name, "agent": r.agent_name, "role": r.role, "status": r.status}
        for r in runtimes
    ]


# ── Helpers ───────────────────────────────────────────────────────────────────


def _message_to_dict(message: TaskMessage) -> dict:
    return {
        "id": message.id,
        "from": message.sender,
        "to": message.to,
        "type": message.type,
        "content": message.content,
        "timestamp": message.timestamp,
        "metadata": message.metadata,
    }
