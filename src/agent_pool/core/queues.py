"""Read-only views of queue depth and contents, plus clearing."""

import logging

from agent_pool.core.messages import QUEUE_PREFIX, task_queue_key
from agent_pool.core.models import AgentPool, QueueDepth, TaskMessage
from agent_pool.core.pool import all_agents, get_agent
from agent_pool.integrations.queue_store import QueueStore

logger = logging.getLogger(__name__)

CLEAR_ALL = ("*", "all")


def queue_status(pool: AgentPool, store: QueueStore) -> list[QueueDepth]:
    """Pending task count for every agent in the pool."""
    depths = []
    for agent in all_agents(pool):
        key = task_queue_key(agent.queue_name)
        depths.append(QueueDepth(agent.name, agent.role, key, store.length(key)))
    return depths


def peek_queue(pool: AgentPool, store: QueueStore, agent_name: str, count: int = 5) -> list[TaskMessage]:
    """The next ``count`` tasks for an agent, oldest first, left in place."""
    agent = get_agent(pool, agent_name)
    return store.peek(task_queue_key(agent.queue_name), count)


def clear_queue(pool: AgentPool, store: QueueStore, agent_name: str) -> int:
    """Delete one agent's queue, or every queue key with ``*``/``all``.

    Returns the number of keys deleted.
    """
    if agent_name in CLEAR_ALL:
        keys = store.keys(f"{QUEUE_PREFIX}*")
    else:
        agent = get_agent(pool, agent_name)
        keys = [task_queue_key(agent.queue_name)]

    deleted = store.delete(*keys)
    logger.info("Cleared %d queue key(s) for %s", deleted, agent_name)
    return deleted
