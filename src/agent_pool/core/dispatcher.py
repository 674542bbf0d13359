"""Task dispatch: enqueue work for an agent and optionally await its response."""

import logging
from typing import Any

from agent_pool.config import Config
from agent_pool.core.messages import create_task, response_queue_key, task_queue_key
from agent_pool.core.models import AgentPool, DispatchResult, TaskMessage
from agent_pool.core.pool import get_agent
from agent_pool.integrations.queue_store import QueueStore

logger = logging.getLogger(__name__)


class Dispatcher:
    """Pushes tasks onto per-agent queues.

    Failures surface as distinct shapes: UnknownAgentError for a bad target,
    QueueStoreError when the store is unreachable, and ``timed_out`` on the
    result when no response arrived in time.
    """

    def __init__(self, pool: AgentPool, store: QueueStore, config: Config):
        self.pool = pool
        self.store = store
        self.config = config

    def dispatch(
        self,
        target: str,
        content: str,
        wait: bool = False,
        timeout: int | None = None,
        metadata: dict[str, Any] | None = None,
        sender: str = "planner",
    ) -> DispatchResult:
        agent = get_agent(self.pool, target)
        if not content or not content.strip():
            raise ValueError("Task content must not be empty")

        task = create_task(
            sender,
            agent.name,
            content,
            {
                "projectPath": str(self.config.repo_path),
                "autoApprove": True,
                **(metadata or {}),
            },
        )
        queue = task_queue_key(agent.queue_name)
        self.store.push(queue, task)
        logger.info("Dispatched %s to %s (%s)", task.id, agent.name, queue)

        result = DispatchResult(task_id=task.id, queue=queue)
        if wait:
            if timeout is None:
                timeout = self.config.dispatch_timeout
            response = self.wait_for_response(task.id, timeout)
            if response is None:
                logger.warning("No response for %s within %ss", task.id, timeout)
                result.timed_out = True
            else:
                result.response = response
        return result

    def wait_for_response(self, task_id: str, timeout: int) -> TaskMessage | None:
        """Block up to ``timeout`` seconds for the response to ``task_id``."""
        return self.store.pop(response_queue_key(task_id), timeout)
