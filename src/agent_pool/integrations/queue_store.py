"""Redis-backed list store used for task and response queues."""

import logging

import redis

from agent_pool.core.messages import from_json, to_json
from agent_pool.core.models import TaskMessage

logger = logging.getLogger(__name__)


class QueueStoreError(Exception):
    """Raised when the queue store is unreachable or a command fails."""


class QueueStore:
    """Push/pop/inspect operations on named lists.

    Messages are appended to the tail and popped from the head, so each list
    is FIFO.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def connect(cls, host: str, port: int = 6379, db: int = 0) -> "QueueStore":
        """Connect and verify the store answers. Raises QueueStoreError."""
        client = redis.Redis(
            host=host,
            port=port,
            db=db,
            decode_responses=True,
            socket_connect_timeout=5,
        )
        store = cls(client)
        store.ping()
        return store

    @classmethod
    def from_config(cls, config) -> "QueueStore":
        return cls.connect(config.redis_host, config.redis_port, config.redis_db)

    def _call(self, op: str, *args, **kwargs):
        try:
            return getattr(self.client, op)(*args, **kwargs)
        except redis.RedisError as e:
            raise QueueStoreError(f"Queue store {op} failed: {e}") from e

    def ping(self) -> bool:
        return bool(self._call("ping"))

    def push(self, key: str, message: TaskMessage) -> int:
        """Append a message to the tail of a list. Returns the new length."""
        return self._call("rpush", key, to_json(message))

    def pop(self, key: str, timeout: int) -> TaskMessage | None:
        """Block up to ``timeout`` seconds for the head of a list.

        A timeout of zero or less pops without blocking.
        """
        if timeout <= 0:
            data = self._call("lpop", key)
            return from_json(data) if data is not None else None

        result = self._call("blpop", [key], timeout=timeout)
        if not result:
            return None
        _, data = result
        return from_json(data)

    def length(self, key: str) -> int:
        return self._call("llen", key)

    def peek(self, key: str, count: int) -> list[TaskMessage]:
        """Return up to ``count`` messages from the head without removing them."""
        if count <= 0:
            return []
        messages = []
        for data in self._call("lrange", key, 0, count - 1):
            try:
                messages.append(from_json(data))
            except ValueError:
                logger.warning("Skipping malformed message in %s", key)
        return messages

    def expire(self, key: str, seconds: int) -> bool:
        return bool(self._call("expire", key, seconds))

    def keys(self, pattern: str) -> list[str]:
        try:
            return list(self.client.scan_iter(match=pattern))
        except redis.RedisError as e:
            raise QueueStoreError(f"Queue store scan failed: {e}") from e

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return self._call("delete", *keys)

    def close(self):
        self.client.close()
