"""Task and response messages exchanged over the queue store."""

import json
import random
import string
import time
from typing import Any

from agent_pool.core.models import MESSAGE_TYPES, TaskMessage

QUEUE_PREFIX = "queue:"
RESPONSE_PREFIX = "queue:responses:"

AUTONOMY_DIRECTIVE = (
    "IMPORTANT: Proceed immediately without asking questions. "
    "Make reasonable assumptions and complete the task autonomously."
)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def now_millis() -> int:
    return int(time.time() * 1000)


def _new_id(prefix: str) -> str:
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{prefix}-{now_millis()}-{suffix}"


def create_task_id() -> str:
    return _new_id("task")


def task_queue_key(queue_name: str) -> str:
    return f"{QUEUE_PREFIX}{queue_name}"


def response_queue_key(task_id: str) -> str:
    return f"{RESPONSE_PREFIX}{task_id}"


def create_task(
    sender: str,
    to: str,
    content: str,
    metadata: dict[str, Any] | None = None,
) -> TaskMessage:
    """Create a task message with a fresh id."""
    return TaskMessage(
        id=create_task_id(),
        sender=sender,
        to=to,
        type="task",
        content=content,
        timestamp=now_millis(),
        metadata=dict(metadata or {}),
    )


def create_response(
    task: TaskMessage,
    sender: str,
    content: str,
    error: bool = False,
    metadata: dict[str, Any] | None = None,
) -> TaskMessage:
    """Create the response (or error) that answers ``task``."""
    return TaskMessage(
        id=_new_id("resp"),
        sender=sender,
        to=task.sender,
        type="error" if error else "response",
        content=content,
        timestamp=now_millis(),
        metadata={**(metadata or {}), "inResponseTo": task.id},
    )


def build_prompt(task: TaskMessage) -> str:
    """Instruction text handed to the agent's tool for a task."""
    if task.metadata.get("autoApprove"):
        return f"{task.content}\n\n{AUTONOMY_DIRECTIVE}"
    return task.content


def to_json(message: TaskMessage) -> str:
    return json.dumps({
        "id": message.id,
        "from": message.sender,
        "to": message.to,
        "type": message.type,
        "content": message.content,
        "timestamp": message.timestamp,
        "metadata": message.metadata,
    })


def from_json(data: str | bytes) -> TaskMessage:
    """Decode a queued message. Raises ValueError on malformed input."""
    try:
        raw = json.loads(data)
    except json.JSONDecodeError as e:
        raise ValueError(f"Malformed message: {e}") from e

    if not isinstance(raw, dict):
        raise ValueError("Malformed message: expected a JSON object")

    missing = [k for k in ("id", "from", "to", "type", "content") if k not in raw]
    if missing:
        raise ValueError(f"Malformed message: missing {', '.join(missing)}")
    if raw["type"] not in MESSAGE_TYPES:
        raise ValueError(f"Malformed message: unknown type {raw['type']!r}")

    return TaskMessage(
        id=raw["id"],
        sender=raw["from"],
        to=raw["to"],
        type=raw["type"],
        content=raw["content"],
        timestamp=int(raw.get("timestamp") or 0),
        metadata=raw.get("metadata") or {},
    )
