"""Data models for the agent pool."""

from dataclasses import dataclass, field
from typing import Any

from agent_pool.core.providers import Provider

ROLES = ("planner", "executor", "tester")
MESSAGE_TYPES = ("task", "response", "error")


@dataclass(frozen=True)
class TaskMessage:
    id: str
    sender: str
    to: str
    type: str
    content: str
    timestamp: int
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def in_response_to(self) -> str | None:
        return self.metadata.get("inResponseTo")


@dataclass(frozen=True)
class AgentDescriptor:
    name: str
    role: str
    provider: Provider
    model: str | None = None
    branch_prefix: str = "executor"
    image: str | None = None

    @property
    def branch(self) -> str:
        """Private branch bound to this agent's workspace."""
        return f"{self.branch_prefix}/{self.name}"

    @property
    def queue_name(self) -> str:
        return self.name


@dataclass
class AgentPool:
    project_name: str
    planner: AgentDescriptor
    executors: list[AgentDescriptor] = field(default_factory=list)
    tester: AgentDescriptor | None = None
    description: str = ""
    base_branch: str | None = None


@dataclass
class Workspace:
    agent_name: str
    path: str
    branch: str
    head: str = ""
    already_existed: bool = False


@dataclass
class AgentRuntime:
    name: str
    agent_name: str
    role: str
    container_id: str
    status: str


@dataclass
class ProvisionResult:
    agent_name: str
    container_name: str
    status: str
    error: str | None = None


@dataclass
class UpSummary:
    network: str
    queue_store: str
    agents: list[ProvisionResult] = field(default_factory=list)

    @property
    def failed(self) -> list[ProvisionResult]:
        return [a for a in self.agents if a.status == "failed"]


@dataclass
class DispatchResult:
    task_id: str
    queue: str
    response: TaskMessage | None = None
    timed_out: bool = False


@dataclass
class QueueDepth:
    agent_name: str
    role: str
    key: str
    depth: int


@dataclass
class TaskOutcome:
    task_id: str
    ok: bool = False
    output: str = ""
    error: str | None = None
    committed: bool = False
    pushed: bool = False
    branch: str | None = None
    warnings: list[str] = field(default_factory=list)
    published: bool = False
