"""Agent pool configuration: loading agent-pool.yaml and resolving agents."""

from pathlib import Path
from typing import Any

import yaml

from agent_pool.config import ConfigError
from agent_pool.core.models import AgentDescriptor, AgentPool
from agent_pool.core.providers import resolve_provider


class UnknownAgentError(ConfigError):
    """Raised when a name does not match any configured agent."""


def load_agent_pool(project_path: str | Path, filename: str = "agent-pool.yaml") -> AgentPool:
    """Load and validate the agent pool for a project."""
    config_path = Path(project_path) / filename
    if not config_path.exists():
        raise ConfigError(
            f"{filename} not found in {project_path}. "
            "Configure the agent pool before starting agents."
        )

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid {filename}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Invalid {filename}: expected a mapping at the top level")
    return parse_agent_pool(raw, filename)


def parse_agent_pool(raw: dict[str, Any], source: str = "agent-pool.yaml") -> AgentPool:
    project = raw.get("project") if isinstance(raw.get("project"), dict) else {}
    agents = raw.get("agents") if isinstance(raw.get("agents"), dict) else {}

    if not isinstance(agents.get("planner"), dict):
        raise ConfigError(f"Invalid {source}: missing planner configuration")

    planner = _descriptor(agents["planner"], "planner", default_name="planner", source=source)

    executors = []
    raw_executors = agents.get("executors") or []
    if not isinstance(raw_executors, list):
        raise ConfigError(f"Invalid {source}: 'executors' must be a list")
    for idx, item in enumerate(raw_executors, start=1):
        if not isinstance(item, dict):
            raise ConfigError(f"Invalid {source}: executor #{idx} must be a mapping")
        executors.append(
            _descriptor(item, "executor", default_name=f"executor-{idx}", source=source)
        )

    tester = None
    if isinstance(agents.get("tester"), dict):
        tester = _descriptor(agents["tester"], "tester", default_name="tester", source=source)

    pool = AgentPool(
        project_name=str(project.get("name", "")),
        description=str(project.get("description", "") or ""),
        base_branch=project.get("base_branch"),
        planner=planner,
        executors=executors,
        tester=tester,
    )

    seen = set()
    for agent in all_agents(pool):
        if agent.name in seen:
            raise ConfigError(f"Invalid {source}: duplicate agent name '{agent.name}'")
        seen.add(agent.name)

    return pool


def _descriptor(item: dict, role: str, default_name: str, source: str) -> AgentDescriptor:
    name = str(item.get("name") or default_name)
    try:
        provider = resolve_provider(item.get("provider", ""))
    except ValueError as e:
        raise ConfigError(f"Invalid {source}: agent '{name}': {e}") from e

    return AgentDescriptor(
        name=name,
        role=role,
        provider=provider,
        model=item.get("model") or None,
        branch_prefix=item.get("branch_prefix") or "executor",
        image=item.get("image") or None,
    )


def all_agents(pool: AgentPool) -> list[AgentDescriptor]:
    """All agents in pool order: planner, executors, tester."""
    agents = [pool.planner, *pool.executors]
    if pool.tester:
        agents.append(pool.tester)
    return agents


def get_agent(pool: AgentPool, name: str) -> AgentDescriptor:
    """Resolve an agent by name. Raises UnknownAgentError if not configured."""
    for agent in all_agents(pool):
        if agent.name == name:
            return agent
    known = ", ".join(a.name for a in all_agents(pool))
    raise UnknownAgentError(f"Unknown agent '{name}' (configured: {known})")
