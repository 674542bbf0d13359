"""Container lifecycle for the agent pool: bring agents up, tear them down."""

import logging
import os
from pathlib import Path

from agent_pool.config import Config
from agent_pool.core.models import (
    AgentDescriptor,
    AgentPool,
    AgentRuntime,
    ProvisionResult,
    UpSummary,
)
from agent_pool.core.pool import all_agents
from agent_pool.core.worktrees import WorkspaceError, create_workspace
from agent_pool.integrations.docker import (
    DockerError,
    build_image,
    check_daemon,
    ensure_network,
    get_container,
    image_exists,
    list_containers,
    remove_container,
    run_container,
    start_container,
)
from agent_pool.integrations.git import GitError, branch_exists

logger = logging.getLogger(__name__)

CONTAINER_HOME = "/home/node"
CONTAINER_WORKSPACE = "/workspace"
DOCKERFILE_NAME = "Dockerfile.executor"

AGENT_LABEL = "agent-pool.agent"
ROLE_LABEL = "agent-pool.role"


def container_name(config: Config, agent: AgentDescriptor) -> str:
    return f"{config.container_prefix}{agent.name}"


class Provisioner:
    """Creates and removes one container per agent, plus the shared network
    and queue store they talk over.

    Provisioning is idempotent: running containers are left alone and
    reported as ``already-running``.
    """

    def __init__(
        self,
        pool: AgentPool | None,
        config: Config,
        home: str | Path | None = None,
    ):
        self.pool = pool
        self.config = config
        self.home = Path(home) if home else Path.home()
        self._image_errors: dict[str, str | None] = {}

    @property
    def repo_path(self) -> Path:
        return Path(self.config.repo_path).resolve()

    # ── Up ──────────────────────────────────────────────────────────────────

    def up(self) -> UpSummary:
        """Provision everything. Raises DockerError if the daemon is down."""
        if self.pool is None:
            raise ValueError("An agent pool is required to bring agents up")
        version = check_daemon()
        logger.info("Docker daemon %s reachable", version)

        created = ensure_network(self.config.network)
        summary = UpSummary(
            network="created" if created else "exists",
            queue_store=self.ensure_queue_store(),
        )

        for agent in all_agents(self.pool):
            result = self.provision(agent)
            summary.agents.append(result)

        if summary.failed:
            logger.warning(
                "%d of %d agent(s) failed to start",
                len(summary.failed), len(summary.agents),
            )
        return summary

    def ensure_queue_store(self) -> str:
        """Make sure the named queue store container is running.

        Agent containers reach the store by this container's name, so a store
        answering elsewhere on the host does not count.
        """
        name = self.config.redis_container
        existing = get_container(name)
        if existing and existing.state == "running":
            return "running"
        if existing:
            start_container(name)
            logger.info("Started stopped queue store container %s", name)
            return "started"

        run_container(
            name,
            self.config.redis_image,
            network=self.config.network,
            ports=[f"{self.config.redis_port}:6379"],
            labels={ROLE_LABEL: "queue-store"},
            command=["redis-server", "--appendonly", "yes"],
        )
        logger.info("Created queue store container %s", name)
        return "created"

    def provision(self, agent: AgentDescriptor) -> ProvisionResult:
        """Start one agent's container. Failures are returned, not raised."""
        name = container_name(self.config, agent)
        try:
            existing = get_container(name)
            if existing and existing.state == "running":
                logger.info("%s already running", name)
                return ProvisionResult(agent.name, name, "already-running")
            if existing:
                logger.info("Removing stale container %s (%s)", name, existing.state)
                remove_container(name)

            image = agent.image or self.config.image
            self.ensure_image(image)
            workspace = self.workspace_for(agent)

            run_container(
                name,
                image,
                network=self.config.network,
                volumes=self.volumes(agent, workspace),
                env=self.environment(agent),
                labels={AGENT_LABEL: agent.name, ROLE_LABEL: agent.role},
                workdir=CONTAINER_WORKSPACE,
            )
        except (DockerError, WorkspaceError, GitError) as e:
            logger.error("Could not start %s: %s", name, e)
            return ProvisionResult(agent.name, name, "failed", error=str(e))

        logger.info("Started %s (%s, %s)", name, agent.role, agent.provider.name)
        return ProvisionResult(agent.name, name, "started")

    def ensure_image(self, image: str):
        """Build ``image`` from the executor Dockerfile if it is missing.

        The outcome is remembered per image, so a failed build fails every
        agent using that image without being retried.
        """
        if image in self._image_errors:
            error = self._image_errors[image]
            if error:
                raise DockerError(error)
            return

        try:
            if not image_exists(image):
                dockerfile = self.find_dockerfile()
                if dockerfile is None:
                    raise DockerError(
                        f"Image {image} not found and no {DOCKERFILE_NAME} to build it from"
                    )
                logger.info("Building image %s from %s", image, dockerfile)
                build_image(image, dockerfile, self.repo_path)
        except DockerError as e:
            self._image_errors[image] = str(e)
            raise
        self._image_errors[image] = None

    def find_dockerfile(self) -> Path | None:
        for candidate in (
            self.repo_path / DOCKERFILE_NAME,
            self.repo_path / self.config.metadata_dir / DOCKERFILE_NAME,
        ):
            if candidate.is_file():
                return candidate
        return None

    def workspace_for(self, agent: AgentDescriptor) -> Path:
        """Executors get their own worktree; other roles share the checkout."""
        if agent.role != "executor":
            return self.repo_path

        base_ref = None
        if self.pool.base_branch and branch_exists(self.repo_path, self.pool.base_branch):
            base_ref = self.pool.base_branch
        ws = create_workspace(
            self.repo_path,
            agent.name,
            agent.branch,
            self.config.worktree_dir,
            base_ref=base_ref,
        )
        return Path(ws.path)

    def volumes(self, agent: AgentDescriptor, workspace: Path) -> list[str]:
        volumes = [f"{workspace}:{CONTAINER_WORKSPACE}"]

        metadata = self.repo_path / self.config.metadata_dir
        if metadata.is_dir():
            volumes.append(f"{metadata}:{CONTAINER_WORKSPACE}/{self.config.metadata_dir}:ro")

        if agent.role == "executor":
            # The worktree's .git file points at the main repository by
            # absolute path, so mount it at the same location.
            git_dir = self.repo_path / ".git"
            volumes.append(f"{git_dir}:{git_dir}")

        for rel in agent.provider.credential_dirs:
            host_dir = self.home / rel
            if host_dir.is_dir():
                volumes.append(f"{host_dir}:{CONTAINER_HOME}/{rel}")
        for rel in agent.provider.read_only_dirs:
            host_dir = self.home / rel
            if host_dir.is_dir():
                volumes.append(f"{host_dir}:{CONTAINER_HOME}/{rel}:ro")
        return volumes

    def environment(self, agent: AgentDescriptor) -> dict[str, str]:
        env = {
            "AGENT_NAME": agent.name,
            "AGENT_ROLE": agent.role,
            "AGENT_PROVIDER": agent.provider.name,
            "AGENT_MODEL": agent.model or "",
            "CLI_COMMAND": agent.provider.command,
            "REDIS_HOST": self.config.redis_container,
            "REDIS_PORT": "6379",
            "HOME": CONTAINER_HOME,
            "AP_WORKSPACE_PATH": CONTAINER_WORKSPACE,
        }
        if self.config.remote_url:
            env["AP_REMOTE_URL"] = self.config.remote_url
        for key in agent.provider.secret_env:
            value = os.environ.get(key)
            if value:
                env[key] = value
        return env

    # ── Down / status ───────────────────────────────────────────────────────

    def down(self) -> list[str]:
        """Remove every container carrying the agent prefix."""
        check_daemon()
        removed = []
        for info in list_containers(self.config.container_prefix):
            try:
                remove_container(info.name)
            except DockerError as e:
                logger.error("Could not remove %s: %s", info.name, e)
                continue
            logger.info("Removed %s", info.name)
            removed.append(info.name)
        return removed

    def runtimes(self) -> list[AgentRuntime]:
        prefix = self.config.container_prefix
        return [
            AgentRuntime(
                name=info.name,
                agent_name=info.labels.get(AGENT_LABEL, info.name[len(prefix):]),
                role=info.labels.get(ROLE_LABEL, ""),
                container_id=info.id,
                status=info.state,
            )
            for info in list_containers(prefix)
        ]
