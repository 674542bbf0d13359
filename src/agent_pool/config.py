"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Config:
    repo_path: Path = field(default_factory=lambda: Path.cwd())
    pool_file: str = "agent-pool.yaml"
    metadata_dir: str = ".agentpool"
    worktree_dir: str = ".agentpool/worktrees"

    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0

    remote_url: str | None = None
    remote_name: str = "origin"

    poll_timeout: int = 10
    exec_timeout: int = 300
    dispatch_timeout: int = 300
    push_timeout: int = 30
    response_ttl: int = 3600

    image: str = "agent-pool-executor"
    network: str = "agent-pool-network"
    container_prefix: str = "apool-"
    redis_container: str = "agent-pool-redis"
    redis_image: str = "redis:7-alpine"

    # Set inside an agent container; the worker then runs the tool directly.
    agent_name: str | None = None
    workspace_path: Path | None = None

    slack_bot_token: str | None = None
    slack_channel: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if repo := os.environ.get("AP_REPO_PATH"):
            config.repo_path = Path(repo)

        if pool_file := os.environ.get("AP_POOL_FILE"):
            config.pool_file = pool_file

        if meta := os.environ.get("AP_METADATA_DIR"):
            config.metadata_dir = meta

        if wt_dir := os.environ.get("AP_WORKTREE_DIR"):
            config.worktree_dir = wt_dir

        if host := os.environ.get("REDIS_HOST"):
            config.redis_host = host

        if port := os.environ.get("REDIS_PORT"):
            config.redis_port = int(port)

        if db := os.environ.get("REDIS_DB"):
            config.redis_db = int(db)

        config.remote_url = os.environ.get("AP_REMOTE_URL")

        if remote := os.environ.get("AP_REMOTE_NAME"):
            config.remote_name = remote

        if poll := os.environ.get("AP_POLL_TIMEOUT"):
            config.poll_timeout = int(poll)

        if exec_timeout := os.environ.get("AP_EXEC_TIMEOUT"):
            config.exec_timeout = int(exec_timeout)

        if dispatch_timeout := os.environ.get("AP_DISPATCH_TIMEOUT"):
            config.dispatch_timeout = int(dispatch_timeout)

        if push_timeout := os.environ.get("AP_PUSH_TIMEOUT"):
            config.push_timeout = int(push_timeout)

        if ttl := os.environ.get("AP_RESPONSE_TTL"):
            config.response_ttl = int(ttl)

        if image := os.environ.get("AP_IMAGE"):
            config.image = image

        if network := os.environ.get("AP_NETWORK"):
            config.network = network

        if prefix := os.environ.get("AP_CONTAINER_PREFIX"):
            config.container_prefix = prefix

        if redis_container := os.environ.get("AP_REDIS_CONTAINER"):
            config.redis_container = redis_container

        if redis_image := os.environ.get("AP_REDIS_IMAGE"):
            config.redis_image = redis_image

        config.agent_name = os.environ.get("AGENT_NAME")

        if workspace := os.environ.get("AP_WORKSPACE_PATH"):
            config.workspace_path = Path(workspace)

        config.slack_bot_token = os.environ.get("SLACK_BOT_TOKEN")
        config.slack_channel = os.environ.get("AP_SLACK_CHANNEL")

        if level := os.environ.get("AP_LOG_LEVEL"):
            config.log_level = level.upper()

        return config

    @property
    def inside_container(self) -> bool:
        return self.agent_name is not None

    @property
    def push_target(self) -> str:
        """Remote URL or name that workers push their branches to."""
        return self.remote_url or self.remote_name

    def worktree_base(self) -> Path:
        return Path(self.repo_path) / self.worktree_dir


class ConfigError(Exception):
    """Raised when the agent pool or environment is misconfigured."""


def get_config() -> Config:
    return Config.from_env()
