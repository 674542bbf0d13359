"""Shared fixtures: temporary git repositories, pool files and an in-process Redis."""

import os
import subprocess
import tempfile
from pathlib import Path

import fakeredis
import pytest

from agent_pool.config import Config
from agent_pool.core.pool import load_agent_pool
from agent_pool.integrations.queue_store import QueueStore

GIT_ENV = {
    **os.environ,
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@test.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@test.com",
}

POOL_YAML = """\
version: 1
project:
  name: demo
  description: Test project
  base_branch: main
agents:
  planner:
    provider: claude
    model: sonnet
  executors:
    - name: executor-1
      provider: claude
    - name: executor-2
      provider: gemini-cli
      model: gemini-2.5-pro
  tester:
    provider: codex
"""


def git(args, cwd):
    return subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, check=True, text=True, env=GIT_ENV
    ).stdout.strip()


@pytest.fixture
def git_repo():
    """Create a temporary git repo with an initial commit on main."""
    with tempfile.TemporaryDirectory() as tmp:
        repo = Path(tmp) / "repo"
        repo.mkdir()
        git(["init"], repo)
        git(["checkout", "-b", "main"], repo)
        (repo / "README.md").write_text("# Test")
        git(["add", "."], repo)
        git(["commit", "-m", "init"], repo)
        yield str(repo)


@pytest.fixture
def bare_remote(git_repo):
    """A bare repository next to ``git_repo`` that it can push to."""
    remote = Path(git_repo).parent / "remote.git"
    git(["init", "--bare", str(remote)], git_repo)
    return str(remote)


@pytest.fixture
def pool_repo(git_repo):
    """A git repo with an agent-pool.yaml."""
    (Path(git_repo) / "agent-pool.yaml").write_text(POOL_YAML)
    return git_repo


@pytest.fixture
def pool(pool_repo):
    return load_agent_pool(pool_repo)


@pytest.fixture
def config(pool_repo):
    return Config(repo_path=Path(pool_repo), poll_timeout=1, dispatch_timeout=1)


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def store(redis_client):
    return QueueStore(redis_client)
