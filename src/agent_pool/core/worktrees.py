"""Per-agent git worktrees backed by the shared project repository."""

import logging
from pathlib import Path

from agent_pool.core.models import AgentPool, Workspace
from agent_pool.integrations.git import (
    GitError,
    branch_exists,
    ensure_excluded,
    get_status,
    has_uncommitted_work,
    last_commit,
    unpushed_commits,
    worktree_add,
    worktree_list,
    worktree_prune,
    worktree_remove,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_DIR = ".agentpool/worktrees"


class WorkspaceError(Exception):
    """Raised when a workspace cannot be created or removed safely."""


def _resolved(path: str | Path) -> str:
    return str(Path(path).resolve())


def create_workspace(
    repo_path: str | Path,
    agent_name: str,
    branch: str | None = None,
    base_dir: str = DEFAULT_BASE_DIR,
    base_ref: str | None = None,
) -> Workspace:
    """Create the workspace for an agent, or return the existing one.

    The branch defaults to ``executor/<agent_name>``. It is created from
    ``base_ref`` (or the repository HEAD) when it does not exist yet.
    """
    repo = Path(repo_path).resolve()
    if branch is None:
        branch = f"executor/{agent_name}"
    wt_path = repo / base_dir / agent_name

    worktrees = worktree_list(repo)
    by_path = {_resolved(wt.path): wt for wt in worktrees}

    if wt_path.exists():
        info = by_path.get(_resolved(wt_path))
        if info is None:
            raise WorkspaceError(f"{wt_path} exists but is not a registered worktree")
        logger.info("Workspace for %s already exists at %s", agent_name, wt_path)
        return Workspace(
            agent_name=agent_name,
            path=str(wt_path),
            branch=info.branch,
            head=info.head,
            already_existed=True,
        )

    for wt in worktrees:
        if wt.branch == branch:
            raise WorkspaceError(
                f"Branch '{branch}' is already checked out at {wt.path}"
            )

    wt_path.parent.mkdir(parents=True, exist_ok=True)
    ensure_excluded(repo, f"/{base_dir.strip('/')}/")

    create_branch = not branch_exists(repo, branch)
    worktree_add(repo, wt_path, branch, base_ref=base_ref, create_branch=create_branch)
    logger.info("Created workspace %s on branch %s", wt_path, branch)

    workspace = get_workspace(repo, agent_name, base_dir)
    if workspace is None:
        raise WorkspaceError(f"Worktree for {agent_name} was not registered by git")
    return workspace


def list_workspaces(repo_path: str | Path, base_dir: str = DEFAULT_BASE_DIR) -> list[Workspace]:
    """List agent workspaces (the main checkout is not included)."""
    base = Path(repo_path).resolve() / base_dir
    result = []
    for wt in worktree_list(repo_path):
        if wt.is_bare:
            continue
        path = Path(wt.path)
        if _resolved(path.parent) != _resolved(base):
            continue
        result.append(
            Workspace(agent_name=path.name, path=wt.path, branch=wt.branch, head=wt.head)
        )
    return result


def get_workspace(
    repo_path: str | Path,
    agent_name: str,
    base_dir: str = DEFAULT_BASE_DIR,
) -> Workspace | None:
    for ws in list_workspaces(repo_path, base_dir):
        if ws.agent_name == agent_name:
            return ws
    return None


def remove_workspace(
    repo_path: str | Path,
    path: str | Path,
    force: bool = False,
) -> dict:
    """Remove a workspace.

    Without ``force`` a workspace with uncommitted changes, or with commits its
    upstream does not have, is left in place and WorkspaceError is raised.
    """
    repo = Path(repo_path).resolve()
    wt_path = Path(path)
    if _resolved(wt_path) == str(repo):
        raise WorkspaceError("Refusing to remove the main checkout")

    registered = {_resolved(wt.path): wt for wt in worktree_list(repo)}
    info = registered.get(_resolved(wt_path))
    if info is None:
        raise WorkspaceError(f"Not a registered worktree: {wt_path}")

    if not wt_path.exists():
        worktree_prune(repo)
        return {"path": str(wt_path), "branch": info.branch, "removed": True}

    if not force:
        status = get_status(wt_path)
        if status:
            raise WorkspaceError(
                f"Workspace {wt_path} has uncommitted changes; use force to remove it"
            )
        unpushed = unpushed_commits(wt_path)
        if unpushed:
            raise WorkspaceError(
                f"Workspace {wt_path} has {len(unpushed)} unpushed commit(s); "
                "use force to remove it"
            )

    worktree_remove(repo, wt_path, force=force)
    logger.info("Removed workspace %s", wt_path)
    return {"path": str(wt_path), "branch": info.branch, "removed": True}


def prune_workspaces(repo_path: str | Path, base_dir: str = DEFAULT_BASE_DIR) -> list[dict]:
    """Reconcile workspaces against the branches that still exist.

    Stale worktree metadata is pruned first. Agent workspaces whose branch has
    been deleted are then removed unless their working tree or index differs
    from the last commit they had, or they hold untracked files. Workspaces on a
    valid branch are never touched.
    """
    repo = Path(repo_path).resolve()
    results = []

    before = {wt.path for wt in worktree_list(repo)}
    worktree_prune(repo)
    after = {wt.path for wt in worktree_list(repo)}
    for path in sorted(before - after):
        results.append({"path": path, "removed": True, "reason": "directory no longer exists"})

    for ws in list_workspaces(repo, base_dir):
        if not ws.branch or branch_exists(repo, ws.branch):
            continue

        try:
            base = last_commit(ws.path)
            dirty = base is not None and has_uncommitted_work(ws.path, base)
        except GitError as e:
            results.append({"path": ws.path, "removed": False, "reason": str(e)})
            continue

        if base is None:
            results.append({
                "path": ws.path,
                "removed": False,
                "reason": f"branch '{ws.branch}' is gone and its last commit is unknown",
            })
            continue
        if dirty:
            results.append({
                "path": ws.path,
                "removed": False,
                "reason": f"branch '{ws.branch}' is gone but the workspace has uncommitted changes",
            })
            continue

        worktree_remove(repo, ws.path, force=True)
        logger.info("Pruned workspace %s (branch %s no longer exists)", ws.path, ws.branch)
        results.append({
            "path": ws.path,
            "removed": True,
            "reason": f"branch '{ws.branch}' no longer exists",
        })

    return results


def setup_workspaces(
    pool: AgentPool,
    repo_path: str | Path,
    base_dir: str = DEFAULT_BASE_DIR,
) -> list[dict]:
    """Create a workspace for every executor in the pool."""
    base_ref = None
    if pool.base_branch and branch_exists(repo_path, pool.base_branch):
        base_ref = pool.base_branch

    results = []
    for executor in pool.executors:
        try:
            ws = create_workspace(
                repo_path, executor.name, executor.branch, base_dir, base_ref=base_ref
            )
            results.append({
                "agent": executor.name,
                "status": "exists" if ws.already_existed else "created",
                "path": ws.path,
                "branch": ws.branch,
            })
        except (WorkspaceError, GitError) as e:
            logger.warning("Workspace for %s failed: %s", executor.name, e)
            results.append({"agent": executor.name, "status": "failed", "error": str(e)})
    return results
