"""Git subprocess wrappers for worktree, commit and push operations."""

import subprocess
from dataclasses import dataclass
from pathlib import Path


class GitError(Exception):
    """Raised when a git command fails."""


@dataclass
class WorktreeInfo:
    path: str
    branch: str
    head: str
    is_bare: bool = False


def run_git(
    args: list[str],
    cwd: str | Path | None = None,
    timeout: float | None = None,
) -> str:
    """Run a git command and return stdout. Raises GitError on failure."""
    cmd = ["git"] + args
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout,
        )
        return result.stdout.strip()
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or e.stdout or "").strip()
        raise GitError(f"git {args[0]} failed: {detail}") from e
    except subprocess.TimeoutExpired as e:
        raise GitError(f"git {args[0]} timed out after {timeout}s") from e


def worktree_add(
    repo_path: str | Path,
    worktree_path: str | Path,
    branch: str,
    base_ref: str | None = None,
    create_branch: bool = True,
) -> str:
    """Create a new git worktree."""
    args = ["worktree", "add"]
    if create_branch:
        args += ["-b", branch, str(worktree_path)]
        if base_ref:
            args.append(base_ref)
    else:
        args += [str(worktree_path), branch]
    return run_git(args, cwd=repo_path)


def worktree_list(repo_path: str | Path) -> list[WorktreeInfo]:
    """List all worktrees in porcelain format."""
    output = run_git(["worktree", "list", "--porcelain"], cwd=repo_path)
    worktrees = []
    current: dict = {}

    for line in output.split("\n") + [""]:
        if not line:
            if current:
                worktrees.append(
                    WorktreeInfo(
                        path=current.get("worktree", ""),
                        branch=current.get("branch", "").replace("refs/heads/", "", 1),
                        head=current.get("HEAD", ""),
                        is_bare=current.get("bare", False),
                    )
                )
                current = {}
            continue

        if line.startswith("worktree "):
            current["worktree"] = line[len("worktree "):]
        elif line.startswith("HEAD "):
            current["HEAD"] = line[len("HEAD "):]
        elif line.startswith("branch "):
            current["branch"] = line[len("branch "):]
        elif line == "bare":
            current["bare"] = True

    return worktrees


def worktree_remove(repo_path: str | Path, worktree_path: str | Path, force: bool = False) -> str:
    """Remove a git worktree."""
    args = ["worktree", "remove", str(worktree_path)]
    if force:
        args.append("--force")
    return run_git(args, cwd=repo_path)


def worktree_prune(repo_path: str | Path) -> str:
    """Drop administrative entries for worktrees whose directories are gone."""
    return run_git(["worktree", "prune"], cwd=repo_path)


def branch_exists(repo_path: str | Path, branch: str) -> bool:
    """Check if a branch exists."""
    try:
        run_git(["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"], cwd=repo_path)
        return True
    except GitError:
        return False


def ensure_excluded(repo_path: str | Path, pattern: str) -> bool:
    """Add a pattern to the repository's info/exclude. Returns True if added."""
    common_dir = Path(run_git(["rev-parse", "--git-common-dir"], cwd=repo_path))
    if not common_dir.is_absolute():
        common_dir = Path(repo_path) / common_dir
    exclude_file = common_dir / "info" / "exclude"
    text = exclude_file.read_text() if exclude_file.exists() else ""
    if pattern in text.splitlines():
        return False
    exclude_file.parent.mkdir(parents=True, exist_ok=True)
    with open(exclude_file, "a") as f:
        if text and not text.endswith("\n"):
            f.write("\n")
        f.write(f"{pattern}\n")
    return True


def get_status(cwd: str | Path) -> str:
    """Get porcelain git status of a working directory."""
    return run_git(["status", "--porcelain"], cwd=cwd)


def last_commit(cwd: str | Path) -> str | None:
    """Commit HEAD points at, or last pointed at if its branch was deleted.

    A worktree whose branch ref is gone has a dangling HEAD, so fall back to
    the newest entry of the worktree's own HEAD reflog.
    """
    try:
        return run_git(["rev-parse", "--verify", "--quiet", "HEAD^{commit}"], cwd=cwd)
    except GitError:
        pass

    git_dir = Path(run_git(["rev-parse", "--git-dir"], cwd=cwd))
    if not git_dir.is_absolute():
        git_dir = Path(cwd) / git_dir
    reflog = git_dir / "logs" / "HEAD"
    if not reflog.exists():
        return None
    for line in reversed(reflog.read_text().splitlines()):
        old, new = (line.split(" ", 2) + ["", ""])[:2]
        for sha in (new, old):
            if sha.strip("0"):
                return sha
    return None


def has_uncommitted_work(cwd: str | Path, base: str) -> bool:
    """True if the working tree or index differs from base, or untracked files exist."""
    if run_git(["diff", "--name-only", base], cwd=cwd):
        return True
    if run_git(["diff", "--cached", "--name-only", base], cwd=cwd):
        return True
    return bool(run_git(["ls-files", "--others", "--exclude-standard"], cwd=cwd))


def get_current_branch(cwd: str | Path) -> str:
    """Get the current branch name."""
    return run_git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)


def add_all(cwd: str | Path, exclude: list[str] | None = None) -> str:
    """Stage every change, skipping the given pathspecs."""
    args = ["add", "--all", "--", "."]
    for path in exclude or []:
        args.append(f":(exclude){path}")
    return run_git(args, cwd=cwd)


def commit(
    cwd: str | Path,
    message: str,
    author_name: str | None = None,
    author_email: str | None = None,
) -> str:
    """Commit staged changes."""
    args = []
    if author_name:
        args += ["-c", f"user.name={author_name}"]
    if author_email:
        args += ["-c", f"user.email={author_email}"]
    args += ["commit", "-m", message]
    return run_git(args, cwd=cwd)


def push(
    cwd: str | Path,
    target: str,
    branch: str,
    set_upstream: bool = False,
    timeout: float | None = None,
) -> str:
    """Push a branch to a remote name or URL."""
    args = ["push"]
    if set_upstream:
        args.append("-u")
    args += [target, branch]
    return run_git(args, cwd=cwd, timeout=timeout)


def unpushed_commits(cwd: str | Path) -> list[str] | None:
    """Commits on HEAD that are not on its upstream.

    Returns None when the branch has no upstream configured.
    """
    try:
        run_git(["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{upstream}"], cwd=cwd)
    except GitError:
        return None
    output = run_git(["log", "--oneline", "@{upstream}..HEAD"], cwd=cwd)
    return [line for line in output.splitlines() if line]
