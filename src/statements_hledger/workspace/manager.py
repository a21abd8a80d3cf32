"""
Isolation workspaces.

An isolation workspace is a git worktree of the ledger repository on its own
branch (``import-<id>``), created under a temporary base directory as
``import-worktree-<id>``. All changes of an import happen there. The work
reaches the primary branch only through ``merge_workspace``, which commits
inside the worktree and merges with ``--no-ff`` so the whole import shows up
as a single merge commit.
"""

import logging
import subprocess
import tempfile
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

logger = logging.getLogger(__name__)

WORKTREE_PREFIX = "import-worktree-"
BRANCH_PREFIX = "import-"

T = TypeVar("T")

WorkspaceChecker = Callable[[Path], bool]


class WorkspaceError(Exception):
    """A git operation on an isolation workspace failed."""

    pass


@dataclass
class IsolationWorkspace:
    """A disposable worktree and the branch it has checked out."""

    id: str
    path: Path
    branch: str
    main_repo_path: Path


@dataclass
class WorkspaceRemoval:
    success: bool
    error: str | None = None


@dataclass
class GitOutput:
    success: bool
    output: str


def _git_safe(args: list[str], cwd: Path | str) -> GitOutput:
    """Run git; failures are returned, not raised."""
    logger.debug("git %s (in %s)", " ".join(args), cwd)
    try:
        completed = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True)
    except FileNotFoundError:
        return GitOutput(success=False, output="git not found. Is git installed?")
    except OSError as e:
        return GitOutput(success=False, output=str(e))

    if completed.returncode != 0:
        message = completed.stderr.strip() or completed.stdout.strip() or f"git {args[0]} failed"
        return GitOutput(success=False, output=message)
    return GitOutput(success=True, output=completed.stdout.strip())


def _git(args: list[str], cwd: Path | str) -> str:
    """Run git and return stdout.

    Raises:
        WorkspaceError: git exited non-zero
    """
    result = _git_safe(args, cwd)
    if not result.success:
        raise WorkspaceError(result.output)
    return result.output


def create_workspace(repo_path: Path | str, base_dir: Path | str | None = None) -> IsolationWorkspace:
    """
    Create a new branch from HEAD and check it out in a fresh worktree.

    Raises:
        WorkspaceError: not a git repository, or git refused
    """
    repo_path = Path(repo_path).absolute()
    base = Path(base_dir) if base_dir else Path(tempfile.gettempdir())
    workspace_id = str(uuid.uuid4())
    branch = f"{BRANCH_PREFIX}{workspace_id}"
    path = base.absolute() / f"{WORKTREE_PREFIX}{workspace_id}"

    if not _git_safe(["rev-parse", "--git-dir"], repo_path).success:
        raise WorkspaceError(f"Not a git repository: {repo_path}")

    _git(["branch", branch], repo_path)
    try:
        _git(["worktree", "add", str(path), branch], repo_path)
    except WorkspaceError:
        _git_safe(["branch", "-D", branch], repo_path)
        raise

    logger.info("Created workspace %s on branch %s", path, branch)
    return IsolationWorkspace(id=workspace_id, path=path, branch=branch, main_repo_path=repo_path)


def merge_workspace(workspace: IsolationWorkspace, commit_message: str) -> None:
    """
    Commit all workspace changes and merge the branch into the main repo.

    A failed merge is aborted in the main repository; the workspace itself is
    left untouched.

    Raises:
        WorkspaceError: commit or merge failed
    """
    status = _git(["status", "--porcelain"], workspace.path)
    if status:
        _git(["add", "-A"], workspace.path)
        _git(["commit", "-m", commit_message], workspace.path)

    merge = _git_safe(
        ["merge", "--no-ff", workspace.branch, "-m", commit_message],
        workspace.main_repo_path,
    )
    if not merge.success:
        _git_safe(["merge", "--abort"], workspace.main_repo_path)
        raise WorkspaceError(merge.output)

    logger.info("Merged %s: %s", workspace.branch, commit_message)


def remove_workspace(workspace: IsolationWorkspace, force: bool = True) -> WorkspaceRemoval:
    """Remove the worktree, prune git's bookkeeping and delete the branch.

    A worktree directory or branch that is already gone is not an error.
    """
    args = ["worktree", "remove", str(workspace.path)]
    if force:
        args.append("--force")

    removed = _git_safe(args, workspace.main_repo_path)
    if not removed.success and workspace.path.exists():
        return WorkspaceRemoval(
            success=False, error=f"Failed to remove worktree: {removed.output}"
        )

    _git_safe(["worktree", "prune"], workspace.main_repo_path)

    deleted = _git_safe(["branch", "-D", workspace.branch], workspace.main_repo_path)
    if not deleted.success and "not found" not in deleted.output:
        return WorkspaceRemoval(success=False, error=f"Failed to delete branch: {deleted.output}")

    logger.info("Removed workspace %s", workspace.path)
    return WorkspaceRemoval(success=True)


def run_isolated(
    repo_path: Path | str,
    fn: Callable[[IsolationWorkspace], T],
    keep_on_error: bool = True,
    base_dir: Path | str | None = None,
) -> T:
    """
    Run ``fn`` inside a fresh workspace and dispose of it exactly once.

    On success the workspace is removed and ``fn``'s result returned; a
    failed removal raises WorkspaceError. If ``fn`` raises, the workspace is
    preserved (``keep_on_error``) or removed, and the original exception is
    re-raised.
    """
    workspace = create_workspace(repo_path, base_dir)

    try:
        result = fn(workspace)
    except Exception:
        if keep_on_error:
            logger.warning("Preserving workspace %s for inspection", workspace.path)
        else:
            removal = remove_workspace(workspace)
            if not removal.success:
                logger.error("Could not remove workspace %s: %s", workspace.path, removal.error)
        raise

    removal = remove_workspace(workspace)
    if not removal.success:
        raise WorkspaceError(removal.error)
    return result


def is_in_workspace(directory: Path | str) -> bool:
    """True if ``directory`` is inside a linked worktree rather than the main checkout."""
    result = _git_safe(["rev-parse", "--git-dir"], directory)
    return result.success and ".git/worktrees/" in result.output.replace("\\", "/")


def get_main_repo_path(directory: Path | str) -> Path | None:
    """Main checkout of the repository ``directory`` belongs to."""
    result = _git_safe(["rev-parse", "--git-common-dir"], directory)
    if not result.success:
        return None

    common_dir = Path(result.output)
    if not common_dir.is_absolute():
        common_dir = (Path(directory) / common_dir).resolve()
    return common_dir.parent if common_dir.name == ".git" else common_dir


def list_import_workspaces(repo_path: Path | str) -> list[IsolationWorkspace]:
    """Worktrees of ``repo_path`` whose branch is an import branch."""
    result = _git_safe(["worktree", "list", "--porcelain"], repo_path)
    if not result.success:
        return []

    workspaces: list[IsolationWorkspace] = []
    for block in result.output.split("\n\n"):
        path = ""
        branch = ""
        for line in block.split("\n"):
            if line.startswith("worktree "):
                path = line[len("worktree ") :]
            elif line.startswith("branch "):
                branch = line[len("branch ") :].replace("refs/heads/", "", 1)

        if path and branch.startswith(BRANCH_PREFIX):
            workspaces.append(
                IsolationWorkspace(
                    id=branch[len(BRANCH_PREFIX) :],
                    path=Path(path),
                    branch=branch,
                    main_repo_path=Path(repo_path),
                )
            )

    return workspaces
