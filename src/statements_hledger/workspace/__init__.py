"""
Isolation workspaces (git worktrees) and CSV staging.
"""

from .files import (
    StagingResult,
    cleanup_processed_csv_files,
    find_incoming_csv_files,
    sync_csv_files,
)
from .manager import (
    BRANCH_PREFIX,
    WORKTREE_PREFIX,
    IsolationWorkspace,
    WorkspaceChecker,
    WorkspaceError,
    WorkspaceRemoval,
    create_workspace,
    get_main_repo_path,
    is_in_workspace,
    list_import_workspaces,
    merge_workspace,
    remove_workspace,
    run_isolated,
)

__all__ = [
    # Manager
    "BRANCH_PREFIX",
    "WORKTREE_PREFIX",
    "IsolationWorkspace",
    "WorkspaceChecker",
    "WorkspaceError",
    "WorkspaceRemoval",
    "create_workspace",
    "get_main_repo_path",
    "is_in_workspace",
    "list_import_workspaces",
    "merge_workspace",
    "remove_workspace",
    "run_isolated",
    # Staging
    "StagingResult",
    "cleanup_processed_csv_files",
    "find_incoming_csv_files",
    "sync_csv_files",
]
