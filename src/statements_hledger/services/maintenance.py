"""Housekeeping: stale workspace cleanup and import directory setup."""

from __future__ import annotations

import logging
import re
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..config import ConfigLoader, ConfigValidationError, load_import_config
from ..workspace import (
    BRANCH_PREFIX,
    WORKTREE_PREFIX,
    IsolationWorkspace,
    get_main_repo_path,
    remove_workspace,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_HOURS = 24
GITDIR_PATTERN = re.compile(r"gitdir: .+/worktrees/(.+)")

IMPORT_GITIGNORE = """# Ignore CSV/PDF files in temporary directories
/incoming/*.csv
/incoming/*.pdf
/pending/**/*.csv
/pending/**/*.pdf
/unrecognized/**/*.csv
/unrecognized/**/*.pdf

# Track processed files in done/ (audit trail)
# No ignore rule needed - tracked by default

# Ignore temporary files
*.tmp
*.temp
.DS_Store
Thumbs.db
"""


# =============================================================================
# Workspace cleanup
# =============================================================================


@dataclass
class WorkspaceInfo:
    """A workspace directory found on disk."""

    path: Path
    id: str
    branch: str
    age_hours: float
    size_bytes: int

    @property
    def age(self) -> str:
        return format_age(self.age_hours)

    @property
    def size(self) -> str:
        return f"{self.size_bytes / (1024 * 1024):.2f} MB"

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.path),
            "id": self.id,
            "branch": self.branch,
            "age": self.age,
            "age_hours": round(self.age_hours, 2),
            "size": self.size,
        }


@dataclass
class CleanupReport:
    found: list[WorkspaceInfo] = field(default_factory=list)
    removed: list[WorkspaceInfo] = field(default_factory=list)
    failed: list[tuple[WorkspaceInfo, str]] = field(default_factory=list)
    summary: str = ""

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "found": [w.to_dict() for w in self.found],
            "removed": [w.to_dict() for w in self.removed],
            "failed": [{"workspace": w.to_dict(), "error": e} for w, e in self.failed],
            "summary": self.summary,
        }


def format_age(hours: float) -> str:
    if hours < 1:
        return f"{round(hours * 60)} minutes ago"
    if hours < 24:
        return f"{round(hours)} hours ago"
    days = round(hours / 24)
    return f"{days} day{'s' if days > 1 else ''} ago"


def _directory_size(path: Path) -> int:
    total = 0
    for entry in path.rglob("*"):
        try:
            if entry.is_file() and not entry.is_symlink():
                total += entry.stat().st_size
        except OSError:
            continue
    return total


def _worktree_branch(path: Path) -> str:
    try:
        content = (path / ".git").read_text(encoding="utf-8")
    except OSError:
        return "unknown"
    match = GITDIR_PATTERN.search(content)
    return match.group(1).strip() if match else "unknown"


def find_workspaces(base_dir: Path | str | None = None, now: float | None = None) -> list[WorkspaceInfo]:
    """Workspace directories under ``base_dir``, sorted by name."""
    base = Path(base_dir) if base_dir else Path(tempfile.gettempdir())
    if not base.is_dir():
        return []

    now = time.time() if now is None else now
    found: list[WorkspaceInfo] = []
    for path in sorted(base.iterdir()):
        if not path.is_dir() or not path.name.startswith(WORKTREE_PREFIX):
            continue
        try:
            mtime = path.stat().st_mtime
        except OSError:
            continue
        found.append(
            WorkspaceInfo(
                path=path,
                id=path.name[len(WORKTREE_PREFIX) :],
                branch=_worktree_branch(path),
                age_hours=max(now - mtime, 0) / 3600,
                size_bytes=_directory_size(path),
            )
        )
    return found


def _remove(info: WorkspaceInfo, force: bool) -> str | None:
    """Remove one workspace; returns the error message on failure."""
    main_repo = get_main_repo_path(info.path)
    if main_repo is None:
        return f"Cannot locate the repository of {info.path}"

    workspace = IsolationWorkspace(
        id=info.id,
        path=info.path,
        branch=f"{BRANCH_PREFIX}{info.id}",
        main_repo_path=main_repo,
    )
    removal = remove_workspace(workspace, force=force)
    return None if removal.success else removal.error


def cleanup_workspaces(
    base_dir: Path | str | None = None,
    all: bool = False,
    dry_run: bool = False,
    older_than_hours: float = DEFAULT_MAX_AGE_HOURS,
    force: bool = False,
) -> CleanupReport:
    """
    Remove isolation workspaces left behind by failed runs.

    Args:
        base_dir: Directory holding the workspaces (system temp dir by default)
        all: Remove every workspace regardless of age
        dry_run: Only report what would be removed
        older_than_hours: Minimum age of a workspace to be removed
        force: Remove worktrees with uncommitted changes or locks

    Returns:
        CleanupReport with found, removed and failed workspaces
    """
    report = CleanupReport(found=find_workspaces(base_dir))
    if not report.found:
        report.summary = "No worktrees found"
        return report

    for info in report.found:
        logger.info("Found %s (branch %s, %s, %s)", info.path, info.branch, info.age, info.size)

    selected = report.found if all else [w for w in report.found if w.age_hours >= older_than_hours]
    if not selected:
        report.summary = (
            f"No worktrees to remove ({len(report.found)} found, "
            f"all newer than {older_than_hours:g}h)"
        )
        return report

    if dry_run:
        report.summary = f"Dry run: would remove {len(selected)}/{len(report.found)} worktrees"
        return report

    for info in selected:
        error = _remove(info, force)
        if error:
            logger.error("Failed to remove %s: %s", info.path, error)
            report.failed.append((info, error))
        else:
            report.removed.append(info)

    report.summary = f"Removed {len(report.removed)}/{len(selected)} worktrees"
    return report


# =============================================================================
# Directory initialization
# =============================================================================


@dataclass
class InitReport:
    success: bool
    directories_created: list[str] = field(default_factory=list)
    gitkeep_files: list[str] = field(default_factory=list)
    gitignore_created: bool = False
    message: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "success": self.success,
            "directories_created": self.directories_created,
            "gitkeep_files": self.gitkeep_files,
            "gitignore_created": self.gitignore_created,
        }
        if self.message:
            d["message"] = self.message
        if self.error:
            d["error"] = self.error
        return d


def init_directories(directory: Path, config_loader: ConfigLoader = load_import_config) -> InitReport:
    """Create the configured import directories, each tracked by a ``.gitkeep``."""
    directory = Path(directory)
    try:
        config = config_loader(directory)
    except ConfigValidationError as e:
        return InitReport(success=False, error=str(e))

    paths = config.paths
    report = InitReport(success=True)
    try:
        targets = dict.fromkeys(["import", paths.import_dir, paths.pending, paths.done, paths.unrecognized])
        for relative in targets:
            target = directory / relative
            if not target.exists():
                target.mkdir(parents=True)
                report.directories_created.append(relative)

            gitkeep = target / ".gitkeep"
            if not gitkeep.exists():
                gitkeep.touch()
                report.gitkeep_files.append(f"{relative}/.gitkeep")

        gitignore = directory / "import" / ".gitignore"
        if not gitignore.exists():
            gitignore.write_text(IMPORT_GITIGNORE, encoding="utf-8")
            report.gitignore_created = True
    except OSError as e:
        logger.error("Failed to initialize import directories: %s", e)
        report.success = False
        report.error = f"Failed to initialize directories: {e}"
        return report

    parts: list[str] = []
    if report.directories_created:
        count = len(report.directories_created)
        parts.append(f"Created {count} director{'y' if count == 1 else 'ies'}")
    if report.gitkeep_files:
        parts.append(f"added {len(report.gitkeep_files)} .gitkeep file(s)")
    if report.gitignore_created:
        parts.append("created .gitignore")

    if parts:
        report.message = f"Import directory structure initialized: {', '.join(parts)}"
    else:
        report.message = "Import directory structure already exists (no changes needed)"
    return report
