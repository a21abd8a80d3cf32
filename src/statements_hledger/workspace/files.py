"""
Staging of incoming CSV files between the main repository and a workspace.

Incoming CSVs are git-ignored, so a new worktree does not contain them. They
are copied in before classification and deleted from the main repository once
the import has been merged. Both operations report per-file errors instead of
raising.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from ..schemas.results import FileError

logger = logging.getLogger(__name__)


@dataclass
class StagingResult:
    succeeded: list[str] = field(default_factory=list)
    errors: list[FileError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def find_incoming_csv_files(import_dir: Path | str) -> list[str]:
    """Names of the ``*.csv`` files directly inside ``import_dir`` (case-insensitive)."""
    import_dir = Path(import_dir)
    if not import_dir.is_dir():
        return []
    return sorted(
        p.name for p in import_dir.iterdir() if p.is_file() and p.name.lower().endswith(".csv")
    )


def sync_csv_files(main_repo: Path | str, workspace_path: Path | str, import_dir: str) -> StagingResult:
    """Copy incoming CSVs from the main repository into the workspace."""
    result = StagingResult()
    source_dir = Path(main_repo) / import_dir
    target_dir = Path(workspace_path) / import_dir

    files = find_incoming_csv_files(source_dir)
    if not files:
        return result

    target_dir.mkdir(parents=True, exist_ok=True)
    for name in files:
        try:
            shutil.copy2(source_dir / name, target_dir / name)
            result.succeeded.append(name)
        except OSError as e:
            logger.warning("Failed to copy %s into workspace: %s", name, e)
            result.errors.append(FileError(file=name, error=str(e)))

    return result


def cleanup_processed_csv_files(
    main_repo: Path | str,
    import_dir: str,
    filenames: list[str] | None = None,
) -> StagingResult:
    """
    Delete processed CSVs from the main repository's import directory.

    ``filenames`` limits deletion to those files; by default every incoming
    CSV is deleted. Files that are already gone count as deleted.
    """
    result = StagingResult()
    source_dir = Path(main_repo) / import_dir
    names = filenames if filenames is not None else find_incoming_csv_files(source_dir)

    for name in names:
        try:
            (source_dir / name).unlink()
            result.succeeded.append(name)
        except FileNotFoundError:
            result.succeeded.append(name)
        except OSError as e:
            logger.warning("Failed to delete %s: %s", name, e)
            result.errors.append(FileError(file=name, error=str(e)))

    return result
