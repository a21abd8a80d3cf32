"""Test fixtures and utilities."""

import shutil
from pathlib import Path

import pytest
from fixtures import git, write_ledger_files

from statements_hledger.config import load_import_config
from statements_hledger.services.maintenance import IMPORT_GITIGNORE


@pytest.fixture
def ledger_dir(tmp_path: Path) -> Path:
    """Ledger directory without version control."""
    root = tmp_path / "ledger-dir"
    root.mkdir()
    write_ledger_files(root)
    return root


@pytest.fixture
def import_config(ledger_dir: Path):
    """Parsed providers.yaml of the sample ledger."""
    return load_import_config(ledger_dir)


@pytest.fixture
def ledger_repo(tmp_path: Path) -> Path:
    """Git repository holding a committed ledger."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    repo = tmp_path / "ledger"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "config", "user.email", "ledger@example.com")
    git(repo, "config", "user.name", "Ledger Tests")
    git(repo, "config", "commit.gpgsign", "false")

    write_ledger_files(repo)
    (repo / "import").mkdir()
    (repo / "import" / ".gitignore").write_text(IMPORT_GITIGNORE)
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", "Initial ledger")
    return repo


@pytest.fixture
def workspace_base(tmp_path: Path) -> Path:
    """Directory receiving isolation workspaces."""
    base = tmp_path / "workspaces"
    base.mkdir()
    return base
