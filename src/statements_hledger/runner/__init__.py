"""
CLI runner module.

Provides commands:
- pipeline: End-to-end import in an isolated worktree
- classify: Sort incoming CSVs into pending/unrecognized
- import: Dry-run or import pending CSVs
- reconcile: Check the closing balance
- update-prices: Fetch market prices
- cleanup-workspaces: Remove stale worktrees
- init: Create the import directories
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
