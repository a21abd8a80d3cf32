"""
Bank statement CSV → hledger import pipeline.

Classifies statement exports by provider and currency, converts them into
ledger transactions inside an isolated git worktree, reconciles the resulting
balance against the statement, and only then merges the change into the
primary ledger history.
"""

__version__ = "0.1.0"
