"""Tests for the import pipeline orchestrator.

These run against a real git repository with a scripted hledger, so the
worktree handling, merge and cleanup are exercised end to end.
"""

import json
from unittest.mock import patch

import pytest
from fixtures import (
    PRINT_UNKNOWN,
    UBS_CSV,
    add_incoming,
    add_pending,
    git,
    ledger_executor,
    undeletable,
)

from statements_hledger.access import RESTRICTED_MESSAGE
from statements_hledger.services import ImportPipeline, PipelineOptions, build_commit_message
from statements_hledger.workspace import WorkspaceError, WorkspaceRemoval, list_import_workspaces

UBS_CHF = PipelineOptions(provider="ubs", currency="chf")


def run_pipeline(repo, base, executor=None, options=UBS_CHF, caller="accountant"):
    pipeline = ImportPipeline(executor or ledger_executor(), workspace_base_dir=base)
    return pipeline.run(repo, caller, options)


def messages(result):
    return {name: step.message for name, step in result.steps.items()}


class TestBuildCommitMessage:
    """Tests for build_commit_message."""

    def test_full(self):
        assert build_commit_message("ubs", "chf", "2024-01-01", "2024-01-31", 12) == (
            "Import: UBS CHF 2024-01-01 to 2024-01-31 (12 transactions)"
        )

    def test_partial_period_omitted(self):
        assert build_commit_message("ubs", None, "2024-01-01", None, 0) == "Import: UBS"

    def test_no_provider(self):
        assert build_commit_message(None, None) == "Import: STATEMENTS"


class TestSuccessfulImport:
    """A statement that imports, reconciles and merges."""

    @pytest.fixture
    def result(self, ledger_repo, workspace_base):
        add_incoming(ledger_repo, "statement.csv", UBS_CSV)
        return run_pipeline(ledger_repo, workspace_base)

    def test_result(self, result):
        assert result.success
        assert result.error is None
        assert result.summary == "Successfully imported 1 transaction(s)"
        assert list(result.steps) == [
            "worktree",
            "sync",
            "classify",
            "accountDeclarations",
            "dryRun",
            "import",
            "reconcile",
            "merge",
            "cleanup",
        ]
        assert all(step.success for step in result.steps.values())

    def test_step_messages(self, result):
        assert messages(result)["sync"] == "Synced 1 CSV file(s) to worktree"
        assert messages(result)["accountDeclarations"] == (
            "Declared 4 new account(s) in ledger/2024.journal"
        )
        assert messages(result)["dryRun"] == "Dry run passed: 1 transactions ready"
        assert messages(result)["reconcile"] == "Balance reconciled: CHF 2324.79"
        assert messages(result)["cleanup"] == (
            "Removed 1 processed CSV file(s) from main repository; Worktree cleaned up"
        )

    def test_merged_as_one_commit(self, result, ledger_repo):
        message = "Import: UBS CHF 2024-01-01 to 2024-01-31 (1 transactions)"
        assert messages(result)["merge"] == f'Merged to main: "{message}"'
        assert git(ledger_repo, "log", "-1", "--format=%s") == message
        assert len(git(ledger_repo, "log", "-1", "--format=%P").split()) == 2

    def test_main_repository_updated(self, result, ledger_repo):
        assert (ledger_repo / "import" / "done" / "ubs" / "chf" / "statement.csv").exists()
        assert "account expenses:groceries" in (ledger_repo / "ledger" / "2024.journal").read_text()
        assert "include ledger/2024.journal" in (ledger_repo / ".hledger.journal").read_text()
        assert not (ledger_repo / "import" / "incoming" / "statement.csv").exists()

    def test_workspace_removed(self, result, ledger_repo, workspace_base):
        assert result.steps["cleanup"].details.workspace == "removed"
        assert list_import_workspaces(ledger_repo) == []
        assert list(workspace_base.iterdir()) == []

    def test_json(self, result):
        data = json.loads(result.to_json())

        assert data["success"] is True
        assert data["worktreeId"] == result.worktree_id
        assert data["steps"]["merge"]["details"]["commit_message"].startswith("Import: UBS CHF")


class TestUnknownAccounts:
    """A statement with uncategorized transactions stops at the dry run."""

    def test_workspace_preserved(self, ledger_repo, workspace_base):
        incoming = add_incoming(ledger_repo, "statement.csv", UBS_CSV)
        head = git(ledger_repo, "rev-parse", "HEAD")

        result = run_pipeline(ledger_repo, workspace_base, ledger_executor(print_output=PRINT_UNKNOWN))

        assert not result.success
        assert result.error == "Dry run found unknown accounts or errors"
        assert result.hint == "Add rules to categorize unknown transactions, then retry"
        assert messages(result)["dryRun"] == "Dry run failed: 1 unknown account(s)"
        assert "import" not in result.steps
        assert "merge" not in result.steps
        assert result.steps["cleanup"].details.workspace == "preserved"
        assert [w.id for w in list_import_workspaces(ledger_repo)] == [result.worktree_id]
        assert git(ledger_repo, "rev-parse", "HEAD") == head
        assert incoming.exists()

    def test_unknown_postings_reported(self, ledger_repo, workspace_base):
        add_incoming(ledger_repo, "statement.csv", UBS_CSV)

        result = run_pipeline(ledger_repo, workspace_base, ledger_executor(print_output=PRINT_UNKNOWN))

        details = result.to_dict()["steps"]["dryRun"]["details"]
        assert details["summary"]["unknown"] == 1
        assert details["files"][0]["unknown_postings"][0]["account"] == "expenses:unknown"

    def test_discard_on_error(self, ledger_repo, workspace_base):
        add_incoming(ledger_repo, "statement.csv", UBS_CSV)
        options = PipelineOptions(provider="ubs", currency="chf", keep_on_error=False)

        result = run_pipeline(
            ledger_repo, workspace_base, ledger_executor(print_output=PRINT_UNKNOWN), options
        )

        assert not result.success
        assert messages(result)["cleanup"] == "Worktree cleaned up after failure"
        assert list_import_workspaces(ledger_repo) == []


class TestNothingToImport:
    """An empty incoming directory is a successful no-op."""

    def test_no_transactions(self, ledger_repo, workspace_base):
        head = git(ledger_repo, "rev-parse", "HEAD")

        result = run_pipeline(ledger_repo, workspace_base)

        assert result.success
        assert result.summary == "No transactions found to import"
        assert messages(result)["accountDeclarations"] == "No pending CSV files"
        assert messages(result)["import"] == "No transactions to import"
        assert messages(result)["reconcile"] == "Reconciliation skipped (no transactions)"
        assert messages(result)["merge"] == "Merge skipped (no changes)"
        assert messages(result)["cleanup"] == "Worktree cleaned up"
        assert git(ledger_repo, "rev-parse", "HEAD") == head
        assert list_import_workspaces(ledger_repo) == []


class TestBalanceMismatch:
    """A wrong closing balance stops the run before merging."""

    def test_reconcile_fails(self, ledger_repo, workspace_base):
        add_incoming(ledger_repo, "statement.csv", UBS_CSV)
        head = git(ledger_repo, "rev-parse", "HEAD")
        options = PipelineOptions(provider="ubs", currency="chf", closing_balance="CHF 100.00")

        result = run_pipeline(ledger_repo, workspace_base, ledger_executor(balance="CHF 95.00"), options)

        assert not result.success
        assert result.error.startswith("Reconciliation failed")
        assert result.hint == "Check for missing transactions or incorrect rules"
        assert messages(result)["reconcile"] == "Balance mismatch: expected CHF 100.00, got CHF 95.00"
        assert result.to_dict()["steps"]["reconcile"]["details"]["difference"] == "CHF -5.00"
        assert "merge" not in result.steps
        assert git(ledger_repo, "rev-parse", "HEAD") == head


class TestPipelineFailures:
    """Authorization, repository and disposal failures."""

    def test_caller_denied(self, ledger_repo, workspace_base):
        result = run_pipeline(ledger_repo, workspace_base, caller="assistant")

        assert not result.success
        assert result.error == RESTRICTED_MESSAGE
        assert "accountant" in result.hint
        assert result.steps == {}
        assert list(workspace_base.iterdir()) == []

    def test_not_a_repository(self, ledger_dir, workspace_base):
        result = run_pipeline(ledger_dir, workspace_base)

        assert not result.success
        assert result.error.startswith("Failed to create worktree: Not a git repository")
        assert list(result.steps) == ["worktree"]

    def test_config_error(self, ledger_repo, workspace_base):
        (ledger_repo / "config" / "import" / "providers.yaml").write_text("paths: {}\n")

        result = run_pipeline(ledger_repo, workspace_base)

        assert not result.success
        assert result.error.startswith("Failed to load configuration")
        assert result.steps == {}

    def test_merge_failure_always_preserves(self, ledger_repo, workspace_base):
        add_incoming(ledger_repo, "statement.csv", UBS_CSV)
        options = PipelineOptions(provider="ubs", currency="chf", keep_on_error=False)

        with patch(
            "statements_hledger.services.pipeline.merge_workspace",
            side_effect=WorkspaceError("conflict"),
        ):
            result = run_pipeline(ledger_repo, workspace_base, options=options)

        assert not result.success
        assert result.error == "Merge to main branch failed"
        assert messages(result)["merge"] == "Merge failed: conflict"
        assert result.steps["cleanup"].details.workspace == "preserved"
        assert (ledger_repo / "import" / "incoming" / "statement.csv").exists()

    def test_removal_failure_after_merge(self, ledger_repo, workspace_base):
        add_incoming(ledger_repo, "statement.csv", UBS_CSV)

        with patch(
            "statements_hledger.workspace.manager.remove_workspace",
            return_value=WorkspaceRemoval(success=False, error="busy"),
        ):
            result = run_pipeline(ledger_repo, workspace_base)

        assert result.success
        assert not result.steps["cleanup"].success
        assert result.steps["cleanup"].message.endswith("Cleanup warning: busy")
        assert result.steps["cleanup"].details.workspace == "removal-failed"

    def test_undeletable_incoming_file_after_merge(self, ledger_repo, workspace_base):
        incoming = add_incoming(ledger_repo, "statement.csv", UBS_CSV)

        with undeletable("statement.csv"):
            result = run_pipeline(ledger_repo, workspace_base)

        cleanup = result.steps["cleanup"]
        assert result.success
        assert cleanup.success
        assert cleanup.message == (
            "Removed 0 processed CSV file(s) from main repository (1 could not be deleted); "
            "Worktree cleaned up"
        )
        assert [e.file for e in cleanup.details.errors] == ["statement.csv"]
        assert cleanup.details.workspace == "removed"
        assert (ledger_repo / "import" / "done" / "ubs" / "chf" / "statement.csv").exists()
        assert incoming.exists()

    def test_undated_transactions_stop_before_dry_run(self, ledger_repo, workspace_base):
        add_incoming(ledger_repo, "statement.csv", UBS_CSV)
        head = git(ledger_repo, "rev-parse", "HEAD")

        result = run_pipeline(ledger_repo, workspace_base, ledger_executor(print_output=""))

        assert not result.success
        assert result.error == "Could not determine transaction year from pending CSV files"
        assert result.hint == "Check that the rules files produce dated transactions"
        assert messages(result)["accountDeclarations"] == "Could not determine transaction year"
        assert "dryRun" not in result.steps
        assert result.steps["cleanup"].details.workspace == "preserved"
        assert [w.id for w in list_import_workspaces(ledger_repo)] == [result.worktree_id]
        assert git(ledger_repo, "rev-parse", "HEAD") == head

    def test_unexpected_step_exception(self, ledger_repo, workspace_base):
        add_incoming(ledger_repo, "statement.csv", UBS_CSV)

        with patch(
            "statements_hledger.services.pipeline.ensure_account_declarations",
            side_effect=RuntimeError("disk full"),
        ):
            result = run_pipeline(ledger_repo, workspace_base)

        assert not result.success
        assert result.error == "disk full"
        assert messages(result)["accountDeclarations"] == "accountDeclarations failed: disk full"


class TestSkipClassify:
    """Importing what is already pending without touching incoming files."""

    def test_incoming_files_left_alone(self, ledger_repo, workspace_base):
        add_pending(ledger_repo, "statement.csv", UBS_CSV)
        git(ledger_repo, "add", "-f", "import/pending")
        git(ledger_repo, "commit", "-q", "-m", "Pending statement")
        unrelated = add_incoming(ledger_repo, "later.csv", UBS_CSV)
        options = PipelineOptions(provider="ubs", currency="chf", skip_classify=True)

        result = run_pipeline(ledger_repo, workspace_base, options=options)

        assert result.success
        assert messages(result)["classify"] == "Classification skipped"
        assert result.steps["cleanup"].details.deleted == []
        assert unrelated.exists()
        assert (ledger_repo / "import" / "done" / "ubs" / "chf" / "statement.csv").exists()
