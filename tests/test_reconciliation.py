"""Tests for the ReconciliationService.

These tests verify:
- Closing balance taken from statement metadata or given explicitly
- Account resolution through the rules file of the pending location
- Exact balance comparison with a signed difference on mismatch
"""

import pytest
from fixtures import REGISTER_CSV, ScriptedExecutor, UBS_CSV, failed, ledger_executor, ok

from statements_hledger.services import ReconciliationService


def make_service(executor, in_workspace=True):
    return ReconciliationService(executor, workspace_checker=lambda directory: in_workspace)


@pytest.fixture
def done_statement(ledger_dir):
    path = ledger_dir / "import" / "done" / "ubs" / "chf" / "statement.csv"
    path.parent.mkdir(parents=True)
    path.write_text(UBS_CSV)
    return path


class TestReconciliationService:
    """Tests for ReconciliationService.run_reconciliation."""

    def test_balance_matches(self, ledger_dir, done_statement):
        executor = ledger_executor(balance="CHF 2324.79")

        report = make_service(executor).run_reconciliation(ledger_dir)

        assert report.success
        assert report.csv_file == "import/done/ubs/chf/statement.csv"
        assert report.account == "assets:bank:ubs:checking"
        assert report.expected_balance == "2324.79"
        assert report.actual_balance == "CHF 2324.79"
        assert report.last_transaction_date == "2024-01-15"
        assert report.metadata == {
            "account_number": "CH12-3456-7890",
            "from_date": "2024-01-01",
            "until_date": "2024-01-31",
            "closing_balance": "2324.79",
        }

    def test_balance_queried_at_last_transaction(self, ledger_dir, done_statement):
        executor = ledger_executor()

        make_service(executor).run_reconciliation(ledger_dir)

        balance_call = executor.calls[-1]
        assert balance_call[0] == "bal"
        assert balance_call[balance_call.index("-e") + 1] == "2024-01-16"

    def test_mismatch(self, ledger_dir, done_statement):
        executor = ledger_executor(balance="CHF 95.00")

        report = make_service(executor).run_reconciliation(ledger_dir, closing_balance="CHF 100.00")

        assert not report.success
        assert report.difference == "CHF -5.00"
        assert report.error == "Balance mismatch: expected CHF 100.00, got CHF 95.00 (difference: CHF -5.00)"
        assert "missing transactions" in report.hint

    def test_no_tolerance(self, ledger_dir, done_statement):
        executor = ledger_executor(balance="CHF 2324.78")

        report = make_service(executor).run_reconciliation(ledger_dir)

        assert not report.success
        assert report.difference == "CHF -0.01"

    def test_currency_mismatch(self, ledger_dir, done_statement):
        executor = ledger_executor(balance="EUR 2324.79")

        report = make_service(executor).run_reconciliation(ledger_dir, closing_balance="CHF 2324.79")

        assert not report.success
        assert report.error.startswith("Cannot parse balances for comparison")

    def test_explicit_account(self, ledger_dir, done_statement):
        executor = ledger_executor()

        report = make_service(executor).run_reconciliation(ledger_dir, account="assets:bank:other")

        assert report.account == "assets:bank:other"
        assert executor.calls[0][1] == "assets:bank:other"

    def test_missing_closing_balance(self, ledger_dir, done_statement):
        done_statement.write_text(UBS_CSV.replace(",Closing balance,2324.79", ""))

        report = make_service(ledger_executor()).run_reconciliation(ledger_dir)

        assert not report.success
        assert report.error == "No closing balance found in CSV metadata"

    def test_account_not_resolvable(self, ledger_dir, done_statement):
        (ledger_dir / "ledger" / "rules" / "ubs-chf.rules").unlink()

        report = make_service(ledger_executor()).run_reconciliation(ledger_dir)

        assert not report.success
        assert report.error == "Could not determine account from rules file"

    def test_no_transactions(self, ledger_dir, done_statement):
        executor = ScriptedExecutor({"register": ok(REGISTER_CSV.split("\n")[0] + "\n")})

        report = make_service(executor).run_reconciliation(ledger_dir)

        assert not report.success
        assert report.error == "No transactions found for account"

    def test_balance_query_failure(self, ledger_dir, done_statement):
        executor = ScriptedExecutor({"register": ok(REGISTER_CSV), "bal": failed("boom")})

        report = make_service(executor).run_reconciliation(ledger_dir)

        assert report.error == "Failed to query account balance from hledger"

    def test_nothing_done(self, ledger_dir):
        report = make_service(ledger_executor()).run_reconciliation(ledger_dir)

        assert not report.success
        assert report.error == "No CSV files found in done directory to reconcile"

    def test_outside_workspace(self, ledger_dir, done_statement):
        report = make_service(ledger_executor(), in_workspace=False).run_reconciliation(ledger_dir)

        assert not report.success
        assert "isolation workspace" in report.error

    def test_report_dict(self, ledger_dir, done_statement):
        result = make_service(ledger_executor()).run_reconciliation(ledger_dir).to_dict()

        assert result["success"] is True
        assert "difference" not in result
        assert "error" not in result
