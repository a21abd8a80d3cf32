"""Statement reconciliation service.

Checks that the ledger balance of the statement's account, as of its last
transaction, equals the closing balance printed on the statement. Works on
the most recent CSV in the done directory. There is no tolerance: any
difference fails the reconciliation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..config import ConfigLoader, ConfigValidationError, ImportConfig, load_import_config
from ..detection import detect_provider
from ..ledger import (
    LedgerExecutor,
    find_csv_files,
    get_account_balance,
    get_last_transaction_date,
    main_journal_path,
)
from ..rules import find_rules_for_csv, load_rules_mapping, parse_account1
from ..schemas.balance import CurrencyMismatchError, balances_match, calculate_difference
from ..workspace import WorkspaceChecker, is_in_workspace

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    """Outcome of a reconciliation, including the statement metadata used."""

    success: bool
    csv_file: str | None = None
    account: str | None = None
    expected_balance: str | None = None
    actual_balance: str | None = None
    difference: str | None = None
    last_transaction_date: str | None = None
    metadata: dict[str, str] | None = None
    error: str | None = None
    hint: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": self.success}
        for key in (
            "csv_file",
            "account",
            "expected_balance",
            "actual_balance",
            "difference",
            "last_transaction_date",
            "metadata",
            "error",
            "hint",
        ):
            value = getattr(self, key)
            if value is not None:
                d[key] = value
        return d


def normalize_metadata(metadata: dict[str, str]) -> dict[str, str]:
    """Metadata keys as identifiers: "closing-balance" → "closing_balance"."""
    return {key.replace("-", "_"): value for key, value in metadata.items()}


class ReconciliationService:
    """Reconciles the latest imported statement against the ledger.

    Usage:
        service = ReconciliationService(HledgerExecutor())
        report = service.run_reconciliation(workspace_path, closing_balance="CHF 100.00")
    """

    def __init__(
        self,
        executor: LedgerExecutor,
        config_loader: ConfigLoader = load_import_config,
        workspace_checker: WorkspaceChecker = is_in_workspace,
    ) -> None:
        self.executor = executor
        self.config_loader = config_loader
        self.workspace_checker = workspace_checker

    def run_reconciliation(
        self,
        directory: Path,
        provider: str | None = None,
        currency: str | None = None,
        closing_balance: str | None = None,
        account: str | None = None,
    ) -> ReconcileReport:
        directory = Path(directory)
        if not self.workspace_checker(directory):
            return ReconcileReport(
                success=False,
                error="reconcile must be run inside an isolation workspace",
                hint="Use the pipeline command to orchestrate the full workflow",
            )

        try:
            config = self.config_loader(directory)
        except ConfigValidationError as e:
            return ReconcileReport(
                success=False,
                error=f"Failed to load configuration: {e}",
                hint="Ensure config/import/providers.yaml exists",
            )

        csv_files = find_csv_files(directory / config.paths.done, provider, currency)
        if not csv_files:
            return ReconcileReport(
                success=False,
                error="No CSV files found in done directory to reconcile",
                hint="Run the import first",
            )

        csv_file = csv_files[-1]
        report = ReconcileReport(success=False, csv_file=str(csv_file.relative_to(directory)))
        metadata = self._extract_metadata(csv_file, config)
        report.metadata = metadata

        expected = closing_balance or self._closing_balance_from(metadata)
        if not expected:
            report.error = "No closing balance found in CSV metadata"
            report.hint = "Provide the closing balance manually"
            return report
        report.expected_balance = expected

        report.account = account or self._account_from_rules(directory, config, csv_file)
        if not report.account:
            report.error = "Could not determine account from rules file"
            report.hint = "Provide the account manually or add an account1 directive to the rules file"
            return report

        journal = main_journal_path(directory)
        report.last_transaction_date = get_last_transaction_date(
            journal, report.account, self.executor
        )
        if not report.last_transaction_date:
            report.error = "No transactions found for account"
            report.hint = "Ensure the import completed successfully"
            return report

        report.actual_balance = get_account_balance(
            journal, report.account, report.last_transaction_date, self.executor
        )
        if report.actual_balance is None:
            report.error = "Failed to query account balance from hledger"
            return report

        try:
            matched = balances_match(expected, report.actual_balance)
        except CurrencyMismatchError as e:
            report.error = f"Cannot parse balances for comparison: {e}"
            return report

        if matched:
            logger.info("Reconciled %s: %s", report.account, report.actual_balance)
            report.success = True
            return report

        try:
            report.difference = calculate_difference(expected, report.actual_balance)
        except ValueError as e:
            report.error = f"Failed to calculate difference: {e}"
            return report

        report.error = (
            f"Balance mismatch: expected {expected}, got {report.actual_balance} "
            f"(difference: {report.difference})"
        )
        report.hint = "Check for missing transactions, duplicate imports, or incorrect rules"
        logger.warning(report.error)
        return report

    def _extract_metadata(self, csv_file: Path, config: ImportConfig) -> dict[str, str] | None:
        try:
            content = csv_file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Cannot read %s: %s", csv_file.name, e)
            return None

        # A renamed file may no longer match the filename pattern it was classified by
        detection = detect_provider(csv_file.name, content, config) or detect_provider(
            csv_file.name, content, config, match_filename=False
        )
        if detection is None or not detection.metadata:
            return None
        return normalize_metadata(detection.metadata)

    def _closing_balance_from(self, metadata: dict[str, str] | None) -> str | None:
        if not metadata or not metadata.get("closing_balance"):
            return None
        balance = metadata["closing_balance"]
        statement_currency = metadata.get("currency")
        if statement_currency and statement_currency not in balance:
            balance = f"{statement_currency} {balance}"
        return balance

    def _account_from_rules(self, directory: Path, config: ImportConfig, csv_file: Path) -> str | None:
        """account1 of the rules file for ``csv_file``.

        Rules files usually point at the pending location, which the CSV has
        left by now, so the matching pending path is tried as well.
        """
        mapping = load_rules_mapping(directory / config.paths.rules)
        done_dir = directory / config.paths.done
        pending_path = directory / config.paths.pending / csv_file.relative_to(done_dir)

        rules_file = find_rules_for_csv(csv_file.absolute(), mapping) or find_rules_for_csv(
            pending_path.absolute(), mapping
        )
        if rules_file is None:
            return None
        try:
            return parse_account1(Path(rules_file).read_text(encoding="utf-8"))
        except OSError:
            return None
