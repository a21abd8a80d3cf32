"""Statement import service.

Converts pending CSVs into ledger transactions with their rules files. In
check-only mode (the dry run) nothing is written: each file is printed through
hledger and inspected for postings to income:unknown / expenses:unknown. In
import mode every file is imported into its year journal, the whole ledger is
validated, and only then are the CSVs moved to the done directory.

Must run inside an isolation workspace.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..config import ConfigLoader, ConfigValidationError, load_import_config
from ..ledger import (
    LedgerExecutor,
    UnknownPosting,
    count_transactions,
    ensure_year_journal_exists,
    extract_transaction_years,
    find_csv_files,
    find_matching_csv_row,
    main_journal_path,
    parse_csv_file,
    parse_unknown_postings,
    validate_ledger,
)
from ..rules import find_rules_for_csv, load_rules_mapping, parse_rules_file
from ..workspace import WorkspaceChecker, is_in_workspace

logger = logging.getLogger(__name__)


@dataclass
class FileImportResult:
    """Dry-run or import outcome of one CSV."""

    csv: str
    rules_file: str | None
    total_transactions: int = 0
    matched_transactions: int = 0
    unknown_postings: list[UnknownPosting] = field(default_factory=list)
    transaction_year: int | None = None
    imported: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "csv": self.csv,
            "rules_file": self.rules_file,
            "total_transactions": self.total_transactions,
            "matched_transactions": self.matched_transactions,
            "unknown_postings": [p.to_dict() for p in self.unknown_postings],
        }
        if self.transaction_year is not None:
            d["transaction_year"] = self.transaction_year
        if self.imported:
            d["imported"] = True
        if self.error:
            d["error"] = self.error
        return d


@dataclass
class ImportSummary:
    files_processed: int = 0
    files_with_errors: int = 0
    files_without_rules: int = 0
    total_transactions: int = 0
    matched: int = 0
    unknown: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "files_processed": self.files_processed,
            "files_with_errors": self.files_with_errors,
            "files_without_rules": self.files_without_rules,
            "total_transactions": self.total_transactions,
            "matched": self.matched,
            "unknown": self.unknown,
        }


@dataclass
class ImportReport:
    success: bool
    files: list[FileImportResult] = field(default_factory=list)
    summary: ImportSummary = field(default_factory=ImportSummary)
    message: str | None = None
    error: str | None = None
    hint: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "success": self.success,
            "files": [f.to_dict() for f in self.files],
            "summary": self.summary.to_dict(),
        }
        for key in ("message", "error", "hint"):
            value = getattr(self, key)
            if value:
                d[key] = value
        return d


class ImportService:
    """Dry-runs and imports pending statement CSVs.

    Usage:
        service = ImportService(HledgerExecutor())
        report = service.run_import(workspace_path, check_only=True)
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

    def run_import(
        self,
        directory: Path,
        provider: str | None = None,
        currency: str | None = None,
        check_only: bool = True,
    ) -> ImportReport:
        directory = Path(directory)
        if not self.workspace_checker(directory):
            return ImportReport(
                success=False,
                error="import must be run inside an isolation workspace",
                hint="Use the pipeline command to orchestrate the full workflow",
            )

        try:
            config = self.config_loader(directory)
        except ConfigValidationError as e:
            return ImportReport(
                success=False,
                error=f"Failed to load configuration: {e}",
                hint='Ensure config/import/providers.yaml exists with required paths including "rules"',
            )

        pending_dir = directory / config.paths.pending
        done_dir = directory / config.paths.done
        mapping = load_rules_mapping(directory / config.paths.rules)

        csv_files = find_csv_files(pending_dir, provider, currency)
        if not csv_files:
            return ImportReport(success=True, message="No CSV files found to process")

        report = ImportReport(success=False)
        report.summary.files_processed = len(csv_files)
        for csv_file in csv_files:
            report.files.append(self._check_file(directory, csv_file, mapping, report.summary))

        summary = report.summary
        has_unknowns = summary.unknown > 0
        has_errors = summary.files_with_errors > 0 or summary.files_without_rules > 0

        if check_only:
            report.success = not has_unknowns and not has_errors
            if has_unknowns:
                report.message = (
                    f"Found {summary.unknown} transaction(s) with unknown accounts. "
                    "Add rules to categorize them."
                )
            elif has_errors:
                report.message = "Some files had errors. Check the file results for details."
            else:
                report.message = "All transactions matched. Ready to import."
            return report

        if has_unknowns or has_errors:
            report.error = "Cannot import: some transactions have unknown accounts or files have errors"
            report.hint = "Run a dry run to see details, then add missing rules"
            return report

        return self._import_files(directory, pending_dir, done_dir, report)

    def _check_file(
        self,
        directory: Path,
        csv_file: Path,
        mapping: dict[str, str],
        summary: ImportSummary,
    ) -> FileImportResult:
        relative_csv = str(csv_file.relative_to(directory))
        rules_file = find_rules_for_csv(csv_file.absolute(), mapping)
        if rules_file is None:
            summary.files_without_rules += 1
            return FileImportResult(
                csv=relative_csv, rules_file=None, error="No matching rules file found"
            )

        relative_rules = _relative(rules_file, directory)
        result = self.executor(["print", "-f", str(csv_file), "--rules-file", rules_file])
        if not result.success:
            summary.files_with_errors += 1
            return FileImportResult(
                csv=relative_csv,
                rules_file=relative_rules,
                error=f"hledger error: {result.stderr.strip() or 'Unknown error'}",
            )

        unknown = parse_unknown_postings(result.stdout)
        total = count_transactions(result.stdout)
        matched = total - len(unknown)

        years = extract_transaction_years(result.stdout)
        if len(years) > 1:
            summary.files_with_errors += 1
            year_list = ", ".join(str(y) for y in sorted(years))
            return FileImportResult(
                csv=relative_csv,
                rules_file=relative_rules,
                total_transactions=total,
                matched_transactions=matched,
                error=(
                    f"CSV contains transactions from multiple years ({year_list}). "
                    "Split the CSV by year before importing."
                ),
            )

        if unknown:
            self._attach_csv_rows(csv_file, Path(rules_file), unknown)

        summary.total_transactions += total
        summary.matched += matched
        summary.unknown += len(unknown)

        return FileImportResult(
            csv=relative_csv,
            rules_file=relative_rules,
            total_transactions=total,
            matched_transactions=matched,
            unknown_postings=unknown,
            transaction_year=next(iter(years)) if years else None,
        )

    def _attach_csv_rows(self, csv_file: Path, rules_file: Path, postings: list[UnknownPosting]) -> None:
        """Give each unknown posting the CSV row it came from, when it can be found."""
        try:
            rules = parse_rules_file(rules_file.read_text(encoding="utf-8"))
            rows = parse_csv_file(csv_file, rules)
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            logger.warning("Could not read %s for row matching: %s", csv_file.name, e)
            return

        for posting in postings:
            posting.csv_row = find_matching_csv_row(
                posting.date, posting.description, posting.amount, rows, rules
            )

    def _import_files(
        self,
        directory: Path,
        pending_dir: Path,
        done_dir: Path,
        report: ImportReport,
    ) -> ImportReport:
        imported: list[Path] = []
        for file_result in report.files:
            if file_result.rules_file is None:
                continue
            csv_file = directory / file_result.csv
            rules_file = directory / file_result.rules_file

            if file_result.transaction_year is None:
                return self._fail(report, f"No transactions found in {file_result.csv}")

            try:
                year_journal = ensure_year_journal_exists(directory, file_result.transaction_year)
            except FileNotFoundError as e:
                return self._fail(report, str(e))

            result = self.executor(
                ["import", "-f", str(year_journal), str(csv_file), "--rules-file", str(rules_file)]
            )
            if not result.success:
                return self._fail(
                    report, f"Import failed for {file_result.csv}: {result.stderr.strip()}"
                )

            logger.info("Imported %s into %s", file_result.csv, year_journal.name)
            imported.append(csv_file)

        validation = validate_ledger(main_journal_path(directory), self.executor)
        if not validation.valid:
            return self._fail(
                report,
                f"Ledger validation failed after import: {'; '.join(validation.errors)}",
                hint=(
                    "The import created invalid transactions. Check your rules file "
                    "configuration. CSV files have NOT been moved to done."
                ),
            )

        for csv_file in imported:
            destination = done_dir / csv_file.relative_to(pending_dir)
            destination.parent.mkdir(parents=True, exist_ok=True)
            csv_file.rename(destination)

        for file_result in report.files:
            file_result.imported = True

        report.success = True
        report.message = (
            f"Successfully imported {report.summary.total_transactions} transaction(s) "
            f"from {len(imported)} file(s)"
        )
        return report

    def _fail(self, report: ImportReport, error: str, hint: str | None = None) -> ImportReport:
        logger.error(error)
        report.summary.files_with_errors = 1
        report.success = False
        report.error = error
        report.hint = hint
        return report


def _relative(path: str, directory: Path) -> str:
    try:
        return str(Path(path).relative_to(directory.absolute()))
    except ValueError:
        return path
