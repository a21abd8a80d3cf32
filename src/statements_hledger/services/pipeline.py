"""Import pipeline orchestrator.

Runs the complete import inside an isolation workspace:

    worktree → sync → classify → accountDeclarations → dryRun → import
             → reconcile → merge → cleanup

Each step either records its StepResult and lets the run continue, or raises
PipelineStepError carrying its failed StepResult. The first failure ends the
run; merge is never attempted after a failed step. Nothing escapes ``run``:
every outcome, including unexpected exceptions, ends up in the returned
PipelineResult.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from ..access import check_caller
from ..config import ConfigLoader, ConfigValidationError, ImportConfig, load_import_config
from ..ledger import (
    LedgerExecutor,
    ensure_year_journal_exists,
    extract_transaction_years,
    find_csv_files,
)
from ..rules import collect_accounts, ensure_account_declarations, find_rules_for_csv, load_rules_mapping
from ..schemas.results import (
    AccountDeclarationDetails,
    CleanupDetails,
    MergeDetails,
    PipelineResult,
    StepName,
    StepResult,
    SyncDetails,
    WorkspaceDetails,
    WorkspaceDisposition,
)
from ..workspace import (
    IsolationWorkspace,
    WorkspaceError,
    cleanup_processed_csv_files,
    merge_workspace,
    remove_workspace,
    run_isolated,
    sync_csv_files,
)
from .classify import ClassificationService
from .import_statements import ImportService
from .reconciliation import ReconciliationService

logger = logging.getLogger(__name__)

PIPELINE_OPERATION = "import statements"


@dataclass
class PipelineOptions:
    provider: str | None = None
    currency: str | None = None
    closing_balance: str | None = None
    account: str | None = None
    skip_classify: bool = False
    keep_on_error: bool = True


@dataclass
class PipelineContext:
    """State owned by a single run, passed to every step."""

    directory: Path
    workspace: IsolationWorkspace
    config: ImportConfig
    options: PipelineOptions
    result: PipelineResult
    classified_files: list[str] = field(default_factory=list)
    transaction_count: int = 0
    statement_metadata: dict[str, str] = field(default_factory=dict)
    completed: bool = False


class PipelineStepError(Exception):
    """A step failed; carries the step's result and the run-level error."""

    def __init__(self, step: StepName, result: StepResult, error: str, hint: str | None = None):
        super().__init__(error)
        self.step = step
        self.result = result
        self.error = error
        self.hint = hint


def build_commit_message(
    provider: str | None,
    currency: str | None,
    from_date: str | None = None,
    until_date: str | None = None,
    transaction_count: int = 0,
) -> str:
    """``Import: <PROVIDER>[ <CURRENCY>][ <FROM> to <UNTIL>][ (<N> transactions)]``"""
    message = f"Import: {(provider or 'statements').upper()}"
    if currency:
        message += f" {currency.upper()}"
    if from_date and until_date:
        message += f" {from_date} to {until_date}"
    if transaction_count > 0:
        message += f" ({transaction_count} transactions)"
    return message.strip()


class ImportPipeline:
    """
    Orchestrates a full statement import.

    The executor and config loader are injected so tests can substitute
    scripted doubles; the sub-services share the loaded config and trust the
    pipeline to have created the workspace they run in.

    Usage:
        pipeline = ImportPipeline(HledgerExecutor())
        result = pipeline.run(Path("/path/to/ledger"), caller="accountant")
        print(result.to_json())
    """

    def __init__(
        self,
        executor: LedgerExecutor,
        config_loader: ConfigLoader = load_import_config,
        workspace_base_dir: Path | None = None,
    ) -> None:
        self.executor = executor
        self.config_loader = config_loader
        self.workspace_base_dir = workspace_base_dir

    def run(
        self,
        directory: Path,
        caller: str | None,
        options: PipelineOptions | None = None,
    ) -> PipelineResult:
        options = options or PipelineOptions()

        denial = check_caller(caller, PIPELINE_OPERATION)
        if denial:
            logger.warning("Pipeline denied for caller %s", denial["caller"])
            return PipelineResult(success=False, error=denial["error"], hint=denial["hint"])

        directory = Path(directory).absolute()
        result = PipelineResult()

        try:
            config = self.config_loader(directory)
        except ConfigValidationError as e:
            result.error = f"Failed to load configuration: {e}"
            result.hint = "Ensure config/import/providers.yaml exists and is valid"
            return result

        contexts: list[PipelineContext] = []

        def run_steps(workspace: IsolationWorkspace) -> None:
            context = PipelineContext(
                directory=directory,
                workspace=workspace,
                config=config,
                options=options,
                result=result,
            )
            contexts.append(context)
            self._run_steps(context)
            context.completed = True

        try:
            # The workspace is always kept on failure here; discarding is decided per failure below
            run_isolated(directory, run_steps, keep_on_error=True, base_dir=self.workspace_base_dir)
        except PipelineStepError as e:
            self._handle_failure(contexts[0], e)
            return result
        except WorkspaceError as e:
            if not contexts:
                logger.error("Failed to create worktree: %s", e)
                result.record(
                    StepName.WORKTREE, StepResult(False, f"Failed to create worktree: {e}")
                )
                result.error = f"Failed to create worktree: {e}"
                return result
            if contexts[0].completed:
                # Work is merged; only the disposal went wrong
                logger.warning("Worktree cleanup failed: %s", e)
                self._amend_cleanup(
                    result, False, f"Cleanup warning: {e}", WorkspaceDisposition.REMOVAL_FAILED
                )
                return result
            self._handle_failure(contexts[0], self._unexpected(result, e))
            return result
        except Exception as e:
            logger.exception("Pipeline failed unexpectedly")
            if contexts:
                self._handle_failure(contexts[0], self._unexpected(result, e))
            else:
                result.error = str(e)
            return result

        self._amend_cleanup(result, True, "Worktree cleaned up", WorkspaceDisposition.REMOVED)
        return result

    # -------------------------------------------------------------------------
    # Driver
    # -------------------------------------------------------------------------

    def _steps(self) -> list[tuple[StepName, Callable[[PipelineContext], bool]]]:
        return [
            (StepName.SYNC, self._sync),
            (StepName.CLASSIFY, self._classify),
            (StepName.ACCOUNT_DECLARATIONS, self._declare_accounts),
            (StepName.DRY_RUN, self._dry_run),
            (StepName.IMPORT, self._import),
            (StepName.RECONCILE, self._reconcile),
            (StepName.MERGE, self._merge),
        ]

    def _run_steps(self, context: PipelineContext) -> None:
        workspace = context.workspace
        context.result.worktree_id = workspace.id
        context.result.record(
            StepName.WORKTREE,
            StepResult(
                True,
                f"Created worktree at {workspace.path}",
                WorkspaceDetails(path=str(workspace.path), branch=workspace.branch),
            ),
        )

        for name, step in self._steps():
            logger.info("Pipeline step: %s", name)
            try:
                proceed = step(context)
            except PipelineStepError:
                raise
            except Exception as e:
                logger.exception("Step %s failed", name)
                raise PipelineStepError(name, StepResult(False, f"{name.value} failed: {e}"), str(e)) from e
            if not proceed:
                break

        context.result.success = True
        if context.result.summary is None:
            context.result.summary = (
                f"Successfully imported {context.transaction_count} transaction(s)"
            )

    def _handle_failure(self, context: PipelineContext, error: PipelineStepError) -> None:
        result = context.result
        logger.error("Pipeline failed at %s: %s", error.step, error.error)

        if result.step(error.step) is None:
            result.record(error.step, error.result)
        result.success = False
        result.summary = None
        result.error = error.error
        result.hint = error.hint

        # A failed merge leaves the only copy of the work in the workspace
        if context.options.keep_on_error or error.step == StepName.MERGE:
            logger.warning("Worktree preserved at %s", context.workspace.path)
            self._amend_cleanup(
                result,
                True,
                f"Worktree preserved at {context.workspace.path}",
                WorkspaceDisposition.PRESERVED,
            )
            return

        removal = remove_workspace(context.workspace)
        if removal.success:
            self._amend_cleanup(
                result, True, "Worktree cleaned up after failure", WorkspaceDisposition.REMOVED
            )
        else:
            logger.error("Cleanup failed: %s", removal.error)
            self._amend_cleanup(
                result, False, f"Cleanup failed: {removal.error}", WorkspaceDisposition.REMOVAL_FAILED
            )

    def _unexpected(self, result: PipelineResult, error: Exception) -> PipelineStepError:
        """Attribute an exception raised outside any step to the last step reached."""
        reached = [name for name in StepName if name.value in result.steps]
        step = reached[-1] if reached else StepName.WORKTREE
        return PipelineStepError(step, StepResult(False, str(error)), str(error))

    def _amend_cleanup(
        self,
        result: PipelineResult,
        success: bool,
        message: str,
        workspace: WorkspaceDisposition,
    ) -> None:
        existing = result.step(StepName.CLEANUP)
        if existing is not None and isinstance(existing.details, CleanupDetails):
            details = existing.details
            if existing.message:
                message = f"{existing.message}; {message}"
            success = success and existing.success
        else:
            details = CleanupDetails()
        details.workspace = workspace
        result.amend_cleanup(StepResult(success, message, details))

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _sync(self, context: PipelineContext) -> bool:
        staged = sync_csv_files(
            context.directory, context.workspace.path, context.config.paths.import_dir
        )
        details = SyncDetails(synced=staged.succeeded, errors=staged.errors)
        if not staged.success:
            raise PipelineStepError(
                StepName.SYNC,
                StepResult(False, f"Failed to sync {len(staged.errors)} file(s)", details),
                error="Failed to sync CSV files into worktree",
            )

        context.result.record(
            StepName.SYNC,
            StepResult(True, f"Synced {len(staged.succeeded)} CSV file(s) to worktree", details),
        )
        return True

    def _classify(self, context: PipelineContext) -> bool:
        if context.options.skip_classify:
            context.result.record(StepName.CLASSIFY, StepResult(True, "Classification skipped"))
            return True

        service = ClassificationService(config_loader=lambda _: context.config)
        report = service.run_classification(context.workspace.path)
        context.classified_files = [c.original_filename or c.filename for c in report.classified]

        if not report.success:
            message = f"Classification failed: {report.error}"
            logger.warning(message)
        elif report.unrecognized:
            message = f"Classification complete with {len(report.unrecognized)} unrecognized file(s)"
        else:
            message = "Classification complete"

        # Unrecognized or colliding files do not stop the import of what is already pending
        context.result.record(StepName.CLASSIFY, StepResult(report.success, message, report))
        return True

    def _declare_accounts(self, context: PipelineContext) -> bool:
        root = context.workspace.path
        paths = context.config.paths
        options = context.options

        csv_files = find_csv_files(root / paths.pending, options.provider, options.currency)
        if not csv_files:
            context.result.record(
                StepName.ACCOUNT_DECLARATIONS,
                StepResult(True, "No pending CSV files", AccountDeclarationDetails()),
            )
            return True

        mapping = load_rules_mapping(root / paths.rules)
        details = AccountDeclarationDetails()
        pairs: list[tuple[Path, str]] = []
        rules_files: list[str] = []
        for csv_file in csv_files:
            rules_file = find_rules_for_csv(csv_file.absolute(), mapping)
            if rules_file is None:
                details.unmatched_csvs.append(str(csv_file.relative_to(root)))
                continue
            pairs.append((csv_file, rules_file))
            if rules_file not in rules_files:
                rules_files.append(rules_file)
                details.rules_files.append(_relative(rules_file, root))

        if not pairs:
            context.result.record(
                StepName.ACCOUNT_DECLARATIONS,
                StepResult(True, "No rules files matched pending CSV files", details),
            )
            return True

        details.year = self._transaction_year(pairs)
        if details.year is None:
            raise PipelineStepError(
                StepName.ACCOUNT_DECLARATIONS,
                StepResult(False, "Could not determine transaction year", details),
                error="Could not determine transaction year from pending CSV files",
                hint="Check that the rules files produce dated transactions",
            )

        try:
            journal = ensure_year_journal_exists(root, details.year)
        except FileNotFoundError as e:
            raise PipelineStepError(
                StepName.ACCOUNT_DECLARATIONS,
                StepResult(False, str(e), details),
                error=str(e),
            ) from e
        details.journal = str(journal.relative_to(root))

        accounts = collect_accounts(rules_files)
        details.accounts = len(accounts)
        declared = ensure_account_declarations(journal, accounts)
        details.added = list(declared.added)

        if details.added:
            message = f"Declared {len(details.added)} new account(s) in {details.journal}"
        else:
            message = f"All {details.accounts} account(s) already declared"
        context.result.record(StepName.ACCOUNT_DECLARATIONS, StepResult(True, message, details))
        return True

    def _transaction_year(self, pairs: list[tuple[Path, str]]) -> int | None:
        """Year of the first rules file whose generated entries carry a date."""
        for csv_file, rules_file in pairs:
            printed = self.executor(["print", "-f", str(csv_file), "--rules-file", rules_file])
            if not printed.success:
                logger.warning("Could not print %s: %s", csv_file.name, printed.stderr.strip())
                continue
            years = extract_transaction_years(printed.stdout)
            if years:
                if len(years) > 1:
                    logger.warning("%s spans several years; using %d", csv_file.name, min(years))
                return min(years)
        return None

    def _dry_run(self, context: PipelineContext) -> bool:
        options = context.options
        service = ImportService(
            self.executor, config_loader=lambda _: context.config, workspace_checker=lambda _: True
        )
        report = service.run_import(
            context.workspace.path, options.provider, options.currency, check_only=True
        )
        summary = report.summary

        if not report.success:
            raise PipelineStepError(
                StepName.DRY_RUN,
                StepResult(False, f"Dry run failed: {summary.unknown} unknown account(s)", report),
                error="Dry run found unknown accounts or errors",
                hint="Add rules to categorize unknown transactions, then retry",
            )

        result = context.result
        if summary.total_transactions == 0:
            result.record(StepName.DRY_RUN, StepResult(True, "No transactions to import", report))
            result.record(StepName.IMPORT, StepResult(True, "No transactions to import"))
            result.record(StepName.RECONCILE, StepResult(True, "Reconciliation skipped (no transactions)"))
            result.record(StepName.MERGE, StepResult(True, "Merge skipped (no changes)"))
            result.summary = "No transactions found to import"
            return False

        context.transaction_count = summary.total_transactions
        result.record(
            StepName.DRY_RUN,
            StepResult(True, f"Dry run passed: {summary.total_transactions} transactions ready", report),
        )
        return True

    def _import(self, context: PipelineContext) -> bool:
        options = context.options
        service = ImportService(
            self.executor, config_loader=lambda _: context.config, workspace_checker=lambda _: True
        )
        report = service.run_import(
            context.workspace.path, options.provider, options.currency, check_only=False
        )
        if not report.success:
            raise PipelineStepError(
                StepName.IMPORT,
                StepResult(False, f"Import failed: {report.error}", report),
                error=f"Import failed: {report.error}",
                hint=report.hint,
            )

        context.transaction_count = report.summary.total_transactions
        context.result.record(
            StepName.IMPORT,
            StepResult(True, f"Imported {context.transaction_count} transactions", report),
        )
        return True

    def _reconcile(self, context: PipelineContext) -> bool:
        options = context.options
        service = ReconciliationService(
            self.executor, config_loader=lambda _: context.config, workspace_checker=lambda _: True
        )
        report = service.run_reconciliation(
            context.workspace.path,
            options.provider,
            options.currency,
            closing_balance=options.closing_balance,
            account=options.account,
        )

        if not report.success:
            if report.expected_balance and report.actual_balance:
                message = (
                    f"Balance mismatch: expected {report.expected_balance}, "
                    f"got {report.actual_balance}"
                )
            else:
                message = f"Reconciliation failed: {report.error}"
            raise PipelineStepError(
                StepName.RECONCILE,
                StepResult(False, message, report),
                error=f"Reconciliation failed: {report.error or 'Balance mismatch'}",
                hint="Check for missing transactions or incorrect rules",
            )

        context.statement_metadata = report.metadata or {}
        context.result.record(
            StepName.RECONCILE,
            StepResult(True, f"Balance reconciled: {report.actual_balance}", report),
        )
        return True

    def _merge(self, context: PipelineContext) -> bool:
        options = context.options
        metadata = context.statement_metadata
        commit_message = build_commit_message(
            options.provider,
            options.currency,
            metadata.get("from_date"),
            metadata.get("until_date"),
            context.transaction_count,
        )

        try:
            merge_workspace(context.workspace, commit_message)
        except WorkspaceError as e:
            raise PipelineStepError(
                StepName.MERGE,
                StepResult(False, f"Merge failed: {e}"),
                error="Merge to main branch failed",
            ) from e

        context.result.record(
            StepName.MERGE,
            StepResult(True, f'Merged to main: "{commit_message}"', MergeDetails(commit_message)),
        )

        # Only classified files are removed; anything else stays for the next run
        cleaned = cleanup_processed_csv_files(
            context.directory, context.config.paths.import_dir, context.classified_files
        )
        message = f"Removed {len(cleaned.succeeded)} processed CSV file(s) from main repository"
        if cleaned.errors:
            message += f" ({len(cleaned.errors)} could not be deleted)"
        context.result.record(
            StepName.CLEANUP,
            StepResult(True, message, CleanupDetails(deleted=cleaned.succeeded, errors=cleaned.errors)),
        )
        return True


def _relative(path: str, root: Path) -> str:
    try:
        return str(Path(path).relative_to(root))
    except ValueError:
        return path
