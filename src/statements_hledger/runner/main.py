"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from ..access import check_caller
from ..config import Settings, load_settings
from ..ledger import HledgerExecutor
from ..services import (
    ClassificationService,
    ImportPipeline,
    ImportService,
    PipelineOptions,
    PricehistFetcher,
    PriceUpdateService,
    ReconciliationService,
    cleanup_workspaces,
    init_directories,
)
from ..services.maintenance import DEFAULT_MAX_AGE_HOURS

logger = logging.getLogger(__name__)

# Operation names shown in the hint of a denied call
OPERATIONS = {
    "pipeline": "import statements",
    "classify": "classify statements",
    "import": "import statements",
    "reconcile": "reconcile statement",
    "update-prices": "update prices",
    "init": "init directories",
}


def setup_logging(verbose: bool = False, log_file: Path | None = None) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="statements-hledger",
        description="Import bank statement CSVs into an hledger journal",
    )

    parser.add_argument(
        "-C",
        "--directory",
        type=Path,
        default=Path("."),
        help="Ledger repository (default: current directory)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Also write log output to this file",
    )
    parser.add_argument(
        "--agent",
        type=str,
        help="Calling agent (default: $STATEMENTS_AGENT or 'accountant')",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # pipeline command
    pipeline_parser = subparsers.add_parser(
        "pipeline", help="Classify, import, reconcile and merge in an isolated worktree"
    )
    _add_filters(pipeline_parser)
    _add_reconcile_overrides(pipeline_parser)
    pipeline_parser.add_argument(
        "--skip-classify",
        action="store_true",
        help="Import what is already pending without classifying incoming files",
    )
    pipeline_parser.add_argument(
        "--discard-on-error",
        action="store_true",
        help="Remove the worktree when the run fails (default: keep it for inspection)",
    )

    # classify command
    subparsers.add_parser("classify", help="Sort incoming CSVs by provider and currency")

    # import command
    import_parser = subparsers.add_parser("import", help="Dry-run or import pending CSVs")
    _add_filters(import_parser)
    import_parser.add_argument(
        "--check-only",
        action="store_true",
        help="Only report unknown postings, do not import",
    )

    # reconcile command
    reconcile_parser = subparsers.add_parser(
        "reconcile", help="Compare the ledger balance with the statement closing balance"
    )
    _add_filters(reconcile_parser)
    _add_reconcile_overrides(reconcile_parser)

    # update-prices command
    prices_parser = subparsers.add_parser("update-prices", help="Fetch market prices with pricehist")
    prices_parser.add_argument(
        "--backfill",
        action="store_true",
        help="Fetch from each currency's backfill date instead of yesterday only",
    )

    # cleanup-workspaces command
    cleanup_parser = subparsers.add_parser(
        "cleanup-workspaces", help="Remove import worktrees left behind by failed runs"
    )
    cleanup_parser.add_argument(
        "--all",
        action="store_true",
        help="Remove all import worktrees regardless of age",
    )
    cleanup_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be removed without removing anything",
    )
    cleanup_parser.add_argument(
        "--older-than-hours",
        type=float,
        default=DEFAULT_MAX_AGE_HOURS,
        help=f"Only remove worktrees older than this (default: {DEFAULT_MAX_AGE_HOURS})",
    )
    cleanup_parser.add_argument(
        "--force",
        action="store_true",
        help="Remove worktrees with local changes or locks",
    )

    # init command
    subparsers.add_parser("init", help="Create the import directory structure")

    return parser


def _add_filters(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--provider", type=str, help="Only process this provider (e.g. ubs)")
    parser.add_argument("--currency", type=str, help="Only process this currency (e.g. chf)")


def _add_reconcile_overrides(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--closing-balance",
        type=str,
        help="Expected closing balance (default: taken from the statement)",
    )
    parser.add_argument(
        "--account",
        type=str,
        help="Account to reconcile (default: account1 of the rules file)",
    )


def _print_result(result: dict[str, Any]) -> int:
    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0 if result.get("success") else 1


def cmd_pipeline(directory: Path, settings: Settings, caller: str, parsed: argparse.Namespace) -> int:
    """Run the full import pipeline."""
    pipeline = ImportPipeline(
        HledgerExecutor(settings.hledger_bin),
        workspace_base_dir=settings.workspace_base_dir,
    )
    options = PipelineOptions(
        provider=parsed.provider,
        currency=parsed.currency,
        closing_balance=parsed.closing_balance,
        account=parsed.account,
        skip_classify=parsed.skip_classify,
        keep_on_error=not parsed.discard_on_error,
    )
    result = pipeline.run(directory, caller, options)
    return _print_result(result.to_dict())


def cmd_classify(directory: Path) -> int:
    report = ClassificationService().run_classification(directory)
    return _print_result(report.to_dict())


def cmd_import(directory: Path, settings: Settings, parsed: argparse.Namespace) -> int:
    service = ImportService(HledgerExecutor(settings.hledger_bin))
    report = service.run_import(
        directory, parsed.provider, parsed.currency, check_only=parsed.check_only
    )
    return _print_result(report.to_dict())


def cmd_reconcile(directory: Path, settings: Settings, parsed: argparse.Namespace) -> int:
    service = ReconciliationService(HledgerExecutor(settings.hledger_bin))
    report = service.run_reconciliation(
        directory,
        parsed.provider,
        parsed.currency,
        closing_balance=parsed.closing_balance,
        account=parsed.account,
    )
    return _print_result(report.to_dict())


def cmd_update_prices(directory: Path, settings: Settings, backfill: bool) -> int:
    service = PriceUpdateService(
        PricehistFetcher(settings.pricehist_bin),
        workspace_base_dir=settings.workspace_base_dir,
    )
    report = service.run_update(directory, backfill=backfill)
    return _print_result(report.to_dict())


def cmd_cleanup_workspaces(settings: Settings, parsed: argparse.Namespace) -> int:
    report = cleanup_workspaces(
        settings.workspace_base_dir,
        all=parsed.all,
        dry_run=parsed.dry_run,
        older_than_hours=parsed.older_than_hours,
        force=parsed.force,
    )
    return _print_result(report.to_dict())


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose, parsed.log_file)

    if not parsed.command:
        parser.print_help()
        return 1

    settings = load_settings()
    caller = parsed.agent or settings.agent
    directory = parsed.directory.absolute()

    # The pipeline reports its own denial as a PipelineResult
    operation = OPERATIONS.get(parsed.command)
    if operation and parsed.command != "pipeline":
        denial = check_caller(caller, operation)
        if denial:
            return _print_result(denial)

    # Route to command
    if parsed.command == "pipeline":
        return cmd_pipeline(directory, settings, caller, parsed)
    elif parsed.command == "classify":
        return cmd_classify(directory)
    elif parsed.command == "import":
        return cmd_import(directory, settings, parsed)
    elif parsed.command == "reconcile":
        return cmd_reconcile(directory, settings, parsed)
    elif parsed.command == "update-prices":
        return cmd_update_prices(directory, settings, parsed.backfill)
    elif parsed.command == "cleanup-workspaces":
        return cmd_cleanup_workspaces(settings, parsed)
    elif parsed.command == "init":
        return _print_result(init_directories(directory).to_dict())
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
