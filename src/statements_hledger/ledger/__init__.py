"""
hledger access: command execution, output parsing and journal files.
"""

from .csv_rows import find_matching_csv_row, parse_csv_file
from .dates import format_date_iso, next_day, yesterday
from .executor import (
    HledgerExecutor,
    LedgerExecutor,
    LedgerResult,
    UnknownPosting,
    ValidationResult,
    count_transactions,
    extract_transaction_years,
    get_account_balance,
    get_last_transaction_date,
    parse_unknown_postings,
    validate_ledger,
)
from .journal import (
    MAIN_JOURNAL,
    ensure_year_journal_exists,
    find_csv_files,
    main_journal_path,
    update_price_journal,
    year_journal_path,
)

__all__ = [
    # Executor
    "HledgerExecutor",
    "LedgerExecutor",
    "LedgerResult",
    "UnknownPosting",
    "ValidationResult",
    "count_transactions",
    "extract_transaction_years",
    "get_account_balance",
    "get_last_transaction_date",
    "parse_unknown_postings",
    "validate_ledger",
    # Journals
    "MAIN_JOURNAL",
    "ensure_year_journal_exists",
    "find_csv_files",
    "main_journal_path",
    "update_price_journal",
    "year_journal_path",
    # CSV rows
    "find_matching_csv_row",
    "parse_csv_file",
    # Dates
    "format_date_iso",
    "next_day",
    "yesterday",
]
