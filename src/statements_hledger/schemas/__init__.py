"""
Shared record types for the import pipeline.

These are the only result/balance models used across modules.
"""

from .balance import (
    BalanceParseError,
    CurrencyMismatchError,
    ParsedBalance,
    balances_match,
    calculate_difference,
    format_balance,
    parse_amount_value,
    parse_balance,
)
from .results import (
    AccountDeclarationDetails,
    CleanupDetails,
    FileError,
    MergeDetails,
    PipelineResult,
    StepAlreadyRecordedError,
    StepName,
    StepResult,
    SyncDetails,
    WorkspaceDetails,
    WorkspaceDisposition,
)

__all__ = [
    # Balance
    "BalanceParseError",
    "CurrencyMismatchError",
    "ParsedBalance",
    "balances_match",
    "calculate_difference",
    "format_balance",
    "parse_amount_value",
    "parse_balance",
    # Results
    "AccountDeclarationDetails",
    "CleanupDetails",
    "FileError",
    "MergeDetails",
    "PipelineResult",
    "StepAlreadyRecordedError",
    "StepName",
    "StepResult",
    "SyncDetails",
    "WorkspaceDetails",
    "WorkspaceDisposition",
]
