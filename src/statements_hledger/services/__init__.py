"""
Services: the operations exposed on the command line.

Each service takes its collaborators (ledger executor, config loader,
workspace checker) in ``__init__`` and returns a report dataclass with
``success``, ``error`` and ``hint`` instead of raising for expected failures.
"""

from .classify import ClassificationService, ClassifyReport
from .import_statements import FileImportResult, ImportReport, ImportService, ImportSummary
from .maintenance import (
    CleanupReport,
    InitReport,
    WorkspaceInfo,
    cleanup_workspaces,
    find_workspaces,
    format_age,
    init_directories,
)
from .pipeline import (
    ImportPipeline,
    PipelineContext,
    PipelineOptions,
    PipelineStepError,
    build_commit_message,
)
from .prices import (
    PriceFetcher,
    PriceFetchError,
    PricehistFetcher,
    PriceResult,
    PriceUpdateReport,
    PriceUpdateService,
    build_pricehist_args,
)
from .reconciliation import ReconcileReport, ReconciliationService, normalize_metadata

__all__ = [
    # Pipeline
    "ImportPipeline",
    "PipelineContext",
    "PipelineOptions",
    "PipelineStepError",
    "build_commit_message",
    # Statements
    "ClassificationService",
    "ClassifyReport",
    "FileImportResult",
    "ImportReport",
    "ImportService",
    "ImportSummary",
    "ReconcileReport",
    "ReconciliationService",
    "normalize_metadata",
    # Prices
    "PriceFetcher",
    "PriceFetchError",
    "PricehistFetcher",
    "PriceResult",
    "PriceUpdateReport",
    "PriceUpdateService",
    "build_pricehist_args",
    # Maintenance
    "CleanupReport",
    "InitReport",
    "WorkspaceInfo",
    "cleanup_workspaces",
    "find_workspaces",
    "format_age",
    "init_directories",
]
