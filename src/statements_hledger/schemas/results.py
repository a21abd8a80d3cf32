"""
Pipeline result records.

PipelineResult is the only thing the caller of a pipeline run ever sees. It is
serialized verbatim to JSON, so the top-level keys are fixed:
success, worktreeId, steps, summary, error, hint.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol


class StepName(str, Enum):
    """Names of the pipeline steps, in execution order."""

    WORKTREE = "worktree"
    SYNC = "sync"
    CLASSIFY = "classify"
    ACCOUNT_DECLARATIONS = "accountDeclarations"
    DRY_RUN = "dryRun"
    IMPORT = "import"
    RECONCILE = "reconcile"
    MERGE = "merge"
    CLEANUP = "cleanup"

    def __str__(self) -> str:
        return self.value


class WorkspaceDisposition(str, Enum):
    """What happened to the isolation workspace at the end of a run."""

    REMOVED = "removed"
    PRESERVED = "preserved"
    REMOVAL_FAILED = "removal-failed"

    def __str__(self) -> str:
        return self.value


class StepDetails(Protocol):
    """Anything that can be attached to a StepResult."""

    def to_dict(self) -> dict[str, Any]: ...


@dataclass
class FileError:
    """A single file that failed inside a batch operation."""

    file: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "error": self.error}


@dataclass
class WorkspaceDetails:
    path: str
    branch: str

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "branch": self.branch}


@dataclass
class SyncDetails:
    synced: list[str] = field(default_factory=list)
    errors: list[FileError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "synced": list(self.synced),
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class AccountDeclarationDetails:
    year: int | None = None
    journal: str | None = None
    rules_files: list[str] = field(default_factory=list)
    accounts: int = 0
    added: list[str] = field(default_factory=list)
    unmatched_csvs: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "rules_files": list(self.rules_files),
            "accounts": self.accounts,
            "added": list(self.added),
        }
        if self.year is not None:
            d["year"] = self.year
        if self.journal:
            d["journal"] = self.journal
        if self.unmatched_csvs:
            d["unmatched_csvs"] = list(self.unmatched_csvs)
        return d


@dataclass
class MergeDetails:
    commit_message: str

    def to_dict(self) -> dict[str, Any]:
        return {"commit_message": self.commit_message}


@dataclass
class CleanupDetails:
    """Main-repository file deletion plus workspace disposal."""

    deleted: list[str] = field(default_factory=list)
    errors: list[FileError] = field(default_factory=list)
    workspace: WorkspaceDisposition | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "deleted": list(self.deleted),
            "errors": [e.to_dict() for e in self.errors],
        }
        if self.workspace:
            d["workspace"] = WorkspaceDisposition(self.workspace).value
        return d


@dataclass
class StepResult:
    """Outcome of one pipeline step."""

    success: bool
    message: str
    details: StepDetails | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.details is not None:
            d["details"] = self.details.to_dict()
        return d


class StepAlreadyRecordedError(Exception):
    """A step result was recorded twice."""

    pass


@dataclass
class PipelineResult:
    """
    Append-only record of a pipeline run.

    Each step is recorded at most once. The only permitted rewrite is
    ``amend_cleanup``, used when the workspace is disposed of after the
    main-repository cleanup step has already been recorded.
    """

    success: bool = False
    worktree_id: str | None = None
    steps: dict[str, StepResult] = field(default_factory=dict)
    summary: str | None = None
    error: str | None = None
    hint: str | None = None

    def record(self, step: StepName | str, result: StepResult) -> StepResult:
        try:
            key = StepName(step).value
        except ValueError:
            raise ValueError(f"Unknown pipeline step: {step}") from None
        if key in self.steps:
            raise StepAlreadyRecordedError(f"Step '{key}' already recorded")
        self.steps[key] = result
        return result

    def amend_cleanup(self, result: StepResult) -> StepResult:
        self.steps[StepName.CLEANUP.value] = result
        return result

    def step(self, name: StepName | str) -> StepResult | None:
        return self.steps.get(str(name))

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": self.success}
        if self.worktree_id:
            d["worktreeId"] = self.worktree_id
        # Steps are emitted in execution order regardless of record order
        d["steps"] = {
            name.value: self.steps[name.value].to_dict() for name in StepName if name.value in self.steps
        }
        if self.summary:
            d["summary"] = self.summary
        if self.error:
            d["error"] = self.error
        if self.hint:
            d["hint"] = self.hint
        return d

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)
