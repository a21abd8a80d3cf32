"""Statement classification service.

Moves every incoming CSV into ``<pending>/<provider>/<currency>/`` (renamed
when the matching rule has a rename pattern) or into the unrecognized
directory. All targets are planned first; if any target already exists, or
two files would land on the same target, nothing is moved.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..config import ConfigLoader, ConfigValidationError, ImportConfig, load_import_config
from ..detection import ClassificationResult, DetectionResult, classify_files
from ..workspace.files import find_incoming_csv_files

logger = logging.getLogger(__name__)


@dataclass
class ClassifiedFile:
    filename: str
    provider: str
    currency: str
    target_path: str
    original_filename: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "filename": self.filename,
            "provider": self.provider,
            "currency": self.currency,
            "target_path": self.target_path,
        }
        if self.original_filename:
            d["original_filename"] = self.original_filename
        return d


@dataclass
class UnrecognizedFile:
    filename: str
    target_path: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"filename": self.filename, "target_path": self.target_path}
        if self.error:
            d["error"] = self.error
        return d


@dataclass
class FileCollision:
    filename: str
    existing_path: str

    def to_dict(self) -> dict[str, Any]:
        return {"filename": self.filename, "existing_path": self.existing_path}


@dataclass
class ClassifyReport:
    """Outcome of classifying the incoming directory."""

    success: bool
    classified: list[ClassifiedFile] = field(default_factory=list)
    unrecognized: list[UnrecognizedFile] = field(default_factory=list)
    collisions: list[FileCollision] = field(default_factory=list)
    total: int = 0
    message: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "success": self.success,
            "classified": [c.to_dict() for c in self.classified],
            "unrecognized": [u.to_dict() for u in self.unrecognized],
            "summary": {
                "total": self.total,
                "classified": len(self.classified),
                "unrecognized": len(self.unrecognized),
            },
        }
        if self.collisions:
            d["collisions"] = [c.to_dict() for c in self.collisions]
        if self.message:
            d["message"] = self.message
        if self.error:
            d["error"] = self.error
        return d


@dataclass
class _PlannedMove:
    filename: str
    source: Path
    target: Path
    relative_target: str
    classification: ClassificationResult

    @property
    def detection(self) -> DetectionResult | None:
        return self.classification.detected


class ClassificationService:
    """Sorts incoming statement CSVs into the pending tree.

    Usage:
        service = ClassificationService()
        report = service.run_classification(Path("/path/to/ledger"))
    """

    def __init__(self, config_loader: ConfigLoader = load_import_config) -> None:
        self.config_loader = config_loader

    def run_classification(self, directory: Path) -> ClassifyReport:
        directory = Path(directory)
        try:
            config = self.config_loader(directory)
        except ConfigValidationError as e:
            return ClassifyReport(success=False, error=str(e))

        import_dir = directory / config.paths.import_dir
        filenames = find_incoming_csv_files(import_dir)
        if not filenames:
            return ClassifyReport(
                success=True, message=f"No CSV files found in {config.paths.import_dir}"
            )

        results = self._classify(import_dir, filenames, config)
        moves = [self._plan(directory, import_dir, config, r) for r in results]

        collisions = self._find_collisions(moves)
        if collisions:
            logger.warning("Classification aborted: %d collision(s)", len(collisions))
            return ClassifyReport(
                success=False,
                collisions=collisions,
                total=len(filenames),
                error=(
                    f"Cannot classify: {len(collisions)} file(s) would overwrite "
                    "existing pending files."
                ),
            )

        report = ClassifyReport(success=True, total=len(filenames))
        for move in moves:
            move.target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(move.source), str(move.target))

            detection = move.detection
            if detection is not None:
                report.classified.append(
                    ClassifiedFile(
                        filename=move.target.name,
                        provider=detection.provider,
                        currency=detection.currency,
                        target_path=move.relative_target,
                        original_filename=move.filename if detection.output_filename else None,
                    )
                )
            else:
                report.unrecognized.append(
                    UnrecognizedFile(
                        filename=move.filename,
                        target_path=move.relative_target,
                        error=move.classification.error,
                    )
                )

        logger.info(
            "Classified %d file(s), %d unrecognized",
            len(report.classified),
            len(report.unrecognized),
        )
        return report

    def _classify(
        self,
        import_dir: Path,
        filenames: list[str],
        config: ImportConfig,
    ) -> list[ClassificationResult]:
        """Classify all files, keeping input order; unreadable files become errors."""
        readable: list[tuple[str, str]] = []
        read_errors: dict[str, str] = {}
        for name in filenames:
            try:
                readable.append((name, (import_dir / name).read_text(encoding="utf-8")))
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Cannot read %s: %s", name, e)
                read_errors[name] = str(e)

        by_name = {r.filename: r for r in classify_files(readable, config)}
        return [
            by_name.get(name) or ClassificationResult(filename=name, error=read_errors.get(name))
            for name in filenames
        ]

    def _plan(
        self,
        directory: Path,
        import_dir: Path,
        config: ImportConfig,
        result: ClassificationResult,
    ) -> _PlannedMove:
        detection = result.detected
        if detection is not None:
            target_name = detection.output_filename or result.filename
            relative = Path(config.paths.pending) / detection.provider / detection.currency / target_name
        else:
            relative = Path(config.paths.unrecognized) / result.filename

        return _PlannedMove(
            filename=result.filename,
            source=import_dir / result.filename,
            target=directory / relative,
            relative_target=str(relative),
            classification=result,
        )

    def _find_collisions(self, moves: list[_PlannedMove]) -> list[FileCollision]:
        collisions: list[FileCollision] = []
        planned: set[Path] = set()
        for move in moves:
            if move.target.exists() or move.target in planned:
                collisions.append(
                    FileCollision(filename=move.filename, existing_path=move.relative_target)
                )
            planned.add(move.target)
        return collisions
