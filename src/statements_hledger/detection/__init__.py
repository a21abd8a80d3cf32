"""
Provider and currency detection for statement CSV exports.
"""

from .detector import (
    ClassificationResult,
    CsvPreview,
    DetectionResult,
    classify_files,
    detect_provider,
    extract_metadata,
    parse_csv_preview,
    render_filename,
)

__all__ = [
    "ClassificationResult",
    "CsvPreview",
    "DetectionResult",
    "classify_files",
    "detect_provider",
    "extract_metadata",
    "parse_csv_preview",
    "render_filename",
]
