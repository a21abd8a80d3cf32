"""
Statement classification.

Matches a CSV export against the configured detection rules to find out which
provider and currency it belongs to. Matching is binary and order-sensitive:
providers are scanned in configured order, then each provider's rules in
order, and the first rule that fully matches wins. There is no scoring.

A rule matches when
1. its filename pattern (if any) matches the filename,
2. the header row found after skipping ``skip_rows`` lines, with each field
   trimmed and joined by ",", equals the rule's header exactly,
3. the currency field of the first data row is present and non-empty.
"""

import csv
import io
import logging
import re
from dataclasses import dataclass, field

from ..config import (
    NORMALIZE_SPACES_TO_DASHES,
    DetectionRule,
    ImportConfig,
    MetadataExtraction,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{([^{}]+)\}")
WHITESPACE_PATTERN = re.compile(r"\s+")
LINE_BREAK_PATTERN = re.compile(r"\r?\n")
PATH_SEPARATOR_PATTERN = re.compile(r"[/\\]")


@dataclass
class DetectionResult:
    """Provider and currency a statement was matched to."""

    provider: str
    currency: str
    rule: DetectionRule
    metadata: dict[str, str] = field(default_factory=dict)
    output_filename: str | None = None


@dataclass
class ClassificationResult:
    """One entry of a batch classification, in input order."""

    filename: str
    detected: DetectionResult | None = None
    error: str | None = None


@dataclass
class CsvPreview:
    """Header fields, first data row and skipped preamble lines of a CSV."""

    fields: list[str]
    first_row: dict[str, str] | None
    skipped_lines: list[str]

    @property
    def normalized_header(self) -> str:
        return ",".join(self.fields)


def parse_csv_preview(content: str, skip_rows: int = 0, delimiter: str = ",") -> CsvPreview | None:
    """
    Parse the header and first data row of ``content``.

    Empty rows after the skipped preamble are ignored. Returns None if there is
    no header row at all.
    """
    lines = LINE_BREAK_PATTERN.split(content)
    skipped = lines[:skip_rows]
    body = "\n".join(lines[skip_rows:])

    reader = csv.reader(io.StringIO(body), delimiter=delimiter)
    rows = [row for row in reader if any(cell.strip() for cell in row)]
    if not rows:
        return None

    fields = [f.strip() for f in rows[0]]
    first_row = None
    if len(rows) > 1:
        first_row = dict(zip(fields, rows[1]))

    return CsvPreview(fields=fields, first_row=first_row, skipped_lines=skipped)


def _normalize_value(value: str, normalize: str | None) -> str:
    if normalize == NORMALIZE_SPACES_TO_DASHES:
        return WHITESPACE_PATTERN.sub("-", value)
    return value


def extract_metadata(
    skipped_lines: list[str],
    extractions: list[MetadataExtraction],
    delimiter: str = ",",
) -> dict[str, str]:
    """Read configured (row, column) cells out of the skipped preamble lines."""
    if not extractions:
        return {}

    rows = list(csv.reader(io.StringIO("\n".join(skipped_lines)), delimiter=delimiter))
    metadata: dict[str, str] = {}
    for extraction in extractions:
        if extraction.row >= len(rows):
            continue
        row = rows[extraction.row]
        if extraction.column >= len(row):
            continue
        value = row[extraction.column].strip()
        if value:
            metadata[extraction.field] = _normalize_value(value, extraction.normalize)
    return metadata


def render_filename(pattern: str, values: dict[str, str]) -> str | None:
    """
    Substitute ``{name}`` placeholders in ``pattern``.

    Substitution is a single pass: a value containing something that looks
    like a placeholder is inserted literally. Path separators inside values
    become "-" so a date like 31/01/2024 stays part of the filename. Returns
    None if any placeholder has no value or the result is not a plain filename.
    """
    missing: list[str] = []

    def replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in values:
            missing.append(key)
            return match.group(0)
        return PATH_SEPARATOR_PATTERN.sub("-", values[key])

    rendered = PLACEHOLDER_PATTERN.sub(replace, pattern)
    if missing:
        logger.warning(
            "Rename pattern %r has unresolved placeholders: %s", pattern, ", ".join(missing)
        )
        return None
    if rendered in ("", ".", "..") or PATH_SEPARATOR_PATTERN.search(rendered):
        logger.warning("Rename pattern %r does not produce a plain filename: %r", pattern, rendered)
        return None
    return rendered


def _match_rule(
    filename: str,
    preview: CsvPreview | None,
    rule: DetectionRule,
    match_filename: bool = True,
) -> str | None:
    """Return the raw currency value if ``rule`` matches, else None."""
    if match_filename and rule.filename_pattern and not re.search(rule.filename_pattern, filename):
        return None
    if preview is None or not preview.fields:
        return None
    if preview.normalized_header != rule.header:
        return None
    if preview.first_row is None:
        return None

    raw_currency = (preview.first_row.get(rule.currency_field) or "").strip()
    return raw_currency or None


def detect_provider(
    filename: str,
    content: str,
    config: ImportConfig,
    match_filename: bool = True,
) -> DetectionResult | None:
    """
    Detect the provider and currency of a CSV export.

    Args:
        filename: Base name of the file (used by filename patterns)
        content: Full file content
        config: Import configuration holding the providers
        match_filename: Apply filename patterns; off for files already renamed

    Returns:
        DetectionResult for the first matching rule, or None
    """
    previews: dict[tuple[int, str], CsvPreview | None] = {}

    for provider_name, provider in config.providers.items():
        for rule in provider.detect:
            key = (rule.skip_rows, rule.delimiter)
            if key not in previews:
                previews[key] = parse_csv_preview(content, rule.skip_rows, rule.delimiter)
            preview = previews[key]

            raw_currency = _match_rule(filename, preview, rule, match_filename)
            if raw_currency is None:
                continue

            # Unmapped currencies still match, using the raw value lower-cased
            currency = provider.currencies.get(raw_currency) or raw_currency.lower()

            metadata = extract_metadata(preview.skipped_lines, rule.metadata, rule.delimiter)
            output_filename = None
            if rule.rename_pattern:
                values = {"provider": provider_name, "currency": currency}
                values.update(metadata)
                output_filename = render_filename(rule.rename_pattern, values)

            logger.debug("Detected %s as %s/%s", filename, provider_name, currency)
            return DetectionResult(
                provider=provider_name,
                currency=currency,
                rule=rule,
                metadata=metadata,
                output_filename=output_filename,
            )

    return None


def classify_files(files: list[tuple[str, str]], config: ImportConfig) -> list[ClassificationResult]:
    """
    Classify a batch of ``(filename, content)`` pairs.

    One result per input, in input order. A file that fails to parse becomes
    an error entry; the rest of the batch is still classified.
    """
    results: list[ClassificationResult] = []
    for filename, content in files:
        try:
            detected = detect_provider(filename, content, config)
            results.append(ClassificationResult(filename=filename, detected=detected))
        except (csv.Error, re.error, ValueError) as e:
            logger.warning("Failed to classify %s: %s", filename, e)
            results.append(ClassificationResult(filename=filename, error=str(e)))
    return results
