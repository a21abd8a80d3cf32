"""
Rules index: which rules file converts which CSV.

Every ``*.rules`` file in the rules directory names its CSV through a
``source`` directive. The path is relative to the rules file's own directory
unless it is absolute. Files without a directive are ignored.
"""

import fnmatch
import logging
import os
import re
from pathlib import Path

logger = logging.getLogger(__name__)

SOURCE_PATTERN = re.compile(r"^source\s+([^\n#]+)", re.MULTILINE)
GLOB_CHARS = re.compile(r"[*?\[]")

RulesMapping = dict[str, str]


def parse_source_directive(content: str) -> str | None:
    """Return the path of the first ``source`` directive, or None."""
    match = SOURCE_PATTERN.search(content)
    if not match:
        return None
    source = match.group(1).strip()
    return source or None


def resolve_source_path(source: str, rules_file: Path | str) -> str:
    """Absolute CSV path for a source directive of ``rules_file``."""
    if os.path.isabs(source):
        return source
    rules_dir = os.path.dirname(os.path.abspath(rules_file))
    return os.path.normpath(os.path.join(rules_dir, source))


def load_rules_mapping(rules_dir: Path | str) -> RulesMapping:
    """
    Build the CSV path → rules file mapping for ``rules_dir``.

    Non-recursive. A missing directory gives an empty mapping.
    """
    rules_dir = Path(rules_dir)
    mapping: RulesMapping = {}
    if not rules_dir.is_dir():
        return mapping

    for rules_file in sorted(rules_dir.iterdir()):
        if rules_file.suffix != ".rules" or not rules_file.is_file():
            continue

        source = parse_source_directive(rules_file.read_text(encoding="utf-8"))
        if source is None:
            logger.debug("No source directive in %s", rules_file)
            continue

        mapping[resolve_source_path(source, rules_file)] = str(rules_file.absolute())

    return mapping


def find_rules_for_csv(csv_path: Path | str, mapping: RulesMapping) -> str | None:
    """Rules file for ``csv_path``: exact key first, then normalized paths."""
    key = str(csv_path)
    if key in mapping:
        return mapping[key]

    normalized = os.path.normpath(key)
    for mapped_csv, rules_file in mapping.items():
        if os.path.normpath(mapped_csv) == normalized:
            return rules_file

    # hledger allows glob patterns in source directives
    for mapped_csv, rules_file in mapping.items():
        if GLOB_CHARS.search(mapped_csv) and fnmatch.fnmatchcase(
            normalized, os.path.normpath(mapped_csv)
        ):
            return rules_file

    return None
