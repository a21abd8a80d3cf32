"""
Journal file utilities.

Layout of a ledger repository:

    .hledger.journal            main journal, includes the year journals
    ledger/<year>.journal       transactions and account declarations per year
    ledger/currencies/<file>    market price journals (P directives)
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

MAIN_JOURNAL = ".hledger.journal"
LEDGER_DIR = "ledger"
CURRENCIES_DIR = "ledger/currencies"


def main_journal_path(directory: Path | str) -> Path:
    return Path(directory) / MAIN_JOURNAL


def year_journal_path(directory: Path | str, year: int) -> Path:
    return Path(directory) / LEDGER_DIR / f"{year}.journal"


def extract_date_from_price_line(line: str) -> str | None:
    """Date of a price directive: "P 2025-02-17 00:00:00 EUR 0.944 CHF" → "2025-02-17"."""
    parts = line.split(" ")
    return parts[1] if len(parts) > 1 and parts[1] else None


def update_price_journal(journal_path: Path | str, new_lines: list[str]) -> None:
    """
    Merge price lines into ``journal_path``.

    One line per date: new lines replace existing lines with the same date,
    and among the new lines the later one wins. The result is sorted by date
    and ends with a newline.
    """
    journal_path = Path(journal_path)
    existing: list[str] = []
    if journal_path.exists():
        existing = [
            line for line in journal_path.read_text(encoding="utf-8").split("\n") if line.strip()
        ]

    by_date: dict[str, str] = {}
    for line in [*existing, *new_lines]:
        price_date = extract_date_from_price_line(line)
        if price_date:
            by_date[price_date] = line

    journal_path.parent.mkdir(parents=True, exist_ok=True)
    ordered = [by_date[d] for d in sorted(by_date)]
    journal_path.write_text("\n".join(ordered) + "\n", encoding="utf-8")


def find_csv_files(
    directory: Path | str,
    provider: str | None = None,
    currency: str | None = None,
) -> list[Path]:
    """
    All ``*.csv`` files below ``directory``, sorted.

    ``provider`` narrows the search to ``<directory>/<provider>``, and
    ``currency`` further to ``<directory>/<provider>/<currency>``. The
    currency filter only applies together with a provider.
    """
    search_path = Path(directory)
    if provider:
        search_path = search_path / provider
        if currency:
            search_path = search_path / currency

    if not search_path.is_dir():
        return []

    return sorted(p for p in search_path.rglob("*.csv") if p.is_file())


def ensure_year_journal_exists(directory: Path | str, year: int) -> Path:
    """
    Create ``ledger/<year>.journal`` and include it from the main journal.

    Returns:
        Path of the year journal

    Raises:
        FileNotFoundError: the main journal does not exist
    """
    directory = Path(directory)
    year_journal = year_journal_path(directory, year)
    main_journal = main_journal_path(directory)

    year_journal.parent.mkdir(parents=True, exist_ok=True)
    if not year_journal.exists():
        year_journal.write_text(f"; {year} transactions\n", encoding="utf-8")
        logger.info("Created %s", year_journal.relative_to(directory))

    if not main_journal.exists():
        raise FileNotFoundError(
            f"{MAIN_JOURNAL} not found at {main_journal}. "
            "Create it first with appropriate includes."
        )

    include = f"include {LEDGER_DIR}/{year}.journal"
    content = main_journal.read_text(encoding="utf-8")
    # Commented-out includes do not count
    has_include = any(
        line.strip() == include or line.strip().startswith(include + " ")
        for line in content.split("\n")
    )
    if not has_include:
        main_journal.write_text(content.rstrip() + "\n" + include + "\n", encoding="utf-8")
        logger.info("Added '%s' to %s", include, MAIN_JOURNAL)

    return year_journal
