"""
Locate the source CSV row behind an hledger posting.

Used to give each unknown posting in a dry run the full row it came from, so
that a rule can be written for it.
"""

import csv
import io
import re
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from ..rules.parser import AmountFields, RulesConfig
from ..schemas.balance import parse_amount_value

AMOUNT_TOLERANCE = Decimal("0.001")

ID_FIELD_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"transaction",
        r"trans_?no",
        r"trans_?id",
        r"reference",
        r"ref_?no",
        r"ref_?id",
        r"booking_?id",
        r"payment_?id",
        r"order_?id",
    )
]
ID_VALUE_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,}$")
LINE_BREAK_PATTERN = re.compile(r"\r?\n")

CsvRow = dict[str, str]


def parse_csv_file(csv_path: Path | str, rules: RulesConfig) -> list[CsvRow]:
    """
    Read the data rows of ``csv_path`` as dicts.

    The header sits after ``rules.skip_rows`` lines. Keys come from the rules
    file's ``fields`` directive when present, otherwise from the header row.
    """
    lines = LINE_BREAK_PATTERN.split(Path(csv_path).read_text(encoding="utf-8"))
    if rules.skip_rows >= len(lines):
        return []

    header = lines[rules.skip_rows]
    data = [line for line in lines[rules.skip_rows + 1 :] if line.strip()]
    reader = csv.reader(io.StringIO("\n".join([header, *data])), delimiter=rules.separator)
    parsed = list(reader)
    if not parsed:
        return []

    names = rules.field_names or [name.strip() for name in parsed[0]]
    return [dict(zip(names, values)) for values in parsed[1:]]


def _row_amount(row: CsvRow, fields: AmountFields) -> Decimal:
    if fields.single:
        return parse_amount_value(row.get(fields.single) or "0")

    debit = parse_amount_value(row.get(fields.debit) or "0") if fields.debit else Decimal("0")
    credit = parse_amount_value(row.get(fields.credit) or "0") if fields.credit else Decimal("0")
    if debit != 0:
        return -abs(debit)
    if credit != 0:
        return abs(credit)
    return Decimal("0")


def parse_date_to_iso(value: str, date_format: str) -> str:
    """Convert a CSV date to YYYY-MM-DD; unparseable values are returned trimmed."""
    value = value.strip()
    if not value:
        return ""
    fmt = "%Y-%m-%d" if date_format == "%F" else date_format
    try:
        return datetime.strptime(value, fmt).strftime("%Y-%m-%d")
    except ValueError:
        return value


def _find_transaction_id(row: CsvRow) -> tuple[str, str] | None:
    for name, value in row.items():
        if not value or not any(p.search(name) for p in ID_FIELD_PATTERNS):
            continue
        if ID_VALUE_PATTERN.match(value.strip()):
            return name, value.strip()
    return None


def find_matching_csv_row(
    posting_date: str,
    description: str,
    amount: str,
    rows: list[CsvRow],
    rules: RulesConfig,
) -> CsvRow | None:
    """
    Find the row an hledger posting was generated from.

    Candidates must share date and amount. Ties are broken by a unique
    transaction-id-like field, then by the description appearing in the row,
    then by file order.
    """
    posting_amount = parse_amount_value(amount)

    candidates = [
        row
        for row in rows
        if parse_date_to_iso(row.get(rules.date_field) or "", rules.date_format) == posting_date
        and abs(_row_amount(row, rules.amount_fields) - posting_amount) <= AMOUNT_TOLERANCE
    ]
    if len(candidates) <= 1:
        return candidates[0] if candidates else None

    for candidate in candidates:
        tx_id = _find_transaction_id(candidate)
        if tx_id:
            name, value = tx_id
            same_id = [row for row in candidates if row.get(name) == value]
            if len(same_id) == 1:
                return same_id[0]

    needle = description.lower()
    by_description = [
        row for row in candidates if any(v and needle in v.lower() for v in row.values())
    ]
    if by_description:
        return by_description[0]

    return candidates[0]
