"""
Directive parsing for hledger CSV rules files.

Only the directives needed to read the source CSV back are understood:
skip, separator, fields, date-format, date, amount and account1.
"""

import re
from dataclasses import dataclass, field

DEFAULT_DATE_FORMAT = "%Y-%m-%d"

SKIP_PATTERN = re.compile(r"^skip\s+(\d+)", re.MULTILINE)
SEPARATOR_PATTERN = re.compile(r"^separator\s+(\S+)", re.MULTILINE)
FIELDS_PATTERN = re.compile(r"^fields\s+(.+)$", re.MULTILINE)
DATE_FORMAT_PATTERN = re.compile(r"^date-format\s+(.+)$", re.MULTILINE)
DATE_FIELD_PATTERN = re.compile(r"^date\s+%(\w+)", re.MULTILINE)
AMOUNT_PATTERN = re.compile(r"^amount\s+(-?)%(\w+)", re.MULTILINE)
DEBIT_PATTERN = re.compile(r"if\s+%(\w+)\s+\.\s*\n\s*amount\s+-%\1(?!\w)", re.MULTILINE)
CREDIT_PATTERN = re.compile(r"if\s+%(\w+)\s+\.\s*\n\s*amount\s+%\1(?!\w)", re.MULTILINE)
ACCOUNT1_PATTERN = re.compile(r"^account1\s+(.+)$", re.MULTILINE)

SEPARATOR_NAMES = {"TAB": "\t", "SPACE": " ", "SEMICOLON": ";", "COMMA": ","}


@dataclass
class AmountFields:
    """Either a single amount field or separate debit/credit fields."""

    single: str | None = None
    debit: str | None = None
    credit: str | None = None


@dataclass
class RulesConfig:
    skip_rows: int = 0
    separator: str = ","
    field_names: list[str] = field(default_factory=list)
    date_format: str = DEFAULT_DATE_FORMAT
    date_field: str = "date"
    amount_fields: AmountFields = field(default_factory=AmountFields)


def _resolve_field(reference: str, field_names: list[str]) -> str:
    """Field references may be 1-indexed positions into the fields list."""
    if reference.isdigit():
        index = int(reference) - 1
        if 0 <= index < len(field_names):
            return field_names[index]
    return reference


def parse_skip_rows(content: str) -> int:
    match = SKIP_PATTERN.search(content)
    return int(match.group(1)) if match else 0


def parse_separator(content: str) -> str:
    match = SEPARATOR_PATTERN.search(content)
    if not match:
        return ","
    value = match.group(1)
    return SEPARATOR_NAMES.get(value.upper(), value[0])


def parse_field_names(content: str) -> list[str]:
    match = FIELDS_PATTERN.search(content)
    if not match:
        return []
    return [name.strip() for name in match.group(1).split(",")]


def parse_date_format(content: str) -> str:
    match = DATE_FORMAT_PATTERN.search(content)
    return match.group(1).strip() if match else DEFAULT_DATE_FORMAT


def parse_date_field(content: str, field_names: list[str]) -> str:
    match = DATE_FIELD_PATTERN.search(content)
    if not match:
        return field_names[0] if field_names else "date"
    return _resolve_field(match.group(1), field_names)


def parse_amount_fields(content: str, field_names: list[str]) -> AmountFields:
    """
    Work out where amounts come from.

    ``amount %amount`` gives a single field. Conditional blocks such as
    ``if %debit .`` followed by ``amount -%debit`` give debit/credit fields,
    which take precedence. Defaults to a single field named "amount".
    """
    result = AmountFields()

    simple = AMOUNT_PATTERN.search(content)
    if simple:
        result.single = _resolve_field(simple.group(2), field_names)

    debit = DEBIT_PATTERN.search(content)
    if debit:
        result.debit = debit.group(1)

    credit = CREDIT_PATTERN.search(content)
    if credit and credit.group(1) != result.debit:
        result.credit = credit.group(1)

    if result.debit or result.credit:
        result.single = None

    if not (result.single or result.debit or result.credit):
        result.single = "amount"

    return result


def parse_account1(content: str) -> str | None:
    """Primary (bank/asset) account, e.g. ``account1 assets:bank:ubs:checking``."""
    match = ACCOUNT1_PATTERN.search(content)
    return match.group(1).strip() if match else None


def parse_rules_file(content: str) -> RulesConfig:
    field_names = parse_field_names(content)
    return RulesConfig(
        skip_rows=parse_skip_rows(content),
        separator=parse_separator(content),
        field_names=field_names,
        date_format=parse_date_format(content),
        date_field=parse_date_field(content, field_names),
        amount_fields=parse_amount_fields(content, field_names),
    )
