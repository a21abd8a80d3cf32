"""
Balance parsing and comparison.

Balances arrive in several shapes: "CHF 2324.79", "2324.79 CHF", "CHF2324.79"
or a bare "2324.79". Comma thousands separators are stripped. Amounts are kept
as Decimal so that equality is exact; there is no tolerance anywhere.
"""

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

CURRENCY_AMOUNT_PATTERN = re.compile(r"([A-Z]{3})\s*([-\d.,]+)|([+-]?[\d.,]+)\s*([A-Z]{3})")
PLAIN_AMOUNT_PATTERN = re.compile(r"^([+-]?[\d.,]+)$")
CURRENCY_CODE_PATTERN = re.compile(r"[A-Z]{3}\s*")

TWO_PLACES = Decimal("0.01")


class BalanceParseError(ValueError):
    """A balance string could not be parsed."""

    pass


class CurrencyMismatchError(ValueError):
    """Two balances name different, non-empty currencies."""

    pass


@dataclass(frozen=True)
class ParsedBalance:
    """Currency code (may be empty) and amount."""

    currency: str
    amount: Decimal


def _to_decimal(value: str) -> Decimal | None:
    try:
        return Decimal(value.replace(",", ""))
    except InvalidOperation:
        return None


def parse_amount_value(amount: str) -> Decimal:
    """
    Numeric value of an amount string such as "CHF95.25" or "-1,234.56".

    Currency codes are dropped. Unparseable input yields 0.
    """
    cleaned = CURRENCY_CODE_PATTERN.sub("", amount).replace(",", "").strip()
    value = _to_decimal(cleaned) if cleaned else None
    return value if value is not None else Decimal("0")


def parse_balance(balance: str) -> ParsedBalance | None:
    """
    Parse a balance string into currency and amount.

    Returns:
        ParsedBalance, or None if the string holds no recognizable amount
    """
    match = CURRENCY_AMOUNT_PATTERN.search(balance)
    if not match:
        plain = PLAIN_AMOUNT_PATTERN.match(balance.strip())
        if not plain:
            return None
        amount = _to_decimal(plain.group(1))
        return ParsedBalance(currency="", amount=amount) if amount is not None else None

    currency = match.group(1) or match.group(4)
    amount = _to_decimal(match.group(2) or match.group(3))
    if amount is None:
        return None
    return ParsedBalance(currency=currency, amount=amount)


def _check_currencies(first: ParsedBalance, second: ParsedBalance, message: str) -> None:
    if first.currency and second.currency and first.currency != second.currency:
        raise CurrencyMismatchError(message)


def format_balance(amount: Decimal, currency: str | None = None) -> str:
    """Format an amount with two decimals, prefixed by its currency if given."""
    formatted = f"{Decimal(amount).quantize(TWO_PLACES)}"
    return f"{currency} {formatted}" if currency else formatted


def calculate_difference(expected: str, actual: str) -> str:
    """
    Signed difference ``actual - expected`` as "CUR +5.50" / "CUR -5.00".

    Raises:
        BalanceParseError: either side cannot be parsed
        CurrencyMismatchError: both sides name different currencies
    """
    expected_parsed = parse_balance(expected)
    actual_parsed = parse_balance(actual)

    if expected_parsed is None or actual_parsed is None:
        raise BalanceParseError(f'Cannot parse balances: expected="{expected}", actual="{actual}"')

    _check_currencies(
        expected_parsed,
        actual_parsed,
        f"Currency mismatch: expected {expected_parsed.currency}, got {actual_parsed.currency}",
    )

    diff = (actual_parsed.amount - expected_parsed.amount).quantize(TWO_PLACES)
    sign = "+" if diff >= 0 else ""
    # Decimal keeps the sign of zero; a zero difference is always "+0.00"
    if diff == 0:
        diff = abs(diff)
    currency = expected_parsed.currency or actual_parsed.currency
    return f"{currency} {sign}{diff}" if currency else f"{sign}{diff}"


def balances_match(first: str, second: str) -> bool:
    """
    Exact equality of two balances.

    Returns False if either side cannot be parsed.

    Raises:
        CurrencyMismatchError: both sides name different currencies
    """
    first_parsed = parse_balance(first)
    second_parsed = parse_balance(second)

    if first_parsed is None or second_parsed is None:
        return False

    _check_currencies(
        first_parsed,
        second_parsed,
        f"Currency mismatch: {first_parsed.currency} vs {second_parsed.currency}",
    )
    return first_parsed.amount == second_parsed.amount
