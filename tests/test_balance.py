"""Tests for balance parsing and comparison."""

from decimal import Decimal

import pytest

from statements_hledger.schemas.balance import (
    BalanceParseError,
    CurrencyMismatchError,
    ParsedBalance,
    balances_match,
    calculate_difference,
    format_balance,
    parse_amount_value,
    parse_balance,
)


class TestParseBalance:
    """Tests for parse_balance."""

    @pytest.mark.parametrize(
        "text,currency,amount",
        [
            ("CHF 2324.79", "CHF", "2324.79"),
            ("CHF2324.79", "CHF", "2324.79"),
            ("2324.79 CHF", "CHF", "2324.79"),
            ("EUR -1,234.56", "EUR", "-1234.56"),
            ("1,000.00", "", "1000.00"),
            ("-5", "", "-5"),
        ],
    )
    def test_supported_shapes(self, text, currency, amount):
        assert parse_balance(text) == ParsedBalance(currency=currency, amount=Decimal(amount))

    @pytest.mark.parametrize("text", ["", "no balance", "CHF", "1.2.3"])
    def test_unparseable(self, text):
        assert parse_balance(text) is None


class TestParseAmountValue:
    """Tests for parse_amount_value."""

    def test_drops_currency(self):
        assert parse_amount_value("CHF95.25") == Decimal("95.25")

    def test_negative_with_thousands(self):
        assert parse_amount_value("-1,234.56") == Decimal("-1234.56")

    def test_garbage_is_zero(self):
        assert parse_amount_value("n/a") == Decimal("0")


class TestCalculateDifference:
    """Tests for calculate_difference."""

    def test_positive_difference(self):
        assert calculate_difference("CHF 100.00", "CHF 105.50") == "CHF +5.50"

    def test_negative_difference(self):
        assert calculate_difference("CHF 100.00", "CHF 95.00") == "CHF -5.00"

    def test_zero_difference_is_positive(self):
        assert calculate_difference("CHF 100.00", "CHF 100") == "CHF +0.00"

    def test_without_currency(self):
        assert calculate_difference("100", "99.99") == "-0.01"

    def test_currency_from_either_side(self):
        assert calculate_difference("100.00", "EUR 101.00") == "EUR +1.00"

    def test_currency_mismatch(self):
        with pytest.raises(CurrencyMismatchError):
            calculate_difference("CHF 100.00", "EUR 100.00")

    def test_unparseable(self):
        with pytest.raises(BalanceParseError):
            calculate_difference("CHF 100.00", "unknown")


class TestBalancesMatch:
    """Tests for balances_match."""

    def test_equal(self):
        assert balances_match("CHF 2324.79", "2324.79 CHF") is True

    def test_exact_only(self):
        assert balances_match("CHF 100.00", "CHF 100.001") is False

    def test_trailing_zeros_are_equal(self):
        assert balances_match("CHF 100", "CHF 100.00") is True

    def test_missing_currency_on_one_side(self):
        assert balances_match("100.00", "CHF 100.00") is True

    def test_unparseable_is_no_match(self):
        assert balances_match("CHF 100.00", "") is False

    def test_mismatch_raises_regardless_of_amount(self):
        with pytest.raises(CurrencyMismatchError):
            balances_match("CHF 100.00", "EUR 100.00")


class TestFormatBalance:
    """Tests for format_balance."""

    def test_with_currency(self):
        assert format_balance(Decimal("5.5"), "CHF") == "CHF 5.50"

    def test_without_currency(self):
        assert format_balance(Decimal("-3")) == "-3.00"
