"""Tests for European number parsing and formatting."""

from decimal import Decimal

import pytest

from backoffice.numbers import (
    amount_or_zero,
    format_amount,
    format_currency,
    format_number,
    money,
    parse_european_number,
)


class TestParseEuropeanNumber:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("1.234,56", Decimal("1234.56")),
            ("1234.56", Decimal("1234.56")),
            ("1.234.567", Decimal("1234.567")),
            (" 12 500,5 €", Decimal("12500.5")),
            ("-42,5", Decimal("-42.5")),
            ("0,01", Decimal("0.01")),
            (5, Decimal("5")),
            (2.5, Decimal("2.5")),
        ],
    )
    def test_valid(self, raw, expected):
        assert parse_european_number(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "abc", "1,2,3", "-", True, float("nan"), float("inf")])
    def test_invalid_is_none_not_zero(self, raw):
        assert parse_european_number(raw) is None

    def test_amount_or_zero_only_for_sums(self):
        assert amount_or_zero("garbage") == Decimal("0")
        assert amount_or_zero("10,50") == Decimal("10.50")


class TestFormatNumber:
    def test_grouping_and_trimming(self):
        assert format_number(1234.5) == "1.234,5"
        assert format_number(1234) == "1.234,0"
        assert format_number(999) == "999"
        assert format_number(-1234567.891) == "-1.234.567,89"

    def test_min_fraction_digits(self):
        assert format_number(1, min_fraction_digits=2) == "1,00"
        assert format_amount(1234.5) == "1.234,50"

    def test_rounds_half_up(self):
        assert format_number(0.005) == "0,01"
        assert format_amount("2,345") == "2,35"

    def test_invalid_is_dash(self):
        assert format_number("abc") == "-"
        assert format_number(None) == "-"

    @pytest.mark.parametrize("text", ["1.234,56", "0,01", "999.999,99", "-42,5", "7"])
    def test_round_trip(self, text):
        value = parse_european_number(text)
        assert format_number(parse_european_number(format_number(value))) == format_number(value)
        assert parse_european_number(format_amount(value)) == money(value)

    @pytest.mark.parametrize("whole", [1000, 1234, 1234567, -5000, 999999])
    def test_whole_thousands_read_back_unchanged(self, whole):
        assert parse_european_number(format_number(Decimal(whole))) == Decimal(whole)


class TestFormatCurrency:
    def test_special_cases(self):
        assert format_currency(0) == "0,00 €"
        assert format_currency("0,00") == "0,00 €"
        assert format_currency(None) == "-"
        assert format_currency("") == "-"
        assert format_currency("-") == "-"
        assert format_currency("n/a") == "-"

    def test_amounts(self):
        assert format_currency(100500.22) == "100.500,22 €"
        assert format_currency("1.234,5") == "1.234,50 €"
