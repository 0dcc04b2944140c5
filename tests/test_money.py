"""
Tests for the exact money module.

These tests verify:
  - Parsing of Decimal, int, float and locale-formatted strings
  - ROUND_HALF_UP to two places
  - Arithmetic never goes through binary floats
  - Division by zero and unparseable input raise domain errors
  - split() shares always add back up to the total
  - ScaledDecimal stores hundredths as integers
"""

from decimal import Decimal

import pytest

from ledger import money
from ledger.exceptions import DivisionByZero, InvalidAmount, ValidationError


class TestParse:
    """money.parse accepts every input shape the API receives."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("150.75", "150.75"),
            ("R$ 1.234,56", "1234.56"),
            ("1,234.56", "1234.56"),
            ("-12,5", "-12.50"),
            ("1.000.000", "1000000.00"),
            (10, "10.00"),
            (0.1, "0.10"),
            (Decimal("2.005"), "2.01"),
        ],
    )
    def test_parse_formats(self, raw, expected):
        assert money.parse(raw) == Decimal(expected)

    def test_half_up_rounding(self):
        """2.345 rounds up, -2.345 rounds away from zero."""
        assert money.parse("2.345") == Decimal("2.35")
        assert money.parse("-2.345") == Decimal("-2.35")
        assert money.parse("2.344") == Decimal("2.34")

    @pytest.mark.parametrize("raw", ["abc", "", None, True, float("nan"), float("inf"), [1]])
    def test_rejects_garbage(self, raw):
        with pytest.raises(InvalidAmount):
            money.parse(raw)


class TestArithmetic:
    """Add, subtract, multiply and divide stay exact."""

    def test_float_drift_does_not_happen(self):
        """0.1 + 0.2 is exactly 0.30 here, unlike with binary floats."""
        assert money.add(0.1, 0.2) == Decimal("0.30")

    def test_add_and_subtract(self):
        assert money.add("33.33", "66.67", "16.66", "8.34") == Decimal("125.00")
        assert money.subtract("100.00", "33.33", "33.33") == Decimal("33.34")
        assert money.add() == Decimal("0.00")

    def test_multiply_rounds_only_the_result(self):
        assert money.multiply("10.05", "3") == Decimal("30.15")
        assert money.multiply("0.50", "0.50") == Decimal("0.25")

    def test_divide(self):
        assert money.divide("100.00", "3") == Decimal("33.33")
        assert money.divide("200.00", "3") == Decimal("66.67")

    def test_divide_by_zero(self):
        with pytest.raises(DivisionByZero):
            money.divide("10.00", "0")

    def test_percent_of(self):
        assert money.percent_of("1000.00", "10") == Decimal("100.00")
        assert money.percent_of("333.33", "2.5") == Decimal("8.33")

    def test_to_str_always_two_places(self):
        assert money.to_str(Decimal("5")) == "5.00"
        assert money.to_str("150.7") == "150.70"
        assert money.to_str(-3) == "-3.00"


class TestSplit:
    """Installment split: the last share absorbs the remainder."""

    def test_split_three_ways(self):
        assert money.split("100.00", 3) == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]

    def test_split_even(self):
        assert money.split("120.00", 4) == [Decimal("30.00")] * 4

    @pytest.mark.parametrize("total, parts", [("1000.00", 7), ("0.05", 2), ("99.99", 12), ("10.00", 48)])
    def test_shares_sum_to_total(self, total, parts):
        shares = money.split(total, parts)
        assert len(shares) == parts
        assert sum(shares) == Decimal(total)
        assert all(share > 0 for share in shares)

    def test_split_too_small(self):
        with pytest.raises(ValidationError):
            money.split("0.01", 2)

    def test_split_into_zero_parts(self):
        with pytest.raises(DivisionByZero):
            money.split("10.00", 0)


class TestScaledDecimal:
    """The column type persists integer hundredths."""

    def test_bind_and_result(self):
        column = money.ScaledDecimal()
        assert column.process_bind_param(Decimal("150.75"), None) == 15075
        assert column.process_bind_param("-0.01", None) == -1
        assert column.process_result_value(15075, None) == Decimal("150.75")
        assert column.process_bind_param(None, None) is None
        assert column.process_result_value(None, None) is None
