"""
Unit tests for decimal utility functions.
Covers coercion, base-unit scaling, output formatting and currency codes.
"""

import pytest
from decimal import Decimal
from src.decimal_utils import (
    amount_string, format_decimal, lamports_to_sol, normalize_currency_code,
    scale_integer_string, to_decimal,
)


class TestToDecimal:
    """Test suite for to_decimal helper function."""

    def test_valid_int(self):
        """Test conversion from int."""
        assert to_decimal(42) == Decimal('42')

    def test_valid_float(self):
        """Test conversion from float (via str to avoid precision issues)."""
        assert to_decimal(3.14159) == Decimal('3.14159')

    def test_valid_decimal(self):
        """Test pass-through of existing Decimal."""
        d = Decimal('999.99')
        assert to_decimal(d) is d

    def test_scientific_notation(self):
        assert to_decimal('1e6') == Decimal('1000000')

    def test_none_and_empty_return_default(self):
        assert to_decimal(None) == Decimal(0)
        assert to_decimal('') == Decimal(0)
        assert to_decimal(None, Decimal('-1')) == Decimal('-1')

    def test_invalid_string_returns_default(self):
        """Test invalid string returns default."""
        assert to_decimal('not_a_number') == Decimal(0)
        assert to_decimal('12.34.56') == Decimal(0)

    def test_non_finite_returns_default(self):
        assert to_decimal('NaN') == Decimal(0)
        assert to_decimal(Decimal('Infinity'), Decimal('7')) == Decimal('7')

    def test_boolean(self):
        # str(True) -> 'True', which is invalid for Decimal
        assert to_decimal(True) == Decimal(0)

    def test_precision_preserved(self):
        """Test that precision is fully preserved (not truncated)."""
        precise = '0.123456789012345678901234567890'
        assert str(to_decimal(precise)) == precise


class TestScaleIntegerString:
    def test_basic_scaling(self):
        assert scale_integer_string('1500000', 6) == '1.5'

    def test_smaller_than_one_unit(self):
        """Test amounts shorter than the decimals are left-padded."""
        assert scale_integer_string('5', 9) == '0.000000005'

    def test_negative(self):
        assert scale_integer_string('-2500', 3) == '-2.5'

    def test_whole_result_drops_point(self):
        assert scale_integer_string('1000', 3) == '1'

    def test_zero_decimals(self):
        assert scale_integer_string('000123', 0) == '123'

    def test_garbage_is_zero(self):
        assert scale_integer_string('abc', 2) == '0'
        assert scale_integer_string(None, 2) == '0'

    def test_huge_amount_is_exact(self):
        """No float ever touches the digits."""
        assert scale_integer_string('123456789012345678901234567890', 18) == '123456789012.34567890123456789'


def _unscale(text, decimals):
    """Shift the point back ``decimals`` places using string arithmetic."""
    whole, _, frac = text.partition('.')
    return (whole + frac.ljust(decimals, '0')).lstrip('0') or '0'


RAW_AMOUNTS = ['0', '1', '7', '1000', '000120', '999999999', '1' + '0' * 30, '123456789012345678901234567890']


class TestBaseUnitRoundTrip:
    """Integer string -> decimal string -> integer string is lossless."""

    @pytest.mark.parametrize('decimals', [0, 1, 6, 9, 18])
    @pytest.mark.parametrize('raw', RAW_AMOUNTS)
    def test_scale_and_unscale(self, raw, decimals):
        scaled = scale_integer_string(raw, decimals)
        assert _unscale(scaled, decimals) == (raw.lstrip('0') or '0')

    @pytest.mark.parametrize('decimals', [0, 1, 6, 9, 18])
    @pytest.mark.parametrize('raw', RAW_AMOUNTS)
    def test_amount_string_keeps_every_digit(self, raw, decimals):
        scaled = scale_integer_string(raw, decimals)
        assert amount_string(scaled) == scaled
        assert Decimal(scaled).scaleb(decimals) == Decimal(raw)


class TestLamports:
    def test_fee(self):
        assert lamports_to_sol(5000) == Decimal('0.000005')

    def test_transfer(self):
        assert lamports_to_sol(1_500_005_000) == Decimal('1.500005')

    def test_string_input(self):
        assert lamports_to_sol('2039280') == Decimal('0.00203928')


class TestFormatDecimal:
    def test_strips_trailing_zeros(self):
        assert format_decimal(Decimal('1.2300')) == '1.23'

    def test_no_exponent(self):
        assert format_decimal(Decimal('1E+3')) == '1000'
        assert format_decimal(Decimal('1E-9')) == '0.000000001'

    def test_zero_forms(self):
        assert format_decimal(Decimal('-0.000')) == '0'
        assert format_decimal(0) == '0'
        assert format_decimal(None) == '0'

    def test_truncates_to_eighteen_places(self):
        assert format_decimal(Decimal('0.1234567890123456789')) == '0.123456789012345678'

    def test_truncation_never_rounds_up(self):
        assert format_decimal(Decimal('0.9999999999999999999')) == '0.999999999999999999'

    def test_amount_string_is_unsigned(self):
        assert amount_string(Decimal('-5.50')) == '5.5'
        assert amount_string(None) == '0'
        assert amount_string('') == '0'


class TestNormalizeCurrencyCode:
    @pytest.mark.parametrize('raw,expected', [
        ('usdc', 'USDC'),
        ('$WIF', 'WIF'),
        ('wif-2', 'WIF-2'),
        ('US D.C!', 'USDC'),
        ('ABCDEFGHIJKLMNOPQRS', 'ABCDEFGHIJKLMNOP'),
    ])
    def test_normalization(self, raw, expected):
        assert normalize_currency_code(raw) == expected

    def test_empty_is_unknown(self):
        assert normalize_currency_code('') == 'UNKNOWN'
        assert normalize_currency_code(None) == 'UNKNOWN'
        assert normalize_currency_code('🚀') == 'UNKNOWN'

    def test_idempotent(self):
        for raw in ('so l', 'jup', 'ÆØÅ-x', 'a' * 40):
            once = normalize_currency_code(raw)
            assert normalize_currency_code(once) == once


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
