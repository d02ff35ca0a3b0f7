"""
Test suite for currency module

Tests Money arithmetic, precision and rounding. CRITICAL: no binary floats,
exact equality and ordering.
"""

import pytest
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_EVEN

from loan_ledger.currency import (
    Money, Currency, money_sum, require_positive, decimal_from_string,
    resolve_rounding, quantize
)
from loan_ledger.exceptions import InvalidAmount


class TestMoneyCreation:
    """Test Money construction and validation"""

    def test_quantizes_to_currency_precision(self):
        """Test that amounts are rounded half-up to two decimals"""
        assert Money(Decimal('10.005'), Currency.MWK).amount == Decimal('10.01')
        assert Money(Decimal('10.004'), Currency.MWK).amount == Decimal('10.00')
        assert Money('21666.666', Currency.MWK).amount == Decimal('21666.67')

    def test_accepts_int_and_string(self):
        """Test integer and string amounts"""
        assert Money(100, Currency.MWK) == Money(Decimal('100.00'), Currency.MWK)
        assert Money('100', Currency.MWK) == Money(Decimal('100'), Currency.MWK)

    def test_rejects_float(self):
        """Test that binary floats are refused"""
        with pytest.raises(InvalidAmount):
            Money(10.5, Currency.MWK)

    def test_rejects_non_finite(self):
        """Test that NaN and infinity are refused"""
        with pytest.raises(InvalidAmount):
            Money(Decimal('NaN'), Currency.MWK)
        with pytest.raises(InvalidAmount):
            Money(Decimal('Infinity'), Currency.MWK)

    def test_rejects_garbage(self):
        """Test that non-numeric text is refused"""
        with pytest.raises(InvalidAmount):
            Money('ten', Currency.MWK)

    def test_invalid_amount_is_value_error(self):
        """Test that callers catching ValueError still see validation failures"""
        with pytest.raises(ValueError):
            Money(1.0, Currency.MWK)


class TestMinorUnits:
    """Test integer minor unit conversion"""

    def test_minor_units(self):
        """Test conversion to cents"""
        assert Money(Decimal('21666.67'), Currency.MWK).minor_units == 2166667
        assert Money(Decimal('-0.05'), Currency.MWK).minor_units == -5

    def test_from_minor_units(self):
        """Test construction from cents"""
        assert Money.from_minor_units(2166667, Currency.MWK) == Money(Decimal('21666.67'), Currency.MWK)

    def test_from_minor_units_requires_int(self):
        """Test that minor units must be an integer"""
        with pytest.raises(InvalidAmount):
            Money.from_minor_units(Decimal('1.5'), Currency.MWK)


class TestMoneyArithmetic:
    """Test Money arithmetic and comparisons"""

    def test_add_and_subtract(self):
        """Test exact addition and subtraction"""
        a = Money(Decimal('0.10'), Currency.MWK)
        b = Money(Decimal('0.20'), Currency.MWK)
        assert a + b == Money(Decimal('0.30'), Currency.MWK)
        assert b - a == Money(Decimal('0.10'), Currency.MWK)

    def test_multiply_and_divide_round(self):
        """Test that products and quotients are quantized"""
        amount = Money(Decimal('100.00'), Currency.MWK)
        assert amount * Decimal('1.1') == Money(Decimal('110.00'), Currency.MWK)
        assert amount / 3 == Money(Decimal('33.33'), Currency.MWK)

    def test_currency_mismatch(self):
        """Test that mixing currencies fails"""
        with pytest.raises(ValueError):
            Money(Decimal('1'), Currency.MWK) + Money(Decimal('1'), Currency.USD)
        with pytest.raises(ValueError):
            Money(Decimal('1'), Currency.MWK) < Money(Decimal('1'), Currency.USD)

    def test_ordering(self):
        """Test exact comparisons"""
        small = Money(Decimal('0.01'), Currency.MWK)
        large = Money(Decimal('0.02'), Currency.MWK)
        assert small < large
        assert large >= small
        assert max(small, large) == large

    def test_sign_helpers(self):
        """Test zero, positive and negative checks"""
        assert Money.zero(Currency.MWK).is_zero()
        assert Money(Decimal('5'), Currency.MWK).is_positive()
        assert (-Money(Decimal('5'), Currency.MWK)).is_negative()
        assert abs(Money(Decimal('-5'), Currency.MWK)) == Money(Decimal('5'), Currency.MWK)

    def test_hash_matches_equality(self):
        """Test Money can be used as a dict key"""
        totals = {Money(Decimal('1.0'), Currency.MWK): "one"}
        assert totals[Money(Decimal('1.00'), Currency.MWK)] == "one"

    def test_to_string(self):
        """Test display formatting"""
        assert Money(Decimal('21666.67'), Currency.MWK).to_string() == "MWK 21,666.67"


class TestHelpers:
    """Test module-level helpers"""

    def test_money_sum(self):
        """Test summing with an empty default"""
        assert money_sum([], Currency.MWK) == Money.zero(Currency.MWK)
        values = [Money(Decimal('1.10'), Currency.MWK), Money(Decimal('2.20'), Currency.MWK)]
        assert money_sum(values, Currency.MWK) == Money(Decimal('3.30'), Currency.MWK)

    def test_require_positive(self):
        """Test the positive amount guard"""
        amount = Money(Decimal('1'), Currency.MWK)
        assert require_positive(amount) is amount
        with pytest.raises(InvalidAmount, match="greater than zero"):
            require_positive(Money.zero(Currency.MWK), "Payment")
        with pytest.raises(InvalidAmount):
            require_positive(Decimal('5'))

    def test_decimal_from_string(self):
        """Test parsing user-entered amounts"""
        assert decimal_from_string("MK 21,666.67") == Decimal('21666.67')
        assert decimal_from_string("1,50") == Decimal('1.50')
        assert decimal_from_string("1,500") == Decimal('1500')
        with pytest.raises(InvalidAmount):
            decimal_from_string("")

    def test_resolve_rounding(self):
        """Test rounding mode names"""
        assert resolve_rounding("round_floor") == ROUND_FLOOR
        assert resolve_rounding("ROUND_HALF_EVEN") == ROUND_HALF_EVEN
        with pytest.raises(ValueError):
            resolve_rounding("ROUND_SIDEWAYS")

    def test_quantize_with_mode(self):
        """Test quantizing with an explicit rounding mode"""
        assert quantize(Decimal('2.675'), Currency.MWK, ROUND_FLOOR) == Decimal('2.67')
        assert quantize(Decimal('2.665'), Currency.MWK, ROUND_HALF_EVEN) == Decimal('2.66')
