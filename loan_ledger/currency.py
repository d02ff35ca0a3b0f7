"""
Money Module

Fixed-point money in currency minor units with defined rounding.
NEVER uses float for monetary values: amounts are Decimal quantized to the
currency's precision, so equality and ordering are exact.
"""

from decimal import (
    Decimal, ROUND_HALF_UP, ROUND_HALF_EVEN, ROUND_FLOOR, ROUND_DOWN,
    InvalidOperation, getcontext
)
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Union
import re

from .exceptions import InvalidAmount

# Set global decimal context for financial precision
getcontext().prec = 28

ROUNDING_MODES = {
    "ROUND_HALF_UP": ROUND_HALF_UP,
    "ROUND_HALF_EVEN": ROUND_HALF_EVEN,
    "ROUND_FLOOR": ROUND_FLOOR,
    "ROUND_DOWN": ROUND_DOWN,
}


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    MWK = ("MWK", 2)  # Malawian Kwacha
    USD = ("USD", 2)  # US Dollar
    EUR = ("EUR", 2)  # Euro
    KES = ("KES", 2)  # Kenyan Shilling
    ZMW = ("ZMW", 2)  # Zambian Kwacha

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def quantum(self) -> Decimal:
        """Smallest representable amount, e.g. 0.01"""
        return Decimal(1).scaleb(-self.precision)


def resolve_rounding(mode: str) -> str:
    """Map a configured rounding name to its decimal constant"""
    try:
        return ROUNDING_MODES[mode.upper()]
    except KeyError:
        raise ValueError(f"Unsupported rounding mode: {mode}")


def _to_decimal(value: Union[Decimal, int, str]) -> Decimal:
    if isinstance(value, float):
        raise InvalidAmount("Monetary amounts must not be binary floats")
    if isinstance(value, bool):
        raise InvalidAmount("Monetary amounts must be numeric")
    try:
        result = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"Cannot interpret {value!r} as an amount")
    if not result.is_finite():
        raise InvalidAmount(f"Amount must be finite, got {result}")
    return result


def quantize(value: Decimal, currency: "Currency", rounding: str = ROUND_HALF_UP) -> Decimal:
    """Round a raw Decimal to the currency's precision"""
    return _to_decimal(value).quantize(currency.quantum, rounding=rounding)


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    All monetary values MUST use this class.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        amount = _to_decimal(self.amount)
        rounded = amount.quantize(self.currency.quantum, rounding=ROUND_HALF_UP)
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)

    @classmethod
    def from_minor_units(cls, units: int, currency: Currency) -> 'Money':
        """Build from an integer count of minor units (e.g. cents)"""
        if not isinstance(units, int) or isinstance(units, bool):
            raise InvalidAmount("Minor units must be an integer")
        return cls(Decimal(units).scaleb(-currency.precision), currency)

    @property
    def minor_units(self) -> int:
        """Amount as an integer count of minor units"""
        return int(self.amount.scaleb(self.currency.precision))

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot {verb} Money and {type(other).__name__}")
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: Union[Decimal, int]) -> 'Money':
        return Money(self.amount * _to_decimal(multiplier), self.currency)

    def __truediv__(self, divisor: Union[Decimal, int]) -> 'Money':
        return Money(self.amount / _to_decimal(divisor), self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount), self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        """Check if amount is negative"""
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


def money_sum(values: Iterable[Money], currency: Currency) -> Money:
    """Sum Money values, returning zero for an empty iterable"""
    total = Money.zero(currency)
    for value in values:
        total = total + value
    return total


def require_positive(money: Money, what: str = "Amount") -> Money:
    """Raise InvalidAmount unless money is strictly positive"""
    if not isinstance(money, Money):
        raise InvalidAmount(f"{what} must be Money")
    if not money.is_positive():
        raise InvalidAmount(f"{what} must be greater than zero, got {money.to_string()}")
    return money


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert user-entered text to Decimal, handling common formats

    Args:
        value: String representation of number, e.g. "MK 21,666.67"

    Returns:
        Decimal value

    Raises:
        InvalidAmount: If string cannot be converted to a finite Decimal
    """
    if not value or not isinstance(value, str):
        raise InvalidAmount("Value must be a non-empty string")

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    if ',' in clean_value and '.' in clean_value:
        # Both comma and dot - assume comma is thousands separator
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 2:  # Decimal separator
            clean_value = clean_value.replace(',', '.')
        else:  # Thousands separator
            clean_value = clean_value.replace(',', '')
    else:
        clean_value = clean_value.replace(',', '')

    return _to_decimal(clean_value)
