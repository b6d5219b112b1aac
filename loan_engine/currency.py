"""
Money and Rate Primitives

ISO 4217 currency codes with their minor-unit precision and an immutable
Money type. NEVER uses float for monetary values: amounts are Decimal and are
rounded to the smallest currency unit with ROUND_HALF_UP.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Union
import re

# High precision for intermediate calculations; rounding happens only when
# a value is turned into Money.
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    CLP = ("CLP", 0)  # Chilean Peso, no minor unit
    USD = ("USD", 2)  # US Dollar, 2 decimal places
    EUR = ("EUR", 2)  # Euro, 2 decimal places

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def smallest_unit(self) -> Decimal:
        """Smallest representable amount, e.g. 0.01 for USD and 1 for CLP"""
        return Decimal('0.1') ** self.precision


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    All monetary values MUST use this class or raw Decimal.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))

        object.__setattr__(self, 'amount', quantize(self.amount, self.currency))

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)

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

    def __mul__(self, multiplier: Decimal) -> 'Money':
        if not isinstance(multiplier, Decimal):
            multiplier = Decimal(str(multiplier))
        return Money(self.amount * multiplier, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

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
        if self.currency.precision == 0:
            return f"{self.currency.code} {self.amount:,.0f}"
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


def quantize(value: Decimal, currency: Currency) -> Decimal:
    """Round a Decimal to the currency's smallest unit (ROUND_HALF_UP)"""
    return value.quantize(currency.smallest_unit, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[Money], currency: Currency) -> Money:
    """Sum Money values, starting from zero in the given currency"""
    total = Money.zero(currency)
    for value in values:
        total = total + value
    return total


def to_decimal(value: Union[str, int, Decimal], precision: Optional[int] = None) -> Decimal:
    """
    Convert a number or numeric string to Decimal without passing through float

    `precision` is the minor-unit precision of the target currency; see
    decimal_from_string.

    Raises:
        ValueError: If the value is a float or cannot be parsed
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"Refusing to build a Decimal from {type(value).__name__} {value!r}")
    if isinstance(value, int):
        return Decimal(value)
    return decimal_from_string(value, precision)


def decimal_from_string(value: str, precision: Optional[int] = None) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number, e.g. "1.200.000", "1,200,000.50"
        precision: Minor-unit precision of the currency the value is in. With
            0 (e.g. CLP) a single dot before exactly three digits, as in
            "50.000", is a thousands separator.

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    if ',' in clean_value and '.' in clean_value:
        # Whichever separator comes last is the decimal separator
        if clean_value.rfind(',') > clean_value.rfind('.'):
            clean_value = clean_value.replace('.', '').replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')
    elif ',' in clean_value:
        parts = clean_value.split(',')
        if len(parts) == 2 and len(parts[1]) != 3:
            clean_value = clean_value.replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')
    elif clean_value.count('.') > 1 or (
        precision == 0 and re.fullmatch(r'[-+]?\d{1,3}\.\d{3}', clean_value)
    ):
        # "1.200.000" style thousands separators
        clean_value = clean_value.replace('.', '')

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")
